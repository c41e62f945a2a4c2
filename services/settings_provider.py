# services/settings_provider.py
"""
Load, validate and edit the global billing settings.

The billing core only ever sees a validated `BillSettings`; every edit
(including tariff edits) bumps `WaterSettings.version` so each bill can record
which settings it was computed under.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from tortoise.transactions import in_transaction

from errors import SettingsNotFoundError
from models import WaterSettings, TariffTier
from schemas import BillSettings, DiscountPolicy, SettingsUpdate, TariffSchedule, TariffTierSchema

logger = logging.getLogger(__name__)

# (tier, min, max, charge_type, flat_amount, unit_rate, description)
DEFAULT_RESIDENTIAL = [
    ("0-5", 0, 5, "flat", "74.00", "0", "Minimum charge"),
    ("6-10", 6, 10, "per_unit", "0", "16.20", "Per cubic meter"),
    ("11-20", 11, 20, "per_unit", "0", "17.70", "Per cubic meter"),
    ("21-30", 21, 30, "per_unit", "0", "19.20", "Per cubic meter"),
    ("31-40", 31, 40, "per_unit", "0", "20.70", "Per cubic meter"),
    ("41+", 41, 500, "per_unit", "0", "22.20", "Per cubic meter"),
]
DEFAULT_COMMERCIAL = [
    ("0-15", 0, 15, "flat", "442.50", "0", "Minimum charge"),
    ("16-30", 16, 30, "per_unit", "0", "32.50", "Per cubic meter"),
    ("31+", 31, 500, "per_unit", "0", "35.40", "Per cubic meter"),
]


def default_schedule() -> TariffSchedule:
    def _tiers(classification, rows):
        return [
            TariffTierSchema(
                classification=classification,
                tier=tier,
                min_consumption=Decimal(lo),
                max_consumption=Decimal(hi),
                charge_type=ctype,
                flat_amount=Decimal(flat),
                unit_rate=Decimal(rate),
                description=desc,
            )
            for tier, lo, hi, ctype, flat, rate, desc in rows
        ]
    return TariffSchedule(
        residential=_tiers("residential", DEFAULT_RESIDENTIAL),
        commercial=_tiers("commercial", DEFAULT_COMMERCIAL),
    )


def default_settings() -> BillSettings:
    return BillSettings(tariffs=default_schedule())


async def _row(create: bool = False) -> Optional[WaterSettings]:
    row = await WaterSettings.all().order_by("id").first()
    if row is None and create:
        policy = DiscountPolicy()
        row = await WaterSettings.create(
            senior_discount_rate=policy.discount_rate,
            senior_discount_tiers=list(policy.applicable_tiers),
        )
        logger.info("created default water settings (version %s)", row.version)
    return row


async def _tier_rows() -> list[TariffTier]:
    return await TariffTier.all().order_by("classification", "id")


def _to_settings(row: WaterSettings, tiers: list[TariffTier]) -> BillSettings:
    schedule = {"residential": [], "commercial": []}
    for t in sorted(tiers, key=lambda t: t.min_consumption):
        schedule.setdefault(t.classification, []).append(TariffTierSchema.model_validate(t))
    return BillSettings(
        version=row.version,
        penalty_type=row.penalty_type,
        penalty_value=row.penalty_value,
        due_day_of_month=row.due_day_of_month,
        grace_days=row.grace_days,
        reading_start_day_of_month=row.reading_start_day_of_month,
        reading_window_days=row.reading_window_days,
        tariffs=TariffSchedule(
            residential=schedule["residential"],
            commercial=schedule["commercial"],
        ),
        senior_discount=DiscountPolicy(
            discount_rate=row.senior_discount_rate,
            applicable_tiers=list(row.senior_discount_tiers or []),
        ),
        updated_at=row.updated_at,
    )


async def load_settings() -> BillSettings:
    row = await _row()
    if row is None:
        raise SettingsNotFoundError("Water billing settings are not configured")
    return _to_settings(row, await _tier_rows())


async def update_settings(payload: SettingsUpdate) -> BillSettings:
    data = payload.model_dump(exclude_unset=True)
    async with in_transaction():
        row = await WaterSettings.all().order_by("id").select_for_update().first()
        if row is None:
            raise SettingsNotFoundError("Water billing settings are not configured")
        data.pop("senior_discount", None)
        for k, v in data.items():
            if v is not None:
                setattr(row, k, v)
        if payload.senior_discount is not None:
            row.senior_discount_rate = payload.senior_discount.discount_rate
            row.senior_discount_tiers = list(payload.senior_discount.applicable_tiers)
        row.version += 1
        await row.save()
    logger.info("water settings updated to version %s", row.version)
    return await load_settings()


async def replace_tariffs(schedule: TariffSchedule) -> BillSettings:
    """
    Upsert every tier in `schedule` by (classification, tier). Tiers missing
    from the payload are deactivated, never deleted, so old bill snapshots
    still read naturally next to the schedule.
    """
    async with in_transaction():
        row = await WaterSettings.all().order_by("id").select_for_update().first()
        if row is None:
            raise SettingsNotFoundError("Water billing settings are not configured")
        keep = set()
        for classification in ("residential", "commercial"):
            for t in schedule.for_classification(classification):
                values = t.model_dump(exclude={"classification", "tier"})
                await TariffTier.update_or_create(
                    defaults=values, classification=classification, tier=t.tier
                )
                keep.add((classification, t.tier))
        for existing in await TariffTier.filter(is_active=True):
            if (existing.classification, existing.tier) not in keep:
                existing.is_active = False
                await existing.save(update_fields=["is_active", "updated_at"])
        row.version += 1
        await row.save()
    logger.info("tariff schedule replaced, settings version %s", row.version)
    return await load_settings()


async def reset_tariffs() -> BillSettings:
    async with in_transaction():
        row = await WaterSettings.all().order_by("id").select_for_update().first()
        if row is None:
            raise SettingsNotFoundError("Water billing settings are not configured")
        await TariffTier.all().delete()
        await _create_tiers(default_schedule())
        row.version += 1
        await row.save()
    logger.info("tariff schedule reset to defaults, settings version %s", row.version)
    return await load_settings()


async def _create_tiers(schedule: TariffSchedule) -> int:
    n = 0
    for classification in ("residential", "commercial"):
        for t in schedule.for_classification(classification):
            await TariffTier.create(**t.model_dump())
            n += 1
    return n


async def seed_settings_if_empty(logger=print) -> None:
    row = await _row(create=True)
    if await TariffTier.exists():
        logger(f"[seed] water settings v{row.version} and tariffs present, skipping.")
        return
    n = await _create_tiers(default_schedule())
    logger(f"[seed] created {n} default tariff tiers.")
