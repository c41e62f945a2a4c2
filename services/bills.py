# services/bills.py
"""
Bill lifecycle: one bill per (member, period), recomputed while unpaid,
frozen once paid. Overdue status and penalty are derived from the bill's own
settings snapshot every time the bill is written or read.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from errors import AccountNotActiveError, BillNotFoundError, NoTariffFoundError, ValidationError
from models import WaterBill, WaterMember, WaterPayment, BILL_PAID, BILL_UNPAID, BILL_OVERDUE
from schemas import BillSettings
from services.consumption import ReadingLine, total_consumed
from services.periods import compute_due_date, is_past_due, local_today, parse_period_key, utcnow
from services.tariffs import BillComputation, D, compute_bill, money, qty

logger = logging.getLogger(__name__)

STATUS_FIELDS = ("status", "penalty_applied", "total_due", "penalty_computed_at")


def compute_penalty(base_amount, penalty_type: str, penalty_value) -> Decimal:
    value = D(penalty_value)
    if penalty_type == "percent":
        penalty = D(base_amount) * value / 100
    else:
        penalty = value
    return money(max(Decimal("0"), penalty))


def apply_status(bill: WaterBill, now: Optional[datetime] = None) -> bool:
    """Set status/penalty/total_due in memory. Returns True when anything changed."""
    if bill.status == BILL_PAID:
        return False
    now = now or utcnow()
    if is_past_due(bill.due_date, now):
        status = BILL_OVERDUE
        penalty = compute_penalty(bill.base_amount, bill.penalty_type_used, bill.penalty_value_used)
    else:
        status = BILL_UNPAID
        penalty = money(0)
    total = money(D(bill.final_amount) + penalty)

    changed = False
    if bill.status != status:
        bill.status = status
        changed = True
    if D(bill.penalty_applied) != penalty or D(bill.total_due) != total:
        bill.penalty_applied = penalty
        bill.total_due = total
        changed = True
    if changed:
        bill.penalty_computed_at = now if penalty else None
    return changed


async def refresh_status(bill: WaterBill, now: Optional[datetime] = None) -> WaterBill:
    """Persist derived status; a concurrent payment always wins."""
    before = bill.status
    if not apply_status(bill, now):
        return bill
    updated = await WaterBill.filter(id=bill.id).exclude(status=BILL_PAID).update(
        **{f: getattr(bill, f) for f in STATUS_FIELDS}
    )
    if not updated:
        await bill.refresh_from_db()
        return bill
    if bill.status == BILL_OVERDUE and before != BILL_OVERDUE:
        logger.info("bill %s %s is overdue, penalty %s", bill.account_no, bill.period_key, bill.penalty_applied)
    return bill


async def refresh_many(bills: Iterable[WaterBill], now: Optional[datetime] = None) -> list[WaterBill]:
    now = now or utcnow()
    return [await refresh_status(b, now) for b in bills]


async def sweep_overdue(now: Optional[datetime] = None) -> int:
    """Materialize overdue statuses for bills whose due date has passed."""
    now = now or utcnow()
    today = local_today(now)
    bills = await WaterBill.filter(status=BILL_UNPAID, due_date__lte=today)
    for b in bills:
        await refresh_status(b, now)
    if bills:
        logger.info("overdue sweep flagged %d bills", len(bills))
    return len(bills)


def _member_snapshot(member: WaterMember) -> dict:
    return {
        "account_no": member.account_no,
        "account_name": member.account_name,
        "classification": member.classification,
        "is_senior_citizen": member.is_senior_citizen,
        "senior_id": member.senior_id,
        "has_pwd": member.has_pwd,
        "pwd_discount_rate": str(money(member.pwd_discount_rate)),
        "address_text": member.address_text,
    }


def compute_for_member(member: WaterMember, lines: Sequence[ReadingLine], settings: BillSettings) -> BillComputation:
    pwd_rate = member.pwd_discount_rate if member.has_pwd else 0
    return compute_bill(
        total_consumed(lines),
        member.classification,
        member.is_senior_citizen,
        settings,
        pwd_discount_rate=pwd_rate,
    )


def _computed_fields(member: WaterMember, lines: Sequence[ReadingLine], c: BillComputation) -> dict:
    return {
        "account_no": member.account_no,
        "account_name": member.account_name,
        "classification": member.classification,
        "meter_reading_lines": [l.snapshot() for l in lines],
        "total_consumed": qty(c.consumption),
        "tariff_used": c.tariff_snapshot(),
        "breakdown": c.breakdown(),
        "base_amount": c.base_amount,
        "discount": c.discount,
        "discount_reason": c.discount_reason,
        "final_amount": c.final_amount,
        "member_snapshot": _member_snapshot(member),
        "needs_tariff_review": False,
    }


def _settings_snapshot(settings: BillSettings, period_key: str) -> dict:
    return {
        "settings_version": settings.version,
        "due_day_used": settings.due_day_of_month,
        "grace_days_used": settings.grace_days,
        "penalty_type_used": settings.penalty_type,
        "penalty_value_used": money(settings.penalty_value),
        "due_date": compute_due_date(period_key, settings.due_day_of_month, settings.grace_days),
    }


async def _update_existing(bill: WaterBill, values: dict, now: datetime) -> WaterBill:
    if bill.status == BILL_PAID:
        return bill
    changed = []
    for k, v in values.items():
        if getattr(bill, k) != v:
            setattr(bill, k, v)
            changed.append(k)
    if apply_status(bill, now):
        changed.extend(STATUS_FIELDS)
    if changed:
        await bill.save()
        logger.info("bill %s %s recomputed: final %s", bill.account_no, bill.period_key, bill.final_amount)
    return bill


async def upsert_bill(
    member: WaterMember,
    period_key: str,
    lines: Sequence[ReadingLine],
    settings: BillSettings,
    now: Optional[datetime] = None,
    created_by: str = "",
    remarks: str = "",
) -> WaterBill:
    now = now or utcnow()
    parse_period_key(period_key)
    paid = await WaterBill.get_or_none(member_id=member.id, period_key=period_key, status=BILL_PAID)
    if paid is not None:
        return paid
    if member.account_status != "active":
        raise AccountNotActiveError(f"Account {member.account_no} is not active", account_no=member.account_no)
    if not lines:
        raise ValidationError(f"No meter readings for {member.account_no} in {period_key}")

    try:
        computation = compute_for_member(member, lines, settings)
    except NoTariffFoundError:
        flagged = await WaterBill.filter(member_id=member.id, period_key=period_key).exclude(
            status=BILL_PAID
        ).update(needs_tariff_review=True)
        if flagged:
            logger.warning("bill %s %s flagged for tariff review", member.account_no, period_key)
        raise
    values = _computed_fields(member, lines, computation)

    try:
        async with in_transaction():
            existing = await WaterBill.filter(member_id=member.id, period_key=period_key).select_for_update().first()
            if existing is not None:
                return await _update_existing(existing, values, now)
            bill = WaterBill(
                member=member,
                period_key=period_key,
                status=BILL_UNPAID,
                created_by=created_by,
                remarks=remarks,
                **values,
                **_settings_snapshot(settings, period_key),
            )
            apply_status(bill, now)
            await bill.save()
    except IntegrityError:
        # another writer created the bill between our read and insert
        async with in_transaction():
            existing = await WaterBill.filter(member_id=member.id, period_key=period_key).select_for_update().get()
            return await _update_existing(existing, values, now)

    logger.info(
        "bill created %s %s: %s m3, tier %s, final %s, due %s",
        bill.account_no, period_key, bill.total_consumed, computation.tier.tier, bill.final_amount, bill.due_date,
    )
    return bill


async def get_bill(bill_id, now: Optional[datetime] = None) -> WaterBill:
    bill = await WaterBill.get_or_none(id=bill_id)
    if bill is None:
        raise BillNotFoundError("Bill not found", bill_id=str(bill_id))
    return await refresh_status(bill, now)


async def delete_bill(bill_id) -> None:
    async with in_transaction():
        bill = await WaterBill.filter(id=bill_id).select_for_update().first()
        if bill is None:
            raise BillNotFoundError("Bill not found", bill_id=str(bill_id))
        if bill.status == BILL_PAID or await WaterPayment.exists(bill_id=bill.id):
            raise ValidationError("Cannot delete a bill that has payments")
        await bill.delete()
    logger.info("bill %s %s deleted", bill.account_no, bill.period_key)
