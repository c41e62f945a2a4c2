# services/readings.py
"""
Meter reading ingestion.

A submission carries readings for one account and one period. Each line is
judged on its own (accepted / skipped / failed); afterwards the bill for the
period is upserted from every reading stored for the account, including
lines locked by earlier submissions.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from tortoise.exceptions import IntegrityError
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from errors import (
    AccountNotActiveError,
    AccountNotFoundError,
    BillingError,
    InvalidReadingError,
    NoTariffFoundError,
    ValidationError,
)
from models import WaterBill, WaterMember, WaterMeter, WaterReading
from schemas import BillSettings
from services.bills import compute_for_member, upsert_bill
from services.consumption import ReadingLine, total_consumed
from services.periods import parse_period_key, utcnow
from services.settings_provider import load_settings
from services.tariffs import BillComputation, D

logger = logging.getLogger(__name__)

ACCEPTED, SKIPPED, FAILED = "accepted", "skipped", "failed"


def normalize_code(v: Any) -> str:
    return str(v or "").upper().strip()


@dataclass
class LineOutcome:
    meter_number: str
    status: str
    message: str = ""
    code: Optional[str] = None
    reading: Optional[WaterReading] = None


@dataclass
class IngestResult:
    member: WaterMember
    period_key: str
    lines: list[LineOutcome] = field(default_factory=list)
    meter_lines: list[ReadingLine] = field(default_factory=list)
    bill: Optional[WaterBill] = None
    tariff_error: Optional[str] = None

    @property
    def total_consumed(self) -> Decimal:
        return total_consumed(self.meter_lines)

    @property
    def accepted(self) -> int:
        return sum(1 for l in self.lines if l.status == ACCEPTED)


async def get_member(account_no: str) -> WaterMember:
    account_no = normalize_code(account_no)
    member = await WaterMember.get_or_none(account_no=account_no)
    if member is None:
        raise AccountNotFoundError(f"Account {account_no} not found", account_no=account_no)
    return member


async def get_billable_member(account_no: str) -> WaterMember:
    member = await get_member(account_no)
    if member.account_status != "active":
        raise AccountNotActiveError(
            f"Account {member.account_no} is {member.account_status}", account_no=member.account_no
        )
    return member


async def default_previous_reading(meter: WaterMeter, period_key: Optional[str] = None) -> Decimal:
    """Last present reading from an earlier period, else the meter's last/initial reading."""
    qs = WaterReading.filter(meter_id=meter.id)
    if period_key:
        qs = qs.filter(period_key__lt=period_key)
    prior = await qs.order_by("-period_key", "-read_at").first()
    if prior is not None:
        return D(prior.present_reading)
    if meter.last_reading is not None and not await WaterReading.exists(meter_id=meter.id):
        return D(meter.last_reading)
    return D(meter.initial_reading)


def _number(value: Any, name: str, meter_number: str) -> Decimal:
    try:
        return D(value)
    except ValidationError:
        raise InvalidReadingError(f"{meter_number}: {name} is not a number", meter_number=meter_number)


async def resolve_line(meter: WaterMeter, line: Any, period_key: Optional[str]) -> ReadingLine:
    mn = meter.meter_number
    if line.present_reading is None or line.present_reading == "":
        raise InvalidReadingError(f"{mn}: present_reading is required", meter_number=mn)
    previous = line.previous_reading
    if previous is None:
        previous = await default_previous_reading(meter, period_key)
    multiplier = line.multiplier if line.multiplier is not None else (meter.multiplier or 1)
    return ReadingLine(
        meter_number=mn,
        previous_reading=_number(previous, "previous_reading", mn),
        present_reading=_number(line.present_reading, "present_reading", mn),
        multiplier=_number(multiplier, "multiplier", mn),
    ).validate()


def _meter_problem(member: WaterMember, meter: Optional[WaterMeter], meter_number: str) -> Optional[str]:
    if meter is None:
        return f"Meter {meter_number} is not registered to account {member.account_no}"
    if not meter.is_billable:
        return f"Meter {meter_number} is not an active billing meter ({meter.meter_status})"
    return None


async def _store_line(
    member: WaterMember,
    meter: WaterMeter,
    period_key: str,
    line: Any,
    read_by: str,
    reading_type: str,
    now: datetime,
) -> LineOutcome:
    mn = meter.meter_number
    if await WaterReading.exists(period_key=period_key, meter_number=mn):
        return LineOutcome(mn, SKIPPED, f"Reading for {mn} already recorded for {period_key}")
    try:
        rl = await resolve_line(meter, line, period_key)
    except BillingError as e:
        return LineOutcome(mn, FAILED, e.message, code=type(e).__name__)

    try:
        async with in_transaction():
            reading = await WaterReading.create(
                period_key=period_key,
                member=member,
                meter=meter,
                meter_number=mn,
                previous_reading=rl.previous_reading,
                present_reading=rl.present_reading,
                raw_consumed=rl.raw_consumed,
                multiplier=rl.multiplier,
                consumed=rl.consumed,
                read_at=now,
                read_by=read_by,
                reading_type=reading_type,
            )
            meter.last_reading = rl.present_reading
            meter.last_reading_date = now
            await meter.save(update_fields=["last_reading", "last_reading_date", "updated_at"])
    except IntegrityError:
        return LineOutcome(mn, SKIPPED, f"Reading for {mn} already recorded for {period_key}")
    return LineOutcome(mn, ACCEPTED, reading=reading)


async def period_lines(member: WaterMember, period_key: str) -> list[ReadingLine]:
    readings = await WaterReading.filter(member_id=member.id, period_key=period_key).order_by("meter_number")
    return [ReadingLine.from_reading(r) for r in readings]


async def ingest_readings(
    account_no: str,
    period_key: str,
    lines: Iterable[Any],
    read_by: str = "",
    reading_type: str = "manual",
    generate_bill: bool = True,
    remarks: str = "",
    settings: Optional[BillSettings] = None,
    now: Optional[datetime] = None,
) -> IngestResult:
    """
    `lines` are objects with meter_number, present_reading and optional
    previous_reading / multiplier (e.g. `schemas.ReadingLineIn`).
    """
    parse_period_key(period_key)
    now = now or utcnow()
    member = await get_billable_member(account_no)
    meters = {m.meter_number: m for m in await WaterMeter.filter(member_id=member.id)}

    result = IngestResult(member=member, period_key=period_key)
    seen = set()
    for line in lines:
        mn = normalize_code(line.meter_number)
        if not mn:
            result.lines.append(LineOutcome(mn, FAILED, "meter_number is required", code=ValidationError.__name__))
            continue
        if mn in seen:
            result.lines.append(LineOutcome(mn, SKIPPED, f"Meter {mn} appears more than once in this submission"))
            continue
        seen.add(mn)
        meter = meters.get(mn)
        problem = _meter_problem(member, meter, mn)
        if problem:
            result.lines.append(LineOutcome(mn, FAILED, problem, code=ValidationError.__name__))
            continue
        result.lines.append(await _store_line(member, meter, period_key, line, read_by, reading_type, now))

    for o in result.lines:
        if o.status == FAILED:
            logger.warning("reading rejected %s %s %s: %s", member.account_no, period_key, o.meter_number, o.message)

    result.meter_lines = await period_lines(member, period_key)
    if generate_bill and result.meter_lines:
        settings = settings or await load_settings()
        try:
            result.bill = await upsert_bill(
                member, period_key, result.meter_lines, settings, now=now, created_by=read_by, remarks=remarks
            )
        except NoTariffFoundError as e:
            logger.warning("no tariff for %s %s: %s", member.account_no, period_key, e.message)
            result.tariff_error = e.message
            result.bill = await WaterBill.get_or_none(member_id=member.id, period_key=period_key)
    return result


@dataclass
class ImportSummary:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict] = field(default_factory=list)
    tariff_review: list[str] = field(default_factory=list)

    def add(self, account_no: str, meter_number: str, status: str, message: str = "") -> None:
        if status == "success":
            self.success += 1
        elif status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.details.append(
            {"account_no": account_no, "meter_number": meter_number, "status": status, "message": message}
        )


async def import_readings(
    period_key: str,
    rows: Iterable[Any],
    read_by: str = "",
    generate_bills: bool = True,
    reading_type: str = "mobile_app",
    now: Optional[datetime] = None,
) -> ImportSummary:
    """Batch of rows across many accounts; grouped per account, one ingestion each."""
    parse_period_key(period_key)
    now = now or utcnow()
    groups: "OrderedDict[str, list]" = OrderedDict()
    for row in rows:
        groups.setdefault(normalize_code(row.account_no), []).append(row)

    settings = await load_settings() if generate_bills else None
    summary = ImportSummary()
    for account_no, group in groups.items():
        if not account_no:
            for row in group:
                summary.add("", normalize_code(row.meter_number), FAILED, "account_no is required")
            continue
        try:
            res = await ingest_readings(
                account_no, period_key, group,
                read_by=read_by, reading_type=reading_type,
                generate_bill=generate_bills, settings=settings, now=now,
            )
        except (AccountNotFoundError, AccountNotActiveError) as e:
            logger.warning("import %s: %s", period_key, e.message)
            for row in group:
                summary.add(account_no, normalize_code(row.meter_number), FAILED, e.message)
            continue
        for o in res.lines:
            status = "success" if o.status == ACCEPTED else o.status
            summary.add(account_no, o.meter_number, status, o.message)
        if res.tariff_error:
            summary.tariff_review.append(account_no)

    logger.info(
        "import %s done: success=%d failed=%d skipped=%d",
        period_key, summary.success, summary.failed, summary.skipped,
    )
    return summary


async def preview_bill(account_no: str, lines: Iterable[Any], period_key: Optional[str] = None) -> tuple[WaterMember, list[ReadingLine], BillComputation]:
    """Compute what a bill would be for hypothetical readings; nothing is stored."""
    if period_key:
        parse_period_key(period_key)
    member = await get_billable_member(account_no)
    meters = {m.meter_number: m for m in await WaterMeter.filter(member_id=member.id)}
    resolved = []
    for line in lines:
        mn = normalize_code(line.meter_number)
        problem = _meter_problem(member, meters.get(mn), mn)
        if problem:
            raise ValidationError(problem, meter_number=mn)
        resolved.append(await resolve_line(meters[mn], line, period_key))
    settings = await load_settings()
    return member, resolved, compute_for_member(member, resolved, settings)


@dataclass
class WorklistEntry:
    member: WaterMember
    meters: list[WaterMeter]
    read_meters: set[str] = field(default_factory=set)

    @property
    def has_reading(self) -> bool:
        """Every active billing meter has been read."""
        return bool(self.meters) and all(m.meter_number in self.read_meters for m in self.meters)

    @property
    def has_any_reading(self) -> bool:
        return any(m.meter_number in self.read_meters for m in self.meters)


@dataclass
class ReadingWorklist:
    period_key: str
    entries: list[WorklistEntry]
    total: int
    read_count: int
    any_read_count: int

    @property
    def unread_count(self) -> int:
        return self.total - self.any_read_count


async def reading_worklist(period_key: str, search: str = "", skip: int = 0, limit: Optional[int] = None) -> ReadingWorklist:
    """Active accounts for a reading round, with how far each one has been read."""
    parse_period_key(period_key)
    qs = WaterMember.filter(account_status="active")
    search = (search or "").strip()
    if search:
        qs = qs.filter(
            Q(account_no__icontains=search)
            | Q(account_name__icontains=search)
            | Q(address_text__icontains=search)
            | Q(meters__meter_number__icontains=search)
        ).distinct()
    members = await qs.order_by("account_no")

    ids = [m.id for m in members]
    meters: dict[int, list[WaterMeter]] = {}
    read: dict[int, set[str]] = {}
    if ids:
        for m in await WaterMeter.filter(member_id__in=ids).order_by("meter_number"):
            if m.is_billable:
                meters.setdefault(m.member_id, []).append(m)
        rows = await WaterReading.filter(period_key=period_key, member_id__in=ids).values_list("member_id", "meter_number")
        for member_id, meter_number in rows:
            read.setdefault(member_id, set()).add(meter_number)

    entries = [WorklistEntry(m, meters.get(m.id, []), read.get(m.id, set())) for m in members]
    end = None if limit is None else skip + limit
    return ReadingWorklist(
        period_key=period_key,
        entries=entries[skip:end],
        total=len(entries),
        read_count=sum(1 for e in entries if e.has_reading),
        any_read_count=sum(1 for e in entries if e.has_any_reading),
    )
