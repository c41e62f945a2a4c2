# services/inquiry.py
"""
Public account inquiry: a member looks up their own PN No and sees recent
bills and payments. Contact details and IDs come back partially masked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from models import WaterBill, WaterMember, WaterMeter, WaterPayment, BILL_PAID
from services import config
from services.bills import refresh_many
from services.periods import local_today, period_key_for
from services.readings import get_member
from services.tariffs import money

logger = logging.getLogger(__name__)


def mask_id(value: str) -> str:
    return f"{value[:3]}***" if value else ""


def mask_mobile(value: str) -> str:
    return f"{value[:4]}***{value[7:]}" if value else ""


def mask_email(value: Optional[str]) -> str:
    if not value or "@" not in value:
        return ""
    return "***@" + value.split("@", 1)[1]


def recent_period_keys(months: int, now: Optional[datetime] = None) -> list[str]:
    """The current billing period and the ones before it, newest first."""
    today = local_today(now)
    year, month = today.year, today.month
    keys = []
    for _ in range(max(1, months)):
        keys.append(period_key_for(date(year, month, 1)))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return keys


@dataclass
class AccountInquiry:
    member: WaterMember
    meters: list[WaterMeter]
    bills: list[WaterBill]
    payments: dict = field(default_factory=dict)  # bill id -> [WaterPayment], newest first

    @property
    def unpaid(self) -> list[WaterBill]:
        return [b for b in self.bills if b.status != BILL_PAID]

    @property
    def total_outstanding(self) -> Decimal:
        return money(sum((b.total_due for b in self.unpaid), Decimal("0")))

    @property
    def last_payment(self) -> Optional[WaterPayment]:
        latest = [p for ps in self.payments.values() for p in ps]
        return max(latest, key=lambda p: p.paid_at) if latest else None


async def account_inquiry(account_no: str, only_recent: bool = True, now: Optional[datetime] = None) -> AccountInquiry:
    member = await get_member(account_no)
    qs = WaterBill.filter(member_id=member.id)
    if only_recent:
        qs = qs.filter(period_key__in=recent_period_keys(config.INQUIRY_MONTHS, now))
    bills = await refresh_many(await qs.order_by("-period_key"), now)

    payments: dict = {}
    if bills:
        for p in await WaterPayment.filter(bill_id__in=[b.id for b in bills]).order_by("-paid_at"):
            payments.setdefault(p.bill_id, []).append(p)

    meters = [m for m in await WaterMeter.filter(member_id=member.id).order_by("meter_number") if m.is_billable]
    logger.info("public inquiry %s: %d bills", member.account_no, len(bills))
    return AccountInquiry(member=member, meters=meters, bills=bills, payments=payments)
