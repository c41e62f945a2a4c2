# services/analytics.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from models import WaterBill, WaterMember, WaterMeter, WaterReading, BILL_PAID, BILL_UNPAID, BILL_OVERDUE
from services.bills import sweep_overdue
from services.periods import parse_period_key, reading_window
from services.settings_provider import load_settings
from services.tariffs import D, money


def _sum(values) -> Decimal:
    return money(sum((D(v) for v in values), Decimal("0")))


async def dashboard(period_key: Optional[str] = None) -> dict:
    """Counts and amounts for the cooperative dashboard, optionally for one period."""
    if period_key:
        parse_period_key(period_key)
    await sweep_overdue()

    bills = WaterBill.all()
    readings = WaterReading.all()
    if period_key:
        bills = bills.filter(period_key=period_key)
        readings = readings.filter(period_key=period_key)

    billable = await WaterMeter.filter(
        meter_status="active", is_billing_active=True, member__account_status="active"
    ).count()
    read = len(set(await readings.values_list("meter_number", flat=True))) if period_key else 0
    window = (None, None)
    if period_key:
        s = await load_settings()
        window = reading_window(period_key, s.reading_start_day_of_month, s.reading_window_days)

    return {
        "period_key": period_key,
        "members": await WaterMember.all().count(),
        "active_members": await WaterMember.filter(account_status="active").count(),
        "disconnected_members": await WaterMember.filter(account_status="disconnected").count(),
        "unpaid_bills": await bills.filter(status=BILL_UNPAID).count(),
        "paid_bills": await bills.filter(status=BILL_PAID).count(),
        "overdue_bills": await bills.filter(status=BILL_OVERDUE).count(),
        "unpaid_amount": _sum(await bills.filter(status=BILL_UNPAID).values_list("total_due", flat=True)),
        "collected_amount": _sum(await bills.filter(status=BILL_PAID).values_list("total_due", flat=True)),
        "overdue_amount": _sum(await bills.filter(status=BILL_OVERDUE).values_list("total_due", flat=True)),
        "read_meters": read,
        "unread_meters": max(0, billable - read) if period_key else 0,
        "reading_window_start": window[0],
        "reading_window_end": window[1],
    }


async def bill_summary(qs) -> dict:
    """Totals over an already-filtered bill queryset."""
    bills = await qs
    by_class: dict[str, int] = {}
    by_status: dict[str, int] = {}
    for b in bills:
        by_class[b.classification] = by_class.get(b.classification, 0) + 1
        by_status[b.status] = by_status.get(b.status, 0) + 1
    return {
        "total_bills": len(bills),
        "total_amount": _sum(b.total_due for b in bills),
        "total_discount": _sum(b.discount for b in bills),
        "total_penalty": _sum(b.penalty_applied for b in bills),
        "by_classification": by_class,
        "by_status": by_status,
        "needs_tariff_review": sum(1 for b in bills if b.needs_tariff_review),
    }
