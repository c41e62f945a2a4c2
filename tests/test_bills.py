import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import make_member
from errors import AccountNotActiveError, BillNotFoundError, NoTariffFoundError, ValidationError
from models import WaterBill, WaterPayment
from schemas import SettingsUpdate, TariffSchedule
from services.bills import compute_penalty, delete_bill, get_bill, refresh_status, sweep_overdue, upsert_bill
from services.consumption import ReadingLine
from services.payments import record_payment
from services.settings_provider import replace_tariffs, update_settings

JAN = datetime(2026, 1, 20, 4, 0, tzinfo=timezone.utc)
MARCH = datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)


def line(present, previous=0, meter="M-001", multiplier="1") -> ReadingLine:
    return ReadingLine(meter, Decimal(str(previous)), Decimal(str(present)), Decimal(multiplier))


async def test_new_bill_copies_settings_snapshot(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    assert bill.status == "unpaid"
    assert bill.due_date == date(2026, 2, 15)
    assert bill.settings_version == settings.version
    assert bill.due_day_used == 15
    assert bill.penalty_type_used == "flat"
    assert bill.total_due == Decimal("90.20")
    assert bill.breakdown["excess_consumption"] == "1.000"
    assert bill.member_snapshot["account_no"] == "PN-001"


async def test_upsert_is_idempotent(member, settings):
    first = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    before = await WaterBill.get(id=first.id)
    again = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    assert again.id == first.id
    assert await WaterBill.all().count() == 1
    after = await WaterBill.get(id=first.id)
    assert after.final_amount == before.final_amount
    assert after.updated_at == before.updated_at


async def test_upsert_recomputes_unpaid_bill(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    again = await upsert_bill(member, "2026-01", [line(10)], settings, now=JAN)
    assert again.id == bill.id
    assert again.final_amount == Decimal("155.00")


async def test_paid_bill_is_immutable(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await record_payment(bill.id, "OR-1", "cash", now=JAN)
    again = await upsert_bill(member, "2026-01", [line(41)], settings, now=MARCH)
    assert again.status == "paid"
    assert again.final_amount == Decimal("90.20")
    stored = await WaterBill.get(id=bill.id)
    assert stored.final_amount == Decimal("90.20")
    assert stored.penalty_applied == Decimal("0")


async def test_settings_changes_do_not_reach_existing_bill(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    new = await update_settings(SettingsUpdate(due_day_of_month=1, grace_days=3, penalty_type="percent", penalty_value=Decimal("10")))
    assert new.version == settings.version + 1

    again = await upsert_bill(member, "2026-01", [line(6)], new, now=JAN)
    assert again.due_date == date(2026, 2, 15)
    assert again.settings_version == settings.version
    assert again.penalty_type_used == "flat"

    other = await make_member("PN-002", meters=("M-002",))
    fresh = await upsert_bill(other, "2026-01", [line(6)], new, now=JAN)
    assert fresh.due_date == date(2026, 2, 4)
    assert fresh.settings_version == new.version
    assert fresh.penalty_type_used == "percent"


async def test_overdue_flat_penalty(member):
    settings = await update_settings(SettingsUpdate(penalty_value=Decimal("50")))
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await refresh_status(bill, now=MARCH)
    stored = await WaterBill.get(id=bill.id)
    assert stored.status == "overdue"
    assert stored.penalty_applied == Decimal("50.00")
    assert stored.total_due == Decimal("140.20")
    assert stored.penalty_computed_at is not None


async def test_overdue_percent_penalty_uses_base_amount():
    settings = await update_settings(SettingsUpdate(penalty_type="percent", penalty_value=Decimal("10")))
    member = await make_member("PN-SR", is_senior_citizen=True)
    bill = await upsert_bill(member, "2026-01", [line(41)], settings, now=JAN)
    assert bill.discount == Decimal("43.66")
    await refresh_status(bill, now=MARCH)
    assert bill.penalty_applied == Decimal("87.32")
    assert bill.total_due == Decimal("829.54") + Decimal("87.32")


async def test_overdue_on_due_date(member):
    settings = await update_settings(SettingsUpdate(penalty_value=Decimal("50")))
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await refresh_status(bill, now=datetime(2026, 2, 14, 15, 0, tzinfo=timezone.utc))
    assert bill.status == "unpaid"
    assert bill.total_due == Decimal("90.20")

    # 18:00 Manila on the due date
    await refresh_status(bill, now=datetime(2026, 2, 15, 10, 0, tzinfo=timezone.utc))
    assert bill.status == "overdue"
    assert bill.total_due == Decimal("140.20")


async def test_sweep_includes_bills_due_today(member, settings):
    await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    assert await sweep_overdue(now=datetime(2026, 2, 14, 8, 0, tzinfo=timezone.utc)) == 0
    assert await sweep_overdue(now=datetime(2026, 2, 15, 8, 0, tzinfo=timezone.utc)) == 1
    assert (await WaterBill.get(account_no="PN-001")).status == "overdue"


async def test_overdue_is_derived_on_write(member):
    settings = await update_settings(SettingsUpdate(penalty_value=Decimal("25")))
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=MARCH)
    assert bill.status == "overdue"
    assert bill.total_due == Decimal("115.20")


async def test_paid_bill_untouched_by_refresh(member):
    settings = await update_settings(SettingsUpdate(penalty_value=Decimal("50")))
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await record_payment(bill.id, "OR-9", "cash", now=JAN)
    paid = await get_bill(bill.id, now=MARCH)
    assert paid.status == "paid"
    assert paid.penalty_applied == Decimal("0")


async def test_sweep_overdue(member, settings):
    await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    other = await make_member("PN-002", meters=("M-002",))
    await upsert_bill(other, "2026-02", [line(6)], settings, now=JAN)
    assert await sweep_overdue(now=MARCH) == 1
    assert await WaterBill.filter(status="overdue").count() == 1


async def test_inactive_member_rejected(settings):
    member = await make_member("PN-X", account_status="inactive")
    with pytest.raises(AccountNotActiveError):
        await upsert_bill(member, "2026-01", [line(6)], settings)


async def test_no_tariff_leaves_bill_untouched_but_flagged(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    with pytest.raises(NoTariffFoundError):
        await upsert_bill(member, "2026-01", [line(900)], settings, now=JAN)
    stored = await WaterBill.get(id=bill.id)
    assert stored.final_amount == Decimal("90.20")
    assert stored.needs_tariff_review is True

    cleared = await upsert_bill(member, "2026-01", [line(7)], settings, now=JAN)
    assert cleared.needs_tariff_review is False


async def test_concurrent_upserts_create_one_bill(member, settings):
    await asyncio.gather(*(upsert_bill(member, "2026-01", [line(6)], settings, now=JAN) for _ in range(5)))
    assert await WaterBill.all().count() == 1


async def test_delete_unpaid_bill(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await delete_bill(bill.id)
    assert not await WaterBill.exists(id=bill.id)


async def test_delete_refused_with_payment(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await record_payment(bill.id, "OR-2", "cash", now=JAN)
    with pytest.raises(ValidationError):
        await delete_bill(bill.id)
    assert await WaterPayment.exists(bill_id=bill.id)


async def test_get_unknown_bill():
    import uuid
    with pytest.raises(BillNotFoundError):
        await get_bill(uuid.uuid4())


def test_compute_penalty():
    assert compute_penalty(Decimal("100.00"), "flat", Decimal("30")) == Decimal("30.00")
    assert compute_penalty(Decimal("90.20"), "percent", Decimal("5")) == Decimal("4.51")
    assert compute_penalty(Decimal("90.20"), "percent", Decimal("0")) == Decimal("0.00")


async def drop_tier(settings, tier):
    return await replace_tariffs(TariffSchedule(
        residential=[t for t in settings.tariffs.residential if t.tier != tier],
        commercial=settings.tariffs.commercial,
    ))


async def test_paid_bill_returned_when_tier_removed(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(41)], settings, now=JAN)
    await record_payment(bill.id, "OR-9", "cash", now=JAN)
    narrowed = await drop_tier(settings, "41+")

    again = await upsert_bill(member, "2026-01", [line(41)], narrowed, now=MARCH)
    assert again.id == bill.id
    assert again.status == "paid"
    assert again.final_amount == Decimal("873.20")
    stored = await WaterBill.get(id=bill.id)
    assert stored.needs_tariff_review is False


async def test_paid_bill_returned_after_account_disconnected(member, settings):
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    await record_payment(bill.id, "OR-10", "cash", now=JAN)
    member.account_status = "disconnected"
    await member.save()

    again = await upsert_bill(member, "2026-01", [line(9)], settings, now=MARCH)
    assert again.id == bill.id
    assert again.status == "paid"
    assert again.total_due == Decimal("90.20")

    with pytest.raises(AccountNotActiveError):
        await upsert_bill(member, "2026-02", [line(9)], settings, now=MARCH)
