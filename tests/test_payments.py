import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import make_member
from errors import AlreadyPaidError, BillNotFoundError, DuplicateReceiptError, ValidationError
from models import WaterBill, WaterMember, WaterPayment
from schemas import DiscountPolicy, SettingsUpdate
from services.bills import upsert_bill
from services.consumption import ReadingLine
from services.payments import record_payment
from services.settings_provider import update_settings

JAN = datetime(2026, 1, 20, 4, 0, tzinfo=timezone.utc)
MARCH = datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)


def line(present, meter="M-001") -> ReadingLine:
    return ReadingLine(meter, Decimal("0"), Decimal(str(present)))


@pytest.fixture
async def bill(member, settings):
    return await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)


async def test_pay_bill(bill):
    payment = await record_payment(bill.id, " OR-100 ", "cash", received_by="officer", now=JAN)
    assert payment.receipt_number == "OR-100"
    assert payment.amount_paid == Decimal("90.20")
    assert payment.received_by == "officer"

    stored = await WaterBill.get(id=bill.id)
    assert stored.status == "paid"
    assert stored.receipt_number == "OR-100"
    assert stored.paid_at is not None

    member = await WaterMember.get(account_no="PN-001")
    assert member.last_payment_amount == Decimal("90.20")
    assert member.last_payment_date is not None
    assert member.average_monthly_consumption == Decimal("6")


async def test_exact_amount_accepted(bill):
    payment = await record_payment(bill.id, "OR-1", "gcash", amount=Decimal("90.20"), now=JAN)
    assert payment.amount_paid == Decimal("90.20")


async def test_partial_payment_rejected(bill):
    with pytest.raises(ValidationError):
        await record_payment(bill.id, "OR-1", "cash", amount=Decimal("50"), now=JAN)
    assert await WaterPayment.all().count() == 0
    assert (await WaterBill.get(id=bill.id)).status == "unpaid"


async def test_already_paid(bill):
    await record_payment(bill.id, "OR-1", "cash", now=JAN)
    with pytest.raises(AlreadyPaidError):
        await record_payment(bill.id, "OR-2", "cash", now=JAN)
    assert await WaterPayment.all().count() == 1


async def test_duplicate_receipt_across_bills(bill, settings):
    other = await make_member("PN-002", meters=("M-002",))
    other_bill = await upsert_bill(other, "2026-01", [line(5, "M-002")], settings, now=JAN)
    await record_payment(bill.id, "OR-1", "cash", now=JAN)
    with pytest.raises(DuplicateReceiptError):
        await record_payment(other_bill.id, "OR-1", "cash", now=JAN)
    assert (await WaterBill.get(id=other_bill.id)).status == "unpaid"


async def test_payment_includes_overdue_penalty(member):
    settings = await update_settings(SettingsUpdate(penalty_value=Decimal("50")))
    bill = await upsert_bill(member, "2026-01", [line(6)], settings, now=JAN)
    assert bill.total_due == Decimal("90.20")
    payment = await record_payment(bill.id, "OR-7", "cash", now=MARCH)
    assert payment.amount_paid == Decimal("140.20")
    assert payment.penalty_applied == Decimal("50.00")
    stored = await WaterBill.get(id=bill.id)
    assert stored.status == "paid"
    assert stored.total_due == Decimal("140.20")


async def test_zero_total_due_rejected():
    settings = await update_settings(
        SettingsUpdate(senior_discount=DiscountPolicy(discount_rate=Decimal("100"), applicable_tiers=["0-5"]))
    )
    member = await make_member("PN-SR", is_senior_citizen=True)
    bill = await upsert_bill(member, "2026-01", [line(3)], settings, now=JAN)
    assert bill.final_amount == Decimal("0.00")
    with pytest.raises(ValidationError):
        await record_payment(bill.id, "OR-0", "cash", now=JAN)


async def test_unknown_bill():
    with pytest.raises(BillNotFoundError):
        await record_payment(uuid.uuid4(), "OR-1", "cash")


@pytest.mark.parametrize("receipt, method", [("", "cash"), ("OR-1", " "), (None, "cash")])
async def test_receipt_and_method_required(bill, receipt, method):
    with pytest.raises(ValidationError):
        await record_payment(bill.id, receipt, method, now=JAN)
