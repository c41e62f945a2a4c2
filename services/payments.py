# services/payments.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from errors import AlreadyPaidError, BillNotFoundError, DuplicateReceiptError, ValidationError
from models import WaterBill, WaterMember, WaterPayment, BILL_PAID
from services.bills import apply_status
from services.periods import utcnow
from services.tariffs import D, money, qty

logger = logging.getLogger(__name__)


async def record_payment(
    bill_id,
    receipt_number: str,
    method: str,
    amount=None,
    received_by: str = "",
    notes: str = "",
    now: Optional[datetime] = None,
) -> WaterPayment:
    """
    Settle a bill in full. The bill row is locked for the whole operation and
    its overdue penalty is brought up to date first, so the amount collected
    is always the current total due.
    """
    receipt = str(receipt_number or "").strip()
    method = str(method or "").strip()
    if not receipt or not method:
        raise ValidationError("Receipt number and payment method are required")
    now = now or utcnow()

    try:
        async with in_transaction():
            bill = await WaterBill.filter(id=bill_id).select_for_update().first()
            if bill is None:
                raise BillNotFoundError("Bill not found", bill_id=str(bill_id))
            if bill.status == BILL_PAID:
                raise AlreadyPaidError(
                    f"Bill {bill.account_no} {bill.period_key} is already paid",
                    receipt_number=bill.receipt_number,
                )
            apply_status(bill, now)
            total_due = money(bill.total_due)
            if total_due <= 0:
                raise ValidationError("Bill amount must be greater than 0")
            if amount is not None and money(amount) != total_due:
                raise ValidationError(
                    f"Amount {money(amount)} does not match total due {total_due}; partial payments are not accepted",
                    total_due=str(total_due),
                )
            if await WaterPayment.exists(receipt_number=receipt):
                raise DuplicateReceiptError(f"OR No. {receipt} already exists", receipt_number=receipt)

            payment = await WaterPayment.create(
                bill=bill,
                account_no=bill.account_no,
                period_key=bill.period_key,
                receipt_number=receipt,
                method=method,
                amount_paid=total_due,
                discount_applied=money(bill.discount),
                penalty_applied=money(bill.penalty_applied),
                classification=bill.classification,
                received_by=received_by,
                paid_at=now,
                notes=notes,
            )
            bill.status = BILL_PAID
            bill.paid_at = now
            bill.receipt_number = receipt
            await bill.save()

            member = await WaterMember.filter(id=bill.member_id).select_for_update().first()
            if member is not None:
                member.last_payment_date = now
                member.last_payment_amount = total_due
                prev = D(member.average_monthly_consumption)
                consumed = D(bill.total_consumed)
                member.average_monthly_consumption = qty((prev + consumed) / 2) if prev > 0 else qty(consumed)
                await member.save(
                    update_fields=["last_payment_date", "last_payment_amount", "average_monthly_consumption", "updated_at"]
                )
    except IntegrityError as e:
        # lost a race on the receipt number or on the one-payment-per-bill key
        if await WaterPayment.exists(receipt_number=receipt):
            raise DuplicateReceiptError(f"OR No. {receipt} already exists", receipt_number=receipt) from e
        raise AlreadyPaidError("Bill is already paid") from e

    logger.info(
        "bill %s %s paid: %s via %s, OR %s",
        payment.account_no, payment.period_key, payment.amount_paid, method, receipt,
    )
    return payment
