import uuid
from fastapi import APIRouter, Depends, Response

from models import User, WaterBill, WaterPayment
from schemas import BillRead, BillSummary, BillPreviewRequest, BillPreview, PaymentCreate, PaymentRead
from api_utils import RAListParams, parse_sort, parse_filter, apply_filter_map, paginate_and_respond, respond_item, to_bool
from deps import get_staff_user, get_officer_user
from routers.settings import to_quote
from services.analytics import bill_summary
from services.bills import get_bill, delete_bill, refresh_many, sweep_overdue
from services.payments import record_payment
from services.readings import preview_bill

router = APIRouter(prefix="/water/bills", tags=["water-bills"])

BILL_FILTERS = {
    "q":                   lambda q, v: q.filter(account_name__icontains=str(v)),
    "account_no":          lambda q, v: q.filter(account_no=str(v).upper().strip()),
    "period_key":          lambda q, v: q.filter(period_key=str(v)),
    "status":              lambda q, v: q.filter(status=str(v)),
    "classification":      lambda q, v: q.filter(classification=str(v)),
    "needs_tariff_review": lambda q, v: q.filter(needs_tariff_review=to_bool(v)),
}


@router.get("", response_model=list[BillRead], dependencies=[Depends(get_staff_user)])
async def list_bills(params: RAListParams = Depends()):
    # statuses are derived; bring them current before filtering on them
    await sweep_overdue()
    qs = apply_filter_map(WaterBill.all(), params.filters, BILL_FILTERS)
    order = parse_sort(
        params.sort, ["period_key", "account_no", "account_name", "status", "total_due", "due_date", "created_at"],
        default="created_at",
    )
    return await paginate_and_respond(qs, params.skip, params.limit, order, BillRead, before_render=refresh_many)


@router.get("/summary", response_model=BillSummary, dependencies=[Depends(get_staff_user)])
async def summary(filter: str = "{}"):
    await sweep_overdue()
    qs = apply_filter_map(WaterBill.all(), parse_filter(filter), BILL_FILTERS)
    return BillSummary(**await bill_summary(qs))


@router.post("/preview", response_model=BillPreview, dependencies=[Depends(get_staff_user)])
async def preview(payload: BillPreviewRequest):
    member, lines, computation = await preview_bill(payload.account_no, payload.readings, payload.period_key)
    return BillPreview(
        account_no=member.account_no,
        account_name=member.account_name,
        classification=member.classification,
        meter_reading_lines=[l.snapshot() for l in lines],
        total_consumed=computation.consumption,
        quote=to_quote(computation),
    )


@router.get("/{bill_id}", response_model=BillRead, dependencies=[Depends(get_staff_user)])
async def read_bill(bill_id: uuid.UUID):
    return respond_item(await get_bill(bill_id), BillRead)


@router.post("/{bill_id}/pay", response_model=PaymentRead, status_code=201)
async def pay_bill(bill_id: uuid.UUID, payload: PaymentCreate, user: User = Depends(get_officer_user)):
    payment = await record_payment(
        bill_id,
        payload.receipt_number,
        payload.method,
        amount=payload.amount,
        received_by=user.username,
    )
    return respond_item(payment, PaymentRead, status_code=201)


@router.get("/{bill_id}/payments", response_model=list[PaymentRead], dependencies=[Depends(get_officer_user)])
async def bill_payments(bill_id: uuid.UUID):
    bill = await get_bill(bill_id)
    payments = await WaterPayment.filter(bill_id=bill.id).order_by("-paid_at")
    return [PaymentRead.model_validate(p) for p in payments]


@router.delete("/{bill_id}", status_code=204, dependencies=[Depends(get_officer_user)])
async def remove_bill(bill_id: uuid.UUID):
    await delete_bill(bill_id)
    return Response(status_code=204)
