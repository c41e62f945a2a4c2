from fastapi import APIRouter, Depends

from models import WaterPayment
from schemas import PaymentRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond
from deps import get_officer_user

router = APIRouter(prefix="/water/payments", tags=["water-payments"])


@router.get("", response_model=list[PaymentRead], dependencies=[Depends(get_officer_user)])
async def list_payments(params: RAListParams = Depends()):
    fmap = {
        "account_no":     lambda q, v: q.filter(account_no=str(v).upper().strip()),
        "period_key":     lambda q, v: q.filter(period_key=str(v)),
        "receipt_number": lambda q, v: q.filter(receipt_number__icontains=str(v)),
        "method":         lambda q, v: q.filter(method=str(v)),
        "classification": lambda q, v: q.filter(classification=str(v)),
        "received_by":    lambda q, v: q.filter(received_by=str(v)),
    }
    qs = apply_filter_map(WaterPayment.all(), params.filters, fmap)
    order = parse_sort(params.sort, ["paid_at", "account_no", "period_key", "amount_paid", "receipt_number"], default="paid_at")
    return await paginate_and_respond(qs, params.skip, params.limit, order, PaymentRead)
