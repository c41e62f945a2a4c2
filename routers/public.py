from fastapi import APIRouter, Depends

from schemas import InquiryRequest, InquiryResult, InquiryMember, InquiryMeter, InquiryBill, InquiryPayment, InquirySummary
from deps import RateLimiter
from services import config
from services.inquiry import account_inquiry, mask_email, mask_id, mask_mobile

router = APIRouter(prefix="/public/water", tags=["public"])

inquiry_limiter = RateLimiter(config.INQUIRY_RATE_LIMIT, config.INQUIRY_RATE_WINDOW_SECONDS)


@router.post("/inquiry", response_model=InquiryResult, dependencies=[Depends(inquiry_limiter)])
async def inquiry(payload: InquiryRequest):
    res = await account_inquiry(payload.account_no, only_recent=payload.only_last_12)
    m = res.member
    last = res.last_payment
    return InquiryResult(
        member=InquiryMember(
            account_no=m.account_no,
            account_name=m.account_name,
            account_status=m.account_status,
            classification=m.classification,
            is_senior_citizen=m.is_senior_citizen,
            senior_id=mask_id(m.senior_id),
            has_pwd=m.has_pwd,
            address_text=m.address_text,
            mobile_number=mask_mobile(m.mobile_number),
            email=mask_email(m.email),
            meters=[InquiryMeter.model_validate(x) for x in res.meters],
        ),
        bills=[
            InquiryBill.model_validate(b).model_copy(
                update={"payments": [InquiryPayment.model_validate(p) for p in res.payments.get(b.id, [])]}
            )
            for b in res.bills
        ],
        summary=InquirySummary(
            total_bills=len(res.bills),
            paid_bills=len(res.bills) - len(res.unpaid),
            unpaid_bills=len(res.unpaid),
            total_outstanding=res.total_outstanding,
            last_payment_date=last.paid_at if last else None,
            last_payment_amount=last.amount_paid if last else None,
            active_meters=len(res.meters),
        ),
    )
