from fastapi import APIRouter, Depends, HTTPException
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from models import WaterMember, WaterMeter, WaterBill
from schemas import MemberCreate, MemberUpdate, MemberRead, MemberDetail, MeterCreate, MeterRead, BillRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, to_bool
from deps import get_staff_user, get_officer_user
from services.bills import refresh_many

router = APIRouter(prefix="/water/members", tags=["water-members"])


async def _member_or_404(account_no: str) -> WaterMember:
    obj = await WaterMember.get_or_none(account_no=account_no.upper().strip())
    if not obj:
        raise HTTPException(404, "Member not found")
    return obj


async def to_member_detail(m: WaterMember) -> MemberDetail:
    meters = await WaterMeter.filter(member_id=m.id).order_by("meter_number")
    return MemberDetail(
        **MemberRead.model_validate(m).model_dump(),
        meters=[MeterRead.model_validate(x) for x in meters],
    )


@router.get("", response_model=list[MemberRead], dependencies=[Depends(get_staff_user)])
async def list_members(params: RAListParams = Depends()):
    fmap = {
        "q":                 lambda q, v: q.filter(account_name__icontains=str(v)),
        "account_no":        lambda q, v: q.filter(account_no__icontains=str(v).upper()),
        "account_name":      lambda q, v: q.filter(account_name__icontains=str(v)),
        "classification":    lambda q, v: q.filter(classification=str(v)),
        "account_status":    lambda q, v: q.filter(account_status=str(v)),
        "is_senior_citizen": lambda q, v: q.filter(is_senior_citizen=to_bool(v)),
        "has_pwd":           lambda q, v: q.filter(has_pwd=to_bool(v)),
    }
    qs = apply_filter_map(WaterMember.all(), params.filters, fmap)
    order = parse_sort(params.sort, ["account_no", "account_name", "classification", "account_status", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, MemberRead)


@router.post("", response_model=MemberDetail, status_code=201, dependencies=[Depends(get_officer_user)])
async def create_member(payload: MemberCreate):
    data = payload.model_dump(exclude={"meters"})
    try:
        async with in_transaction():
            obj = await WaterMember.create(**data)
            for mtr in payload.meters:
                await WaterMeter.create(member=obj, **mtr.model_dump())
    except IntegrityError:
        raise HTTPException(409, "Account number or meter number already exists")
    return respond_item(await to_member_detail(obj), MemberDetail, status_code=201)


@router.get("/{account_no}", response_model=MemberDetail, dependencies=[Depends(get_staff_user)])
async def get_member(account_no: str):
    obj = await _member_or_404(account_no)
    return respond_item(await to_member_detail(obj), MemberDetail)


@router.put("/{account_no}", response_model=MemberDetail, dependencies=[Depends(get_officer_user)])
async def update_member(account_no: str, payload: MemberUpdate):
    obj = await _member_or_404(account_no)
    for k, v in payload.model_dump(exclude_unset=True).items():
        if v is not None or k == "email":
            setattr(obj, k, v)
    await obj.save()
    return respond_item(await to_member_detail(obj), MemberDetail)


@router.post("/{account_no}/meters", response_model=MeterRead, status_code=201, dependencies=[Depends(get_officer_user)])
async def add_meter(account_no: str, payload: MeterCreate):
    obj = await _member_or_404(account_no)
    try:
        meter = await WaterMeter.create(member=obj, **payload.model_dump())
    except IntegrityError:
        raise HTTPException(409, f"Meter {payload.meter_number} already exists")
    return respond_item(meter, MeterRead, status_code=201)


@router.get("/{account_no}/bills", response_model=list[BillRead], dependencies=[Depends(get_staff_user)])
async def member_bills(account_no: str, params: RAListParams = Depends()):
    obj = await _member_or_404(account_no)
    qs = WaterBill.filter(member_id=obj.id)
    order = parse_sort(params.sort, ["period_key", "status", "total_due", "due_date", "created_at"], default="period_key")
    return await paginate_and_respond(qs, params.skip, params.limit, order, BillRead, before_render=refresh_many)
