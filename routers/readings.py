from fastapi import APIRouter, Depends, Query

from models import User, WaterReading
from schemas import (
    ReadingSubmission, ReadingSubmissionResult, ReadingLineOutcome, ReadingRead,
    ImportRequest, ImportResult, BillRead, MeterRead, ReadingWorklistRead, WorklistMember, PERIOD_KEY_PATTERN,
)
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond
from deps import get_staff_user, get_officer_user, get_reader_user
from services.readings import ingest_readings, import_readings, reading_worklist

router = APIRouter(prefix="/water/readings", tags=["water-readings"])


@router.post("", response_model=ReadingSubmissionResult)
async def submit_readings(payload: ReadingSubmission, user: User = Depends(get_reader_user)):
    res = await ingest_readings(
        payload.account_no,
        payload.period_key,
        payload.readings,
        read_by=user.username,
        generate_bill=payload.generate_bill,
        remarks=payload.remarks,
    )
    return ReadingSubmissionResult(
        account_no=res.member.account_no,
        period_key=res.period_key,
        lines=[
            ReadingLineOutcome(
                meter_number=o.meter_number,
                status=o.status,
                code=o.code,
                message=o.message,
                reading=ReadingRead.model_validate(o.reading) if o.reading else None,
            )
            for o in res.lines
        ],
        total_consumed=res.total_consumed,
        bill=BillRead.model_validate(res.bill) if res.bill else None,
        tariff_error=res.tariff_error,
    )


@router.post("/import", response_model=ImportResult)
async def import_batch(payload: ImportRequest, user: User = Depends(get_officer_user)):
    summary = await import_readings(
        payload.period_key, payload.rows, read_by=user.username, generate_bills=payload.generate_bills
    )
    return ImportResult(
        success=summary.success,
        failed=summary.failed,
        skipped=summary.skipped,
        details=summary.details,
        tariff_review=summary.tariff_review,
    )


@router.get("", response_model=list[ReadingRead], dependencies=[Depends(get_staff_user)])
async def list_readings(params: RAListParams = Depends()):
    fmap = {
        "period_key":   lambda q, v: q.filter(period_key=str(v)),
        "account_no":   lambda q, v: q.filter(member__account_no=str(v).upper()),
        "meter_number": lambda q, v: q.filter(meter_number__icontains=str(v).upper()),
        "read_by":      lambda q, v: q.filter(read_by=str(v)),
        "reading_type": lambda q, v: q.filter(reading_type=str(v)),
    }
    qs = apply_filter_map(WaterReading.all(), params.filters, fmap)
    order = parse_sort(params.sort, ["period_key", "meter_number", "read_at", "consumed"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, ReadingRead)


@router.get("/members", response_model=ReadingWorklistRead, dependencies=[Depends(get_staff_user)])
async def reading_members(
    period_key: str = Query(..., pattern=PERIOD_KEY_PATTERN),
    params: RAListParams = Depends(),
):
    wl = await reading_worklist(period_key, str(params.filters.get("q") or ""), params.skip, params.limit)
    return ReadingWorklistRead(
        period_key=wl.period_key,
        items=[
            WorklistMember(
                account_no=e.member.account_no,
                account_name=e.member.account_name,
                classification=e.member.classification,
                address_text=e.member.address_text,
                meters=[MeterRead.model_validate(m) for m in e.meters],
                has_reading=e.has_reading,
                has_any_reading=e.has_any_reading,
            )
            for e in wl.entries
        ],
        total=wl.total,
        read_count=wl.read_count,
        any_read_count=wl.any_read_count,
        unread_count=wl.unread_count,
    )
