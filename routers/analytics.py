from typing import Optional
from fastapi import APIRouter, Depends, Query

from schemas import AnalyticsRead, PERIOD_KEY_PATTERN
from deps import get_staff_user
from services.analytics import dashboard

router = APIRouter(prefix="/water/analytics", tags=["water-analytics"])


@router.get("", response_model=AnalyticsRead, dependencies=[Depends(get_staff_user)])
async def analytics(period_key: Optional[str] = Query(None, pattern=PERIOD_KEY_PATTERN)):
    return AnalyticsRead(**await dashboard(period_key))
