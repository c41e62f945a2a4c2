from decimal import Decimal
from fastapi import APIRouter, Depends, Query

from schemas import BillSettings, SettingsUpdate, TariffSchedule, TariffQuote, Classification
from deps import get_current_admin_user
from services import settings_provider
from services.tariffs import compute_bill

router = APIRouter(prefix="/water", tags=["water-settings"])


def to_quote(c) -> TariffQuote:
    return TariffQuote(
        classification=c.classification,
        consumption=c.consumption,
        tier=c.tier,
        base_amount=c.base_amount,
        discount=c.discount,
        discount_reason=c.discount_reason,
        final_amount=c.final_amount,
        breakdown=c.breakdown(),
    )


@router.get("/settings", response_model=BillSettings, dependencies=[Depends(get_current_admin_user)])
async def get_settings():
    return await settings_provider.load_settings()


@router.put("/settings", response_model=BillSettings, dependencies=[Depends(get_current_admin_user)])
async def put_settings(payload: SettingsUpdate):
    return await settings_provider.update_settings(payload)


@router.get("/settings/tariffs", response_model=TariffSchedule, dependencies=[Depends(get_current_admin_user)])
async def get_tariffs():
    return (await settings_provider.load_settings()).tariffs


@router.put("/settings/tariffs", response_model=TariffSchedule, dependencies=[Depends(get_current_admin_user)])
async def put_tariffs(payload: TariffSchedule):
    return (await settings_provider.replace_tariffs(payload)).tariffs


@router.post("/settings/tariffs/reset", response_model=TariffSchedule, dependencies=[Depends(get_current_admin_user)])
async def reset_tariffs():
    return (await settings_provider.reset_tariffs()).tariffs


@router.get("/tariffs/quote", response_model=TariffQuote)
async def quote(
    classification: Classification = Query(...),
    consumption: Decimal = Query(..., ge=0),
    senior: bool = Query(False),
):
    settings = await settings_provider.load_settings()
    return to_quote(compute_bill(consumption, classification, senior, settings))
