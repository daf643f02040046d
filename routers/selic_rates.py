# routers/selic_rates.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from schemas import CorrectionRead, CorrectionRequest, SelicLoadResult, SelicRateRead
from api_utils import http_error
from deps import get_current_admin_user
from dependencies import get_calculator, get_rate_store
from services import config
from services.correction import CorrectionCalculator
from services.errors import BillingError
from services.rate_series import RateSeriesStore, load_rate_csv

router = APIRouter(tags=["selic"])


@router.get("/selic-rates", response_model=List[SelicRateRead])
async def list_selic_rates(store: RateSeriesStore = Depends(get_rate_store)):
    return [SelicRateRead.model_validate(r) for r in await store.all()]


@router.get("/selic-rates/latest", response_model=SelicRateRead)
async def latest_selic_rate(store: RateSeriesStore = Depends(get_rate_store)):
    rate = await store.latest()
    if not rate:
        raise HTTPException(404, "No SELIC rates loaded")
    return SelicRateRead.model_validate(rate)


@router.post("/selic-rates/load", response_model=SelicLoadResult)
async def load_selic_rates(
    store: RateSeriesStore = Depends(get_rate_store),
    user=Depends(get_current_admin_user),
):
    return await load_rate_csv(store, config.SELIC_CSV_PATH)


@router.post("/corrections", response_model=CorrectionRead)
async def correct_amount(
    payload: CorrectionRequest,
    calculator: CorrectionCalculator = Depends(get_calculator),
):
    as_of = payload.as_of_date or datetime.now(tz=timezone.utc).date()
    try:
        res = await calculator.explain(payload.principal, payload.origin_date, as_of)
    except BillingError as e:
        raise http_error(e)
    return CorrectionRead(
        principal=res.principal,
        corrected_amount=res.corrected,
        factor=res.factor,
        origin_date=payload.origin_date,
        as_of_date=as_of,
        months=len(res.months),
        months_with_rate=res.months_with_rate,
    )
