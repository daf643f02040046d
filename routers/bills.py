# routers/bills.py
from fastapi import APIRouter, Depends, File, UploadFile

from schemas import BillRead, UpdateBillResult
from api_utils import http_error, respond_item
from deps import get_current_active_user
from dependencies import get_extractor, get_lifecycle
from bill_interpreter.extractors import BillExtractor
from bill_interpreter.service import process_bill
from services.bill_lifecycle import BillLifecycle, ExtractionError, ExtractionSuccess
from services.errors import BillingError

router = APIRouter(prefix="/bills", tags=["bills"])


@router.get("/{bill_id}", response_model=BillRead)
async def get_bill(
    bill_id: int,
    lifecycle: BillLifecycle = Depends(get_lifecycle),
    user=Depends(get_current_active_user),
):
    try:
        bill = await lifecycle.get(bill_id)
    except BillingError as e:
        raise http_error(e)
    return respond_item(bill, BillRead.model_validate)


@router.post("/{bill_id}/result", response_model=BillRead)
async def update_bill_result(
    bill_id: int,
    payload: UpdateBillResult,
    lifecycle: BillLifecycle = Depends(get_lifecycle),
    user=Depends(get_current_active_user),
):
    """Apply an extraction result reported by an external extractor."""
    try:
        if payload.error_message:
            outcome = ExtractionError(payload.error_message)
        else:
            outcome = ExtractionSuccess(
                amount=payload.total_amount,
                consumption=payload.energy_consumption,
                bill_date=payload.bill_date,
            )
        bill = await lifecycle.apply_extraction_result(bill_id, outcome)
    except BillingError as e:
        raise http_error(e)
    return respond_item(bill, BillRead.model_validate)


@router.post("/{bill_id}/process", response_model=BillRead)
async def process_single_bill(
    bill_id: int,
    file: UploadFile = File(...),
    lifecycle: BillLifecycle = Depends(get_lifecycle),
    extractor: BillExtractor = Depends(get_extractor),
    user=Depends(get_current_active_user),
):
    """Run extraction on the content of a bill that ingestion already registered."""
    data = await file.read()
    try:
        bill = await lifecycle.get(bill_id)
        bill = await process_bill(lifecycle, extractor, bill.id, bill.filename, data)
    except BillingError as e:
        raise http_error(e)
    return respond_item(bill, BillRead.model_validate)
