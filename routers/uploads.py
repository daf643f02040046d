# routers/uploads.py
from __future__ import annotations
from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from tortoise.queryset import QuerySet

from models import BatchStatus, UploadBatch
from schemas import ConsolidatedReport, UploadBatchRead, UploadResponse, UploadStatusResponse, BillRead
from api_utils import ListParams, http_error, list_response
from deps import get_current_active_user
from dependencies import get_extractor, get_lifecycle, get_report_aggregator, get_tracker
from bill_interpreter.extractors import BillExtractor
from bill_interpreter.service import ingest_bundle, process_files, unpack_bundle
from services import config
from services.batch_progress import BatchProgressTracker
from services.bill_lifecycle import BillLifecycle
from services.csv_builder import build_report_csv
from services.errors import BillingError
from services.report import ReportAggregator
from services.xlsx_builder import build_report_xlsx

router = APIRouter(prefix="/uploads", tags=["uploads"])

ALLOWED_SORTS = {"id", "filename", "status", "total_files", "processed_files", "failed_files", "created_at"}


def _status_filter(qs: QuerySet, value) -> QuerySet:
    try:
        return qs.filter(status=BatchStatus(value))
    except ValueError:
        raise HTTPException(400, f"Unknown upload status {value!r}")


UPLOAD_FILTERS = {
    "filename": lambda q, v: q.filter(filename__icontains=str(v)),
    "status":   _status_filter,
}


@router.post("", response_model=UploadResponse, status_code=202)
async def upload_zip(
    background: BackgroundTasks,
    file: UploadFile = File(...),
    tracker: BatchProgressTracker = Depends(get_tracker),
    lifecycle: BillLifecycle = Depends(get_lifecycle),
    extractor: BillExtractor = Depends(get_extractor),
    user=Depends(get_current_active_user),
):
    name = file.filename or "upload.zip"
    if not name.lower().endswith(".zip"):
        raise HTTPException(400, "Only .zip bundles are accepted")
    limit = config.MAX_BUNDLE_BYTES
    if file.size is not None and file.size > limit:
        raise HTTPException(413, f"Bundle larger than {limit} bytes")
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(413, f"Bundle larger than {limit} bytes")
    try:
        files = unpack_bundle(data, max_bytes=limit)
        batch, jobs = await ingest_bundle(tracker, lifecycle, name, files)
    except BillingError as e:
        raise HTTPException(400, str(e))

    if jobs:
        background.add_task(process_files, lifecycle, extractor, jobs)
    return UploadResponse(
        upload_id=batch.id,
        message=f"ZIP file {name} uploaded successfully. Processing {len(jobs)} files.",
        status=batch.status,
    )


@router.get("", response_model=list[UploadBatchRead])
async def list_uploads(params: ListParams = Depends(), user=Depends(get_current_active_user)):
    qs: QuerySet[UploadBatch] = params.apply_filters(UploadBatch.all(), UPLOAD_FILTERS)
    return await list_response(qs, params, params.order_by(ALLOWED_SORTS), UploadBatchRead.model_validate)


@router.get("/{upload_id}", response_model=UploadStatusResponse)
async def get_upload_status(
    upload_id: int,
    tracker: BatchProgressTracker = Depends(get_tracker),
    user=Depends(get_current_active_user),
):
    try:
        batch, bills = await tracker.status(upload_id)
    except BillingError as e:
        raise http_error(e)
    return UploadStatusResponse(
        upload=UploadBatchRead.model_validate(batch),
        bills=[BillRead.model_validate(b) for b in bills],
    )


@router.get("/{upload_id}/report", response_model=ConsolidatedReport)
async def get_report(
    upload_id: int,
    aggregator: ReportAggregator = Depends(get_report_aggregator),
    user=Depends(get_current_active_user),
):
    try:
        report = await aggregator.summarize(upload_id)
    except BillingError as e:
        raise http_error(e)
    return ConsolidatedReport.model_validate(report)


@router.get("/{upload_id}/report/download")
async def download_report(
    upload_id: int,
    format: str = Query("excel", pattern="^(excel|csv)$"),
    aggregator: ReportAggregator = Depends(get_report_aggregator),
    user=Depends(get_current_active_user),
):
    try:
        report = await aggregator.summarize(upload_id)
    except BillingError as e:
        raise http_error(e)

    if format == "csv":
        body, media, ext = build_report_csv(report), "text/csv; charset=utf-8", "csv"
    else:
        body = build_report_xlsx(report)
        media, ext = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"
    return Response(
        content=body,
        media_type=media,
        headers={"Content-Disposition": f'attachment; filename="relatorio_upload_{upload_id}.{ext}"'},
    )
