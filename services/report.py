# services/report.py
from __future__ import annotations
from decimal import Decimal
from typing import Any

from tortoise import connections

from models import ElectricityBill, ExtractionStatus, UploadBatch
from services.errors import NotFound

ZERO = Decimal("0")


def bill_row(b: ElectricityBill) -> dict[str, Any]:
    """
    Reporting view of one bill. Pending/error bills show 0 for the amount and
    consumption; corrected_amount stays None unless the bill succeeded.
    """
    ok = b.extraction_status == ExtractionStatus.SUCCESS
    return {
        "id": b.id,
        "filename": b.filename,
        "upload_id": b.upload_id,
        "total_amount": b.total_amount if b.total_amount is not None else ZERO,
        "energy_consumption": b.energy_consumption if b.energy_consumption is not None else ZERO,
        "bill_date": b.bill_date,
        "corrected_amount": b.corrected_amount if ok else None,
        "extraction_status": ExtractionStatus(b.extraction_status).value,
        "error_message": b.error_message,
        "created_at": b.created_at,
    }


def summarize_bills(bills: list[ElectricityBill]) -> dict[str, Any]:
    ok = [b for b in bills if b.extraction_status == ExtractionStatus.SUCCESS]
    failed = sum(1 for b in bills if b.extraction_status == ExtractionStatus.ERROR)
    return {
        "total_bills": len(bills),
        "successful_extractions": len(ok),
        "failed_extractions": failed,
        "total_original_amount": sum((b.total_amount or ZERO for b in ok), ZERO),
        "total_corrected_amount": sum(
            ((b.corrected_amount if b.corrected_amount is not None else b.total_amount) or ZERO for b in ok),
            ZERO,
        ),
        "total_energy_consumption": sum((b.energy_consumption or ZERO for b in ok), ZERO),
    }


class ReportAggregator:
    def __init__(self, connection_name: str = "default"):
        self.connection_name = connection_name

    async def summarize(self, batch_id: int) -> dict[str, Any]:
        db = connections.get(self.connection_name)
        if not await UploadBatch.filter(id=batch_id).using_db(db).exists():
            raise NotFound("upload batch", batch_id)
        bills = await ElectricityBill.filter(upload_id=batch_id).using_db(db).order_by("id")
        return {"bills": [bill_row(b) for b in bills], "summary": summarize_bills(bills)}
