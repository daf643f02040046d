import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, EmailStr, ConfigDict, Field, model_validator

from models import MAX_AMOUNT, BatchStatus, ExtractionStatus


# =========================
# Auth
# =========================
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    email: EmailStr
    disabled: bool
    is_admin: bool
    model_config = ConfigDict(from_attributes=True)


# =========================
# Uploads / bills
# =========================
class UploadBatchRead(BaseModel):
    id: int
    filename: str
    total_files: int
    processed_files: int
    failed_files: int
    status: BatchStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BillRead(BaseModel):
    """Stored state of a bill; numeric fields stay null until extracted."""
    id: int
    filename: str
    upload_id: int
    total_amount: Optional[Decimal] = None
    energy_consumption: Optional[Decimal] = None
    bill_date: Optional[date] = None
    corrected_amount: Optional[Decimal] = None
    extraction_status: ExtractionStatus
    error_message: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ReportBill(BaseModel):
    """Reporting view of a bill: pending/error bills show 0 amount and consumption."""
    id: int
    filename: str
    upload_id: int
    total_amount: Decimal
    energy_consumption: Decimal
    bill_date: Optional[date] = None
    corrected_amount: Optional[Decimal] = None
    extraction_status: ExtractionStatus
    error_message: Optional[str] = None
    created_at: datetime


class UploadResponse(BaseModel):
    upload_id: int
    message: str
    status: BatchStatus


class UploadStatusResponse(BaseModel):
    upload: UploadBatchRead
    bills: List[BillRead]


class UpdateBillResult(BaseModel):
    """
    Extraction result for one bill: either the three extracted values or an
    error message, never both.
    """
    total_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    energy_consumption: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    bill_date: Optional[date] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _one_branch(self):
        values = (self.total_amount, self.energy_consumption, self.bill_date)
        if self.error_message:
            if any(v is not None for v in values):
                raise ValueError("error_message cannot be combined with extracted values")
        elif any(v is None for v in values):
            raise ValueError("total_amount, energy_consumption and bill_date are required on success")
        return self


# =========================
# Reports
# =========================
class ReportSummary(BaseModel):
    total_bills: int
    successful_extractions: int
    failed_extractions: int
    total_original_amount: Decimal
    total_corrected_amount: Decimal
    total_energy_consumption: Decimal


class ConsolidatedReport(BaseModel):
    bills: List[ReportBill]
    summary: ReportSummary


# =========================
# SELIC / corrections
# =========================
class SelicRateRead(BaseModel):
    id: int
    month: date
    rate: Decimal
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SelicLoadResult(BaseModel):
    loaded: int
    skipped: int
    errors: int


class CorrectionRequest(BaseModel):
    principal: Decimal = Field(ge=0, le=MAX_AMOUNT)
    origin_date: date
    as_of_date: Optional[date] = None


class CorrectionRead(BaseModel):
    principal: Decimal
    corrected_amount: Decimal
    factor: Decimal
    origin_date: date
    as_of_date: date
    months: int
    months_with_rate: int
