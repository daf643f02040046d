from decimal import Decimal
from enum import Enum
import uuid

from tortoise import fields, models

FILENAME_MAX = 255
# largest value a DecimalField(max_digits=12, decimal_places=2) holds
MAX_AMOUNT = Decimal("9999999999.99")


# -------- Users --------
class User(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    username = fields.CharField(max_length=50, unique=True, index=True)
    email = fields.CharField(max_length=100, unique=True, index=True)
    hashed_password = fields.CharField(max_length=128)
    disabled = fields.BooleanField(default=False)
    is_admin = fields.BooleanField(default=False)

    class Meta:
        table = "users"

    def __str__(self) -> str:
        return f"{self.username} ({self.email})"


# -------- Status enums --------
class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"  # reserved for whole-batch failure


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


# -------- SELIC --------
class SelicRate(models.Model):
    """One monthly SELIC rate, stored as a fraction (0.0125 == 1.25% a month)."""
    id = fields.IntField(pk=True)
    month = fields.DateField(unique=True, index=True)  # always the 1st of the month
    rate = fields.DecimalField(max_digits=10, decimal_places=6)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "selic_rates"
        ordering = ["month"]

    def __str__(self) -> str:
        return f"{self.month:%Y-%m}={self.rate}"


# -------- Uploads --------
class UploadBatch(models.Model):
    id = fields.IntField(pk=True)
    filename = fields.CharField(max_length=FILENAME_MAX)  # original ZIP name
    total_files = fields.IntField()
    processed_files = fields.IntField(default=0)
    failed_files = fields.IntField(default=0)
    status = fields.CharEnumField(BatchStatus, max_length=16, default=BatchStatus.PROCESSING, index=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    completed_at = fields.DatetimeField(null=True)

    bills: fields.ReverseRelation["ElectricityBill"]

    class Meta:
        table = "upload_batches"

    def __str__(self) -> str:
        return f"{self.filename} ({self.processed_files}/{self.total_files})"


class ElectricityBill(models.Model):
    id = fields.IntField(pk=True)
    filename = fields.CharField(max_length=FILENAME_MAX)
    upload = fields.ForeignKeyField("models.UploadBatch", related_name="bills", on_delete=fields.CASCADE, index=True)

    # nullable until extracted
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2, null=True)        # "Total a pagar"
    energy_consumption = fields.DecimalField(max_digits=12, decimal_places=2, null=True)  # kWh
    bill_date = fields.DateField(null=True)
    corrected_amount = fields.DecimalField(max_digits=12, decimal_places=2, null=True)    # SELIC corrected

    extraction_status = fields.CharEnumField(
        ExtractionStatus, max_length=16, default=ExtractionStatus.PENDING, index=True
    )
    error_message = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "electricity_bills"
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.filename} [{self.extraction_status}]"
