# services/bill_lifecycle.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Optional, Union

from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from models import MAX_AMOUNT, ElectricityBill, ExtractionStatus, UploadBatch
from services.batch_progress import BatchProgressTracker
from services.correction import CorrectionCalculator
from services.errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)
UTC = timezone.utc
CENTS = Decimal("0.01")


def _today() -> date:
    return datetime.now(tz=UTC).date()


def _money(value: Any, name: str) -> Decimal:
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(f"invalid {name} {value!r}") from e
    if not d.is_finite():
        raise InvalidInput(f"invalid {name} {value!r}")
    if abs(d) > MAX_AMOUNT:
        raise InvalidInput(f"{name} {value!r} exceeds {MAX_AMOUNT}")
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


# ---------- extraction outcomes ----------

@dataclass(frozen=True)
class ExtractionSuccess:
    amount: Decimal
    consumption: Decimal
    bill_date: date

    def __post_init__(self):
        object.__setattr__(self, "amount", _money(self.amount, "amount"))
        object.__setattr__(self, "consumption", _money(self.consumption, "consumption"))
        if isinstance(self.bill_date, datetime):
            object.__setattr__(self, "bill_date", self.bill_date.date())
        if not isinstance(self.bill_date, date):
            raise InvalidInput("bill_date is required")

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class ExtractionError:
    error_message: str

    @property
    def succeeded(self) -> bool:
        return False


ExtractionOutcome = Union[ExtractionSuccess, ExtractionError]


# ---------- lifecycle ----------

class BillLifecycle:
    """
    pending -> success | error.

    The first terminal transition of a bill is a compare-and-set on
    extraction_status='pending'; only that transition reports to the batch
    tracker, inside the same transaction. Later calls overwrite the stored
    fields without touching the batch counters.
    """

    def __init__(
        self,
        calculator: CorrectionCalculator,
        tracker: BatchProgressTracker,
        connection_name: str = "default",
        today: Callable[[], date] = _today,
    ):
        self.calculator = calculator
        self.tracker = tracker
        self.connection_name = connection_name
        self.today = today

    def _db(self):
        return connections.get(self.connection_name)

    async def create_pending_bill(
        self,
        batch_id: int,
        filename: str,
        using_db: Optional[BaseDBAsyncClient] = None,
    ) -> ElectricityBill:
        """Pass using_db to create the bill inside the caller's transaction."""
        db = using_db if using_db is not None else self._db()
        if not await UploadBatch.filter(id=batch_id).using_db(db).exists():
            raise NotFound("upload batch", batch_id)
        return await ElectricityBill.create(upload_id=batch_id, filename=filename, using_db=db)

    async def get(self, bill_id: int) -> ElectricityBill:
        bill = await ElectricityBill.get_or_none(id=bill_id, using_db=self._db())
        if not bill:
            raise NotFound("bill", bill_id)
        return bill

    async def _corrected(self, bill_id: int, outcome: ExtractionSuccess, as_of: date) -> Decimal:
        try:
            corrected = await self.calculator.correct(outcome.amount, outcome.bill_date, as_of)
        except InvalidInput as e:
            logger.warning(f"[bill] {bill_id} correction skipped, keeping original amount: {e}")
            return outcome.amount
        if corrected > MAX_AMOUNT:
            logger.warning(f"[bill] {bill_id} corrected amount {corrected} exceeds {MAX_AMOUNT}, keeping original amount")
            return outcome.amount
        return corrected

    async def apply_extraction_result(
        self,
        bill_id: int,
        outcome: ExtractionOutcome,
        as_of: Optional[date] = None,
    ) -> ElectricityBill:
        bill = await self.get(bill_id)

        if isinstance(outcome, ExtractionSuccess):
            corrected = await self._corrected(bill_id, outcome, as_of or self.today())
            fields = dict(
                total_amount=outcome.amount,
                energy_consumption=outcome.consumption,
                bill_date=outcome.bill_date,
                corrected_amount=corrected,
                extraction_status=ExtractionStatus.SUCCESS,
                error_message=None,
            )
        else:
            fields = dict(
                total_amount=None,
                energy_consumption=None,
                bill_date=None,
                corrected_amount=None,
                extraction_status=ExtractionStatus.ERROR,
                error_message=(outcome.error_message or "").strip() or "Extraction failed",
            )

        async with in_transaction(self.connection_name) as conn:
            first = await (
                ElectricityBill.filter(id=bill_id, extraction_status=ExtractionStatus.PENDING)
                .using_db(conn)
                .update(**fields)
            )
            if first:
                await self.tracker.record_outcome(bill.upload_id, outcome.succeeded, using_db=conn)
            else:
                n = await ElectricityBill.filter(id=bill_id).using_db(conn).update(**fields)
                if not n:
                    raise NotFound("bill", bill_id)
                logger.info(f"[bill] {bill_id} already terminal, fields overwritten")
            bill = await ElectricityBill.get(id=bill_id, using_db=conn)

        if not outcome.succeeded:
            logger.warning(f"[bill] {bill_id} ({bill.filename}) failed: {bill.error_message}")
        return bill
