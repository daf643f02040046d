# services/batch_progress.py
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from tortoise import connections
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from models import BatchStatus, ElectricityBill, UploadBatch
from services.errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)
UTC = timezone.utc


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class BatchProgressTracker:
    """
    Aggregate state of one upload: processing -> completed.

    Counters only move through F() increments so concurrent outcomes for
    different bills of the same batch compose. completed_at is stamped by a
    conditional update on completed_at IS NULL, so it is written once.
    """

    def __init__(self, connection_name: str = "default", clock: Callable[[], datetime] = _utcnow):
        self.connection_name = connection_name
        self.clock = clock

    def _db(self):
        return connections.get(self.connection_name)

    async def create_batch(
        self,
        filename: str,
        total_files: int,
        using_db: Optional[BaseDBAsyncClient] = None,
    ) -> UploadBatch:
        if total_files is None or total_files < 0:
            raise InvalidInput(f"invalid file count {total_files!r}")
        db = using_db if using_db is not None else self._db()
        if total_files == 0:
            # nothing will ever report an outcome, so the batch is done right away
            return await UploadBatch.create(
                filename=filename,
                total_files=0,
                status=BatchStatus.COMPLETED,
                completed_at=self.clock(),
                using_db=db,
            )
        return await UploadBatch.create(filename=filename, total_files=total_files, using_db=db)

    async def get(self, batch_id: int) -> UploadBatch:
        batch = await UploadBatch.get_or_none(id=batch_id, using_db=self._db())
        if not batch:
            raise NotFound("upload batch", batch_id)
        return batch

    async def status(self, batch_id: int) -> tuple[UploadBatch, list[ElectricityBill]]:
        batch = await self.get(batch_id)
        bills = await ElectricityBill.filter(upload_id=batch_id).using_db(self._db()).order_by("id")
        return batch, bills

    async def record_outcome(
        self,
        batch_id: int,
        succeeded: bool,
        using_db: Optional[BaseDBAsyncClient] = None,
    ) -> UploadBatch:
        """Count one terminal bill outcome. Pass using_db to join the caller's transaction."""
        if using_db is not None:
            return await self._record(using_db, batch_id, succeeded)
        async with in_transaction(self.connection_name) as conn:
            return await self._record(conn, batch_id, succeeded)

    async def _record(self, conn: BaseDBAsyncClient, batch_id: int, succeeded: bool) -> UploadBatch:
        updates = {"processed_files": F("processed_files") + 1}
        if not succeeded:
            updates["failed_files"] = F("failed_files") + 1

        n = await UploadBatch.filter(id=batch_id).using_db(conn).update(**updates)
        if not n:
            raise NotFound("upload batch", batch_id)

        batch = await UploadBatch.get(id=batch_id, using_db=conn)
        if batch.processed_files >= batch.total_files and batch.completed_at is None:
            stamped = await (
                UploadBatch.filter(id=batch_id, completed_at__isnull=True)
                .using_db(conn)
                .update(status=BatchStatus.COMPLETED, completed_at=self.clock())
            )
            if stamped:
                await batch.refresh_from_db(using_db=conn)
                logger.info(
                    f"[batch] {batch_id} completed: {batch.processed_files}/{batch.total_files} "
                    f"processed, {batch.failed_files} failed"
                )
        return batch
