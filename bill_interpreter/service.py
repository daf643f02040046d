# bill_interpreter/service.py
from __future__ import annotations
import asyncio
import io
import logging
import zipfile
from pathlib import PurePosixPath
from typing import Iterable

from tortoise.transactions import in_transaction

from models import FILENAME_MAX, ElectricityBill, UploadBatch
from bill_interpreter.extractors import BillExtractor
from services.batch_progress import BatchProgressTracker
from services.bill_lifecycle import BillLifecycle, ExtractionError
from services.errors import InvalidInput

logger = logging.getLogger(__name__)

# (bill_id, filename, content)
BillJob = tuple[int, str, bytes]


def _is_bill_entry(info: zipfile.ZipInfo) -> bool:
    if info.is_dir():
        return False
    p = PurePosixPath(info.filename)
    if p.parts and p.parts[0] == "__MACOSX":
        return False
    return not p.name.startswith(".")


def _check_name(name: str) -> str:
    if len(name) > FILENAME_MAX:
        raise InvalidInput(f"file name longer than {FILENAME_MAX} characters: {name[:40]}...")
    return name


def unpack_bundle(data: bytes, max_bytes: int | None = None) -> list[tuple[str, bytes]]:
    """
    Unpack a ZIP bundle into (filename, content) pairs, ordered by name.
    Folders inside the archive are flattened; OS metadata entries are dropped.
    """
    if max_bytes is not None and len(data) > max_bytes:
        raise InvalidInput(f"bundle larger than {max_bytes} bytes")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            entries = [i for i in zf.infolist() if _is_bill_entry(i)]
            if max_bytes is not None and sum(i.file_size for i in entries) > max_bytes:
                raise InvalidInput(f"unpacked bundle larger than {max_bytes} bytes")
            files = [(_check_name(PurePosixPath(i.filename).name), zf.read(i)) for i in entries]
    except zipfile.BadZipFile as e:
        raise InvalidInput("Invalid ZIP file") from e
    return sorted(files, key=lambda f: f[0])


async def ingest_bundle(
    tracker: BatchProgressTracker,
    lifecycle: BillLifecycle,
    bundle_name: str,
    files: list[tuple[str, bytes]],
) -> tuple[UploadBatch, list[BillJob]]:
    """
    Create the batch and one pending bill per file in one transaction: if any
    insert fails, nothing is stored. Extraction happens later.
    """
    _check_name(bundle_name)
    for name, _ in files:
        _check_name(name)
    jobs: list[BillJob] = []
    async with in_transaction(tracker.connection_name) as conn:
        batch = await tracker.create_batch(bundle_name, len(files), using_db=conn)
        for name, content in files:
            bill = await lifecycle.create_pending_bill(batch.id, name, using_db=conn)
            jobs.append((bill.id, name, content))
    logger.info(f"[bill_interpreter] batch {batch.id} ({bundle_name}): {len(jobs)} bill(s) queued")
    return batch, jobs


async def process_bill(
    lifecycle: BillLifecycle,
    extractor: BillExtractor,
    bill_id: int,
    filename: str,
    content: bytes,
) -> ElectricityBill:
    """Run extraction for one file and report the outcome. Never raises for a bad document."""
    try:
        outcome = await asyncio.to_thread(extractor.extract, content, filename)
    except Exception as e:
        logger.warning(f"[bill_interpreter] extractor crashed on {filename}: {e!r}")
        outcome = ExtractionError(str(e) or e.__class__.__name__)
    return await lifecycle.apply_extraction_result(bill_id, outcome)


async def process_files(
    lifecycle: BillLifecycle,
    extractor: BillExtractor,
    jobs: Iterable[BillJob],
    concurrency: int = 4,
) -> list[ElectricityBill]:
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _one(job: BillJob) -> ElectricityBill:
        async with sem:
            return await process_bill(lifecycle, extractor, *job)

    results = await asyncio.gather(*(_one(j) for j in jobs), return_exceptions=True)
    bills: list[ElectricityBill] = []
    for r in results:
        if isinstance(r, Exception):
            # structural failure (bill or batch gone); siblings keep going
            logger.error(f"[bill_interpreter] could not record outcome: {r}")
            continue
        bills.append(r)
    return bills
