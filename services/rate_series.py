# services/rate_series.py
from __future__ import annotations
import csv
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Iterator, Optional

from tortoise import connections
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from models import SelicRate
from services.errors import DuplicateKind, InvalidInput

logger = logging.getLogger(__name__)

HEADER_NAMES = {"date", "data", "month", "mes", "mês"}


# ---------- month helpers ----------

def month_start(d: date) -> date:
    if isinstance(d, datetime):
        d = d.date()
    return d.replace(day=1)


def next_month(d: date) -> date:
    return date(d.year + 1, 1, 1) if d.month == 12 else date(d.year, d.month + 1, 1)


def iter_months(start: date, end: date) -> Iterator[date]:
    """Yield the first day of every month from start's month up to, not including, end's month."""
    cur = month_start(start)
    stop = month_start(end)
    while cur < stop:
        yield cur
        cur = next_month(cur)


# ---------- line parsing ----------

def _parse_month(s: str) -> date:
    s = (s or "").strip()
    if not s:
        raise InvalidInput("empty date")
    if "T" in s:
        s = s.split("T", 1)[0]
    try:
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", s):
            return month_start(date.fromisoformat(s))
        if re.fullmatch(r"\d{4}-\d{2}", s):
            return date(int(s[:4]), int(s[5:7]), 1)
        m = re.fullmatch(r"(\d{1,2})[./](\d{1,2})[./](\d{4})", s)
        if m:
            dd, mm, yy = (int(x) for x in m.groups())
            return month_start(date(yy, mm, dd))
        m = re.fullmatch(r"(\d{1,2})[./](\d{4})", s)
        if m:
            return date(int(m.group(2)), int(m.group(1)), 1)
    except ValueError as e:
        raise InvalidInput(f"invalid date {s!r}") from e
    raise InvalidInput(f"invalid date {s!r}")


def _parse_rate(s: str) -> Decimal:
    s = (s or "").strip()
    if not s:
        raise InvalidInput("empty rate")
    if "," in s and "." not in s:
        s = s.replace(",", ".")
    try:
        rate = Decimal(s)
    except InvalidOperation as e:
        raise InvalidInput(f"invalid rate {s!r}") from e
    if not rate.is_finite() or rate < 0 or rate >= 1:
        raise InvalidInput(f"rate out of range {s!r}")
    return rate


def parse_rate_line(date_text: str, rate_text: str) -> tuple[date, Decimal]:
    return _parse_month(date_text), _parse_rate(rate_text)


# ---------- store ----------

class RateSeriesStore:
    """
    Monthly SELIC rates, at most one per calendar month.
    Entries are insert-only: a second insert for a month raises DuplicateKind.
    """

    def __init__(self, connection_name: str = "default"):
        self.connection_name = connection_name

    def _db(self):
        return connections.get(self.connection_name)

    async def insert(self, month: date, rate: Decimal) -> SelicRate:
        m = month_start(month)
        if await SelicRate.filter(month=m).using_db(self._db()).exists():
            raise DuplicateKind(m)
        try:
            async with in_transaction(self.connection_name) as conn:
                return await SelicRate.create(month=m, rate=Decimal(rate), using_db=conn)
        except IntegrityError as e:
            # lost a race against another loader for the same month
            raise DuplicateKind(m) from e

    async def range_query(self, start: date, end: date) -> list[SelicRate]:
        """Entries whose month falls within [start, end], ascending. Empty when none match."""
        return await (
            SelicRate.filter(month__gte=month_start(start), month__lte=month_start(end))
            .using_db(self._db())
            .order_by("month")
        )

    async def latest(self) -> Optional[SelicRate]:
        return await SelicRate.all().using_db(self._db()).order_by("-month").first()

    async def all(self) -> list[SelicRate]:
        return await SelicRate.all().using_db(self._db()).order_by("month")


# ---------- bulk load ----------

async def load_rate_lines(store: RateSeriesStore, lines: Iterable[tuple[str, str]]) -> dict:
    """
    Load (date_text, rate_text) pairs. Bad lines count as errors, months already
    present count as skipped; neither aborts the load.
    """
    loaded = skipped = errors = 0
    for n, (date_text, rate_text) in enumerate(lines, start=1):
        try:
            month, rate = parse_rate_line(date_text, rate_text)
        except InvalidInput as e:
            logger.debug(f"[selic] line {n} rejected: {e}")
            errors += 1
            continue
        try:
            await store.insert(month, rate)
        except DuplicateKind:
            skipped += 1
            continue
        loaded += 1
    logger.info(f"[selic] load finished: loaded={loaded} skipped={skipped} errors={errors}")
    return {"loaded": loaded, "skipped": skipped, "errors": errors}


def _csv_pairs(text: str) -> list[tuple[str, str]]:
    lines = text.splitlines()
    if not lines:
        return []
    first = lines[0]
    delimiter = ";" if first.count(";") > first.count(",") else ","
    rows = [r for r in csv.reader(lines, delimiter=delimiter) if any(c.strip() for c in r)]
    if rows and rows[0] and rows[0][0].strip().lower() in HEADER_NAMES:
        rows = rows[1:]
    return [(r[0], r[1] if len(r) > 1 else "") for r in rows]


async def load_rate_csv(store: RateSeriesStore, path: str | Path) -> dict:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8-sig")
    except OSError as e:
        logger.warning(f"[selic] cannot read rate file {p}: {e}")
        return {"loaded": 0, "skipped": 0, "errors": 1}
    return await load_rate_lines(store, _csv_pairs(text))
