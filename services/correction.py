# services/correction.py
"""
SELIC monetary correction.

The corrected amount is the principal multiplied by the product of (1 + rate)
over every whole calendar month from the bill's month up to, but not including,
the reference month. Compounding is monthly; partial months are not pro-rated.

Rounding: no intermediate rounding while compounding; the returned amount is
always quantized to cents (ROUND_HALF_UP), including when nothing accrues.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, Mapping, Protocol, Sequence

from services.errors import InvalidInput
from services.rate_series import iter_months, month_start

CENTS = Decimal("0.01")


class RateSource(Protocol):
    async def range_query(self, start: date, end: date) -> Sequence[Any]: ...


@dataclass
class CorrectionResult:
    principal: Decimal
    corrected: Decimal
    factor: Decimal = Decimal(1)
    months: list[date] = field(default_factory=list)
    months_with_rate: int = 0


def _as_principal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"invalid principal {value!r}")
    if not isinstance(value, (int, float, Decimal)):
        raise InvalidInput(f"invalid principal {value!r}")
    try:
        p = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise InvalidInput(f"invalid principal {value!r}") from e
    if not p.is_finite() or p < 0:
        raise InvalidInput(f"invalid principal {value!r}")
    return p


def _to_cents(value: Decimal) -> Decimal:
    try:
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        # more digits than the decimal context can hold
        raise InvalidInput(f"amount {value} is too large to correct") from e


def _as_date(value: Any, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise InvalidInput(f"{name} is required")


def compound_factor(rates_by_month: Mapping[date, Decimal], months: Iterable[date]) -> Decimal:
    """Product of (1 + rate) across months; a month without a rate contributes 0%."""
    factor = Decimal(1)
    for m in months:
        factor *= Decimal(1) + Decimal(rates_by_month.get(m, 0))
    return factor


class CorrectionCalculator:
    def __init__(self, rates: RateSource):
        self.rates = rates

    async def explain(self, principal: Any, origin_date: Any, as_of_date: Any) -> CorrectionResult:
        p = _as_principal(principal)
        origin = _as_date(origin_date, "origin_date")
        as_of = _as_date(as_of_date, "as_of_date")

        if origin >= as_of:
            return CorrectionResult(principal=p, corrected=_to_cents(p))

        months = list(iter_months(origin, as_of))
        if not months:
            # same calendar month, nothing to accrue
            return CorrectionResult(principal=p, corrected=_to_cents(p))

        entries = await self.rates.range_query(months[0], months[-1])
        if not entries:
            return CorrectionResult(principal=p, corrected=_to_cents(p), months=months)

        by_month = {month_start(e.month): Decimal(e.rate) for e in entries}
        factor = compound_factor(by_month, months)
        return CorrectionResult(
            principal=p,
            corrected=_to_cents(p * factor),
            factor=factor,
            months=months,
            months_with_rate=sum(1 for m in months if m in by_month),
        )

    async def correct(self, principal: Any, origin_date: Any, as_of_date: Any) -> Decimal:
        return (await self.explain(principal, origin_date, as_of_date)).corrected
