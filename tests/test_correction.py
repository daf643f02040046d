from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

import pytest

from services.correction import CorrectionCalculator, compound_factor
from services.errors import InvalidInput


@dataclass
class Rate:
    month: date
    rate: Decimal


class MemoryRates:
    """In-memory stand-in for RateSeriesStore."""

    def __init__(self, rates: dict[date, str] | None = None):
        self.rates = {m: Decimal(r) for m, r in (rates or {}).items()}
        self.queries: list[tuple[date, date]] = []

    async def range_query(self, start, end):
        self.queries.append((start, end))
        return [Rate(m, r) for m, r in sorted(self.rates.items()) if start <= m <= end]


async def test_same_date_returns_principal():
    calc = CorrectionCalculator(MemoryRates({date(2023, 1, 1): "0.01"}))
    d = date(2023, 1, 10)
    assert await calc.correct(Decimal("123.45"), d, d) == Decimal("123.45")
    assert await calc.correct(0, d, d) == Decimal("0")


async def test_origin_after_as_of_returns_principal():
    rates = MemoryRates({date(2023, 1, 1): "0.01"})
    calc = CorrectionCalculator(rates)
    assert await calc.correct(100, date(2023, 5, 1), date(2023, 1, 1)) == Decimal("100")
    assert rates.queries == []


async def test_empty_series_returns_principal():
    calc = CorrectionCalculator(MemoryRates())
    assert await calc.correct(Decimal("500.00"), date(2022, 1, 5), date(2023, 1, 5)) == Decimal("500.00")


async def test_two_months_at_one_percent():
    rates = MemoryRates({date(2023, 1, 1): "0.01", date(2023, 2, 1): "0.01"})
    calc = CorrectionCalculator(rates)
    res = await calc.explain(1000, date(2023, 1, 1), date(2023, 3, 1))
    assert res.corrected == Decimal("1020.10")
    assert res.factor == Decimal("1.0201")
    assert res.months == [date(2023, 1, 1), date(2023, 2, 1)]
    assert rates.queries == [(date(2023, 1, 1), date(2023, 2, 1))]


async def test_as_of_month_is_not_compounded():
    rates = MemoryRates({
        date(2023, 1, 1): "0.01",
        date(2023, 2, 1): "0.01",
        date(2023, 3, 1): "0.50",
    })
    calc = CorrectionCalculator(rates)
    # partial months are not pro-rated, March is the reference month
    assert await calc.correct(1000, date(2023, 1, 31), date(2023, 3, 31)) == Decimal("1020.10")


async def test_same_month_no_correction():
    calc = CorrectionCalculator(MemoryRates({date(2023, 1, 1): "0.05"}))
    assert await calc.correct(Decimal("100"), date(2023, 1, 2), date(2023, 1, 28)) == Decimal("100")


async def test_missing_month_contributes_nothing():
    rates = MemoryRates({date(2023, 1, 1): "0.02", date(2023, 3, 1): "0.01"})
    calc = CorrectionCalculator(rates)
    res = await calc.explain(Decimal("100.00"), date(2023, 1, 1), date(2023, 4, 1))
    # 100 * 1.02 * 1.00 * 1.01
    assert res.corrected == Decimal("103.02")
    assert res.months_with_rate == 2
    assert len(res.months) == 3


async def test_final_rounding_only():
    rates = MemoryRates({date(2023, m, 1): "0.0125" for m in range(1, 13)})
    calc = CorrectionCalculator(rates)
    expected = Decimal("250.00") * compound_factor({date(2023, m, 1): Decimal("0.0125") for m in range(1, 13)},
                                                   [date(2023, m, 1) for m in range(1, 13)])
    got = await calc.correct(Decimal("250.00"), date(2023, 1, 1), date(2024, 1, 1))
    assert got == expected.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    # deterministic for the same inputs
    assert got == await calc.correct(Decimal("250.00"), date(2023, 1, 1), date(2024, 1, 1))


async def test_accepts_float_and_datetime():
    rates = MemoryRates({date(2023, 1, 1): "0.01", date(2023, 2, 1): "0.01"})
    calc = CorrectionCalculator(rates)
    got = await calc.correct(1000.0, datetime(2023, 1, 1, 12, 0), datetime(2023, 3, 1, 8, 0))
    assert got == Decimal("1020.10")


@pytest.mark.parametrize("principal", [-1, float("nan"), float("inf"), None, "100", True])
async def test_invalid_principal(principal):
    calc = CorrectionCalculator(MemoryRates())
    with pytest.raises(InvalidInput):
        await calc.correct(principal, date(2023, 1, 1), date(2023, 3, 1))


async def test_missing_origin_date():
    calc = CorrectionCalculator(MemoryRates())
    with pytest.raises(InvalidInput):
        await calc.correct(100, None, date(2023, 3, 1))


async def test_with_database_store(store):
    await store.insert(date(2023, 1, 1), Decimal("0.01"))
    await store.insert(date(2023, 2, 1), Decimal("0.01"))
    calc = CorrectionCalculator(store)
    assert await calc.correct(Decimal("1000"), date(2023, 1, 15), date(2023, 3, 15)) == Decimal("1020.10")


async def test_every_path_rounds_to_cents():
    d = date(2023, 1, 10)
    empty = CorrectionCalculator(MemoryRates())
    assert str(await empty.correct(Decimal("100.005"), d, d)) == "100.01"
    assert str(await empty.correct(Decimal("100.005"), date(2022, 1, 1), date(2023, 1, 1))) == "100.01"

    zero = CorrectionCalculator(MemoryRates({date(2022, m, 1): "0" for m in range(1, 13)}))
    assert str(await zero.correct(Decimal("100.005"), date(2022, 1, 1), date(2023, 1, 1))) == "100.01"


@pytest.mark.parametrize("origin", [date(2023, 1, 1), date(2023, 3, 1)])
async def test_oversized_principal_is_invalid_input(origin):
    calc = CorrectionCalculator(MemoryRates({date(2023, 1, 1): "0.01"}))
    with pytest.raises(InvalidInput):
        await calc.correct(Decimal("1e27"), origin, date(2023, 2, 1))
