# dependencies.py
"""
Component wiring for the routers.

Every component gets the Tortoise connection name explicitly, so tests can
swap any of these through app.dependency_overrides.
"""
from fastapi import Depends

from bill_interpreter.extractors import BillExtractor, build_extractor
from services import config
from services.batch_progress import BatchProgressTracker
from services.bill_lifecycle import BillLifecycle
from services.correction import CorrectionCalculator
from services.rate_series import RateSeriesStore
from services.report import ReportAggregator


def get_rate_store() -> RateSeriesStore:
    return RateSeriesStore(config.DB_CONNECTION)


def get_calculator(store: RateSeriesStore = Depends(get_rate_store)) -> CorrectionCalculator:
    return CorrectionCalculator(store)


def get_tracker() -> BatchProgressTracker:
    return BatchProgressTracker(config.DB_CONNECTION)


def get_lifecycle(
    calculator: CorrectionCalculator = Depends(get_calculator),
    tracker: BatchProgressTracker = Depends(get_tracker),
) -> BillLifecycle:
    return BillLifecycle(calculator, tracker, config.DB_CONNECTION)


def get_report_aggregator() -> ReportAggregator:
    return ReportAggregator(config.DB_CONNECTION)


_extractor: BillExtractor | None = None


def get_extractor() -> BillExtractor:
    global _extractor
    if _extractor is None:
        _extractor = build_extractor(config.BILL_EXTRACTOR)
    return _extractor
