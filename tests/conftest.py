"""
Shared fixtures: an in-memory SQLite Tortoise database per test, plus helpers
to build a tracker/lifecycle pair wired to it.
"""
from datetime import date

import pytest
import pytest_asyncio
from tortoise import Tortoise

from services.batch_progress import BatchProgressTracker
from services.bill_lifecycle import BillLifecycle
from services.correction import CorrectionCalculator
from services.rate_series import RateSeriesStore

TODAY = date(2024, 1, 15)


@pytest_asyncio.fixture
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["models"]})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def store(db):
    return RateSeriesStore("default")


@pytest.fixture
def tracker(db):
    return BatchProgressTracker("default")


@pytest.fixture
def lifecycle(store, tracker):
    return BillLifecycle(CorrectionCalculator(store), tracker, "default", today=lambda: TODAY)
