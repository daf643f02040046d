# services/errors.py
from __future__ import annotations
from datetime import date
from typing import Any


class BillingError(Exception):
    """Base class for errors raised by the bill processing core."""


class NotFound(BillingError):
    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class InvalidInput(BillingError):
    pass


class DuplicateKind(BillingError):
    """A rate for this month is already stored; callers treat it as a skip."""

    def __init__(self, month: date):
        self.month = month
        super().__init__(f"rate for {month:%Y-%m} already exists")


class ExtractionFailure(BillingError):
    """Document understanding could not produce the bill values."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
