# src/storder/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class OrderError(Exception):
    """Canonical error type for order workflow failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class NoFundsError(OrderError):
    """Resolved identity has a zero balance. Funding is an external prerequisite."""


class UploadError(OrderError):
    """Gateway rejected the upload or returned a malformed body."""


class SimulationError(OrderError):
    """A read-only contract call (price or node) reverted or returned nothing."""


class SubmissionError(OrderError):
    """The ledger rejected the atomic order group or it never confirmed."""


class LedgerError(OrderError):
    """Transport-level ledger failure (HTTP status, bad JSON, rejection)."""
