"""Errors raised while talking to ModMed or orchestrating a booking."""
from __future__ import annotations

from typing import Any

__all__ = [
    "DashboardError",
    "InvalidRequest",
    "NoAvailability",
    "UpstreamError",
    "InternalError",
]


class DashboardError(RuntimeError):
    """Base exception; ``status_code`` is the HTTP status handed back to the browser."""

    status_code = 500

    @property
    def detail(self) -> Any:
        return str(self)


class InvalidRequest(DashboardError):
    """Malformed input, rejected before any outbound call."""

    status_code = 400


class NoAvailability(DashboardError):
    """The practitioner has no free slot covering the requested window."""

    status_code = 409

    def __init__(self, message: str = "No availability - conflict detected") -> None:
        super().__init__(message)


class UpstreamError(DashboardError):
    """ModMed answered with a non-success status; body is passed through untouched."""

    def __init__(self, status_code: int, body: Any) -> None:
        super().__init__(f"ModMed returned {status_code}")
        self.status_code = status_code
        self.body = body

    @property
    def detail(self) -> Any:
        return self.body


class InternalError(DashboardError):
    """Anything unexpected during orchestration (transport failure, bad JSON)."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
