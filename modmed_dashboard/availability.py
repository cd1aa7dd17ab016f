"""Slot availability probe run before an appointment's time range changes."""
from __future__ import annotations
import logging
from datetime import datetime
import httpx
from pydantic import ValidationError
from . import client
from .errors import UpstreamError
from .models import AvailabilityOutcome, AvailabilityQuery, Credentials

logger = logging.getLogger(__name__)


async def probe(
    practitioner_id: str,
    window_start: datetime,
    window_end: datetime,
    creds: Credentials,
) -> AvailabilityOutcome:
    """Ask ModMed whether a free slot fully covers ``[window_start, window_end]``.

    ``CONFLICT`` means ModMed answered and found nothing; ``INDETERMINATE``
    means we could not get an answer at all. The two are never merged.
    """
    if not practitioner_id:
        raise ValueError("practitioner_id must be non-empty")
    if window_start >= window_end:
        raise ValueError("window_start must precede window_end")

    query = AvailabilityQuery(practitioner_id=practitioner_id, window_start=window_start, window_end=window_end)
    try:
        bundle = await client.query_free_slots(query, creds)
    except (httpx.HTTPError, UpstreamError, ValidationError, ValueError, TypeError) as exc:
        logger.warning("Availability check for Practitioner/%s failed: %r", practitioner_id, exc)
        return AvailabilityOutcome.INDETERMINATE

    if bundle.total > 0:
        return AvailabilityOutcome.AVAILABLE
    return AvailabilityOutcome.CONFLICT
