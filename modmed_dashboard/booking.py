"""Appointment create/reschedule/cancel with a pre-flight conflict check."""
from __future__ import annotations
import logging
import httpx
from . import client
from .availability import probe
from .errors import DashboardError, InternalError, InvalidRequest, NoAvailability
from .models import AppointmentRequest, AvailabilityOutcome, BookingResult, Credentials, SubmitMode

logger = logging.getLogger(__name__)

_SUCCESS_STATUS = {SubmitMode.CREATE: 201, SubmitMode.UPDATE: 200}


def _validate(request: AppointmentRequest, mode: SubmitMode, appointment_id: str | None) -> None:
    if mode is SubmitMode.CREATE:
        if request.start is None or request.end is None or not request.participant:
            raise InvalidRequest("Invalid payload: missing start, end, or participant")
    elif not appointment_id:
        raise InvalidRequest("Missing appointment id")
    if (request.start is None) != (request.end is None):
        raise InvalidRequest("Invalid payload: start and end must be given together")
    if request.start is not None and request.start >= request.end:
        raise InvalidRequest("Start time must be before end time")


async def submit(
    request: AppointmentRequest,
    mode: SubmitMode,
    creds: Credentials,
    appointment_id: str | None = None,
) -> BookingResult:
    """Validate, probe availability when a time range is present, then forward.

    Raises ``InvalidRequest``, ``NoAvailability``, ``UpstreamError`` (from the
    mutation call) or ``InternalError``. A failed probe does not block the
    booking.
    """
    _validate(request, mode, appointment_id)
    try:
        return await _check_and_forward(request, mode, creds, appointment_id)
    except DashboardError:
        raise
    except Exception as exc:
        logger.exception("Appointment %s failed unexpectedly (appointment_id=%s)", mode.value, appointment_id)
        raise InternalError() from exc


async def _check_and_forward(
    request: AppointmentRequest,
    mode: SubmitMode,
    creds: Credentials,
    appointment_id: str | None,
) -> BookingResult:
    if request.start is not None:
        practitioner = request.first_practitioner()
        if practitioner is None:
            logger.debug("No practitioner participant; skipping availability check")
        else:
            outcome = await probe(practitioner.id, request.start, request.end, creds)
            if outcome is AvailabilityOutcome.CONFLICT:
                logger.info(
                    "Practitioner/%s has no free slot for %s - %s",
                    practitioner.id, request.start.isoformat(), request.end.isoformat(),
                )
                raise NoAvailability()
            if outcome is AvailabilityOutcome.INDETERMINATE:
                logger.warning("Availability check failed, proceeding anyway (Practitioner/%s)", practitioner.id)

    try:
        body = await client.create_or_update_appointment(mode, request.raw, creds, appointment_id)
    except httpx.HTTPError as exc:
        logger.exception("Appointment %s transport failure", mode.value)
        raise InternalError() from exc
    except ValueError as exc:
        logger.exception("Appointment %s returned an unreadable body", mode.value)
        raise InternalError() from exc
    return BookingResult(status_code=_SUCCESS_STATUS[mode], body=body)
