"""Async ModMed FHIR client used by the dashboard backend.

Every call takes the caller's session ``Credentials`` explicitly; nothing is
cached here. Non-success responses surface as ``UpstreamError`` carrying the
upstream status and body, transport problems as ``httpx.HTTPError``.
"""
from __future__ import annotations
import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any
import httpx
from dotenv import load_dotenv
from .errors import UpstreamError
from .models import AvailabilityQuery, Credentials, SlotBundle, SubmitMode

load_dotenv()

logger = logging.getLogger(__name__)

_BASE_URL = os.getenv("MODMED_BASE_URL", "http://localhost:8080").rstrip("/")
_FHIR_URL = f"{_BASE_URL}/fhir/v2"
_GRANT_URL = f"{_BASE_URL}/ws/oauth2/grant"
_TIMEOUT = float(os.getenv("MODMED_TIMEOUT", "15"))


def _headers(creds: Credentials, *, json_body: bool = False) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {creds.token}",
        "x-api-key": creds.api_key,
        "Accept": "application/json",
    }
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _raise_for_upstream(resp: httpx.Response) -> None:
    if not resp.is_success:
        raise UpstreamError(resp.status_code, _error_body(resp))


def _fhir_instant(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def _get(path: str, creds: Credentials, params: Any = None) -> Any:
    logger.debug("GET %s params=%s", path, params)
    async with httpx.AsyncClient(http2=True, timeout=_TIMEOUT) as client:
        resp = await client.get(f"{_FHIR_URL}/{path}", headers=_headers(creds), params=params)
    _raise_for_upstream(resp)
    return resp.json()


async def login(username: str, password: str, api_key: str) -> dict[str, Any]:
    """Exchange user credentials for a bearer token via the password grant."""
    data = {"grant_type": "password", "username": username, "password": password}
    async with httpx.AsyncClient(http2=True, timeout=_TIMEOUT) as client:
        resp = await client.post(_GRANT_URL, data=data, headers={"x-api-key": api_key})
    _raise_for_upstream(resp)
    return resp.json()


async def query_free_slots(query: AvailabilityQuery, creds: Credentials) -> SlotBundle:
    """Free slots for a practitioner that fully contain the query window."""
    params = {
        "actor": f"Practitioner/{query.practitioner_id}",
        "start": f"le{_fhir_instant(query.window_start)}",
        "end": f"ge{_fhir_instant(query.window_end)}",
        "status": "free",
    }
    bundle = await _get("Slot", creds, params)
    if not isinstance(bundle, dict):
        raise ValueError("Slot search did not return a Bundle")
    return SlotBundle.from_bundle(bundle)


async def slots_for_day(practitioner_id: str, day: date, creds: Credentials) -> dict[str, Any]:
    """Raw Bundle of free slots starting on the given UTC day."""
    next_day = day + timedelta(days=1)
    params = [
        ("actor", f"Practitioner/{practitioner_id}"),
        ("start", f"ge{day.isoformat()}T00:00:00Z"),
        ("start", f"lt{next_day.isoformat()}T00:00:00Z"),
        ("status", "free"),
    ]
    return await _get("Slot", creds, params)


async def create_or_update_appointment(
    mode: SubmitMode,
    payload: dict[str, Any],
    creds: Credentials,
    appointment_id: str | None = None,
) -> dict[str, Any]:
    """POST a new Appointment or PUT over an existing one; returns ModMed's representation."""
    async with httpx.AsyncClient(http2=True, timeout=_TIMEOUT) as client:
        if mode is SubmitMode.CREATE:
            resp = await client.post(f"{_FHIR_URL}/Appointment", headers=_headers(creds, json_body=True), json=payload)
        else:
            if not appointment_id:
                raise ValueError("appointment_id is required for updates")
            resp = await client.put(
                f"{_FHIR_URL}/Appointment/{appointment_id}", headers=_headers(creds, json_body=True), json=payload
            )
    if not resp.is_success:
        logger.error("ModMed Appointment %s error %s: %s", mode.value, resp.status_code, resp.text)
    _raise_for_upstream(resp)
    return resp.json()


async def delete_appointment(appt_id: str, creds: Credentials) -> None:
    async with httpx.AsyncClient(http2=True, timeout=_TIMEOUT) as client:
        resp = await client.delete(f"{_FHIR_URL}/Appointment/{appt_id}", headers=_headers(creds))
    _raise_for_upstream(resp)


async def search_appointments(params: dict[str, str], creds: Credentials) -> dict[str, Any]:
    return await _get("Appointment", creds, params)


async def search_patients(creds: Credentials) -> dict[str, Any]:
    return await _get("Patient", creds)


async def fetch_patient(patient_id: str, creds: Credentials) -> dict[str, Any]:
    return await _get(f"Patient/{patient_id}", creds)


async def fetch_patient_resources(resource_type: str, patient_id: str, creds: Credentials) -> dict[str, Any]:
    """Search Bundle of e.g. AllergyIntolerance/Condition/Immunization for one patient."""
    return await _get(resource_type, creds, {"patient": patient_id})


async def create_medication_statement(payload: dict[str, Any], creds: Credentials) -> Any:
    async with httpx.AsyncClient(http2=True, timeout=_TIMEOUT) as client:
        resp = await client.post(
            f"{_FHIR_URL}/MedicationStatement", headers=_headers(creds, json_body=True), json=payload
        )
    if not resp.is_success:
        logger.error("ModMed MedicationStatement error %s: %s", resp.status_code, resp.text)
    _raise_for_upstream(resp)
    # ModMed sometimes answers 201 with an empty body
    try:
        return resp.json()
    except ValueError:
        return None
