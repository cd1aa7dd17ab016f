import logging
import os
from datetime import date
from typing import Any, Optional

import httpx
from fastapi import Body, Cookie, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from . import client
from .booking import submit
from .errors import DashboardError, InternalError
from .models import AppointmentRequest, Credentials, LoginRequest, SubmitMode

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "modmed_token"
API_KEY_COOKIE = "api_key"
SESSION_MAX_AGE = 3600
# Secure flag only outside local development
SECURE_COOKIES = os.getenv("APP_ENV", "development") == "production"

app = FastAPI(title="ModMed Clinical Dashboard")


@app.exception_handler(DashboardError)
async def dashboard_error_handler(request: Request, exc: DashboardError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(httpx.HTTPError)
async def transport_error_handler(request: Request, exc: httpx.HTTPError):
    logger.error("%s %s upstream transport error: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def session_credentials(
    api_key: Optional[str] = Cookie(None),
    modmed_token: Optional[str] = Cookie(None),
) -> Credentials:
    """Credentials for this request, read from the session cookies set at login."""
    if not api_key:
        raise HTTPException(status_code=400, detail="Missing API key")
    if not modmed_token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Credentials(token=modmed_token, api_key=api_key)


def _json_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Missing payload")
    return payload


# Session -----------------------------------------------------------------

@app.post("/auth/login")
async def auth_login(req: LoginRequest, response: Response):
    """Password grant against ModMed; token and API key are kept in httpOnly cookies."""
    if not req.username or not req.password or not req.api_key:
        raise HTTPException(status_code=400, detail="Missing credentials")

    token_data = await client.login(req.username, req.password, req.api_key)
    access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
    if not access_token:
        logger.error("Token grant for %s returned no access_token", req.username)
        raise InternalError("Token grant response missing access_token")
    response.set_cookie(
        TOKEN_COOKIE,
        access_token,
        max_age=token_data.get("expires_in") or SESSION_MAX_AGE,
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        path="/",
    )
    response.set_cookie(
        API_KEY_COOKIE,
        req.api_key,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        path="/",
    )
    return token_data


@app.get("/auth/verify")
async def auth_verify(modmed_token: Optional[str] = Cookie(None)):
    if not modmed_token:
        return JSONResponse(status_code=401, content={"authenticated": False})
    return {"authenticated": True}


@app.post("/auth/logout")
async def auth_logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE, path="/")
    response.delete_cookie(API_KEY_COOKIE, path="/")
    return {"message": "logged out"}


# Appointments --------------------------------------------------------------

@app.get("/appointments")
async def list_appointments(request: Request, creds: Credentials = Depends(session_credentials)):
    """Appointment search; the query string is forwarded to ModMed as-is."""
    return await client.search_appointments(dict(request.query_params), creds)


@app.post("/appointments", status_code=201)
async def book_appointment(payload: Any = Body(None), creds: Credentials = Depends(session_credentials)):
    """Book an appointment after checking the practitioner has a free slot."""
    appt = AppointmentRequest.from_payload(_json_object(payload))
    result = await submit(appt, SubmitMode.CREATE, creds)
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.put("/appointments/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    payload: Any = Body(None),
    creds: Credentials = Depends(session_credentials),
):
    """Reschedule or cancel. Status-only payloads skip the availability check."""
    appt = AppointmentRequest.from_payload(_json_object(payload))
    result = await submit(appt, SubmitMode.UPDATE, creds, appointment_id)
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.delete("/appointments/{appointment_id}")
async def delete_appointment(appointment_id: str, creds: Credentials = Depends(session_credentials)):
    await client.delete_appointment(appointment_id, creds)
    return {"message": "Appointment canceled"}


@app.get("/appointments/{practitioner_id}/availability")
async def practitioner_availability(
    practitioner_id: str,
    day: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD"),
    creds: Credentials = Depends(session_credentials),
):
    """Free slots for a practitioner over one UTC day."""
    if not day:
        raise HTTPException(status_code=400, detail="Missing date parameter")
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date parameter")
    return await client.slots_for_day(practitioner_id, parsed, creds)


# Patients ------------------------------------------------------------------

@app.get("/patients")
async def list_patients(creds: Credentials = Depends(session_credentials)):
    return await client.search_patients(creds)


@app.post("/patients/medicationstatements", status_code=201)
async def add_medication_statement(payload: Any = Body(None), creds: Credentials = Depends(session_credentials)):
    """Record a MedicationStatement; ``status`` defaults to active."""
    payload = _json_object(payload)
    if not payload.get("subject") or not payload.get("medicationCodeableConcept"):
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: subject and medicationCodeableConcept are required",
        )
    if not payload.get("status"):
        payload["status"] = "active"
    return await client.create_medication_statement(payload, creds)


@app.get("/patients/{patient_id}")
async def get_patient(patient_id: str, creds: Credentials = Depends(session_credentials)):
    return await client.fetch_patient(patient_id, creds)


@app.get("/patients/{patient_id}/allergies")
async def patient_allergies(patient_id: str, creds: Credentials = Depends(session_credentials)):
    return await client.fetch_patient_resources("AllergyIntolerance", patient_id, creds)


@app.get("/patients/{patient_id}/conditions")
async def patient_conditions(patient_id: str, creds: Credentials = Depends(session_credentials)):
    return await client.fetch_patient_resources("Condition", patient_id, creds)


@app.get("/patients/{patient_id}/immunizations")
async def patient_immunizations(patient_id: str, creds: Credentials = Depends(session_credentials)):
    return await client.fetch_patient_resources("Immunization", patient_id, creds)
