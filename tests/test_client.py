import json, pathlib
from datetime import date, datetime, timezone
import pytest, respx, httpx
from modmed_dashboard.errors import UpstreamError
from modmed_dashboard.models import AvailabilityQuery, Credentials, SlotBundle, SubmitMode
from modmed_dashboard import client as cl


FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "http://localhost:8080"
CREDS = Credentials(token="fake", api_key="key-1")


def _query():
    return AvailabilityQuery(
        practitioner_id="1",
        window_start=datetime(2025, 9, 15, 10, 0, tzinfo=timezone.utc),
        window_end=datetime(2025, 9, 15, 10, 30, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_query_free_slots():
    bundle = json.loads((FIX / "slot_bundle_free.json").read_text())
    with respx.mock(base_url=BASE) as m:
        route = m.get("/fhir/v2/Slot").respond(200, json=bundle)

        result = await cl.query_free_slots(_query(), CREDS)
        assert isinstance(result, SlotBundle)
        assert result.total == 1
        assert result.slots[0].id == "slot-881"

        params = route.calls.last.request.url.params
        assert params["actor"] == "Practitioner/1"
        assert params["start"] == "le2025-09-15T10:00:00Z"
        assert params["end"] == "ge2025-09-15T10:30:00Z"
        assert params["status"] == "free"

        headers = route.calls.last.request.headers
        assert headers["Authorization"] == "Bearer fake"
        assert headers["x-api-key"] == "key-1"


@pytest.mark.asyncio
async def test_query_free_slots_counts_entries_without_total():
    bundle = json.loads((FIX / "slot_bundle_free.json").read_text())
    del bundle["total"]
    with respx.mock(base_url=BASE) as m:
        m.get("/fhir/v2/Slot").respond(200, json=bundle)

        result = await cl.query_free_slots(_query(), CREDS)
        assert result.total == 1


@pytest.mark.asyncio
async def test_slots_for_day_queries_whole_utc_day():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/fhir/v2/Slot").respond(200, json={"resourceType": "Bundle", "total": 0})

        await cl.slots_for_day("7", date(2025, 9, 30), CREDS)
        params = route.calls.last.request.url.params
        assert params.get_list("start") == ["ge2025-09-30T00:00:00Z", "lt2025-10-01T00:00:00Z"]
        assert params["actor"] == "Practitioner/7"


@pytest.mark.asyncio
async def test_create_appointment_posts_payload():
    created = json.loads((FIX / "appointment_created.json").read_text())
    payload = {"resourceType": "Appointment", "status": "booked"}
    with respx.mock(base_url=BASE) as m:
        route = m.post("/fhir/v2/Appointment").respond(201, json=created)

        body = await cl.create_or_update_appointment(SubmitMode.CREATE, payload, CREDS)
        assert body["id"] == "appt-5521"
        assert json.loads(route.calls.last.request.content) == payload


@pytest.mark.asyncio
async def test_update_appointment_puts_by_id():
    with respx.mock(base_url=BASE) as m:
        m.put("/fhir/v2/Appointment/appt-5521").respond(200, json={"id": "appt-5521", "status": "cancelled"})

        body = await cl.create_or_update_appointment(
            SubmitMode.UPDATE, {"status": "cancelled"}, CREDS, "appt-5521"
        )
        assert body["status"] == "cancelled"
        assert any(call.request.method == "PUT" for call in m.calls)


@pytest.mark.asyncio
async def test_upstream_error_keeps_status_and_body():
    outcome = {"resourceType": "OperationOutcome", "issue": [{"severity": "error", "code": "conflict"}]}
    with respx.mock(base_url=BASE) as m:
        m.post("/fhir/v2/Appointment").respond(422, json=outcome)

        with pytest.raises(UpstreamError) as info:
            await cl.create_or_update_appointment(SubmitMode.CREATE, {}, CREDS)
        assert info.value.status_code == 422
        assert info.value.body == outcome


@pytest.mark.asyncio
async def test_upstream_error_falls_back_to_text():
    with respx.mock(base_url=BASE) as m:
        m.get("/fhir/v2/Patient").respond(503, text="maintenance")

        with pytest.raises(UpstreamError) as info:
            await cl.search_patients(CREDS)
        assert info.value.body == "maintenance"


@pytest.mark.asyncio
async def test_login_uses_password_grant():
    grant = json.loads((FIX / "token_grant.json").read_text())
    with respx.mock(base_url=BASE) as m:
        route = m.post("/ws/oauth2/grant").respond(200, json=grant)

        data = await cl.login("drsmith", "s3cret", "key-1")
        assert data["access_token"] == "tok-abc"

        request = route.calls.last.request
        assert request.headers["x-api-key"] == "key-1"
        form = httpx.QueryParams(request.content.decode())
        assert form["grant_type"] == "password"
        assert form["username"] == "drsmith"


@pytest.mark.asyncio
async def test_fetch_patient_resources_filters_by_patient():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/fhir/v2/AllergyIntolerance").respond(200, json={"resourceType": "Bundle", "total": 0})

        await cl.fetch_patient_resources("AllergyIntolerance", "73337", CREDS)
        assert route.calls.last.request.url.params["patient"] == "73337"


@pytest.mark.asyncio
async def test_delete_appointment():
    with respx.mock(base_url=BASE) as m:
        m.delete("/fhir/v2/Appointment/appt-5521").respond(204)

        await cl.delete_appointment("appt-5521", CREDS)
        assert any(call.request.method == "DELETE" for call in m.calls)
