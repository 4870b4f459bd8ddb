"""
Integration tests for the appointment endpoints.

Exercises the HTTP surface end to end against the test database with fake
remote collaborators: status codes, error bodies, camelCase payloads,
correlation ids and post-commit event relay.
"""

from datetime import timedelta

from models import AppointmentEvent, AppointmentStatus
from services.service_clients import AvailabilityResult
from tests.conftest import create_appointment
from tests.fakes import CARDIOLOGY, slot_on


def _booking(start, end, patient_id=1, doctor_id=10, department=CARDIOLOGY):
    return {
        "patientId": patient_id,
        "doctorId": doctor_id,
        "department": department,
        "slotStart": start.isoformat(),
        "slotEnd": end.isoformat(),
    }


class TestBookEndpoint:

    def test_book_returns_created_appointment(self, api_client, fake_clients):
        start, end = slot_on(2, 10)

        response = api_client.post("/v1/appointments", json=_booking(start, end))

        assert response.status_code == 201
        data = response.json()
        assert data["patientId"] == 1
        assert data["doctorId"] == 10
        assert data["department"] == CARDIOLOGY
        assert data["status"] == "SCHEDULED"
        assert data["rescheduleCount"] == 0
        assert data["version"] == 1
        assert "createdAt" in data
        assert response.headers["X-Correlation-ID"]

    def test_correlation_id_is_echoed_and_forwarded(self, api_client, fake_clients):
        start, end = slot_on(2, 10)

        response = api_client.post(
            "/v1/appointments", json=_booking(start, end), headers={"X-Correlation-ID": "trace-123"}
        )

        assert response.headers["X-Correlation-ID"] == "trace-123"
        assert fake_clients.availability.calls[0]["correlation_id"] == "trace-123"
        assert fake_clients.events.notifications[0]["correlationId"] == "trace-123"

    def test_booked_event_is_relayed_after_commit(self, api_client, fake_clients, db_session):
        start, end = slot_on(2, 10)

        response = api_client.post("/v1/appointments", json=_booking(start, end))

        assert [n["eventType"] for n in fake_clients.events.notifications] == ["BOOKED"]
        event = db_session.query(AppointmentEvent).filter_by(appointment_id=response.json()["id"]).one()
        assert event.dispatched_at is not None

    def test_validation_error_body(self, api_client):
        start, _ = slot_on(2, 10)

        response = api_client.post(
            "/v1/appointments", json=_booking(start, start), headers={"X-Correlation-ID": "trace-v"}
        )

        assert response.status_code == 400
        assert response.json() == {
            "code": "VALIDATION_ERROR",
            "message": "slotEnd must be after slotStart",
            "correlationId": "trace-v",
        }

    def test_malformed_body_is_validation_error(self, api_client):
        response = api_client.post("/v1/appointments", json={"patientId": "abc"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["correlationId"]

    def test_unknown_patient_is_404(self, api_client):
        start, end = slot_on(2, 10)

        response = api_client.post("/v1/appointments", json=_booking(start, end, patient_id=404))

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_unavailable_slot_is_409(self, api_client, fake_clients):
        fake_clients.availability.result = AvailabilityResult(available=False, reason="outside clinic hours")
        start, end = slot_on(2, 20)

        response = api_client.post("/v1/appointments", json=_booking(start, end))

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_UNAVAILABLE"
        assert response.json()["message"] == "outside clinic hours"

    def test_overlap_is_slot_conflict(self, api_client):
        start, end = slot_on(2, 10)
        api_client.post("/v1/appointments", json=_booking(start, end, patient_id=1))

        response = api_client.post(
            "/v1/appointments",
            json=_booking(start + timedelta(minutes=10), end + timedelta(minutes=10), patient_id=2)
        )

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_CONFLICT"

    def test_dependency_unavailable_is_503(self, api_client, fake_clients):
        fake_clients.patients.unavailable = True
        start, end = slot_on(2, 10)

        response = api_client.post("/v1/appointments", json=_booking(start, end))

        assert response.status_code == 503
        assert response.json()["code"] == "DEPENDENCY_UNAVAILABLE"


class TestRescheduleAndTransitions:

    def test_reschedule(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)
        new_start, new_end = slot_on(3, 11)

        response = api_client.put(
            f"/v1/appointments/{appointment.id}/reschedule",
            json={"newSlotStart": new_start.isoformat(), "newSlotEnd": new_end.isoformat()}
        )

        assert response.status_code == 200
        assert response.json()["rescheduleCount"] == 1
        assert response.json()["version"] == 2

    def test_reschedule_limit(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end, reschedule_count=2)
        new_start, new_end = slot_on(3, 11)

        response = api_client.put(
            f"/v1/appointments/{appointment.id}/reschedule",
            json={"newSlotStart": new_start.isoformat(), "newSlotEnd": new_end.isoformat()}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "LIMIT_EXCEEDED"

    def test_reschedule_with_stale_version(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)
        new_start, new_end = slot_on(3, 11)

        response = api_client.put(
            f"/v1/appointments/{appointment.id}/reschedule",
            json={"newSlotStart": new_start.isoformat(), "newSlotEnd": new_end.isoformat(), "version": 5}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_complete_relays_billing_event(self, api_client, db_session, fake_clients):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)

        response = api_client.put(f"/v1/appointments/{appointment.id}/complete")

        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        assert fake_clients.events.billing_events[0]["eventType"] == "COMPLETED"
        assert fake_clients.events.billing_events[0]["appointmentId"] == appointment.id

    def test_cancel_then_no_show_is_invalid_state(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)

        assert api_client.put(f"/v1/appointments/{appointment.id}/cancel").status_code == 200
        response = api_client.put(f"/v1/appointments/{appointment.id}/no-show")

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

    def test_cancel_with_version_query(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)

        stale = api_client.put(f"/v1/appointments/{appointment.id}/cancel", params={"version": 3})
        fresh = api_client.put(f"/v1/appointments/{appointment.id}/cancel", params={"version": 1})

        assert stale.status_code == 409
        assert fresh.status_code == 200
        assert fresh.json()["status"] == "CANCELLED"

    def test_unknown_appointment_is_404(self, api_client):
        assert api_client.put("/v1/appointments/999/complete").status_code == 404
        assert api_client.get("/v1/appointments/999").status_code == 404


class TestQueryEndpoints:

    def test_get_appointment(self, api_client, db_session):
        start, end = slot_on(2, 10)
        appointment = create_appointment(db_session, start, end)

        response = api_client.get(f"/v1/appointments/{appointment.id}")

        assert response.status_code == 200
        assert response.json()["id"] == appointment.id

    def test_list_with_filters(self, api_client, db_session):
        for hour in (9, 10, 11):
            start, end = slot_on(2, hour)
            create_appointment(db_session, start, end, patient_id=1)
        start, end = slot_on(2, 9)
        create_appointment(db_session, start, end, patient_id=2, doctor_id=11, status=AppointmentStatus.CANCELLED)

        by_patient = api_client.get("/v1/appointments", params={"patientId": 1, "page": 2, "limit": 2}).json()
        cancelled = api_client.get("/v1/appointments", params={"status": "CANCELLED"}).json()
        unknown_status = api_client.get("/v1/appointments", params={"status": "BOGUS"}).json()

        assert by_patient["total"] == 3
        assert len(by_patient["items"]) == 1
        assert by_patient["page"] == 2
        assert cancelled["total"] == 1
        assert unknown_status["total"] == 4

    def test_count_endpoint(self, api_client, db_session):
        start, end = slot_on(2, 10)
        create_appointment(db_session, start, end)
        create_appointment(db_session, start + timedelta(hours=1), patient_id=2, status=AppointmentStatus.CANCELLED)

        by_date = api_client.get(
            "/v1/appointments/doctor/10/count", params={"date": start.date().isoformat()}
        ).json()
        by_datetime = api_client.get(
            "/v1/appointments/doctor/10/count", params={"date": start.isoformat()}
        ).json()

        assert by_date == {"doctorId": 10, "date": start.date().isoformat(), "count": 1}
        assert by_datetime["count"] == 1

    def test_count_endpoint_rejects_bad_date(self, api_client):
        response = api_client.get("/v1/appointments/doctor/10/count", params={"date": "yesterday"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
