from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.domain.reminders.router import get_reminder_scheduler
from app.domain.reminders.scheduler import ReminderScheduler
from app.main import app
from app.models import Appointment
from app.security_utils import create_access_token
from app.services.notification_service import get_dispatcher

# Far enough ahead that the real clock never turns it into a same-day booking
BOOKING_DATE = "2030-01-07"


@pytest.fixture
def scheduler(session_factory, dispatcher, clock):
    return ReminderScheduler(dispatcher, session_factory=session_factory, clock=clock)


@pytest.fixture
def client(db_session, dispatcher, scheduler):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_reminder_scheduler] = lambda: scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def _booking(clinic, **overrides):
    body = {
        "doctorId": clinic["doctor"].id,
        "hospitalId": clinic["hospital"].id,
        "appointmentTypeId": clinic["service"].id,
        "date": BOOKING_DATE,
        "time": "10:00",
    }
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").status_code == 200


def test_requests_without_token_are_rejected(client):
    assert client.get("/wallet").status_code in (401, 403)


def test_invalid_token_is_rejected(client):
    response = client.get("/wallet", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_book_appointment_and_read_wallet(client, clinic, factory):
    patient = factory.patient(balance="100")

    response = client.post("/appointments", json=_booking(clinic), headers=_auth(patient))

    assert response.status_code == 201
    body = response.json()
    assert body["time"] == "10:00 AM"
    assert body["queueNumber"] == "K001"
    assert body["status"] == "Upcoming"
    assert body["doctorName"]["en"] == "Karim"

    wallet = client.get("/wallet", headers=_auth(patient)).json()
    assert Decimal(str(wallet["balance"])) == Decimal("50")


def test_conflict_answers_with_details(client, clinic, factory):
    patient = factory.patient(balance="100")
    client.post("/appointments", json=_booking(clinic), headers=_auth(patient))

    response = client.post("/appointments", json=_booking(clinic, time="10:15"), headers=_auth(patient))

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "Schedule Conflict"
    assert body["conflictDetails"]["diffMinutes"] == 15
    assert body["conflictDetails"]["isDuplicate"] is False


def test_insufficient_funds_is_a_client_error(client, clinic, factory, db_session):
    patient = factory.patient(balance="10")

    response = client.post("/appointments", json=_booking(clinic), headers=_auth(patient))

    assert response.status_code == 400
    assert "error" in response.json()
    assert db_session.query(Appointment).count() == 0


def test_malformed_booking_time_is_rejected(client, clinic, factory):
    patient = factory.patient(balance="100")
    response = client.post("/appointments", json=_booking(clinic, time="quarter past"), headers=_auth(patient))
    assert response.status_code == 422


def test_next_slot_reports_unavailable_day(client, clinic, factory):
    patient = factory.patient()
    other = factory.hospital("Other")

    response = client.get(
        f"/appointments/availability/doctor/{clinic['doctor'].id}",
        params={"date": BOOKING_DATE, "appointmentTypeId": clinic["service"].id, "hospitalId": other.id},
        headers=_auth(patient),
    )

    assert response.status_code == 200
    assert response.json()["nextAvailableTime"] is None
    assert response.json()["message"]


def test_reminder_trigger_requires_super_admin(client, factory):
    assert client.post("/reminders/trigger", headers=_auth(factory.patient())).status_code == 403


def test_reminder_trigger_and_status(client, clinic, factory, db_session, dispatcher, clock):
    at = clock() + timedelta(hours=1)
    db_session.add(
        Appointment(
            doctor_id=clinic["doctor"].id,
            patient_id=factory.patient().id,
            hospital_id=clinic["hospital"].id,
            service_type_id=clinic["service"].id,
            date=at.date().isoformat(),
            time="9:00 AM",
            cost=Decimal("50"),
        )
    )
    db_session.commit()
    admin = factory.admin()

    summary = client.post("/reminders/trigger", headers=_auth(admin)).json()

    assert summary["totalSent"] == 1
    assert summary["reminders1h"]["sent"] == 1
    status = client.get("/reminders/status", headers=_auth(admin)).json()
    assert status["lastRun"] == clock().isoformat()
    assert status["lastSummary"]["totalSent"] == 1
