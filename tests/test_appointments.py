from datetime import datetime, timedelta

import pytest
from conftest import add_customer

from wacrm.domain.appointments.service import parse_appointment_date


def in_days(days: int) -> str:
    return (datetime.utcnow() + timedelta(days=days)).replace(microsecond=0).isoformat() + "Z"


def create(client, account, customer_id, /, **overrides):
    body = {"customer_id": customer_id, "title": "Fitting", "appointment_date": in_days(2)}
    body.update(overrides)
    return client.post("/manage-appointments", json=body, headers=account.headers)


def test_create_appointment_defaults(client, db, agent):
    customer_id = add_customer(db, agent)

    response = create(client, agent, customer_id, title="  Fitting  ", notes=" Bring fabric ")

    assert response.status_code == 201
    appointment = response.json()["appointment"]
    assert appointment["title"] == "Fitting"
    assert appointment["status"] == "scheduled"
    assert appointment["duration_minutes"] == 60
    assert appointment["notes"] == "Bring fabric"


@pytest.mark.parametrize(
    "overrides, detail",
    [
        ({"customer_id": "1"}, "Valid customer ID is required"),
        ({"title": " "}, "Appointment title is required"),
        ({"appointment_date": ""}, "Appointment date is required"),
        ({"appointment_date": "2001-01-01T10:00:00Z"}, "Appointment date must be in the future"),
        ({"appointment_date": "next tuesday"}, "Appointment date must be in the future"),
    ],
)
def test_create_appointment_validation(client, db, agent, overrides, detail):
    customer_id = add_customer(db, agent)

    response = create(client, agent, customer_id, **overrides)

    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_create_appointment_for_unknown_customer(client, agent):
    assert create(client, agent, 404).status_code == 404


def test_list_appointments_earliest_first_with_filters(client, db, agent):
    jane = add_customer(db, agent)
    john = add_customer(db, agent, phone="+14155550199", name="John Roe")
    later = create(client, agent, jane, title="Pickup", appointment_date=in_days(5)).json()["appointment"]
    create(client, agent, john, title="Consultation", appointment_date=in_days(1))
    client.put("/manage-appointments", json={"id": later["id"], "status": "confirmed"}, headers=agent.headers)

    listed = client.get("/manage-appointments", headers=agent.headers).json()["appointments"]
    assert [a["title"] for a in listed] == ["Consultation", "Pickup"]

    confirmed = client.get("/manage-appointments", params={"status": "confirmed"}, headers=agent.headers).json()
    assert [a["title"] for a in confirmed["appointments"]] == ["Pickup"]

    searched = client.get("/manage-appointments", params={"search": "roe"}, headers=agent.headers).json()
    assert [a["title"] for a in searched["appointments"]] == ["Consultation"]


def test_update_appointment(client, db, agent):
    appointment = create(client, agent, add_customer(db, agent)).json()["appointment"]

    response = client.put(
        "/manage-appointments",
        json={"id": appointment["id"], "appointment_date": "2030-06-01T09:30:00+02:00", "duration_minutes": 30},
        headers=agent.headers,
    )

    updated = response.json()["appointment"]
    assert updated["appointment_date"].startswith("2030-06-01T07:30:00")
    assert updated["duration_minutes"] == 30


def test_update_appointment_validation(client, db, agent):
    appointment = create(client, agent, add_customer(db, agent)).json()["appointment"]

    status = client.put(
        "/manage-appointments", json={"id": appointment["id"], "status": "late"}, headers=agent.headers
    )
    assert status.json()["detail"] == "Invalid appointment status"

    date = client.put(
        "/manage-appointments", json={"id": appointment["id"], "appointment_date": "soon"}, headers=agent.headers
    )
    assert date.json()["detail"] == "Invalid appointment date"

    missing = client.put("/manage-appointments", json={"id": 999, "status": "completed"}, headers=agent.headers)
    assert missing.status_code == 404


def test_delete_appointment(client, db, agent):
    appointment = create(client, agent, add_customer(db, agent)).json()["appointment"]

    assert client.delete(
        "/manage-appointments", params={"id": appointment["id"]}, headers=agent.headers
    ).json()["success"] is True
    assert client.get("/manage-appointments", headers=agent.headers).json()["appointments"] == []
    assert client.delete("/manage-appointments", params={"id": "x"}, headers=agent.headers).status_code == 400


def test_parse_appointment_date_normalizes_to_utc():
    assert parse_appointment_date("2030-01-01T12:00:00-05:00") == datetime(2030, 1, 1, 17, 0)
    assert parse_appointment_date("2030-01-01T12:00:00") == datetime(2030, 1, 1, 12, 0)
