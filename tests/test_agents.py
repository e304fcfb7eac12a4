import base64

import pytest
from conftest import make_whatsapp_config
from sqlalchemy import inspect

from wacrm.database import engine
from wacrm.models import Agent, User, WhatsAppConfiguration, WhatsAppMessageLog
from wacrm.services.message_store import log_whatsapp_message


@pytest.fixture
def foreign_keys():
    with engine.connect() as connection:
        connection.exec_driver_sql("PRAGMA foreign_keys=ON")
    yield
    with engine.connect() as connection:
        connection.exec_driver_sql("PRAGMA foreign_keys=OFF")


def add_agent(client, admin, **overrides):
    payload = {
        "agent_name": "Acme Store",
        "email": "acme@example.com",
        "temp_password": "temporary-pass",
        "business_type": "product",
    }
    payload.update(overrides)
    return client.post("/add-agent", json=payload, headers=admin.headers)


def test_add_agent_creates_login_tenant_and_tables(client, db, admin):
    response = add_agent(client, admin)

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "agent"
    prefix = body["agent"]["agent_prefix"]
    assert prefix.startswith("agt_") and len(prefix) == 8
    assert body["agent"]["credits"] == 0
    assert body["whatsapp_config"]["info"].startswith("WhatsApp configuration not provided")

    tables = set(inspect(engine).get_table_names())
    assert f"{prefix}_customers" in tables
    assert f"{prefix}_orders_invoices" in tables
    assert f"{prefix}_inventory_items" in tables


def test_add_agent_with_whatsapp_details(client, db, admin):
    response = add_agent(
        client,
        admin,
        whatsapp_number="+15550001111",
        webhook_url="https://bot.example.com/acme",
        api_key="secret-token-1234",
        phone_number_id="555",
    )

    config = response.json()["whatsapp_config"]
    assert config["whatsapp_number"] == "+15550001111"
    assert config["api_key"].endswith("1234")
    assert config["api_key"].startswith("*")
    assert db.query(WhatsAppConfiguration).count() == 1


def test_add_agent_validation(client, admin):
    assert add_agent(client, admin, email=None).json()["detail"] == (
        "agent_name, email, and temp_password are required"
    )
    assert add_agent(client, admin, business_type="wholesale").json()["detail"] == (
        "business_type must be 'product' or 'service'"
    )
    assert add_agent(client, admin, temp_password="short").status_code == 400


def test_add_agent_requires_admin(client, agent):
    assert add_agent(client, agent).status_code == 403


def test_add_credits_updates_balance(client, db, admin, agent):
    response = client.post("/add-credits", json={"agent_id": agent.agent_id, "amount": 5}, headers=admin.headers)

    assert response.json() == {"success": True, "message": "Credits added successfully", "credits": 15.0}


def test_add_credits_rejects_non_positive_amounts(client, admin, agent):
    response = client.post("/add-credits", json={"agent_id": agent.agent_id, "amount": -1}, headers=admin.headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid input: agent_id and positive amount required"


def test_update_agent_records_changes(client, db, admin, agent):
    response = client.put(
        "/update-agent",
        json={"agent_id": agent.agent_id, "agent_name": "Renamed", "business_type": "service"},
        headers=admin.headers,
    )

    body = response.json()
    assert body["changes_made"] == ["name", "business_type"]
    assert body["agent"]["user_name"] == "Renamed"
    assert body["agent"]["business_type"] == "service"


def test_update_agent_needs_number_for_new_whatsapp_config(client, admin, agent):
    response = client.put(
        "/update-agent", json={"agent_id": agent.agent_id, "api_key": "abc"}, headers=admin.headers
    )
    assert response.status_code == 400


def test_get_agents_lists_every_agent(client, admin, agent, other_agent):
    agents = client.get("/get-agents", headers=admin.headers).json()["agents"]
    assert {a["agent_prefix"] for a in agents} == {"agt_test", "agt_othr"}


def test_delete_agent_removes_everything(client, db, admin, agent):
    response = client.delete(f"/delete-agent/{agent.agent_id}", headers=admin.headers)

    assert response.json()["agent_prefix"] == "agt_test"
    db.expire_all()
    assert db.query(Agent).count() == 0
    assert db.query(User).filter(User.id == agent.user_id).first() is None
    assert not [t for t in inspect(engine).get_table_names() if t.startswith("agt_test_")]


def test_delete_agent_with_message_history(client, db, foreign_keys, admin, agent):
    make_whatsapp_config(db, agent)
    log_whatsapp_message(db, agent.user_id, agent.agent_id, "+14155550100", "text")

    response = client.delete(f"/delete-agent/{agent.agent_id}", headers=admin.headers)

    assert response.status_code == 200
    db.expire_all()
    assert db.query(Agent).count() == 0
    assert db.query(WhatsAppMessageLog).count() == 0
    assert db.query(WhatsAppConfiguration).count() == 0
    assert not [t for t in inspect(engine).get_table_names() if t.startswith("agt_test_")]


def test_delete_unknown_agent_is_404(client, admin):
    assert client.delete("/delete-agent/999", headers=admin.headers).status_code == 404


def test_agent_profile_and_details_update(client, agent):
    updated = client.put(
        "/update-agent-details",
        json={
            "user_updates": {"name": "Acme Ltd"},
            "agent_updates": {"address": "1 Main St", "website": "https://acme.example.com"},
        },
        headers=agent.headers,
    )
    assert updated.json()["success"] is True

    profile = client.get("/get-agent-profile", headers=agent.headers).json()["agent"]
    assert profile["name"] == "Acme Ltd"
    assert profile["address"] == "1 Main St"
    assert profile["website"] == "https://acme.example.com"
    assert profile["whatsapp_number"] == ""


def test_update_agent_details_rejects_unknown_fields(client, agent):
    response = client.put(
        "/update-agent-details", json={"agent_updates": {"credits": 1000}}, headers=agent.headers
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Fields cannot be updated: credits"


def test_profile_requires_an_agent(client, admin):
    response = client.get("/get-agent-profile", headers=admin.headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Agent not found"


def test_upload_invoice_template_stores_image(client, db, r2, agent):
    image = base64.b64encode(b"\x89PNG fake image").decode()

    response = client.post(
        "/upload-invoice-template",
        json={"fileBase64": f"data:image/png;base64,{image}", "fileType": "image/png", "fileName": "bg.png"},
        headers=agent.headers,
    )

    assert response.json()["filePath"] == "agt_test/invoice_template/invoice-template.png"
    assert r2.objects["agt_test/invoice_template/invoice-template.png"][0] == b"\x89PNG fake image"
    db.expire_all()
    assert db.get(Agent, agent.agent_id).invoice_template_path == response.json()["filePath"]


def test_upload_invoice_template_rejects_other_types(client, agent):
    response = client.post(
        "/upload-invoice-template",
        json={"fileBase64": "aGVsbG8=", "fileType": "application/pdf"},
        headers=agent.headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Only PNG and JPEG images are allowed"


def test_update_template_path(client, db, agent):
    response = client.put(
        "/update-agent-template-path", json={"invoice_template_path": "agt_test/custom.png"}, headers=agent.headers
    )
    assert response.json()["success"] is True
    db.expire_all()
    assert db.get(Agent, agent.agent_id).invoice_template_path == "agt_test/custom.png"
