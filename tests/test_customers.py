from conftest import add_customer, fetch_all

from wacrm.services.message_store import store_message


def create(client, account, **payload):
    body = {"name": "Jane Doe", "phone": "+14155550100"}
    body.update(payload)
    return client.post("/manage-customers", json=body, headers=account.headers)


def test_create_customer_applies_defaults(client, agent):
    response = create(client, agent, name="  Jane Doe  ", email=" jane@example.com ")

    assert response.status_code == 201
    customer = response.json()["customer"]
    assert customer["name"] == "Jane Doe"
    assert customer["email"] == "jane@example.com"
    assert customer["lead_stage"] == "New Lead"
    assert customer["language"] == "en"
    assert customer["ai_enabled"] is True
    assert customer["agent_id"] == agent.agent_id


def test_create_customer_validation(client, agent):
    assert create(client, agent, name=" ").json()["detail"] == "Customer name is required"
    assert create(client, agent, phone="").json()["detail"] == "Customer phone is required"
    assert create(client, agent, lead_stage="Hot").json()["detail"] == "Invalid lead stage"
    assert create(client, agent, interest_stage="Maybe").json()["detail"] == "Invalid interest stage"
    assert create(client, agent, language="fr").json()["detail"] == "Invalid language"


def test_list_customers_with_order_counts(client, db, agent):
    jane = add_customer(db, agent, name="Jane Doe")
    add_customer(db, agent, phone="+14155550199", name="John Roe")
    client.post(
        "/manage-orders",
        json={"customer_id": jane, "items": [{"name": "Mug", "quantity": 1, "price": 8}]},
        headers=agent.headers,
    )

    customers = client.get("/manage-customers", headers=agent.headers).json()["customers"]
    counts = {c["name"]: c["order_count"] for c in customers}
    assert counts == {"Jane Doe": 1, "John Roe": 0}

    found = client.get("/manage-customers", params={"search": "roe"}, headers=agent.headers).json()["customers"]
    assert [c["name"] for c in found] == ["John Roe"]


def test_customers_are_isolated_per_agent(client, db, agent, other_agent):
    add_customer(db, agent)

    assert client.get("/manage-customers", headers=other_agent.headers).json()["customers"] == []


def test_update_customer(client, db, agent):
    customer_id = add_customer(db, agent)

    response = client.put(
        "/manage-customers",
        json={"id": customer_id, "lead_stage": "Contacted", "ai_enabled": False},
        headers=agent.headers,
    )

    customer = response.json()["customer"]
    assert customer["lead_stage"] == "Contacted"
    assert customer["ai_enabled"] is False
    assert customer["name"] == "Jane Doe"


def test_update_customer_validation(client, db, agent):
    customer_id = add_customer(db, agent)

    assert client.put("/manage-customers", json={"name": "X"}, headers=agent.headers).json()["detail"] == (
        "Customer ID is required"
    )
    assert client.put("/manage-customers", json={"id": customer_id}, headers=agent.headers).json()["detail"] == (
        "No fields to update"
    )
    assert client.put(
        "/manage-customers", json={"id": customer_id, "lead_stage": "Cold"}, headers=agent.headers
    ).json()["detail"] == "Invalid lead stage"
    assert client.put("/manage-customers", json={"id": 999, "name": "X"}, headers=agent.headers).status_code == 404


def test_delete_customer_removes_history(client, db, agent):
    customer_id = add_customer(db, agent)
    store_message(db, agent.tables, customer_id, "Hello", "inbound")

    response = client.delete("/manage-customers", params={"id": customer_id}, headers=agent.headers)

    assert response.json()["success"] is True
    assert fetch_all(db, agent.tables.customers) == []
    assert fetch_all(db, agent.tables.messages) == []


def test_delete_customer_validation(client, agent):
    assert client.delete("/manage-customers", params={"id": "abc"}, headers=agent.headers).json()["detail"] == (
        "Valid customer ID is required"
    )
    assert client.delete("/manage-customers", params={"id": 42}, headers=agent.headers).status_code == 404


def test_admin_without_agent_cannot_manage_customers(client, admin):
    response = client.get("/manage-customers", headers=admin.headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Agent not found"
