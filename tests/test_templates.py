from conftest import fetch_all

BODY = {"name": "order_update", "language": "en_US", "components": [{"type": "BODY", "text": "Hi {{1}}"}]}


def create(client, account, **payload):
    body = {"name": "order_update", "body": BODY}
    body.update(payload)
    return client.post("/manage-templates", json=body, headers=account.headers)


def test_create_template_defaults(client, agent):
    response = create(client, agent)

    assert response.status_code == 201
    template = response.json()["template"]
    assert template["category"] == "utility"
    assert template["language"] == "en_US"
    assert template["is_active"] is True
    assert template["body"] == BODY


def test_create_template_validation(client, agent):
    assert create(client, agent, name=" ").json()["detail"] == "Template name is required"
    assert create(client, agent, body="Hi there").json()["detail"] == "Template body is required"
    create(client, agent)
    duplicate = create(client, agent)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Template name already exists"


def test_list_templates_with_search_and_active_filter(client, agent):
    create(client, agent)
    create(client, agent, name="spring_sale", category="marketing", body={"text": "Flash DISCOUNT"}, is_active=False)

    everything = client.get("/manage-templates", headers=agent.headers).json()["templates"]
    assert {t["name"] for t in everything} == {"order_update", "spring_sale"}

    found = client.get("/manage-templates", params={"search": "discount"}, headers=agent.headers).json()
    assert [t["name"] for t in found["templates"]] == ["spring_sale"]

    active = client.get("/manage-templates", params={"is_active": True}, headers=agent.headers).json()
    assert [t["name"] for t in active["templates"]] == ["order_update"]


def test_update_template(client, agent):
    template_id = create(client, agent).json()["template"]["id"]

    response = client.put(
        "/manage-templates", json={"id": template_id, "is_active": False, "category": "marketing"}, headers=agent.headers
    )

    template = response.json()["template"]
    assert template["is_active"] is False
    assert template["category"] == "marketing"
    assert template["name"] == "order_update"


def test_update_template_validation(client, agent):
    first = create(client, agent).json()["template"]["id"]
    create(client, agent, name="other")

    rename = client.put("/manage-templates", json={"id": first, "name": "other"}, headers=agent.headers)
    assert rename.status_code == 409
    bad_body = client.put("/manage-templates", json={"id": first, "body": []}, headers=agent.headers)
    assert bad_body.json()["detail"] == "Template body must be an object"
    assert client.put("/manage-templates", json={"name": "x"}, headers=agent.headers).json()["detail"] == (
        "Template ID is required"
    )
    assert client.put("/manage-templates", json={"id": 999, "category": "x"}, headers=agent.headers).status_code == 404


def test_delete_template(client, db, agent):
    template_id = create(client, agent).json()["template"]["id"]

    assert client.delete("/manage-templates", params={"id": template_id}, headers=agent.headers).json()["success"]
    assert fetch_all(db, agent.tables.templates) == []
    assert client.delete("/manage-templates", params={"id": template_id}, headers=agent.headers).status_code == 404
    assert client.delete("/manage-templates", headers=agent.headers).json()["detail"] == "Valid template ID is required"


def test_templates_are_isolated_per_agent(client, agent, other_agent):
    create(client, agent)
    assert client.get("/manage-templates", headers=other_agent.headers).json()["templates"] == []
    assert create(client, other_agent).status_code == 201
