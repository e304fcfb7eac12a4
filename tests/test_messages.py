from datetime import datetime, timedelta

import pytest
from conftest import add_customer, add_template, fetch_all, make_whatsapp_config
from fastapi import HTTPException

from wacrm.models import Agent, WhatsAppMessageLog
from wacrm.services.outbound import build_template_components, validate_template_button, validate_template_parameter
from wacrm.services.realtime import manager
from wacrm.services.whatsapp_service import WhatsAppAPIError, is_within_free_form_window, normalize_phone


def send(client, account, **payload):
    body = {"user_id": account.user_id, "customer_phone": "+14155550100"}
    body.update(payload)
    return client.post("/send-whatsapp-message", json=body, headers=account.headers)


def credits_of(db, account):
    db.expire_all()
    return db.get(Agent, account.agent_id).credits


# ==================== Free-form messages ====================


def test_text_inside_window_is_sent_and_stored(client, db, whatsapp, configured_agent):
    customer_id = add_customer(db, configured_agent)

    response = send(client, configured_agent, message="Your order shipped")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message_ids"] == ["wamid.1"]
    assert body["stored_messages"] == 1
    assert whatsapp.sent == [{"to": "+14155550100", "type": "text", "content": {"body": "Your order shipped"}}]

    stored = fetch_all(db, configured_agent.tables.messages)
    assert stored[0]["customer_id"] == customer_id
    assert stored[0]["direction"] == "outbound"
    assert stored[0]["sent_by"] == "agent"
    assert stored[0]["is_read"] is True

    log = db.query(WhatsAppMessageLog).one()
    assert log.category == "utility"
    assert log.whatsapp_message_id == "wamid.1"
    assert credits_of(db, configured_agent) == 10.0


def test_ten_digit_numbers_get_us_country_code(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent, phone="4155550100")

    send(client, configured_agent, customer_phone="4155550100", message="Hi")

    assert whatsapp.sent[0]["to"] == "+14155550100"


def test_missing_fields_are_named(client, configured_agent):
    text = send(client, configured_agent)
    assert text.status_code == 400
    assert text.json()["detail"] == "Missing required fields: user_id, customer_phone, message"

    template = send(client, configured_agent, type="template")
    assert template.json()["detail"] == "Missing required fields: user_id, customer_phone, template_name"

    image = send(client, configured_agent, type="image")
    assert image.json()["detail"] == "Missing required fields: user_id, customer_phone, media_id or media_ids"


def test_agents_cannot_send_as_someone_else(client, db, configured_agent, other_agent):
    response = send(client, other_agent, user_id=configured_agent.user_id, message="Hi")
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied"


def test_unknown_customer_is_404(client, configured_agent):
    response = send(client, configured_agent, message="Hi")
    assert response.status_code == 404
    assert response.json()["detail"] == "Customer not found"


def test_sender_without_whatsapp_config_is_404(client, db, agent):
    add_customer(db, agent)
    response = send(client, agent, message="Hi")
    assert response.status_code == 404
    assert response.json()["detail"] == "WhatsApp configuration not found"


def test_whatsapp_failures_become_500(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)
    whatsapp.send_error = WhatsAppAPIError("Recipient not on WhatsApp", 400, {"error": {"code": 131026}})

    response = send(client, configured_agent, message="Hi")

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "Failed to send message"
    assert fetch_all(db, configured_agent.tables.messages) == []


# ==================== 24 hour window ====================


def test_outside_window_falls_back_to_category_template(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent, last_message_hours_ago=30)
    add_template(db, configured_agent, "order_update", {"name": "order_update_v2", "text": "Update"})

    response = send(client, configured_agent, message="Are you there?")

    assert response.status_code == 200
    assert whatsapp.sent[0]["type"] == "template"
    assert whatsapp.sent[0]["content"]["name"] == "order_update_v2"
    assert fetch_all(db, configured_agent.tables.messages)[0]["message"] == "order_update_v2"
    assert db.query(WhatsAppMessageLog).one().message_type == "template"
    assert credits_of(db, configured_agent) == pytest.approx(9.99)


def test_outside_window_without_template_is_rejected(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent, last_message_hours_ago=None)
    add_template(db, configured_agent, "promo", {"text": "Sale"}, category="marketing")
    add_template(db, configured_agent, "old_utility", {"text": "Old"}, is_active=False)

    response = send(client, configured_agent, message="Hello")

    assert response.status_code == 400
    assert response.json()["detail"] == "Template required after 24h window, none available"
    assert whatsapp.sent == []


def test_templates_need_credits(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)
    agent = db.get(Agent, configured_agent.agent_id)
    agent.credits = 0
    db.commit()

    response = send(client, configured_agent, type="template", template_name="welcome_template")

    assert response.status_code == 400
    assert response.json()["detail"] == "Insufficient credits for template message"
    assert whatsapp.sent == []


def test_promotional_send_uses_template_inside_window(client, db, monkeypatch, whatsapp, configured_agent):
    add_customer(db, configured_agent, last_message_hours_ago=1)
    statuses = []

    async def record_status(agent_id, data):
        statuses.append((agent_id, data))

    monkeypatch.setattr(manager, "emit_agent_status", record_status)

    response = send(
        client, configured_agent, message="Spring sale!", is_promotional=True, template_name="spring_sale"
    )

    assert response.status_code == 200
    assert whatsapp.sent[0]["type"] == "template"
    assert whatsapp.sent[0]["content"]["name"] == "spring_sale"
    assert db.query(WhatsAppMessageLog).one().message_type == "template"
    assert credits_of(db, configured_agent) == pytest.approx(9.99)
    assert statuses[0][0] == configured_agent.agent_id
    assert statuses[0][1]["type"] == "credits_updated"
    assert statuses[0][1]["credits"] == pytest.approx(9.99)


def test_promotional_send_needs_template_name(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)

    response = send(client, configured_agent, message="Spring sale!", is_promotional=True)

    assert response.status_code == 400
    assert response.json()["detail"] == "template_name required"
    assert whatsapp.sent == []
    assert credits_of(db, configured_agent) == 10.0


def test_free_form_window_closes_after_exactly_24_hours():
    last_message = datetime(2024, 1, 1, 9, 0)

    assert is_within_free_form_window(last_message, now=last_message + timedelta(hours=24))
    assert not is_within_free_form_window(last_message, now=last_message + timedelta(hours=24, seconds=1))
    assert not is_within_free_form_window(None, now=last_message)


def test_explicit_template_with_parameters(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)

    response = send(
        client,
        configured_agent,
        type="template",
        template_name="order_confirmation",
        category="marketing",
        template_params=[{"type": "text", "text": "Jane"}],
        template_buttons=[{"sub_type": "quick_reply", "index": 0, "payload": "YES"}],
    )

    assert response.status_code == 200
    template = whatsapp.sent[0]["content"]
    assert template["name"] == "order_confirmation"
    assert template["components"][0] == {"type": "body", "parameters": [{"type": "text", "text": "Jane"}]}
    assert template["components"][1]["sub_type"] == "quick_reply"
    assert db.query(WhatsAppMessageLog).one().category == "marketing"


def test_invalid_template_parameter_is_rejected(client, db, configured_agent):
    add_customer(db, configured_agent)
    response = send(
        client,
        configured_agent,
        type="template",
        template_name="order_confirmation",
        template_params=[{"type": "currency", "currency": {"code": "USD"}}],
    )
    assert response.status_code == 400
    assert "currency parameter missing required fields" in response.json()["detail"]


# ==================== Media ====================


def test_image_is_mirrored_and_sent_with_caption(client, db, r2, whatsapp, configured_agent):
    add_customer(db, configured_agent)
    whatsapp.add_media("m-1", b"jpeg", "image/jpeg")

    response = send(client, configured_agent, type="image", media_id="m-1", caption="New arrivals")

    assert response.status_code == 200
    assert whatsapp.sent[0]["content"] == {"id": "m-1", "caption": "New arrivals"}
    stored = fetch_all(db, configured_agent.tables.messages)[0]
    assert stored["media_type"] == "image"
    assert stored["media_url"].startswith("https://media.example.com/agt_test/outgoing/")
    assert len(r2.objects) == 1


def test_multiple_images_send_one_message_each(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)
    whatsapp.add_media("m-1")
    whatsapp.add_media("m-2")

    body = send(client, configured_agent, type="image", media_ids=["m-1", "m-2"]).json()

    assert body["message_ids"] == ["wamid.1", "wamid.2"]
    assert len(fetch_all(db, configured_agent.tables.messages)) == 2


def test_multiple_documents_are_rejected(client, db, configured_agent):
    add_customer(db, configured_agent)
    response = send(client, configured_agent, type="document", media_ids=["d-1", "d-2"])
    assert response.json()["detail"] == "Multiple media sending is only supported for images."


def test_media_format_must_match_type(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)
    whatsapp.add_media("v-1", b"mp4", "video/mp4")

    response = send(client, configured_agent, type="image", media_id="v-1")

    assert response.status_code == 400
    assert response.json()["detail"] == "Media format mismatch: expected image, got video"


def test_media_cannot_be_sent_outside_window(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent, last_message_hours_ago=30)
    add_template(db, configured_agent, "fallback", {"text": "Hi"})
    whatsapp.add_media("m-1")

    response = send(client, configured_agent, type="image", media_id="m-1")

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Media messages cannot be sent using templates.")


# ==================== Chatbot ====================


def test_chatbot_reply_requires_secret(client, configured_agent):
    response = client.post(
        "/chatbot-reply",
        json={"secret": "wrong", "user_id": configured_agent.user_id, "customer_phone": "+1", "message": "x"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"


def test_chatbot_reply_is_sent_and_stored(client, db, whatsapp, configured_agent):
    add_customer(db, configured_agent)

    response = client.post(
        "/chatbot-reply",
        json={
            "secret": "test-chatbot-secret",
            "user_id": configured_agent.user_id,
            "customer_phone": "+14155550100",
            "message": "We open at 9am",
        },
    )

    assert response.json() == {"success": True, "message_id": "wamid.1"}
    stored = fetch_all(db, configured_agent.tables.messages)[0]
    assert stored["sent_by"] == "chatbot"
    assert stored["message"] == "We open at 9am"
    assert db.query(WhatsAppMessageLog).one().category == "chatbot"


def test_bot_context(client, db, configured_agent, other_agent):
    customer_id = add_customer(db, configured_agent, lead_stage="Contacted", interest_stage="Browsing")

    response = client.get(
        f"/bot-context/{customer_id}",
        params={"agentId": configured_agent.agent_id},
        headers=configured_agent.headers,
    )
    assert response.json() == {
        "aiEnabled": True,
        "leadStage": "Contacted",
        "interestStage": "Browsing",
        "conversionStage": None,
    }

    foreign = client.get(
        f"/bot-context/{customer_id}", params={"agentId": configured_agent.agent_id}, headers=other_agent.headers
    )
    assert foreign.status_code == 403


# ==================== Helpers ====================


def test_normalize_phone():
    assert normalize_phone("(415) 555-0100") == "+14155550100"
    assert normalize_phone("+44 20 7946 0958") == "+442079460958"
    with pytest.raises(ValueError):
        normalize_phone("12345")


def test_template_components_merge_media_into_header():
    components = build_template_components(
        header_params=[{"type": "text", "text": "Spring"}],
        media_header={"type": "image", "link": "https://cdn.example.com/banner.png"},
    )
    assert components == [
        {
            "type": "header",
            "parameters": [
                {"type": "text", "text": "Spring"},
                {"type": "image", "image": {"link": "https://cdn.example.com/banner.png"}},
            ],
        }
    ]


def test_parameter_and_button_validation():
    validate_template_parameter(
        {"type": "currency", "currency": {"code": "USD", "amount_1000": 1500, "fallback_value": "$1.50"}}
    )
    with pytest.raises(HTTPException) as excinfo:
        validate_template_parameter({"type": "date_time", "date_time": {}}, header=True)
    assert excinfo.value.detail == "date_time header parameter missing fallback_value"

    with pytest.raises(HTTPException) as excinfo:
        validate_template_button({"sub_type": "cta_url", "index": 1})
    assert excinfo.value.detail == "cta_url button missing url"


def test_second_phone_number_routes_to_its_own_config(client, db, whatsapp, configured_agent, other_agent):
    make_whatsapp_config(db, other_agent, phone_number_id="2000002")
    add_customer(db, other_agent)

    response = send(client, other_agent, message="Hello from the other shop")

    assert response.status_code == 200
    assert fetch_all(db, other_agent.tables.messages)[0]["message"] == "Hello from the other shop"
    assert fetch_all(db, configured_agent.tables.messages) == []
