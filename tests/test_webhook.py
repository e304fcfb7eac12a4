from conftest import add_customer, fetch_all

from wacrm.models import WhatsAppMessageLog
from wacrm.services.inbound import describe_message
from wacrm.services.message_store import log_whatsapp_message


def webhook_payload(messages=None, statuses=None, phone_number_id="1000001", contacts=None):
    value = {"messaging_product": "whatsapp", "metadata": {"phone_number_id": phone_number_id}}
    if messages is not None:
        value["messages"] = messages
        value["contacts"] = contacts or [{"wa_id": "14155550100", "profile": {"name": "Jane Doe"}}]
    if statuses is not None:
        value["statuses"] = statuses
    return {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": value}]}]}


def text_message(body="Hello there", sender="14155550100", message_id="wamid.in.1"):
    return {"from": sender, "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


# ==================== Verification ====================


def test_verification_echoes_challenge(client):
    response = client.get(
        "/whatsapp-webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    assert response.status_code == 200
    assert response.text == "12345"


def test_verification_with_wrong_token_is_forbidden(client):
    response = client.get(
        "/whatsapp-webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
    )
    assert response.status_code == 403


def test_plain_get_describes_endpoint(client):
    assert client.get("/whatsapp-webhook").text == "WhatsApp Webhook Endpoint"


# ==================== Inbound messages ====================


def test_inbound_text_creates_customer_and_message(client, db, configured_agent, ai_webhook):
    agent = configured_agent

    response = client.post("/whatsapp-webhook", json=webhook_payload([text_message()]))

    assert response.status_code == 200
    assert response.text == "OK"
    customers = fetch_all(db, agent.tables.customers)
    assert len(customers) == 1
    assert customers[0]["name"] == "Jane Doe"
    assert customers[0]["phone"] == "14155550100"
    assert customers[0]["lead_stage"] == "New Lead"
    assert customers[0]["ai_enabled"] is True

    messages = fetch_all(db, agent.tables.messages)
    assert len(messages) == 1
    assert messages[0]["message"] == "Hello there"
    assert messages[0]["direction"] == "inbound"
    assert messages[0]["is_read"] is False
    assert messages[0]["whatsapp_message_id"] == "wamid.in.1"

    assert ai_webhook == [
        {"customer_id": customers[0]["id"], "message": "Hello there", "url": "https://bot.example.com/hook"}
    ]


def test_inbound_message_reuses_existing_customer(client, db, configured_agent):
    agent = configured_agent
    customer_id = add_customer(db, agent, phone="14155550100", last_message_hours_ago=48)

    client.post("/whatsapp-webhook", json=webhook_payload([text_message()]))

    customers = fetch_all(db, agent.tables.customers)
    assert [c["id"] for c in customers] == [customer_id]
    assert fetch_all(db, agent.tables.messages)[0]["customer_id"] == customer_id


def test_ai_disabled_customers_are_not_forwarded(client, db, configured_agent, ai_webhook):
    add_customer(db, configured_agent, phone="14155550100", ai_enabled=False)

    client.post("/whatsapp-webhook", json=webhook_payload([text_message()]))

    assert ai_webhook == []
    assert len(fetch_all(db, configured_agent.tables.messages)) == 1


def test_inbound_image_is_mirrored_to_storage(client, db, r2, whatsapp, configured_agent):
    whatsapp.add_media("img-1", b"jpeg-bytes", "image/jpeg")
    message = {
        "from": "14155550100",
        "id": "wamid.in.2",
        "timestamp": "1700000000",
        "type": "image",
        "image": {"id": "img-1", "mime_type": "image/jpeg", "caption": "Look at this"},
    }

    client.post("/whatsapp-webhook", json=webhook_payload([message]))

    stored = fetch_all(db, configured_agent.tables.messages)[0]
    assert stored["media_type"] == "image"
    assert stored["caption"] == "Look at this"
    assert stored["message"] == "Look at this"
    assert stored["media_url"].startswith("https://media.example.com/agt_test/incoming/")
    key = stored["media_url"].split("https://media.example.com/")[1]
    assert r2.objects[key] == (b"jpeg-bytes", "image/jpeg")


def test_inbound_media_is_kept_when_download_fails(client, db, configured_agent):
    message = {"from": "14155550100", "id": "wamid.in.3", "type": "document", "document": {"id": "missing"}}

    client.post("/whatsapp-webhook", json=webhook_payload([message]))

    stored = fetch_all(db, configured_agent.tables.messages)[0]
    assert stored["message"] == "[DOCUMENT] Media file"
    assert stored["media_url"] is None


def test_unknown_phone_number_id_is_ignored(client, db, configured_agent):
    response = client.post("/whatsapp-webhook", json=webhook_payload([text_message()], phone_number_id="999"))

    assert response.status_code == 200
    assert fetch_all(db, configured_agent.tables.messages) == []


def test_invalid_payload_is_rejected(client):
    assert client.post("/whatsapp-webhook", json={"object": "page"}).status_code == 400
    assert client.post("/whatsapp-webhook", content=b"not json").status_code == 400


# ==================== Status callbacks ====================


def test_status_callback_updates_delivery_log(client, db, configured_agent):
    log_whatsapp_message(
        db, configured_agent.user_id, configured_agent.agent_id, "+14155550100", "text", whatsapp_message_id="wamid.out.1"
    )
    failure = {"code": 131047, "title": "Re-engagement message"}

    client.post(
        "/whatsapp-webhook",
        json=webhook_payload(statuses=[{"id": "wamid.out.1", "status": "failed", "errors": [failure]}]),
    )

    db.expire_all()
    log = db.query(WhatsAppMessageLog).one()
    assert log.status == "failed"
    assert log.error_message == "Re-engagement message"


# ==================== Message descriptions ====================


def test_describe_interactive_and_button_replies():
    list_reply = {"type": "interactive", "interactive": {"type": "list_reply", "list_reply": {"title": "Option B"}}}
    assert describe_message(list_reply) == ("Option B", "none", None)

    empty_button = {"type": "interactive", "interactive": {"type": "button_reply", "button_reply": {}}}
    assert describe_message(empty_button)[0] == "Button clicked"

    template_button = {"type": "button", "button": {"payload": "STOP", "text": "Stop promotions"}}
    assert describe_message(template_button)[0] == "Stop promotions"


def test_describe_stickers_and_unsupported_types():
    assert describe_message({"type": "sticker", "sticker": {"id": "s1"}}) == (
        "[STICKER] Sticker message",
        "sticker",
        None,
    )
    assert describe_message({"type": "location"})[0] == "[LOCATION] Unsupported message type"
    flow = {"type": "interactive", "interactive": {"type": "nfm_reply"}}
    assert describe_message(flow)[0] == "[INTERACTIVE_NFM_REPLY] Interactive message"
