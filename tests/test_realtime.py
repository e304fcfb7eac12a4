import pytest
from fastapi import WebSocketDisconnect

from wacrm.security_utils import create_access_token
from wacrm.services.realtime import manager


def token_for(account):
    return create_access_token(account.user_id)


def test_inbound_message_is_pushed_to_agent_room(client, configured_agent):
    agent = configured_agent
    payload = {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "metadata": {"phone_number_id": "1000001"},
                            "contacts": [{"wa_id": "14155550100", "profile": {"name": "Jane"}}],
                            "messages": [
                                {"from": "14155550100", "id": "wamid.rt", "type": "text", "text": {"body": "Hi!"}}
                            ],
                        }
                    }
                ]
            }
        ],
    }

    with client.websocket_connect(f"/ws/agents/{agent.agent_id}?token={token_for(agent)}") as websocket:
        assert manager.connection_count(agent.agent_id) == 1
        client.post("/whatsapp-webhook", json=payload)
        event = websocket.receive_json()

    assert event["event"] == "new-message"
    assert event["data"]["message"]["message"] == "Hi!"
    assert event["data"]["message"]["sender_type"] == "customer"
    assert event["data"]["message"]["customer_name"] == "Jane"


def test_socket_for_foreign_agent_is_rejected(client, agent, other_agent):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/agents/{other_agent.agent_id}?token={token_for(agent)}"):
            pass


def test_socket_without_token_is_rejected(client, agent):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/agents/{agent.agent_id}"):
            pass


def test_admin_may_join_any_room(client, admin, agent):
    with client.websocket_connect(f"/ws/agents/{agent.agent_id}?token={token_for(admin)}"):
        assert manager.connection_count(agent.agent_id) == 1
