import pytest
from fastapi.testclient import TestClient

from app.main import app

ADMIN_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        test_client.app.state.help_chat_store.add_agent(
            "Sarah Mitchell", agent_id="7", sort_order=1
        )
        yield test_client


def receive_until(ws, event_type: str, limit: int = 10) -> dict:
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == event_type:
            return frame
    raise AssertionError(f"no {event_type} frame within {limit} frames")


def auth_admin(ws, user_id: str) -> None:
    ws.send_json({"type": "auth", "userId": user_id, "role": "admin"})
    assert ws.receive_json()["type"] == "auth_success"


def assert_no_pending_push(ws) -> None:
    ws.send_text("ping")
    assert ws.receive_json() == {"type": "pong"}


def test_visitor_message_reaches_subscribed_admin(client: TestClient) -> None:
    with client.websocket_connect("/ws") as admin, client.websocket_connect("/ws") as guest:
        auth_admin(admin, "1")

        guest.send_json({"type": "help_chat_auth", "guestId": "g1"})
        assert guest.receive_json() == {"type": "help_chat_auth_success", "guestId": "g1"}
        assert receive_until(admin, "help_chat_guest_online")["guestId"] == "g1"

        admin.send_json({"type": "admin_join_conversation", "guestId": "g1"})
        receive_until(admin, "admin_join_success")

        guest.send_json(
            {
                "type": "help_chat_send_message",
                "guestId": "g1",
                "message": "hello",
                "sender": "visitor",
            }
        )
        pushed = receive_until(admin, "help_chat_message")
        assert pushed["guestId"] == "g1"
        assert pushed["message"] == "hello"
        assert pushed["sender"] == "visitor"
        assert receive_until(guest, "help_chat_message_sent")["messageId"] == pushed["id"]

    response = client.get("/api/admin/help-chat/conversations", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    [entry] = [item for item in response.json() if item["guestId"] == "g1"]
    assert entry["lastMessage"] == "hello"


def test_join_success_goes_only_to_requester(client: TestClient) -> None:
    with client.websocket_connect("/ws") as admin_a, client.websocket_connect("/ws") as admin_b:
        auth_admin(admin_a, "1")
        auth_admin(admin_b, "2")

        admin_a.send_json(
            {"type": "admin_join_conversation", "guestId": "g2", "selectedAgentId": "7"}
        )
        success = admin_a.receive_json()
        assert success["type"] == "admin_join_success"
        assert success["guestId"] == "g2"
        assert success["assignedAgent"]["id"] == "7"
        assert success["assignedAgent"]["name"] == "Sarah Mitchell"

        assert_no_pending_push(admin_b)

    response = client.get(
        "/api/admin/help-chat/conversations",
        headers={"X-User-Id": "2", "X-User-Role": "admin"},
    )
    [entry] = [item for item in response.json() if item["guestId"] == "g2"]
    assert entry["assignedAgentId"] == "7"


def test_leave_clears_assignment_for_every_admin(client: TestClient) -> None:
    with client.websocket_connect("/ws") as admin_a, client.websocket_connect("/ws") as admin_b:
        auth_admin(admin_a, "1")
        auth_admin(admin_b, "2")
        admin_a.send_json(
            {"type": "admin_join_conversation", "guestId": "g3", "selectedAgentId": "7"}
        )
        receive_until(admin_a, "admin_join_success")
        before = client.get("/api/admin/help-chat/conversation/g3", headers=ADMIN_HEADERS)
        assert len(before.json()["messages"]) == 1

        admin_a.send_json({"type": "admin_leave_conversation", "guestId": "g3"})

        cleared_a = receive_until(admin_a, "conversation_assignment_cleared")
        cleared_b = receive_until(admin_b, "conversation_assignment_cleared")
        assert cleared_a["guestId"] == cleared_b["guestId"] == "g3"
        assert cleared_b["previousAgent"]["id"] == "7"
        assert receive_until(admin_a, "admin_leave_success")["guestId"] == "g3"

    after = client.get("/api/admin/help-chat/conversation/g3", headers=ADMIN_HEADERS).json()
    assert after["assignedAgentId"] is None
    assert [message["message"] for message in after["messages"]] == [
        "Sarah Mitchell joined the chat",
        "Sarah Mitchell left the chat",
    ]
    departing = after["messages"][-1]
    assert departing["agentId"] == "7"
    assert departing["isAutoMessage"] is True
    assert departing["sender"] == "admin"


def test_business_error_keeps_socket_open(client: TestClient) -> None:
    with client.websocket_connect("/ws") as admin:
        auth_admin(admin, "1")

        admin.send_json(
            {"type": "admin_join_conversation", "guestId": "g4", "selectedAgentId": "99"}
        )
        error = admin.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "unknown_agent"

        assert_no_pending_push(admin)


def test_binary_frame_is_dropped_and_socket_stays_open(client: TestClient) -> None:
    with client.websocket_connect("/ws") as admin:
        admin.send_bytes(b"\x00\x01")

        assert_no_pending_push(admin)
        auth_admin(admin, "1")
