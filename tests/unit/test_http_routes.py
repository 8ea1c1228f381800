import pytest
from fastapi.testclient import TestClient

from app.core.rate_limit import RateLimitRule
from app.main import app

ADMIN_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}
MEMBER_HEADERS = {"X-User-Id": "5", "X-User-Role": "member"}


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        store = test_client.app.state.help_chat_store
        store.add_agent("Sarah Mitchell", agent_id="7", sort_order=1)
        store.add_agent("David Okafor", agent_id="8", sort_order=2)
        store.add_agent("Former Agent", agent_id="9", is_active=False, sort_order=3)
        yield test_client


def send(client: TestClient, guest_id: str, message: str, sender: str = "visitor", headers=None):
    return client.post(
        "/api/help-chat/send",
        json={"guestId": guest_id, "message": message, "sender": sender},
        headers=headers or {},
    )


def test_health_and_root(client: TestClient) -> None:
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/api/v1/health").status_code == 200
    assert client.get("/api/v1/health/db").json() == {"db": "memory"}


def test_visitor_send_and_fetch_transcript(client: TestClient) -> None:
    response = send(client, "g1", "  Where is my order?  ")

    assert response.status_code == 200
    body = response.json()
    assert body["guestId"] == "g1"
    assert body["message"] == "Where is my order?"
    assert body["sender"] == "visitor"

    transcript = client.get("/api/help-chat/conversation/g1").json()
    assert transcript["guestId"] == "g1"
    assert [item["message"] for item in transcript["messages"]] == ["Where is my order?"]
    assert transcript["assignedAgent"] is None


def test_unknown_visitor_transcript_is_empty(client: TestClient) -> None:
    transcript = client.get("/api/help-chat/conversation/nobody").json()

    assert transcript == {"guestId": "nobody", "messages": [], "assignedAgent": None}


def test_send_rejects_blank_messages(client: TestClient) -> None:
    assert send(client, "g1", "   ").status_code == 400
    assert send(client, "g1", "").status_code == 422


def test_admin_send_requires_admin_identity(client: TestClient) -> None:
    assert send(client, "g1", "hello", sender="admin").status_code == 401
    assert send(client, "g1", "hello", sender="admin", headers=MEMBER_HEADERS).status_code == 403

    response = send(client, "g1", "hello", sender="admin", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["receiverId"] == "1"


def test_system_sender_is_forbidden(client: TestClient) -> None:
    assert send(client, "g1", "hello", sender="system").status_code == 403


def test_send_is_rate_limited(client: TestClient) -> None:
    client.app.state.rate_limit_rule = RateLimitRule(limit=2, window_seconds=60)

    responses = [send(client, "g1", f"message {index}") for index in range(3)]

    assert [response.status_code for response in responses] == [200, 200, 429]
    assert 1 <= int(responses[-1].headers["Retry-After"]) <= 60


@pytest.mark.parametrize(
    "path",
    [
        "/api/admin/help-chat/conversations",
        "/api/admin/help-chat/conversation/g1",
        "/api/admin/support-agents",
        "/api/admin/help-chat-settings",
    ],
)
def test_admin_endpoints_require_admin_role(client: TestClient, path: str) -> None:
    assert client.get(path).status_code == 401
    assert client.get(path, headers=MEMBER_HEADERS).status_code == 403
    assert client.get(path, headers=ADMIN_HEADERS).status_code == 200


def test_moderator_and_customer_service_are_admin_class(client: TestClient) -> None:
    for role in ("moderator", "customer_service"):
        response = client.get(
            "/api/admin/support-agents",
            headers={"X-User-Id": "3", "X-User-Role": role},
        )
        assert response.status_code == 200


def test_support_agents_are_listed_in_order(client: TestClient) -> None:
    agents = client.get("/api/admin/support-agents", headers=ADMIN_HEADERS).json()

    assert [agent["id"] for agent in agents] == ["7", "8", "9"]
    assert agents[2]["isActive"] is False
    assert "avatarUrl" in agents[0]


def test_admin_conversation_marks_messages_read(client: TestClient) -> None:
    send(client, "g1", "first")
    send(client, "g1", "second")

    [summary] = client.get("/api/admin/help-chat/conversations", headers=ADMIN_HEADERS).json()
    assert summary["unreadCount"] == 2
    assert summary["messageCount"] == 2
    assert summary["lastMessage"] == "second"

    detail = client.get("/api/admin/help-chat/conversation/g1", headers=ADMIN_HEADERS).json()
    assert detail["isActive"] is True
    assert [item["message"] for item in detail["messages"]] == ["first", "second"]

    [summary] = client.get("/api/admin/help-chat/conversations", headers=ADMIN_HEADERS).json()
    assert summary["unreadCount"] == 0


def test_conversation_list_is_newest_first(client: TestClient) -> None:
    send(client, "g1", "older")
    send(client, "g2", "newer")

    summaries = client.get("/api/admin/help-chat/conversations", headers=ADMIN_HEADERS).json()

    assert [item["guestId"] for item in summaries] == ["g2", "g1"]


def test_settings_read_and_update(client: TestClient) -> None:
    settings = client.get("/api/admin/help-chat-settings", headers=ADMIN_HEADERS).json()
    assert settings["assignmentMode"] == "auto"
    assert settings["maxActiveChatsPerAgent"] == 5

    response = client.put(
        "/api/admin/help-chat-settings",
        json={"assignmentMode": "manual", "workingHoursOnly": True},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["assignmentMode"] == "manual"
    assert response.json()["workingHoursOnly"] is True
    assert response.json()["maxActiveChatsPerAgent"] == 5

    settings = client.get("/api/admin/help-chat-settings", headers=ADMIN_HEADERS).json()
    assert settings["assignmentMode"] == "manual"


def test_settings_update_rejects_bad_values(client: TestClient) -> None:
    bad_mode = client.put(
        "/api/admin/help-chat-settings",
        json={"assignmentMode": "sometimes"},
        headers=ADMIN_HEADERS,
    )
    bad_capacity = client.put(
        "/api/admin/help-chat-settings",
        json={"maxActiveChatsPerAgent": 0},
        headers=ADMIN_HEADERS,
    )
    forbidden = client.put(
        "/api/admin/help-chat-settings",
        json={"assignmentMode": "manual"},
        headers=MEMBER_HEADERS,
    )

    assert bad_mode.status_code == 422
    assert bad_capacity.status_code == 422
    assert forbidden.status_code == 403


def test_display_only_settings_are_stored_and_served(client: TestClient) -> None:
    response = client.put(
        "/api/admin/help-chat-settings",
        json={"estimatedWaitTime": "2 minutes", "showQueuePosition": True},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200

    settings = client.get("/api/admin/help-chat-settings", headers=ADMIN_HEADERS).json()
    assert settings["estimatedWaitTime"] == "2 minutes"
    assert settings["showQueuePosition"] is True
    assert settings["assignmentMode"] == "auto"
