import asyncio
import json

import pytest

from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.infra.realtime.events import ClientEventType
from app.infra.realtime.hub import ConnectionHub
from app.infra.store.memory import InMemoryHelpChatStore
from app.services.assignment_policy import AutoAssignmentPolicy, HelpChatSettingsService
from app.services.assignment_service import AssignmentCoordinator
from app.services.conversation_registry import ConversationRegistry
from app.services.help_chat_dispatcher import HelpChatDispatcher
from app.services.help_chat_service import HelpChatService
from app.services.session_auth import SessionAuthenticator


class FakeTransport:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send_text(self, data: str) -> None:
        await asyncio.sleep(0)
        self.frames.append(json.loads(data))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, event_type: str) -> list[dict]:
        return [frame for frame in self.frames if frame["type"] == event_type]


def build_dispatcher(
    rule: RateLimitRule = RateLimitRule(limit=100, window_seconds=60),
    max_message_length: int = 2000,
) -> tuple[HelpChatDispatcher, InMemoryHelpChatStore]:
    store = InMemoryHelpChatStore()
    store.add_agent("Sarah", agent_id="7")
    hub = ConnectionHub()
    registry = ConversationRegistry(store, hub)
    dispatcher = HelpChatDispatcher(
        hub=hub,
        authenticator=SessionAuthenticator(hub, registry),
        messages=HelpChatService(registry, max_message_length=max_message_length),
        coordinator=AssignmentCoordinator(
            registry, AutoAssignmentPolicy(store), HelpChatSettingsService(store)
        ),
        limiter=InMemoryRateLimiter(),
        rate_limit=rule,
    )
    return dispatcher, store


def frame(event_type: str, **payload) -> str:
    return json.dumps({"type": event_type, **payload})


async def connect_admin(dispatcher: HelpChatDispatcher, user_id: str = "1"):
    connection = dispatcher.hub.register(FakeTransport())
    await dispatcher.handle_raw(connection, frame("auth", userId=user_id, role="admin"))
    return connection


async def connect_guest(dispatcher: HelpChatDispatcher, guest_id: str = "g1"):
    connection = dispatcher.hub.register(FakeTransport())
    await dispatcher.handle_raw(connection, frame("help_chat_auth", guestId=guest_id))
    return connection


def test_handler_table_covers_every_client_event() -> None:
    dispatcher, _ = build_dispatcher()

    assert set(dispatcher.handlers) == set(ClientEventType)


@pytest.mark.asyncio
async def test_plain_text_ping_gets_pong() -> None:
    dispatcher, _ = build_dispatcher()
    connection = dispatcher.hub.register(FakeTransport())

    await dispatcher.handle_raw(connection, "ping")
    await dispatcher.handle_raw(connection, frame("ping"))

    assert connection.transport.types() == ["pong", "pong"]


@pytest.mark.asyncio
async def test_malformed_and_unknown_frames_are_dropped() -> None:
    dispatcher, _ = build_dispatcher()
    connection = dispatcher.hub.register(FakeTransport())

    await dispatcher.handle_raw(connection, "{not json")
    await dispatcher.handle_raw(connection, frame("join_room", room="lobby"))

    assert connection.transport.frames == []
    assert dispatcher.hub.get(connection.id) is connection


@pytest.mark.asyncio
async def test_invalid_payload_reports_error_and_keeps_connection() -> None:
    dispatcher, _ = build_dispatcher()
    connection = dispatcher.hub.register(FakeTransport())

    await dispatcher.handle_raw(connection, frame("help_chat_auth"))

    [error] = connection.transport.of_type("error")
    assert error["code"] == "invalid_payload"
    assert error["context"]["eventType"] == "help_chat_auth"
    assert "guestId" in error["context"]["fields"]

    await dispatcher.handle_raw(connection, "ping")
    assert connection.transport.types()[-1] == "pong"


@pytest.mark.asyncio
async def test_auth_binds_identity_and_acknowledges() -> None:
    dispatcher, _ = build_dispatcher()

    connection = await connect_admin(dispatcher, "42")

    assert connection.identity.user_id == "42"
    assert connection.is_admin
    [success] = connection.transport.of_type("auth_success")
    assert success["userId"] == "42"


@pytest.mark.asyncio
async def test_guest_auth_announces_guest_to_admins() -> None:
    dispatcher, store = build_dispatcher()
    admin = await connect_admin(dispatcher)

    guest = await connect_guest(dispatcher, "g1")

    assert guest.transport.types() == ["help_chat_auth_success"]
    assert admin.transport.of_type("help_chat_guest_online")[0]["guestId"] == "g1"
    assert (await store.get_session("g1")).is_active


@pytest.mark.asyncio
async def test_join_requires_authentication() -> None:
    dispatcher, store = build_dispatcher()
    connection = dispatcher.hub.register(FakeTransport())

    await dispatcher.handle_raw(
        connection, frame("admin_join_conversation", guestId="g1", selectedAgentId="7")
    )

    [error] = connection.transport.of_type("error")
    assert error["code"] == "not_authenticated"
    assert await store.get_session("g1") is None


@pytest.mark.asyncio
async def test_unknown_agent_is_reported_with_context() -> None:
    dispatcher, _ = build_dispatcher()
    admin = await connect_admin(dispatcher)

    await dispatcher.handle_raw(
        admin, frame("admin_join_conversation", guestId="g1", selectedAgentId=99)
    )

    [error] = admin.transport.of_type("error")
    assert error["code"] == "unknown_agent"
    assert error["context"] == {"agentId": "99"}


@pytest.mark.asyncio
async def test_visitor_message_flows_to_subscribed_admin() -> None:
    dispatcher, store = build_dispatcher()
    admin = await connect_admin(dispatcher)
    guest = await connect_guest(dispatcher, "g1")
    await dispatcher.handle_raw(
        admin, frame("admin_join_conversation", guestId="g1", selectedAgentId="7")
    )

    await dispatcher.handle_raw(
        guest, frame("help_chat_send_message", guestId="g1", message="  Hi  ", sender="visitor")
    )

    [sent] = guest.transport.of_type("help_chat_message_sent")
    relayed = admin.transport.of_type("help_chat_message")[-1]
    assert relayed["message"] == "Hi"
    assert relayed["sender"] == "visitor"
    assert sent["messageId"] == relayed["id"]
    # the guest saw the joined notice but not its own message echoed back
    assert [item["message"] for item in guest.transport.of_type("help_chat_message")] == [
        "Sarah joined the chat"
    ]
    assert [message.text for message in await store.list_messages("g1")] == [
        "Sarah joined the chat",
        "Hi",
    ]


@pytest.mark.asyncio
async def test_visitor_cannot_post_into_another_guest() -> None:
    dispatcher, store = build_dispatcher()
    guest = await connect_guest(dispatcher, "g1")

    await dispatcher.handle_raw(
        guest, frame("help_chat_send_message", guestId="g2", message="hi", sender="visitor")
    )

    [error] = guest.transport.of_type("error")
    assert error["code"] == "guest_mismatch"
    assert await store.list_messages("g2") == []


@pytest.mark.asyncio
async def test_message_validation_errors() -> None:
    dispatcher, _ = build_dispatcher(max_message_length=5)
    guest = await connect_guest(dispatcher, "g1")

    await dispatcher.handle_raw(
        guest, frame("help_chat_send_message", guestId="g1", message="   ", sender="visitor")
    )
    await dispatcher.handle_raw(
        guest,
        frame("help_chat_send_message", guestId="g1", message="far too long", sender="visitor"),
    )

    codes = [error["code"] for error in guest.transport.of_type("error")]
    assert codes == ["empty_message", "message_too_long"]


@pytest.mark.asyncio
async def test_member_cannot_send_admin_messages() -> None:
    dispatcher, _ = build_dispatcher()
    member = dispatcher.hub.register(FakeTransport())
    await dispatcher.handle_raw(member, frame("auth", userId="5", role="member"))

    await dispatcher.handle_raw(
        member, frame("help_chat_send_message", guestId="g1", message="hi", sender="admin")
    )

    assert member.transport.of_type("error")[0]["code"] == "forbidden"


@pytest.mark.asyncio
async def test_sender_is_checked_before_message_text() -> None:
    dispatcher, _ = build_dispatcher()
    anonymous = dispatcher.hub.register(FakeTransport())

    await dispatcher.handle_raw(
        anonymous, frame("help_chat_send_message", guestId="g1", message="   ", sender="admin")
    )

    assert anonymous.transport.of_type("error")[0]["code"] == "not_authenticated"


@pytest.mark.asyncio
async def test_rate_limit_rejects_excess_messages() -> None:
    dispatcher, store = build_dispatcher(rule=RateLimitRule(limit=2, window_seconds=60))
    guest = await connect_guest(dispatcher, "g1")

    for index in range(3):
        await dispatcher.handle_raw(
            guest,
            frame("help_chat_send_message", guestId="g1", message=f"m{index}", sender="visitor"),
        )
    await dispatcher.handle_raw(guest, frame("ping"))

    [error] = guest.transport.of_type("error")
    assert error["code"] == "rate_limited"
    assert error["context"]["key"] == "guest_g1"
    assert 0 < error["context"]["retryAfter"] <= 60
    assert len(await store.list_messages("g1")) == 2
    assert guest.transport.types()[-1] == "pong"


@pytest.mark.asyncio
async def test_typing_is_relayed_between_guest_and_admin() -> None:
    dispatcher, _ = build_dispatcher()
    admin = await connect_admin(dispatcher)
    bystander = await connect_admin(dispatcher, "2")
    guest = await connect_guest(dispatcher, "g1")
    await dispatcher.handle_raw(admin, frame("admin_join_conversation", guestId="g1"))

    await dispatcher.handle_raw(
        guest, frame("help_chat_typing", guestId="g1", isTyping=True, sender="visitor")
    )
    await dispatcher.handle_raw(
        admin, frame("help_chat_typing", guestId="g1", isTyping=False, sender="admin")
    )

    assert admin.transport.of_type("help_chat_typing")[0]["isTyping"] is True
    assert guest.transport.of_type("help_chat_typing")[0]["isTyping"] is False
    assert bystander.transport.of_type("help_chat_typing") == []


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_internal_error() -> None:
    dispatcher, _ = build_dispatcher()
    connection = dispatcher.hub.register(FakeTransport())

    async def broken(connection, event) -> None:
        raise KeyError("boom")

    dispatcher.handlers[ClientEventType.PING] = broken
    await dispatcher.handle_raw(connection, frame("ping"))

    [error] = connection.transport.of_type("error")
    assert error["code"] == "internal_error"
    assert dispatcher.hub.get(connection.id) is connection


@pytest.mark.asyncio
async def test_disconnect_marks_guest_offline_only_for_bound_socket() -> None:
    dispatcher, store = build_dispatcher()
    old = await connect_guest(dispatcher, "g1")
    new = await connect_guest(dispatcher, "g1")

    await dispatcher.handle_disconnect(old)
    assert (await store.get_session("g1")).is_active

    await dispatcher.handle_disconnect(new)
    assert not (await store.get_session("g1")).is_active
    assert len(dispatcher.hub) == 0


@pytest.mark.asyncio
async def test_guest_dropped_by_broadcast_still_goes_offline() -> None:
    dispatcher, store = build_dispatcher()
    guest = await connect_guest(dispatcher, "g1")
    admin = await connect_admin(dispatcher)

    async def closed(data: str) -> None:
        raise RuntimeError("socket closed")

    guest.transport.send_text = closed
    await dispatcher.handle_raw(
        admin, frame("help_chat_send_message", guestId="g1", message="hi", sender="admin")
    )
    assert dispatcher.hub.get(guest.id) is None

    await dispatcher.handle_disconnect(guest)
    assert not (await store.get_session("g1")).is_active
