import asyncio
import json

import pytest

from app.domain.enums import MessageSender
from app.domain.models import ActorIdentity
from app.infra.realtime.hub import ConnectionHub
from app.infra.store.memory import InMemoryHelpChatStore
from app.services.conversation_registry import ConversationRegistry


class FakeTransport:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send_text(self, data: str) -> None:
        # Yield so concurrent broadcasts get a chance to interleave.
        await asyncio.sleep(0)
        self.frames.append(json.loads(data))

    def of_type(self, event_type: str) -> list[dict]:
        return [frame for frame in self.frames if frame["type"] == event_type]


def build_registry() -> tuple[ConversationRegistry, ConnectionHub, InMemoryHelpChatStore]:
    store = InMemoryHelpChatStore()
    hub = ConnectionHub()
    return ConversationRegistry(store, hub), hub, store


def admin_connection(hub: ConnectionHub, user_id: str = "1"):
    connection = hub.register(FakeTransport())
    hub.bind_identity(connection, ActorIdentity(user_id=user_id, role="admin"))
    return connection


@pytest.mark.asyncio
async def test_append_broadcasts_to_subscribers_and_guest() -> None:
    registry, hub, _ = build_registry()
    subscribed = admin_connection(hub, "1")
    other_admin = admin_connection(hub, "2")
    guest = hub.register(FakeTransport())
    hub.bind_guest(guest, "g1")
    registry.subscribe(subscribed, "g1")
    registry.subscribe(other_admin, "g2")

    await registry.append_message("g1", MessageSender.ADMIN, "hello there")

    assert [frame["message"] for frame in subscribed.transport.of_type("help_chat_message")] == [
        "hello there"
    ]
    assert [frame["message"] for frame in guest.transport.of_type("help_chat_message")] == [
        "hello there"
    ]
    assert other_admin.transport.of_type("help_chat_message") == []


@pytest.mark.asyncio
async def test_guest_sender_does_not_receive_own_message() -> None:
    registry, hub, _ = build_registry()
    guest = hub.register(FakeTransport())
    hub.bind_guest(guest, "g1")

    await registry.append_message("g1", MessageSender.VISITOR, "hi", origin=guest)

    assert guest.transport.of_type("help_chat_message") == []


@pytest.mark.asyncio
async def test_concurrent_appends_broadcast_in_call_order() -> None:
    registry, hub, store = build_registry()
    admin = admin_connection(hub)
    registry.subscribe(admin, "g1")

    texts = [f"message {index}" for index in range(25)]
    await asyncio.gather(
        *(
            registry.append_message(
                "g1",
                MessageSender.VISITOR if index % 2 else MessageSender.ADMIN,
                text,
            )
            for index, text in enumerate(texts)
        )
    )

    received = [frame["message"] for frame in admin.transport.of_type("help_chat_message")]
    stored = [message.text for message in await store.list_messages("g1")]
    assert received == texts
    assert stored == texts


@pytest.mark.asyncio
async def test_conversation_locks_are_released_after_use() -> None:
    registry, _, _ = build_registry()

    for index in range(5):
        await registry.append_message(f"g{index}", MessageSender.VISITOR, "hi")
    assert registry.tracked_locks() == 0

    async with registry.exclusive("g1"):
        waiter = asyncio.create_task(
            registry.append_message("g1", MessageSender.VISITOR, "queued")
        )
        await asyncio.sleep(0)
        assert registry.tracked_locks() == 1
    await waiter

    assert registry.tracked_locks() == 0


@pytest.mark.asyncio
async def test_admin_message_carries_assigned_agent() -> None:
    registry, hub, store = build_registry()
    agent = store.add_agent("Sarah", avatar_url="https://cdn/sarah.png", agent_id="7")
    admin = admin_connection(hub)
    registry.subscribe(admin, "g1")
    async with registry.exclusive("g1") as writer:
        await writer.set_assigned_agent(agent.id)

    message = await registry.append_message("g1", MessageSender.ADMIN, "How can I help?")

    assert message.agent_id == "7"
    frame = admin.transport.of_type("help_chat_message")[-1]
    assert frame["agentId"] == "7"
    assert frame["agentName"] == "Sarah"


@pytest.mark.asyncio
async def test_guest_online_goes_to_every_admin() -> None:
    registry, hub, store = build_registry()
    first = admin_connection(hub, "1")
    second = admin_connection(hub, "2")
    registry.subscribe(first, "g9")
    member = hub.register(FakeTransport())
    hub.bind_identity(member, ActorIdentity(user_id="3", role="member"))

    await registry.mark_guest_online("g1")

    assert len(first.transport.of_type("help_chat_guest_online")) == 1
    assert len(second.transport.of_type("help_chat_guest_online")) == 1
    assert member.transport.frames == []
    assert (await store.get_session("g1")).is_active

    await registry.mark_guest_offline("g1")
    assert not (await store.get_session("g1")).is_active


@pytest.mark.asyncio
async def test_conversation_list_reflects_last_message_and_unread() -> None:
    registry, _, _ = build_registry()

    await registry.append_message("g1", MessageSender.VISITOR, "first")
    await registry.append_message("g1", MessageSender.VISITOR, "hello")

    [summary] = await registry.list_conversations()
    assert summary.guest_id == "g1"
    assert summary.last_message == "hello"
    assert summary.message_count == 2
    assert summary.unread_count == 2

    await registry.mark_read("g1")
    [summary] = await registry.list_conversations()
    assert summary.unread_count == 0


@pytest.mark.asyncio
async def test_get_conversation_for_unknown_guest_is_empty() -> None:
    registry, _, _ = build_registry()

    detail = await registry.get_conversation("nobody")

    assert detail.session is None
    assert detail.messages == []
    assert detail.assigned_agent is None
