from collections.abc import Mapping
from datetime import datetime
from typing import Protocol

from app.domain.enums import MessageSender
from app.domain.models import ChatMessage, ChatSession, ConversationSummary, SupportAgent


class HelpChatStore(Protocol):
    """Durable backing store for conversations, agents and chat settings.

    Callers serialize writes per guest id; implementations only need to be
    safe for concurrent access across different guest ids.
    """

    async def append_message(
        self,
        guest_id: str,
        sender: MessageSender,
        text: str,
        created_at: datetime,
        agent_id: str | None = None,
        receiver_id: str | None = None,
        is_auto_message: bool = False,
    ) -> ChatMessage: ...

    async def list_messages(self, guest_id: str) -> list[ChatMessage]: ...

    async def get_session(self, guest_id: str) -> ChatSession | None: ...

    async def set_guest_active(
        self, guest_id: str, is_active: bool, now: datetime
    ) -> ChatSession: ...

    async def set_assigned_agent(
        self, guest_id: str, agent_id: str | None, now: datetime
    ) -> ChatSession: ...

    async def mark_read(self, guest_id: str, now: datetime) -> None: ...

    async def list_conversations(self) -> list[ConversationSummary]: ...

    async def list_agents(self, active_only: bool = False) -> list[SupportAgent]: ...

    async def get_agent(self, agent_id: str) -> SupportAgent | None: ...

    async def create_agent(
        self,
        name: str,
        avatar_url: str | None = None,
        role: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> SupportAgent: ...

    async def count_assigned(self, agent_id: str) -> int: ...

    async def get_settings(self) -> dict[str, str]: ...

    async def save_settings(
        self,
        values: Mapping[str, str],
        updated_by: str | None = None,
        overwrite: bool = True,
    ) -> dict[str, str]: ...
