import logging
from typing import Any

import httpx

from app.domain.enums import MessageSender
from app.domain.models import ActorIdentity
from app.schemas.help_chat import (
    AdminConversationResponse,
    ConversationSummaryResponse,
    HelpChatMessageResponse,
    HelpChatSettingsResponse,
    SupportAgentResponse,
    UpdateHelpChatSettingsRequest,
    VisitorConversationResponse,
)

logger = logging.getLogger(__name__)


class HelpChatApiError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Help chat API returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class HelpChatApiClient:
    """HTTP side of the help chat: transcripts, lists, settings, send fallback."""

    def __init__(
        self,
        base_url: str,
        identity: ActorIdentity | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.identity = identity
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api",
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "HelpChatApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if self.identity is None:
            return {}
        return {"X-User-Id": self.identity.user_id, "X-User-Role": self.identity.role}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        if response.is_error:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            logger.warning("%s %s failed with %s", method, path, response.status_code)
            raise HelpChatApiError(response.status_code, str(detail))
        return response.json()

    async def send_message(
        self,
        guest_id: str,
        message: str,
        sender: MessageSender = MessageSender.VISITOR,
    ) -> HelpChatMessageResponse:
        data = await self._request(
            "POST",
            "/help-chat/send",
            json={"guestId": guest_id, "message": message, "sender": sender.value},
        )
        return HelpChatMessageResponse.model_validate(data)

    async def get_visitor_conversation(self, guest_id: str) -> VisitorConversationResponse:
        data = await self._request("GET", f"/help-chat/conversation/{guest_id}")
        return VisitorConversationResponse.model_validate(data)

    async def list_conversations(self) -> list[ConversationSummaryResponse]:
        data = await self._request("GET", "/admin/help-chat/conversations")
        return [ConversationSummaryResponse.model_validate(item) for item in data]

    async def get_conversation(self, guest_id: str) -> AdminConversationResponse:
        data = await self._request("GET", f"/admin/help-chat/conversation/{guest_id}")
        return AdminConversationResponse.model_validate(data)

    async def list_support_agents(self) -> list[SupportAgentResponse]:
        data = await self._request("GET", "/admin/support-agents")
        return [SupportAgentResponse.model_validate(item) for item in data]

    async def get_settings(self) -> HelpChatSettingsResponse:
        data = await self._request("GET", "/admin/help-chat-settings")
        return HelpChatSettingsResponse.model_validate(data)

    async def update_settings(self, **values: Any) -> HelpChatSettingsResponse:
        payload = UpdateHelpChatSettingsRequest(**values)
        data = await self._request(
            "PUT",
            "/admin/help-chat-settings",
            json=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return HelpChatSettingsResponse.model_validate(data)
