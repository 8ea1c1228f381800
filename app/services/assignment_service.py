import logging

from app.domain.enums import AssignmentAction, MessageSender
from app.domain.models import SupportAgent
from app.domain.state_machine import AssignmentLifecycle
from app.infra.realtime.events import (
    AdminJoinConversationEvent,
    AdminJoinSuccessEvent,
    AdminLeaveConversationEvent,
    AdminLeaveSuccessEvent,
    ConversationAssignmentClearedEvent,
    SupportAgentPayload,
)
from app.infra.realtime.hub import Connection
from app.services.assignment_policy import AutoAssignmentPolicy, HelpChatSettingsService
from app.services.conversation_registry import ConversationRegistry
from app.services.errors import ForbiddenActionError, NotAuthenticatedError, UnknownAgentError

logger = logging.getLogger(__name__)

UNKNOWN_AGENT_NAME = "Support agent"


def joined_message(agent: SupportAgent) -> str:
    return f"{agent.name} joined the chat"


def left_message(agent: SupportAgent) -> str:
    return f"{agent.name} left the chat"


class AssignmentCoordinator:
    """Join, leave and handoff of support agents on conversations.

    A successful join is only reported to the requesting connection; other
    admins pick it up when they refetch. Clearing an assignment is pushed to
    every admin connection.
    """

    def __init__(
        self,
        registry: ConversationRegistry,
        policy: AutoAssignmentPolicy,
        settings: HelpChatSettingsService,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.settings = settings

    @property
    def store(self):
        return self.registry.store

    @property
    def hub(self):
        return self.registry.hub

    @staticmethod
    def _require_admin(connection: Connection, action: str) -> None:
        if connection.identity is None:
            raise NotAuthenticatedError(action)
        if not connection.is_admin:
            raise ForbiddenActionError(action, connection.identity.role)

    async def _resolve_selected(self, agent_id: str) -> SupportAgent:
        agent = await self.store.get_agent(agent_id)
        if agent is None or not agent.is_active:
            raise UnknownAgentError(agent_id)
        return agent

    async def join(
        self, connection: Connection, event: AdminJoinConversationEvent
    ) -> SupportAgent | None:
        self._require_admin(connection, "admin_join_conversation")
        guest_id = event.guest_id

        selected: SupportAgent | None = None
        if event.selected_agent_id is not None:
            selected = await self._resolve_selected(event.selected_agent_id)

        async with self.registry.exclusive(guest_id) as writer:
            current_agent_id = await writer.current_agent_id()
            target = selected
            if target is None and current_agent_id is not None:
                target = await self.store.get_agent(current_agent_id)
            if target is None:
                target = await self.policy.choose(await self.settings.load())

            if target is not None and target.id != current_agent_id:
                for agent_id in AssignmentLifecycle.handoff(current_agent_id, target.id):
                    await writer.set_assigned_agent(agent_id)
                await writer.append(
                    MessageSender.ADMIN,
                    joined_message(target),
                    agent=target,
                    receiver_id=connection.identity.user_id,
                    is_auto_message=True,
                )
                if AssignmentLifecycle.requires_handoff(current_agent_id, target.id):
                    logger.info(
                        "Conversation %s handed off from agent %s to %s",
                        guest_id,
                        current_agent_id,
                        target.id,
                    )
                else:
                    logger.info("Conversation %s assigned to agent %s", guest_id, target.id)
            elif target is None:
                logger.info("No support agent available for conversation %s", guest_id)

        self.registry.subscribe(connection, guest_id)
        await self.hub.send_to(
            connection,
            AdminJoinSuccessEvent(
                guest_id=guest_id,
                assigned_agent=(
                    SupportAgentPayload.from_agent(target) if target is not None else None
                ),
            ),
        )
        return target

    async def leave(
        self, connection: Connection, event: AdminLeaveConversationEvent
    ) -> SupportAgent | None:
        self._require_admin(connection, "admin_leave_conversation")
        guest_id = event.guest_id
        previous: SupportAgent | None = None

        async with self.registry.exclusive(guest_id) as writer:
            current_agent_id = await writer.current_agent_id()
            if current_agent_id is not None:
                previous = await self.store.get_agent(current_agent_id) or SupportAgent(
                    id=current_agent_id, name=UNKNOWN_AGENT_NAME
                )
                await writer.append(
                    MessageSender.ADMIN,
                    left_message(previous),
                    agent=previous,
                    receiver_id=connection.identity.user_id,
                    is_auto_message=True,
                )
                await writer.set_assigned_agent(
                    AssignmentLifecycle.transition(current_agent_id, AssignmentAction.CLEAR)
                )
                await self.hub.broadcast(
                    self.hub.admin_connections(),
                    ConversationAssignmentClearedEvent(
                        guest_id=guest_id,
                        previous_agent=SupportAgentPayload.from_agent(previous),
                    ),
                )
                logger.info("Agent %s left conversation %s", previous.id, guest_id)

        self.registry.unsubscribe(connection, guest_id)
        await self.hub.send_to(connection, AdminLeaveSuccessEvent(guest_id=guest_id))
        return previous
