from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import MessageSender
from app.infra.db.models import (
    HelpChatMessage,
    HelpChatSetting,
    SupportAgent,
    SupportChatSession,
)


@dataclass(slots=True)
class ConversationRow:
    session: SupportChatSession
    last_message: str | None
    last_message_time: datetime | None
    message_count: int
    unread_count: int


class ChatSessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_guest_id(self, guest_id: str) -> SupportChatSession | None:
        stmt: Select[tuple[SupportChatSession]] = (
            select(SupportChatSession).where(SupportChatSession.guest_id == guest_id).limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, guest_id: str, now: datetime) -> SupportChatSession:
        chat_session = await self.get_by_guest_id(guest_id)
        if chat_session is not None:
            return chat_session

        chat_session = SupportChatSession(
            guest_id=guest_id,
            is_active=True,
            session_started_at=now,
            last_activity_at=now,
        )
        self.session.add(chat_session)
        await self.session.flush()
        return chat_session

    async def count_assigned_to_agent(self, agent_id: int) -> int:
        stmt: Select[tuple[int]] = select(func.count(SupportChatSession.id)).where(
            SupportChatSession.assigned_agent_id == agent_id,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def list_with_stats(self, limit: int | None = None) -> list[ConversationRow]:
        last_message = (
            select(HelpChatMessage.message)
            .where(HelpChatMessage.guest_id == SupportChatSession.guest_id)
            .order_by(HelpChatMessage.created_at.desc(), HelpChatMessage.id.desc())
            .limit(1)
            .correlate(SupportChatSession)
            .scalar_subquery()
        )
        last_message_time = (
            select(func.max(HelpChatMessage.created_at))
            .where(HelpChatMessage.guest_id == SupportChatSession.guest_id)
            .correlate(SupportChatSession)
            .scalar_subquery()
        )
        message_count = (
            select(func.count(HelpChatMessage.id))
            .where(HelpChatMessage.guest_id == SupportChatSession.guest_id)
            .correlate(SupportChatSession)
            .scalar_subquery()
        )
        unread_count = (
            select(func.count(HelpChatMessage.id))
            .where(
                HelpChatMessage.guest_id == SupportChatSession.guest_id,
                HelpChatMessage.sender == MessageSender.VISITOR,
                or_(
                    SupportChatSession.last_read_at.is_(None),
                    HelpChatMessage.created_at > SupportChatSession.last_read_at,
                ),
            )
            .correlate(SupportChatSession)
            .scalar_subquery()
        )

        stmt = (
            select(
                SupportChatSession,
                last_message,
                last_message_time,
                message_count,
                unread_count,
            )
            .order_by(
                last_message_time.desc().nulls_last(),
                SupportChatSession.last_activity_at.desc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [
            ConversationRow(
                session=row[0],
                last_message=row[1],
                last_message_time=row[2],
                message_count=int(row[3] or 0),
                unread_count=int(row[4] or 0),
            )
            for row in result.all()
        ]


class HelpChatMessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        guest_id: str,
        sender: MessageSender,
        message: str,
        created_at: datetime,
        agent_id: int | None = None,
        receiver_id: str | None = None,
        is_auto_message: bool = False,
    ) -> HelpChatMessage:
        row = HelpChatMessage(
            guest_id=guest_id,
            sender=sender,
            message=message,
            created_at=created_at,
            agent_id=agent_id,
            receiver_id=receiver_id,
            is_auto_message=is_auto_message,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def list_by_guest(self, guest_id: str) -> list[HelpChatMessage]:
        stmt: Select[tuple[HelpChatMessage]] = (
            select(HelpChatMessage)
            .where(HelpChatMessage.guest_id == guest_id)
            .order_by(HelpChatMessage.created_at.asc(), HelpChatMessage.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class SupportAgentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, agent_id: int) -> SupportAgent | None:
        return await self.session.get(SupportAgent, agent_id)

    async def list_all(self, active_only: bool = False) -> list[SupportAgent]:
        stmt: Select[tuple[SupportAgent]] = select(SupportAgent).order_by(
            SupportAgent.sort_order.asc(), SupportAgent.name.asc()
        )
        if active_only:
            stmt = stmt.where(SupportAgent.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        name: str,
        avatar_url: str | None = None,
        role: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> SupportAgent:
        agent = SupportAgent(
            name=name,
            avatar_url=avatar_url,
            role=role,
            is_active=is_active,
            sort_order=sort_order,
        )
        self.session.add(agent)
        await self.session.flush()
        await self.session.refresh(agent)
        return agent


class HelpChatSettingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[HelpChatSetting]:
        result = await self.session.execute(select(HelpChatSetting))
        return list(result.scalars().all())

    async def upsert(
        self,
        setting_key: str,
        setting_value: str,
        updated_by: str | None = None,
        overwrite: bool = True,
    ) -> HelpChatSetting:
        stmt: Select[tuple[HelpChatSetting]] = (
            select(HelpChatSetting).where(HelpChatSetting.setting_key == setting_key).limit(1)
        )
        result = await self.session.execute(stmt)
        setting = result.scalar_one_or_none()
        if setting is None:
            setting = HelpChatSetting(
                setting_key=setting_key,
                setting_value=setting_value,
                updated_by=updated_by,
            )
            self.session.add(setting)
        elif overwrite:
            setting.setting_value = setting_value
            setting.updated_by = updated_by
        await self.session.flush()
        return setting
