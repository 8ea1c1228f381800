import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from datetime import UTC, datetime

from app.domain.enums import AssignmentMode
from app.domain.models import SupportAgent
from app.infra.store.base import HelpChatStore
from app.services.errors import InvalidSettingError

logger = logging.getLogger(__name__)

WORKING_HOURS_START = 9
WORKING_HOURS_END = 17

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


@dataclass(slots=True)
class AssignmentSettings:
    assignment_mode: AssignmentMode = AssignmentMode.AUTO
    auto_assign_round_robin: bool = True
    auto_assign_consider_load: bool = False
    max_active_chats_per_agent: int = 5
    working_hours_only: bool = False
    allow_agent_selection: bool = True
    # Display-only: served to the chat widget, never read here.
    show_queue_position: bool = False
    estimated_wait_time: str = "5-10 minutes"
    auto_assign_welcome_message: str = (
        "Hello! You have been connected to a support agent who will assist you shortly."
    )
    manual_queue_welcome_message: str = (
        "Hello! Your request has been received. An agent will be with you shortly."
    )

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(field.name for field in fields(cls))

    @classmethod
    def from_mapping(
        cls,
        values: Mapping[str, object],
        default_mode: AssignmentMode = AssignmentMode.AUTO,
        strict: bool = False,
    ) -> "AssignmentSettings":
        """Build settings from stored strings (lenient) or API input (strict)."""
        settings = cls(assignment_mode=default_mode)
        known = set(cls.keys())
        for key, raw in values.items():
            if key not in known:
                if strict:
                    raise InvalidSettingError(key, raw)
                continue
            try:
                setattr(settings, key, _coerce(key, getattr(settings, key), raw))
            except InvalidSettingError:
                if strict:
                    raise
                logger.warning("Ignoring stored help chat setting %s=%r", key, raw)
        return settings

    def to_mapping(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for key in self.keys():
            value = getattr(self, key)
            if isinstance(value, AssignmentMode):
                mapping[key] = value.value
            elif isinstance(value, bool):
                mapping[key] = "true" if value else "false"
            else:
                mapping[key] = str(value)
        return mapping


def _coerce(key: str, current: object, raw: object) -> object:
    if isinstance(current, AssignmentMode):
        if isinstance(raw, AssignmentMode):
            return raw
        try:
            return AssignmentMode(str(raw).strip().lower())
        except ValueError as exc:
            raise InvalidSettingError(key, raw) from exc

    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise InvalidSettingError(key, raw)

    if isinstance(current, int):
        if isinstance(raw, bool):
            raise InvalidSettingError(key, raw)
        try:
            value = int(str(raw).strip())
        except ValueError as exc:
            raise InvalidSettingError(key, raw) from exc
        if value < 1:
            raise InvalidSettingError(key, raw)
        return value

    if raw is None:
        raise InvalidSettingError(key, raw)
    return str(raw)


class HelpChatSettingsService:
    def __init__(
        self,
        store: HelpChatStore,
        default_mode: AssignmentMode = AssignmentMode.AUTO,
    ) -> None:
        self.store = store
        self.default_mode = default_mode

    async def load(self) -> AssignmentSettings:
        stored = await self.store.get_settings()
        return AssignmentSettings.from_mapping(stored, default_mode=self.default_mode)

    async def update(
        self,
        values: Mapping[str, object],
        updated_by: str | None = None,
    ) -> AssignmentSettings:
        current = await self.load()
        merged: dict[str, object] = dict(current.to_mapping())
        merged.update(values)
        validated = AssignmentSettings.from_mapping(
            merged, default_mode=self.default_mode, strict=True
        )
        changed = {key: validated.to_mapping()[key] for key in values}
        stored = await self.store.save_settings(changed, updated_by=updated_by)
        logger.info("Help chat settings updated by %s: %s", updated_by, sorted(changed))
        return AssignmentSettings.from_mapping(stored, default_mode=self.default_mode)

    async def seed_defaults(self) -> None:
        defaults = AssignmentSettings(assignment_mode=self.default_mode)
        await self.store.save_settings(defaults.to_mapping(), overwrite=False)


class AutoAssignmentPolicy:
    """Picks an agent for a conversation when the admin did not choose one."""

    def __init__(
        self,
        store: HelpChatStore,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or (lambda: datetime.now(UTC))
        self.rng = rng or random.Random()

    def within_working_hours(self) -> bool:
        hour = self.clock().hour
        return WORKING_HOURS_START <= hour <= WORKING_HOURS_END

    async def choose(self, settings: AssignmentSettings) -> SupportAgent | None:
        agents = await self.store.list_agents(active_only=True)
        if not agents:
            return None

        if settings.working_hours_only and not self.within_working_hours():
            logger.info("No automatic assignment outside working hours")
            return None

        if settings.auto_assign_consider_load:
            return await self._least_loaded(agents, settings.max_active_chats_per_agent)

        if settings.auto_assign_round_robin:
            return min(agents, key=_round_robin_key)

        return self.rng.choice(agents)

    async def _least_loaded(
        self, agents: list[SupportAgent], capacity: int
    ) -> SupportAgent | None:
        best: SupportAgent | None = None
        best_load = capacity
        for agent in agents:
            load = await self.store.count_assigned(agent.id)
            if load < best_load:
                best = agent
                best_load = load
        if best is None:
            logger.info("All support agents are at capacity (%s chats)", capacity)
        return best


def _round_robin_key(agent: SupportAgent) -> tuple[bool, datetime, int]:
    last = agent.last_assigned_at or datetime.min.replace(tzinfo=UTC)
    if last.tzinfo is None:
        last = last.replace(tzinfo=UTC)
    return (agent.last_assigned_at is not None, last, agent.sort_order)
