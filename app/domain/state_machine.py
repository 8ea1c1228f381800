from app.domain.enums import AssignmentAction, AssignmentState
from app.domain.exceptions import InvalidAssignmentTransition


class AssignmentLifecycle:
    """State machine for conversation assignment: unassigned -> assigned -> unassigned.

    The "awaiting manual selection" step lives only on the client; the server
    sees completed join requests. Moving an assigned conversation to another
    agent is never a direct transition, it is a clear followed by an assign.
    """

    _allowed_transitions: dict[tuple[AssignmentState, AssignmentAction], AssignmentState] = {
        (AssignmentState.UNASSIGNED, AssignmentAction.ASSIGN): AssignmentState.ASSIGNED,
        (AssignmentState.ASSIGNED, AssignmentAction.CLEAR): AssignmentState.UNASSIGNED,
    }

    @staticmethod
    def state_of(agent_id: str | None) -> AssignmentState:
        if agent_id is None:
            return AssignmentState.UNASSIGNED
        return AssignmentState.ASSIGNED

    @classmethod
    def transition(
        cls,
        current_agent_id: str | None,
        action: AssignmentAction,
        agent_id: str | None = None,
    ) -> str | None:
        current = cls.state_of(current_agent_id)

        # Idempotent semantics for repeated leave/join clicks and racing tabs.
        if current == AssignmentState.UNASSIGNED and action == AssignmentAction.CLEAR:
            return None
        if (
            current == AssignmentState.ASSIGNED
            and action == AssignmentAction.ASSIGN
            and agent_id == current_agent_id
        ):
            return current_agent_id

        next_state = cls._allowed_transitions.get((current, action))
        if next_state is None:
            raise InvalidAssignmentTransition(current=current, action=action)
        if next_state == AssignmentState.UNASSIGNED:
            return None
        if agent_id is None:
            raise InvalidAssignmentTransition(current=current, action=action)
        return agent_id

    @classmethod
    def handoff(cls, current_agent_id: str | None, agent_id: str) -> list[str | None]:
        """Return every assignment value an observer can see while moving to agent_id."""
        steps: list[str | None] = []
        state = current_agent_id
        if state is not None and state != agent_id:
            state = cls.transition(state, AssignmentAction.CLEAR)
            steps.append(state)
        state = cls.transition(state, AssignmentAction.ASSIGN, agent_id)
        steps.append(state)
        return steps

    @staticmethod
    def requires_handoff(current_agent_id: str | None, agent_id: str) -> bool:
        return current_agent_id is not None and current_agent_id != agent_id
