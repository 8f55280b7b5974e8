"""
Goal Domain Service - pure domain layer
=======================================
No persistence, no async, no logging, no side effects.
Only the goal state machine and its invariants.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from dreamgoals.exceptions import InvalidGoalState
from dreamgoals.schemas import Goal, GoalType


class GoalState(Enum):
    """Every state a dream goal can be in"""
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    DELETED = "deleted"


class TransitionReason(Enum):
    """Typical transition reasons"""
    GOAL_ADDED = "Goal added"
    STREAK_TARGET_REACHED = "Streak reached target weeks"
    MONTH_TARGET_REACHED = "Frequency met for target months"
    DEADLINE_INSTANCE_COMPLETED = "Deadline goal completed for the week"
    DEADLINE_INSTANCE_REOPENED = "Deadline goal completion undone"
    USER_REQUEST = "User request"


@dataclass
class GoalTransitioned:
    """Domain event - a goal changed state"""
    goal_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: str


def goal_state(goal: Goal) -> GoalState:
    if goal.completed:
        return GoalState.COMPLETED
    if goal.active:
        return GoalState.ACTIVE
    return GoalState.DRAFT


class GoalDomainService:
    """
    Pure state-machine logic for dream goals.

    Responsibilities:
    - validate transitions (invariants)
    - build the transitioned goal
    - emit the GoalTransitioned event

    Does NOT:
    - persist
    - log
    """

    TERMINAL_STATES = {GoalState.DELETED}

    ALLOWED_TRANSITIONS = {
        GoalState.DRAFT: {GoalState.ACTIVE, GoalState.DELETED},
        GoalState.ACTIVE: {GoalState.COMPLETED, GoalState.DELETED},
        GoalState.COMPLETED: {GoalState.DELETED},
    }

    def transition(
        self,
        goal: Goal,
        new_state: GoalState,
        reason: Optional[str] = None,
        at: Optional[str] = None,
    ) -> Tuple[Goal, GoalTransitioned]:
        """
        The only way domain code changes a goal's lifecycle fields.

        Returns:
            (updated goal, GoalTransitioned event)

        Raises:
            InvalidGoalState: the transition is not allowed
        """
        old_state = goal_state(goal)
        timestamp = at or datetime.now(timezone.utc).isoformat()

        if old_state == new_state:
            raise InvalidGoalState(
                goal_id=goal.id,
                current_state=old_state.value,
                expected_states=[s.value for s in self.allowed_from(goal)],
            )

        if new_state not in self.allowed_from(goal):
            raise InvalidGoalState(
                goal_id=goal.id,
                current_state=old_state.value,
                expected_states=[s.value for s in self.allowed_from(goal)],
            )

        if new_state == GoalState.COMPLETED:
            updated = goal.model_copy(update={
                "completed": True,
                "active": False,
                "completed_at": timestamp,
            })
        elif new_state == GoalState.ACTIVE:
            updated = goal.model_copy(update={
                "completed": False,
                "active": True,
                "completed_at": None,
            })
        else:
            updated = goal.model_copy(update={"active": False})

        event = GoalTransitioned(
            goal_id=goal.id,
            from_state=old_state.value,
            to_state=new_state.value,
            reason=reason or "State transition",
            timestamp=timestamp,
        )
        return updated, event

    def allowed_from(self, goal: Goal) -> set:
        state = goal_state(goal)
        if state in self.TERMINAL_STATES:
            return set()
        allowed = set(self.ALLOWED_TRANSITIONS.get(state, set()))
        # A deadline goal completed through its weekly instance can be reopened
        # by undoing that instance in the same week.
        if state == GoalState.COMPLETED and goal.type == GoalType.DEADLINE:
            allowed.add(GoalState.ACTIVE)
        return allowed

    def can_transition(self, goal: Goal, new_state: GoalState) -> bool:
        return new_state in self.allowed_from(goal)


goal_domain_service = GoalDomainService()
