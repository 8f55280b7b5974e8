"""
GOAL STATE MACHINE TESTS

The goal state machine must prevent invalid transitions.
"""
import pytest

from dreamgoals.domain.goal_domain_service import GoalDomainService, GoalState, goal_state
from dreamgoals.exceptions import InvalidGoalState
from dreamgoals.schemas import Goal, GoalType

AT = "2025-10-22T10:00:00+00:00"


@pytest.fixture
def domain():
    return GoalDomainService()


def make_goal(**overrides):
    fields = {"id": "g1", "title": "Run", "active": True}
    fields.update(overrides)
    return Goal(**fields)


class TestTransitions:

    def test_draft_to_active(self, domain):
        goal, event = domain.transition(make_goal(active=False), GoalState.ACTIVE, "Goal added", at=AT)
        assert goal.active and not goal.completed
        assert (event.from_state, event.to_state) == ("draft", "active")

    def test_active_to_completed(self, domain):
        """
        SCENARIO: active goal completes

        EXPECTED: completed, inactive, completedAt set, event emitted
        """
        goal, event = domain.transition(make_goal(), GoalState.COMPLETED, "Streak reached", at=AT)
        assert goal.completed is True
        assert goal.active is False
        assert goal.completed_at == AT
        assert event.goal_id == "g1"
        assert event.reason == "Streak reached"
        assert event.timestamp == AT

    def test_noop_transition_rejected(self, domain):
        with pytest.raises(InvalidGoalState) as exc_info:
            domain.transition(make_goal(), GoalState.ACTIVE)
        assert exc_info.value.details["current_state"] == "active"

    def test_completed_consistency_goal_cannot_reopen(self, domain):
        completed = make_goal(completed=True, active=False)
        with pytest.raises(InvalidGoalState):
            domain.transition(completed, GoalState.ACTIVE)

    def test_completed_deadline_goal_can_reopen(self, domain):
        completed = make_goal(type=GoalType.DEADLINE, completed=True, active=False, completed_at=AT)
        goal, _ = domain.transition(completed, GoalState.ACTIVE, at=AT)
        assert goal.active and not goal.completed
        assert goal.completed_at is None

    def test_input_goal_is_not_mutated(self, domain):
        original = make_goal()
        domain.transition(original, GoalState.COMPLETED, at=AT)
        assert original.completed is False

    def test_allowed_from(self, domain):
        assert domain.allowed_from(make_goal()) == {GoalState.COMPLETED, GoalState.DELETED}
        assert domain.can_transition(make_goal(active=False), GoalState.ACTIVE)
        assert not domain.can_transition(make_goal(active=False), GoalState.COMPLETED)


class TestGoalState:

    def test_state_from_flags(self):
        assert goal_state(make_goal()) == GoalState.ACTIVE
        assert goal_state(make_goal(active=False)) == GoalState.DRAFT
        assert goal_state(make_goal(completed=True, active=False)) == GoalState.COMPLETED
