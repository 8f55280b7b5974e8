"""
Goal engine schemas (pydantic)

Documents exchanged with the item store use camelCase on the wire
(targetWeeks, weekId, ...) and snake_case in Python. Documents are frozen:
every change produces a new object through model_copy(update=...).
"""
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dreamgoals.exceptions import BaseGoalException


class GoalType(str, Enum):
    CONSISTENCY = "consistency"
    DEADLINE = "deadline"


class Recurrence(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DurationType(str, Enum):
    UNLIMITED = "unlimited"
    WEEKS = "weeks"
    MILESTONE = "milestone"


class ItemType(str, Enum):
    """Item kinds stored by the external item store"""
    DREAM = "dream"
    WEEKLY_GOAL = "weekly_goal"
    WEEKLY_GOAL_TEMPLATE = "weekly_goal_template"
    SCORING_ENTRY = "scoring_entry"
    CONNECT = "connect"


class ScoringSource(str, Enum):
    DREAM = "dream"
    WEEK = "week"
    CONNECT = "connect"
    MILESTONE = "milestone"


class Document(BaseModel):
    """Base for every persisted document"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Dreams & goals
# =============================================================================

class Goal(Document):
    id: str
    title: str
    description: str = ""
    type: GoalType = GoalType.CONSISTENCY
    recurrence: Optional[Recurrence] = None
    target_weeks: Optional[int] = None
    target_months: Optional[int] = None
    frequency: Optional[int] = None
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    weeks_remaining: Optional[int] = None
    active: bool = True
    completed: bool = False
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    # ISO week -> completed
    week_log: Dict[str, bool] = Field(default_factory=dict)
    # month id (YYYY-MM) -> completions counted that month, monthly goals only
    month_log: Dict[str, int] = Field(default_factory=dict)


class Dream(Document):
    id: str
    title: str
    description: str = ""
    category: str = ""
    goals: Tuple[Goal, ...] = ()
    progress: int = 0
    completed: bool = False
    created_at: Optional[str] = None

    def find_goal(self, goal_id: str) -> Optional[Goal]:
        return next((g for g in self.goals if g.id == goal_id), None)


class WeeklyGoalTemplate(Document):
    """Persisted definition of a recurring goal, independent of any week"""
    id: str
    type: Literal["weekly_goal_template"] = "weekly_goal_template"
    goal_id: Optional[str] = None
    dream_id: Optional[str] = None
    dream_title: str = ""
    dream_category: str = ""
    title: str
    description: str = ""
    goal_type: GoalType = GoalType.CONSISTENCY
    recurrence: Recurrence = Recurrence.WEEKLY
    target_weeks: Optional[int] = None
    target_months: Optional[int] = None
    frequency: Optional[int] = None
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    weeks_remaining: Optional[int] = None
    duration_type: DurationType = DurationType.UNLIMITED
    duration_weeks: Optional[int] = None
    active: bool = True
    completed: bool = False
    completed_at: Optional[str] = None
    created_at: Optional[str] = None

    def links_to(self, goal_id: str) -> bool:
        """goalId is the canonical link from a template to its goal."""
        if self.goal_id is not None:
            return self.goal_id == goal_id
        # TODO: drop id-based matching once stored templates are backfilled with goalId
        return self.id == goal_id


class WeeklyGoalInstance(Document):
    """One goal's occurrence in one ISO week"""
    id: str
    type: Literal["weekly_goal"] = "weekly_goal"
    template_id: Optional[str] = None
    goal_id: Optional[str] = None
    dream_id: Optional[str] = None
    dream_title: str = ""
    dream_category: str = ""
    title: str
    description: str = ""
    goal_type: GoalType = GoalType.CONSISTENCY
    recurrence: Optional[Recurrence] = None
    frequency: Optional[int] = None
    target_weeks: Optional[int] = None
    target_months: Optional[int] = None
    target_date: Optional[str] = None
    weeks_remaining: Optional[int] = None
    week_id: str
    # monthly goals: the month whose completions this instance counts
    month_id: Optional[str] = None
    completed: bool = False
    completed_at: Optional[str] = None
    completion_count: int = 0
    completion_dates: Tuple[str, ...] = ()
    skipped: bool = False
    skipped_at: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def counts_completions(self) -> bool:
        """Monthly goals and weekly goals done more than once a week keep a counter."""
        if self.recurrence == Recurrence.MONTHLY:
            return True
        return self.recurrence == Recurrence.WEEKLY and (self.frequency or 1) > 1


class CurrentWeek(Document):
    week_id: str
    goals: Tuple[WeeklyGoalInstance, ...] = ()


# =============================================================================
# Scoring
# =============================================================================

class ScoringEntry(Document):
    id: str
    source: ScoringSource
    points: int
    activity: str
    date: str
    dream_id: Optional[str] = None
    week_id: Optional[str] = None
    connect_id: Optional[str] = None
    created_at: Optional[str] = None


class ScoringRules(BaseModel):
    """Points per scoring source; injected into the scoring service"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    dream_completed: int = Field(default=10, ge=0)
    weekly_goal_completed: int = Field(default=3, ge=0)
    milestone_completed: int = Field(default=15, ge=0)
    connect: int = Field(default=3, ge=3, le=5)


# =============================================================================
# Inputs
# =============================================================================

class GoalSpec(BaseModel):
    """User input for a new goal (validated by the lifecycle service)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None
    title: str = ""
    description: str = ""
    type: GoalType = GoalType.CONSISTENCY
    recurrence: Optional[Recurrence] = None
    target_weeks: Optional[int] = Field(default=None, ge=1)
    target_months: Optional[int] = Field(default=None, ge=1)
    frequency: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[str] = None
    target_date: Optional[str] = None


class WeeklyCompletionLog(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    iso_week: str = Field(pattern=r"^\d{4}-W\d{2}$")
    completed: bool


# =============================================================================
# Results
# =============================================================================

class ErrorInfo(BaseModel):
    code: str
    category: str = "UNKNOWN"
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel):
    """{success, data?, error?} returned by every engine operation"""
    success: bool
    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: BaseGoalException) -> "OperationResult":
        return cls(success=False, error=ErrorInfo(**exc.to_dict()["error"]))

    @classmethod
    def fail_with(cls, code: str, message: str, category: str = "UNKNOWN", **details) -> "OperationResult":
        return cls(
            success=False,
            error=ErrorInfo(code=code, category=category, message=message, details=details),
        )
