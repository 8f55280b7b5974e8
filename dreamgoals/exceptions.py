"""
Domain Exceptions for the Goal Engine

Exception hierarchy for goal business logic.
Every exception derives from BaseGoalException and carries a stable
error code, a human message and a details dict.
"""


class BaseGoalException(Exception):
    """Base exception for all goal business-logic errors"""

    # Coarse error category (NETWORK | VALIDATION | STATE | UNKNOWN)
    category = "UNKNOWN"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self):
        """Serialize for API responses and OperationResult.error"""
        return {
            "error": {
                "code": self.code,
                "category": self.category,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Validation
# =============================================================================

class GoalValidationError(BaseGoalException):
    """Input rejected before any persistence call"""

    category = "VALIDATION"

    def __init__(self, field: str, reason: str):
        super().__init__(
            message=f"Invalid goal input: {field} {reason}",
            details={"field": field, "reason": reason}
        )


# =============================================================================
# Lookup
# =============================================================================

class DreamNotFound(BaseGoalException):
    category = "VALIDATION"

    def __init__(self, dream_id: str):
        super().__init__(
            message="Dream does not exist",
            details={"dream_id": dream_id}
        )


class GoalNotFound(BaseGoalException):
    category = "VALIDATION"

    def __init__(self, goal_id: str):
        super().__init__(
            message="Goal does not exist",
            details={"goal_id": goal_id}
        )


# =============================================================================
# State
# =============================================================================

class NonCurrentWeekMutation(BaseGoalException):
    """Only the current ISO week's instances may be mutated"""

    category = "STATE"

    def __init__(self, goal_id: str, week_id: str, current_week: str):
        super().__init__(
            message="Instances outside the current week are immutable",
            details={
                "goal_id": goal_id,
                "week_id": week_id,
                "current_week": current_week
            }
        )


class CompletionLimitReached(BaseGoalException):
    """Frequency goal already has all completions for the period"""

    category = "STATE"

    def __init__(self, goal_id: str, frequency: int):
        super().__init__(
            message="Goal already reached its completion frequency for this period",
            details={"goal_id": goal_id, "frequency": frequency}
        )


class InvalidGoalState(BaseGoalException):
    """Goal is not in a state that allows the requested transition"""

    category = "STATE"

    def __init__(self, goal_id: str, current_state: str, expected_states: list):
        super().__init__(
            message="Goal is not in a state that allows this transition",
            details={
                "goal_id": goal_id,
                "current_state": current_state,
                "expected_states": expected_states
            }
        )


class InvariantViolation(BaseGoalException):
    """System invariant violated (critical error)"""

    def __init__(self, invariant: str, goal_id: str = None):
        super().__init__(
            message=f"System invariant violated: {invariant}",
            details={
                "goal_id": goal_id,
                "invariant": invariant
            }
        )


# =============================================================================
# Persistence
# =============================================================================

class PersistenceFailed(BaseGoalException):
    """The item store rejected or could not complete a write"""

    category = "NETWORK"

    def __init__(self, operation: str, reason: str):
        super().__init__(
            message=f"Persistence call failed: {operation}",
            details={"operation": operation, "reason": reason}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    GoalValidationError: 400,
    DreamNotFound: 404,
    GoalNotFound: 404,
    NonCurrentWeekMutation: 409,
    CompletionLimitReached: 409,
    InvalidGoalState: 409,
    PersistenceFailed: 502,
    InvariantViolation: 500,
}

CODE_TO_STATUS = {exc.__name__: status for exc, status in EXCEPTION_TO_STATUS.items()}
