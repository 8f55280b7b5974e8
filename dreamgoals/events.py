"""
Domain Events

Typed in-process pub/sub used in place of a global "dreams updated"
broadcast. The lifecycle manager publishes, anything interested in dream
or score changes subscribes per event type.

Architecture:
  GoalLifecycleManager publishes DomainEvent
         ↓
  EventBus fans out to subscribers of that type
         ↓
  a failing subscriber is logged, the others still run
"""

import inspect
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from dreamgoals.logging_config import get_logger, log_error

logger = get_logger(__name__)


# =============================================================================
# Event Type
# =============================================================================

class DomainEventType(str, Enum):
    """
    Categories:
    - DREAMS: the dream/template collections changed
    - GOAL: goal lifecycle events
    - WEEK: current-week instance events
    - SCORE: a scoring entry was recorded
    - ERROR: recoverable failure the user should be told about
    """
    DREAMS_UPDATED = "dreams_updated"

    GOAL_ADDED = "goal_added"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_COMPLETED = "goal_completed"

    WEEKLY_GOAL_TOGGLED = "weekly_goal_toggled"

    SCORE_AWARDED = "score_awarded"

    OPERATION_FAILED = "operation_failed"


def _create_event_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    return f"evt_{timestamp}_{uuid.uuid4().hex[:8]}"


class DomainEvent(BaseModel):
    """Something that happened to one user's goals"""
    event_id: str = Field(default_factory=_create_event_id)
    event_type: DomainEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    user_id: str
    goal_id: Optional[str] = Field(None, description="Goal the event is about, if any")
    payload: Dict[str, Any] = Field(default_factory=dict)


Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


# =============================================================================
# Event Bus
# =============================================================================

class EventBus:
    """
    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(DomainEventType.SCORE_AWARDED, on_score)
        await bus.publish(DomainEvent(event_type=..., user_id=...))
        unsubscribe()
    """

    def __init__(self):
        self._handlers: Dict[DomainEventType, List[Handler]] = {}

    def subscribe(self, event_type: DomainEventType, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: DomainEvent) -> None:
        handlers = list(self._handlers.get(event.event_type, []))
        logger.debug(
            "event_published",
            event_type=event.event_type.value,
            goal_id=event.goal_id,
            subscribers=len(handlers),
        )
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_error(e, {"event_type": event.event_type.value, "event_id": event.event_id})
