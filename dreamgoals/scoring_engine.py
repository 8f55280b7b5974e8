"""
Scoring Engine

Builds immutable scoring entries and appends them to the user's yearly
scoring document through the item store. Point values come from an
injectable ScoringRules table so deployments can tune them.

Appending an entry and the goal write that triggered it are separate
store calls; an award can be lost if the process dies between the two.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dreamgoals.config import SCORING_RULES
from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.logging_config import get_logger
from dreamgoals.schemas import ScoringEntry, ScoringRules, ScoringSource

logger = get_logger(__name__)


DEFAULT_RULES = ScoringRules(**SCORING_RULES)


def create_scoring_entry(
    source: ScoringSource,
    points: int,
    activity: str,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> ScoringEntry:
    """Pure constructor; metadata may carry dream_id, week_id and connect_id."""
    moment = now or datetime.now(timezone.utc)
    meta = metadata or {}
    return ScoringEntry(
        id=f"score_{int(moment.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
        source=ScoringSource(source),
        points=points,
        activity=activity,
        date=moment.date().isoformat(),
        dream_id=meta.get("dream_id"),
        week_id=meta.get("week_id"),
        connect_id=meta.get("connect_id"),
        created_at=moment.isoformat(),
    )


@dataclass(frozen=True)
class Award:
    entry: ScoringEntry
    total_score: int


class ScoringService:
    """
    Usage:
        scoring = ScoringService(item_store)
        award = await scoring.award(user_id, 2025, ScoringSource.WEEK,
                                    'Completed: "Run"', {"week_id": "2025-W43"})
    """

    def __init__(self, store, rules: ScoringRules | None = None):
        self._store = store
        self.rules = rules or DEFAULT_RULES

    def points_for(self, source: ScoringSource) -> int:
        return {
            ScoringSource.DREAM: self.rules.dream_completed,
            ScoringSource.WEEK: self.rules.weekly_goal_completed,
            ScoringSource.MILESTONE: self.rules.milestone_completed,
            ScoringSource.CONNECT: self.rules.connect,
        }[ScoringSource(source)]

    async def award(
        self,
        user_id: str,
        year: int,
        source: ScoringSource,
        activity: str,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Award:
        """
        Append one entry to the year's scoring document.

        Raises:
            PersistenceFailed: the store rejected the entry
        """
        entry = create_scoring_entry(source, self.points_for(source), activity, metadata, now)
        result = await self._store.add_scoring_entry(user_id, year, entry)
        if not result.success:
            raise PersistenceFailed("add_scoring_entry", result.error.message if result.error else "unknown")

        total = (result.data or {}).get("totalScore", entry.points)
        logger.info(
            "score_awarded",
            user_id=user_id,
            source=entry.source.value,
            points=entry.points,
            total_score=total,
        )
        return Award(entry=entry, total_score=total)
