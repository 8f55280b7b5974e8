"""
SCORING ENGINE TESTS
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.infrastructure.item_store import InMemoryItemStore
from dreamgoals.schemas import OperationResult, ScoringRules, ScoringSource
from dreamgoals.scoring_engine import ScoringService, create_scoring_entry

NOW = datetime(2025, 10, 22, 10, 0, tzinfo=timezone.utc)


class TestCreateScoringEntry:

    def test_entry_fields(self):
        entry = create_scoring_entry(
            ScoringSource.WEEK, 3, 'Completed: "Run"', {"week_id": "2025-W43", "dream_id": "d1"}, now=NOW
        )
        assert entry.id.startswith("score_")
        assert entry.date == "2025-10-22"
        assert entry.source == ScoringSource.WEEK
        assert entry.points == 3
        assert entry.week_id == "2025-W43"
        assert entry.dream_id == "d1"
        assert entry.connect_id is None
        assert entry.created_at == NOW.isoformat()

    def test_ids_are_unique(self):
        ids = {create_scoring_entry("week", 3, "x", now=NOW).id for _ in range(20)}
        assert len(ids) == 20

    def test_wire_form_is_camel_case(self):
        wire = create_scoring_entry("dream", 10, "Added dream", {"dream_id": "d1"}, now=NOW).to_wire()
        assert wire["dreamId"] == "d1"
        assert "weekId" not in wire


class TestScoringRules:

    def test_defaults(self):
        service = ScoringService(InMemoryItemStore())
        assert service.points_for(ScoringSource.DREAM) == 10
        assert service.points_for(ScoringSource.WEEK) == 3
        assert service.points_for(ScoringSource.MILESTONE) == 15
        assert service.points_for(ScoringSource.CONNECT) == 3

    def test_connect_points_bounded(self):
        assert ScoringRules(connect=5).connect == 5
        with pytest.raises(ValidationError):
            ScoringRules(connect=6)

    def test_injected_rules(self):
        service = ScoringService(InMemoryItemStore(), ScoringRules(weekly_goal_completed=5))
        assert service.points_for(ScoringSource.WEEK) == 5


class TestAward:

    @pytest.mark.asyncio
    async def test_award_appends_and_returns_total(self):
        store = InMemoryItemStore()
        service = ScoringService(store)

        first = await service.award("u1", 2025, ScoringSource.WEEK, 'Completed: "Run"', now=NOW)
        second = await service.award("u1", 2025, ScoringSource.MILESTONE, "Completed goal", now=NOW)

        assert first.total_score == 3
        assert second.total_score == 18
        scoring = await store.get_scoring("u1", 2025)
        assert [e.points for e in scoring.data["entries"]] == [3, 15]

    @pytest.mark.asyncio
    async def test_store_failure_raises(self):
        class RejectingStore(InMemoryItemStore):
            async def add_scoring_entry(self, user_id, year, entry):
                return OperationResult.fail(PersistenceFailed("add_scoring_entry", "full"))

        store = RejectingStore()
        with pytest.raises(PersistenceFailed):
            await ScoringService(store).award("u1", 2025, ScoringSource.WEEK, "x", now=NOW)
