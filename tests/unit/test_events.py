"""
EVENT BUS TESTS
"""
import pytest

from dreamgoals.events import DomainEvent, DomainEventType, EventBus

pytestmark = pytest.mark.asyncio


def event(event_type=DomainEventType.GOAL_ADDED):
    return DomainEvent(event_type=event_type, user_id="u1", goal_id="g1")


class TestEventBus:

    async def test_subscribers_receive_their_type_only(self):
        bus = EventBus()
        added, completed = [], []
        bus.subscribe(DomainEventType.GOAL_ADDED, added.append)
        bus.subscribe(DomainEventType.GOAL_COMPLETED, completed.append)

        await bus.publish(event())

        assert len(added) == 1
        assert completed == []

    async def test_async_handlers_are_awaited(self):
        bus = EventBus()
        seen = []

        async def handler(evt):
            seen.append(evt.event_id)

        bus.subscribe(DomainEventType.GOAL_ADDED, handler)
        published = event()
        await bus.publish(published)
        assert seen == [published.event_id]

    async def test_failing_handler_does_not_break_others(self):
        """
        SCENARIO: first subscriber raises

        EXPECTED: error is logged, second subscriber still runs
        """
        bus = EventBus()
        seen = []

        def broken(evt):
            raise ValueError("boom")

        bus.subscribe(DomainEventType.GOAL_ADDED, broken)
        bus.subscribe(DomainEventType.GOAL_ADDED, seen.append)

        await bus.publish(event())
        assert len(seen) == 1

    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(DomainEventType.GOAL_ADDED, seen.append)
        unsubscribe()
        await bus.publish(event())
        assert seen == []

    async def test_event_ids_are_unique(self):
        assert event().event_id != event().event_id
