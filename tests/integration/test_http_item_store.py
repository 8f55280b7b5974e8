"""
HTTP ITEM STORE TESTS

The item store API is replaced with an httpx.MockTransport handler.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from dreamgoals.infrastructure.http_item_store import HttpItemStore
from dreamgoals.schemas import Dream, WeeklyGoalInstance, WeeklyGoalTemplate
from dreamgoals.scoring_engine import create_scoring_entry

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]

BASE_URL = "http://items.test/api"
NOW = datetime(2025, 10, 22, 10, 0, tzinfo=timezone.utc)


def make_store(handler) -> HttpItemStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return HttpItemStore(client=client)


class TestRequests:

    async def test_save_dreams_posts_camel_case(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "id": "u1_dreams"})

        store = make_store(handler)
        template = WeeklyGoalTemplate(id="template_g1", goal_id="g1", title="Run", target_weeks=12)
        result = await store.save_dreams("u1", [Dream(id="d1", title="Marathon")], [template])

        assert result.success
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/saveDreams"
        body = json.loads(request.content)
        assert body["userId"] == "u1"
        assert body["weeklyGoalTemplates"][0]["goalId"] == "g1"
        assert body["weeklyGoalTemplates"][0]["targetWeeks"] == 12

    async def test_load_dreams(self):
        def handler(request):
            return httpx.Response(200, json={
                "dreamBook": [{"id": "d1", "title": "Marathon", "goals": [{"id": "g1", "title": "Run"}]}],
                "weeklyGoalTemplates": [{"id": "template_g1", "goalId": "g1", "title": "Run"}],
            })

        result = await make_store(handler).load_dreams("u1")

        assert result.data["dreams"][0].goals[0].id == "g1"
        assert result.data["templates"][0].goal_id == "g1"

    async def test_unknown_user_loads_empty(self):
        result = await make_store(lambda request: httpx.Response(404)).load_dreams("u1")
        assert result.data == {"dreams": (), "templates": ()}

    async def test_current_week(self):
        def handler(request):
            assert request.url.path == "/api/getCurrentWeek/u1"
            return httpx.Response(200, json={"success": True, "data": {
                "weekId": "2025-W43",
                "goals": [{"id": "t1_2025-W43", "title": "Run", "weekId": "2025-W43", "completionCount": 1}],
            }})

        result = await make_store(handler).get_current_week("u1")

        assert result.data.week_id == "2025-W43"
        assert result.data.goals[0].completion_count == 1

    async def test_no_current_week(self):
        result = await make_store(lambda r: httpx.Response(200, json={"success": True, "data": None})) \
            .get_current_week("u1")
        assert result.success and result.data is None

    async def test_save_current_week(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        goal = WeeklyGoalInstance(id="t1_2025-W43", title="Run", week_id="2025-W43")
        await make_store(handler).save_current_week("u1", "2025-W43", [goal])

        assert seen[0]["weekId"] == "2025-W43"
        assert seen[0]["goals"][0]["id"] == "t1_2025-W43"

    async def test_scoring(self):
        def handler(request):
            if request.url.path.endswith("/saveScoring"):
                return httpx.Response(200, json={"success": True, "totalScore": 13})
            assert request.url.params["year"] == "2025"
            return httpx.Response(200, json={
                "entries": [create_scoring_entry("dream", 10, "Added dream", now=NOW).to_wire()],
                "totalScore": 10,
            })

        store = make_store(handler)
        added = await store.add_scoring_entry("u1", 2025, create_scoring_entry("week", 3, "x", now=NOW))
        scoring = await store.get_scoring("u1", 2025)

        assert added.data["totalScore"] == 13
        assert scoring.data["totalScore"] == 10
        assert scoring.data["entries"][0].points == 10


class TestFailures:

    async def test_http_error_becomes_failed_result(self):
        result = await make_store(lambda r: httpx.Response(500, text="boom")).save_dreams("u1", [], [])
        assert not result.success
        assert result.error.code == "PersistenceFailed"
        assert result.error.details["reason"] == "HTTP 500"

    async def test_transport_error_becomes_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_store(handler).get_current_week("u1")

        assert result.error.details["operation"] == "get_current_week"

    async def test_rejected_body_becomes_failed_result(self):
        handler = lambda r: httpx.Response(200, json={"success": False, "error": "quota"})  # noqa: E731
        result = await make_store(handler).save_current_week("u1", "2025-W43", [])
        assert result.error.details["reason"] == "quota"

    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)), base_url=BASE_URL)
        async with HttpItemStore(client=client):
            pass
        assert not client.is_closed
        await client.aclose()
