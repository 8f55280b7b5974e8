"""
HTTP item store client

Talks to the item store API:

    POST /saveDreams            {userId, dreams, weeklyGoalTemplates}
    GET  /getUserData/{userId}  -> {dreamBook, weeklyGoalTemplates, ...}
    GET  /getCurrentWeek/{userId} -> {success, data: {weekId, goals} | null}
    POST /saveCurrentWeek       {userId, weekId, goals}
    POST /saveScoring           {userId, year, entry} -> {success, totalScore, ...}
    GET  /getScoring/{userId}?year=YYYY -> {entries, totalScore}

Transport and HTTP errors come back as failed OperationResults carrying a
PersistenceFailed error; no retries are attempted.
"""
from typing import Any, Dict

import httpx

from dreamgoals import config
from dreamgoals.exceptions import PersistenceFailed
from dreamgoals.logging_config import get_logger
from dreamgoals.schemas import (
    CurrentWeek,
    Dream,
    OperationResult,
    ScoringEntry,
    WeeklyGoalTemplate,
)

logger = get_logger(__name__)


class HttpItemStore:
    """
    Usage:
        async with HttpItemStore() as store:
            result = await store.get_current_week("user-1")
    """

    def __init__(
        self,
        base_url: str = config.ITEM_STORE_URL,
        timeout: float = config.ITEM_STORE_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "HttpItemStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs,
    ) -> OperationResult:
        try:
            response = await self._client.request(method, path, **kwargs)
            if allow_not_found and response.status_code == 404:
                return OperationResult.ok(None)
            response.raise_for_status()
            body: Dict[str, Any] = response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            logger.warning(
                "item_store_http_error",
                operation=operation,
                status_code=e.response.status_code,
                body=e.response.text[:200],
            )
            return OperationResult.fail(PersistenceFailed(operation, f"HTTP {e.response.status_code}"))

        except httpx.HTTPError as e:
            logger.warning("item_store_unreachable", operation=operation, error=str(e))
            return OperationResult.fail(PersistenceFailed(operation, str(e) or type(e).__name__))

        if body.get("success") is False:
            return OperationResult.fail(PersistenceFailed(operation, str(body.get("error", "rejected"))))
        return OperationResult.ok(body)

    # =========================================================================
    # Dreams & templates
    # =========================================================================

    async def save_dreams(self, user_id, dreams, templates) -> OperationResult:
        return await self._request("save_dreams", "POST", "/saveDreams", json={
            "userId": user_id,
            "dreams": [d.to_wire() for d in dreams],
            "weeklyGoalTemplates": [t.to_wire() for t in templates],
        })

    async def load_dreams(self, user_id) -> OperationResult:
        result = await self._request("load_dreams", "GET", f"/getUserData/{user_id}", allow_not_found=True)
        if not result.success:
            return result
        body = result.data or {}
        return OperationResult.ok({
            "dreams": tuple(Dream.model_validate(d) for d in body.get("dreamBook") or []),
            "templates": tuple(
                WeeklyGoalTemplate.model_validate(t) for t in body.get("weeklyGoalTemplates") or []
            ),
        })

    # =========================================================================
    # Current week
    # =========================================================================

    async def get_current_week(self, user_id) -> OperationResult:
        result = await self._request("get_current_week", "GET", f"/getCurrentWeek/{user_id}")
        if not result.success:
            return result
        data = (result.data or {}).get("data")
        return OperationResult.ok(CurrentWeek.model_validate(data) if data else None)

    async def save_current_week(self, user_id, week_id, goals) -> OperationResult:
        return await self._request("save_current_week", "POST", "/saveCurrentWeek", json={
            "userId": user_id,
            "weekId": week_id,
            "goals": [g.to_wire() for g in goals],
        })

    # =========================================================================
    # Scoring
    # =========================================================================

    async def add_scoring_entry(self, user_id, year, entry: ScoringEntry) -> OperationResult:
        return await self._request("add_scoring_entry", "POST", "/saveScoring", json={
            "userId": user_id,
            "year": year,
            "entry": entry.to_wire(),
        })

    async def get_scoring(self, user_id, year) -> OperationResult:
        result = await self._request(
            "get_scoring", "GET", f"/getScoring/{user_id}", params={"year": year}
        )
        if not result.success:
            return result
        body = result.data or {}
        return OperationResult.ok({
            "entries": tuple(ScoringEntry.model_validate(e) for e in body.get("entries") or []),
            "totalScore": body.get("totalScore", 0),
        })
