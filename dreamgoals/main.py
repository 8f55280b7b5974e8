"""
HTTP application

    uvicorn dreamgoals.main:app

The item store backend is picked by ITEM_STORE_BACKEND (memory | http | sql).
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, Optional

from fastapi import FastAPI, HTTPException

from dreamgoals import config
from dreamgoals.api.endpoints.goals import map_result_to_http, router as goals_router
from dreamgoals.api.middleware import CORSMiddleware, LoggingMiddleware, cors_options
from dreamgoals.goal_lifecycle_service import GoalLifecycleManager
from dreamgoals.infrastructure.item_store import InMemoryItemStore
from dreamgoals.logging_config import get_logger

logger = get_logger(__name__)


class ManagerRegistry:
    """One loaded GoalLifecycleManager per user id"""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock
        self._managers: Dict[str, GoalLifecycleManager] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> GoalLifecycleManager:
        async with self._lock:
            manager = self._managers.get(user_id)
            if manager is not None:
                return manager

            kwargs = {"clock": self._clock} if self._clock else {}
            manager = GoalLifecycleManager(user_id, self.store, **kwargs)
            result = await manager.load()
            if not result.success:
                raise map_result_to_http(result)
            self._managers[user_id] = manager
            return manager


async def _open_store(backend: str):
    """Returns (store, close coroutine function)"""
    if backend == "http":
        from dreamgoals.infrastructure.http_item_store import HttpItemStore

        store = HttpItemStore()
        return store, store.aclose

    if backend == "sql":
        from dreamgoals.database import init_models, make_engine, make_session_factory
        from dreamgoals.infrastructure.sql_item_store import SqlItemStore

        engine = make_engine()
        await init_models(engine)
        return SqlItemStore(make_session_factory(engine)), engine.dispose

    if backend != "memory":
        raise ValueError(f"Unknown ITEM_STORE_BACKEND: {backend!r}")
    return InMemoryItemStore(), None


def create_app(store=None, clock: Optional[Callable[[], datetime]] = None) -> FastAPI:
    """
    Build the FastAPI app. Passing `store` skips backend selection, which
    is how tests run the app without a lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        close = None
        if getattr(app.state, "managers", None) is None:
            opened, close = await _open_store(config.ITEM_STORE_BACKEND)
            app.state.managers = ManagerRegistry(opened, clock)
            logger.info("item_store_opened", backend=config.ITEM_STORE_BACKEND)
        yield
        if close is not None:
            await close()

    app = FastAPI(title="dreamgoals", lifespan=lifespan)
    app.state.managers = ManagerRegistry(store, clock) if store is not None else None

    app.add_middleware(CORSMiddleware, **cors_options(config.ALLOWED_ORIGINS))
    app.add_middleware(LoggingMiddleware)

    app.include_router(goals_router)

    @app.get("/health")
    async def health():
        if app.state.managers is None:
            raise HTTPException(status_code=503, detail="Item store not ready")
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
