"""
Centralized Error Handler for the goal engine

Engine operations report failures as OperationResult values instead of
raising. Domain exceptions raised inside an operation are converted here
and logged; anything else propagates to the caller.
"""
import inspect
from functools import wraps
from typing import Any, Awaitable, Callable

from dreamgoals.exceptions import BaseGoalException
from dreamgoals.logging_config import get_logger, log_error
from dreamgoals.schemas import OperationResult

logger = get_logger(__name__)


class ErrorHandler:
    """Conversion helpers between domain exceptions and results"""

    @staticmethod
    def to_result(
        exc: BaseGoalException,
        context: dict | None = None,
        log_level: str = "WARNING"
    ) -> OperationResult:
        ctx = dict(context or {})
        ctx.update({"error_code": exc.code, **exc.details})
        log_error(exc, ctx, log_level)
        return OperationResult.fail(exc)

    @staticmethod
    def raise_for_result(result: OperationResult, exc_factory: Callable[[OperationResult], BaseGoalException]) -> Any:
        """
        Unwrap a collaborator result or raise the domain exception built
        by exc_factory.

        Usage:
            week = ErrorHandler.raise_for_result(
                await store.get_current_week(user_id),
                lambda r: PersistenceFailed("get_current_week", r.error.message),
            )
        """
        if not result.success:
            raise exc_factory(result)
        return result.data


def returns_result(
    operation: str | None = None,
    log_level: str = "WARNING"
):
    """
    Decorator for async engine operations.

    - return value is wrapped into OperationResult.ok(...) unless it
      already is an OperationResult
    - BaseGoalException is logged and turned into OperationResult.fail(...)
    - other exceptions propagate unchanged

    Usage:
        @returns_result("add_goal")
        async def add_goal(self, dream_id, spec):
            ...
    """
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[OperationResult]]:
        name = operation or func.__name__

        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"returns_result expects a coroutine function, got {func!r}")

        @wraps(func)
        async def wrapper(*args, **kwargs) -> OperationResult:
            try:
                value = await func(*args, **kwargs)
            except BaseGoalException as e:
                return ErrorHandler.to_result(e, {"operation": name}, log_level)
            if isinstance(value, OperationResult):
                return value
            return OperationResult.ok(value)

        return wrapper

    return decorator
