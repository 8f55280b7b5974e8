"""
Structured logging for the goal engine (structlog)

Modules log snake_case events with keyword context:

    logger = get_logger(__name__)
    logger.info("goal_added", goal_id=goal.id, dream_id=dream_id)

Request-scoped values (request id, user id) are bound with
bind_request_context() and merged into every event logged while the
request is handled.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Iterable

import structlog

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def _processors(json_logs: bool) -> list:
    chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        chain.append(structlog.processors.JSONRenderer())
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=False))
    return chain


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False,
    quiet: Iterable[str] = _QUIET_LOGGERS,
) -> None:
    """
    Configure structlog on top of the standard logging module.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: also write every line to this file
        json_logs: one JSON object per line instead of console output
        quiet: logger names raised to WARNING
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)

    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Attach values to every event logged in the current task"""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_goal_transition(
    goal_id: str,
    from_state: str,
    to_state: str,
    actor: str,
    reason: str,
    at: str | None = None,
) -> None:
    """One line per goal state change; `at` is the engine clock, not wall time"""
    get_logger("goal_transition").info(
        "goal_transition",
        goal_id=goal_id,
        from_state=from_state,
        to_state=to_state,
        user_id=actor,
        reason=reason,
        at=at,
    )


def log_error(
    error: Exception,
    context: dict | None = None,
    level: str = "ERROR",
) -> None:
    """
    Log an exception with its type, message and traceback.

    Domain errors carry a `details` dict which is logged alongside.
    """
    logger = get_logger("error_handler")
    log_func = getattr(logger, level.lower(), logger.error)

    fields = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    details = getattr(error, "details", None)
    if details:
        fields["error_details"] = details
    if context:
        fields.update(context)

    log_func("error_occurred", exc_info=error, **fields)


def http_request_summary(method: str, path: str, status_code: int, duration_ms: float) -> None:
    level = "warning" if status_code >= 500 else "info"
    getattr(get_logger("http"), level)(
        "http_request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


from dreamgoals import config as _config  # noqa: E402

setup_logging(
    level=_config.LOG_LEVEL,
    log_file=_config.LOG_FILE,
    json_logs=_config.JSON_LOGS,
)
