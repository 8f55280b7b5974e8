"""
API Middleware Module
CORS options and per-request logging
"""
import time
import uuid
from typing import List

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from dreamgoals.logging_config import bind_request_context, clear_request_context, http_request_summary


def cors_options(allowed_origins: List[str]) -> dict:
    """Keyword arguments for app.add_middleware(CORSMiddleware, ...)"""
    return {
        "allow_origins": [origin.strip() for origin in allowed_origins if origin.strip()],
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", "X-Request-ID"],
        "expose_headers": ["X-Process-Time", "X-Request-ID"],
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id (and the user id for /users/{id}/... paths) to the
    log context, then logs one http_request line per response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        clear_request_context()
        bind_request_context(request_id=request_id)
        parts = request.url.path.strip("/").split("/")
        if len(parts) > 1 and parts[0] == "users":
            bind_request_context(user_id=parts[1])

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            process_time = time.perf_counter() - start_time
            http_request_summary(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(process_time * 1000, 2),
            )
        finally:
            clear_request_context()

        response.headers["X-Process-Time"] = f"{process_time:.6f}"
        response.headers["X-Request-ID"] = request_id
        return response


__all__ = ["CORSMiddleware", "LoggingMiddleware", "cors_options"]
