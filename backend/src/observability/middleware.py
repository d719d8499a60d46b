"""FastAPI middleware for observability.

Binds a correlation id to every HTTP request and logs request outcome.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .request_id import generate_request_id, set_request_id
from .logging_config import get_logger

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Honor or generate X-Request-ID and echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"{request.method} {request.url.path} failed: {e}",
                extra={"latency_ms": round(duration_ms, 2)},
                exc_info=True
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"latency_ms": round(duration_ms, 2)}
        )
        response.headers["X-Request-ID"] = request_id
        return response
