from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("report_validation.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with a request id and the calling actor, and writes one access line."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        actor_id = request.headers.get("X-Actor-Id") or "-"
        request.state.request_id = request_id
        request.state.actor_id = actor_id

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed request_id=%s actor=%s",
                request.method,
                request.url.path,
                request_id,
                actor_id,
            )
            raise
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        response.headers["X-Request-Id"] = request_id
        # Rejected transitions and auth failures log at WARNING.
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s (%sms) request_id=%s actor=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
            actor_id,
        )
        return response
