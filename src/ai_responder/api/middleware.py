from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class TraceLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns the request trace id (client `X-Trace-Id` or a fresh one) and writes one access line per request."""

    def __init__(self, app):
        super().__init__(app)
        self._logger = logging.getLogger(__name__)

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("x-trace-id") or uuid4().hex
        request.state.trace_id = trace_id
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            line = json.dumps(
                {
                    "event": "api_request",
                    "trace_id": trace_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code if response is not None else 500,
                    "latency_ms": latency_ms,
                    "outcome": "success" if response is not None and response.status_code < 500 else "error",
                },
                ensure_ascii=False,
            )
            if response is None or response.status_code >= 500:
                self._logger.error(line)
            else:
                self._logger.info(line)
        response.headers["X-Trace-Id"] = trace_id
        response.headers["X-Response-Time-Ms"] = str(latency_ms)
        return response


def setup_middlewares(app) -> None:
    app.add_middleware(TraceLoggingMiddleware)
