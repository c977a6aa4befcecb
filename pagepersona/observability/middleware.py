"""Access logging: one JSON line per request on the pagepersona.access logger, with request id and latency."""
import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from pagepersona.guardrails.rate_limit import client_ip

access_logger = logging.getLogger("pagepersona.access")

REQUEST_ID_HEADER = "x-request-id"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        entry = {
            "request_id": request_id,
            "client": client_ip(request),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2),
        }
        if response.status_code == 429:
            entry["retry_after"] = response.headers.get("retry-after")
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        access_logger.log(level, json.dumps(entry))
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
