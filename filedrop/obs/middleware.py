"""
FastAPI middleware that logs basic request/response info to the event sink
"""
from __future__ import annotations
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from .events import record_event

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        path = request.url.path
        method = request.method
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
            return response
        finally:
            # for SSE streams this measures time to first byte, not stream lifetime
            dt = (time.perf_counter() - t0) * 1000.0
            record_event("http", {"path": path, "method": method, "status": status, "ms": round(dt, 2)})
