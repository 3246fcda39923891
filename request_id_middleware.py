"""FastAPI middleware that gives every request an X-Request-ID.

An incoming ``X-Request-ID`` is reused so a client can correlate its own logs;
otherwise a fresh id is generated. The id, method and path are bound into
structlog contextvars for the lifetime of the request, which also tags live
stream snapshots produced while handling it.
"""
from __future__ import annotations

import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

_SAFE_ID = re.compile(r"^[A-Za-z0-9-]{8,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    def _request_id(self, request: Request) -> str:
        incoming = request.headers.get(self.header_name)
        if incoming and _SAFE_ID.match(incoming):
            return incoming
        return uuid.uuid4().hex

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # type: ignore[override]
        request_id = self._request_id(request)
        bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)
        request.state.request_id = request_id

        try:
            response: Response = await call_next(request)
        finally:
            # Never leak ids into the next request handled by this task
            clear_contextvars()

        response.headers[self.header_name] = request_id
        return response
