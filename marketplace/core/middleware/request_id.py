import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.core.logging import request_id_ctx_var

logger = logging.getLogger("marketplace.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and echo it back."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)

        response.headers[self.header_name] = rid
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "request_id": rid,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response
