"""
Request interception.

Interceptors get explicit hooks around every request instead of patching
the response object:

    before(request)                          -> runs before routing
    after(request, response, elapsed_ms)     -> runs once a response exists
    on_error(request, exc, elapsed_ms)       -> runs when the app raised

InterceptorMiddleware runs them in registration order for `before` and in
reverse order for `after` and `on_error`. The exception is re-raised after
`on_error` so the server error handler still produces the 500.
"""
import time
import uuid
from typing import Sequence

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)


class RequestInterceptor:
    """Base interceptor; override any hook."""

    async def before(self, request: Request) -> None:
        pass

    async def after(self, request: Request, response: Response, elapsed_ms: float) -> None:
        pass

    async def on_error(self, request: Request, exc: Exception, elapsed_ms: float) -> None:
        pass


class LoggingInterceptor(RequestInterceptor):
    """Binds a request id to the log context and logs each request."""

    header_name = "X-Request-ID"

    async def before(self, request: Request) -> None:
        request_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

    async def after(self, request: Request, response: Response, elapsed_ms: float) -> None:
        response.headers[self.header_name] = request.state.request_id
        logger.info(
            "request_finished",
            status_code=response.status_code,
            elapsed_ms=round(elapsed_ms, 2),
        )

    async def on_error(self, request: Request, exc: Exception, elapsed_ms: float) -> None:
        logger.error(
            "request_finished",
            status_code=500,
            elapsed_ms=round(elapsed_ms, 2),
            error_type=type(exc).__name__,
        )


class InterceptorMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, interceptors: Sequence[RequestInterceptor] = ()):
        super().__init__(app)
        self.interceptors = list(interceptors)

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        for interceptor in self.interceptors:
            await interceptor.before(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000
            for interceptor in reversed(self.interceptors):
                await interceptor.on_error(request, exc, elapsed_ms)
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        for interceptor in reversed(self.interceptors):
            await interceptor.after(request, response, elapsed_ms)
        return response
