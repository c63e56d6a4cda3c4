from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from graphpilot.apps.api.errors import (
    copilot_error_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from graphpilot.apps.api.routes.ai import router as ai_router
from graphpilot.apps.api.routes.health import router as health_router
from graphpilot.core.config import get_settings
from graphpilot.core.errors import CopilotError
from graphpilot.core.logging import configure_logging
from graphpilot.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            # Answer unhandled errors here so the 500 carries the request id and is counted.
            response = await unhandled_exception_handler(request, exc)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(CopilotError)
    async def _copilot_error_handler(request: Request, exc: CopilotError):
        return await copilot_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(ai_router, prefix="/api")
    app.include_router(health_router, prefix="/api")

    return app


app = create_app()
