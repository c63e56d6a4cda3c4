from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from graphpilot.apps.api.response import error_response, get_request_id
from graphpilot.core.errors import CopilotError


logger = logging.getLogger(__name__)


def _detail_message(detail: Any) -> tuple[str, str | None]:
    # Extract message/code from HTTPException detail payloads.
    if isinstance(detail, dict):
        return str(detail.get("message") or "Request failed"), detail.get("code")
    if isinstance(detail, str):
        return detail, None
    return "Request failed", None


async def copilot_error_handler(request: Request, exc: CopilotError) -> JSONResponse:
    # Typed pipeline errors map 1:1 to a status and client-facing code.
    request_id = get_request_id(request)
    if exc.status_code >= 500:
        logger.error(
            "copilot_request_failed request_id=%s status=%s code=%s error=%s",
            request_id,
            exc.status_code,
            exc.code,
            exc.message,
        )
    else:
        logger.info(
            "copilot_request_rejected request_id=%s status=%s code=%s",
            request_id,
            exc.status_code,
            exc.code,
        )
    payload = error_response(message=exc.message, code=exc.code, extra=exc.extra)
    return JSONResponse(content=payload, status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Normalize HTTPExceptions into the shared error envelope.
    message, code = _detail_message(exc.detail)
    payload = error_response(message=message, code=code)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404, 405) are also wrapped consistently.
    message, code = _detail_message(exc.detail)
    payload = error_response(message=message, code=code)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(message="Invalid request body", code="REQUEST_VALIDATION_ERROR")
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; details go to the log under the request id only.
    logger.exception(
        "copilot_unhandled_error request_id=%s",
        get_request_id(request),
        exc_info=exc,
    )
    payload = error_response(message="Internal error", code="INTERNAL_ERROR")
    return JSONResponse(content=payload, status_code=500)
