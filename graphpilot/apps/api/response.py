from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(
    *,
    message: str,
    code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Flat error envelope the copilot client branches on: {ok, error, code?}.
    payload: dict[str, Any] = {"ok": False, "error": message}
    if code:
        payload["code"] = code
    if extra:
        for key, value in extra.items():
            payload.setdefault(key, value)
    return payload
