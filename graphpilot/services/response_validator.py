from __future__ import annotations

import copy
from typing import Any

from graphpilot.domain.copilot import RISK_LEVELS


def validate_ai_response(raw: Any) -> dict[str, Any] | None:
    """Repair a decoded model payload into the response contract.

    Only a missing or non-string ``message`` makes the payload invalid; every
    other structural deviation is coerced to a safe default so cosmetic drift
    does not spend the single repair round-trip. Returns a repaired copy and
    never raises. Applying it to its own output is a no-op.
    """
    if not isinstance(raw, dict):
        return None
    if not isinstance(raw.get("message"), str):
        return None

    payload = copy.deepcopy(raw)

    if not isinstance(payload.get("assumptions"), list):
        payload["assumptions"] = []

    risk = payload.get("risk")
    if not isinstance(risk, dict):
        risk = {"level": "low", "reasons": []}
        payload["risk"] = risk
    if risk.get("level") not in RISK_LEVELS:
        risk["level"] = "low"
    if not isinstance(risk.get("reasons"), list):
        risk["reasons"] = []

    patch = payload.get("patch")
    if not isinstance(patch, dict):
        patch = {"ops": []}
        payload["patch"] = patch
    if not isinstance(patch.get("ops"), list):
        patch["ops"] = []

    return payload
