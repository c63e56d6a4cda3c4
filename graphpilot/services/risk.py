from __future__ import annotations

from typing import Any, Iterable

from graphpilot.domain.copilot import Mode, RiskAssessment


# Thresholds for risk classification.
HIGH_REMOVE_THRESHOLD = 5
MEDIUM_OPS_THRESHOLD = 10
MEDIUM_ADD_NODES_THRESHOLD = 20

_LEVEL_ORDER = {"low": 0, "medium": 1, "high": 2}


def _op_name(op: Any) -> str | None:
    # Ops come straight from model output; anything without an "op" tag counts as unknown.
    if isinstance(op, dict):
        name = op.get("op")
        return name if isinstance(name, str) else None
    return None


def _escalate(current: str, candidate: str) -> str:
    # Levels only move upward within a single assessment.
    return candidate if _LEVEL_ORDER[candidate] > _LEVEL_ORDER[current] else current


def assess_risk(ops: Iterable[Any]) -> RiskAssessment:
    """Derive the risk of a patch independently of the model's self-assessment.

    HIGH: more than five removals.
    MEDIUM: any removeNode, more than ten ops, more than twenty addNode ops,
    or any variable mutation.
    LOW: everything else.
    """
    ops = list(ops)
    if not ops:
        return {"level": "low", "reasons": []}

    names = [_op_name(op) for op in ops]
    remove_nodes = names.count("removeNode")
    remove_edges = names.count("removeEdge")
    add_nodes = names.count("addNode")
    var_ops = names.count("createVariable") + names.count("updateVariable")

    level = "low"
    reasons: list[str] = []

    total_removals = remove_nodes + remove_edges
    if total_removals > HIGH_REMOVE_THRESHOLD:
        level = _escalate(level, "high")
        reasons.append(f"Removes {total_removals} nodes/edges")

    if remove_nodes > 0:
        level = _escalate(level, "medium")
        reasons.append(f"Removes {remove_nodes} node(s)")

    if len(ops) > MEDIUM_OPS_THRESHOLD:
        level = _escalate(level, "medium")
        reasons.append(f"{len(ops)} total operations")

    if add_nodes > MEDIUM_ADD_NODES_THRESHOLD:
        level = _escalate(level, "medium")
        reasons.append(f"Adds {add_nodes} nodes")

    if var_ops > 0:
        level = _escalate(level, "medium")
        reasons.append(f"{var_ops} variable mutation(s)")

    if not reasons:
        reasons.append(f"{len(ops)} operation(s)")

    return {"level": level, "reasons": reasons}  # type: ignore[typeddict-item]


def requires_confirmation(risk_level: str, mode: Mode | str, enterprise_bypass_allowed: bool) -> bool:
    """Advisory gate returned to the client; the executor is the enforcement point.

    Edit mode auto-applies LOW only. Bypass mode auto-applies LOW, plus MEDIUM
    when the organization allows bypass. HIGH always needs confirmation.
    """
    mode_value = mode.value if isinstance(mode, Mode) else mode
    if risk_level == "high":
        return True
    if mode_value == Mode.EDIT.value and risk_level == "medium":
        return True
    if mode_value == Mode.BYPASS.value and risk_level == "medium" and not enterprise_bypass_allowed:
        return True
    return False
