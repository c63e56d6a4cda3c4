from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Plan(str, Enum):
    FREE = "free"
    TRIALING = "trialing"
    PRO = "pro"
    ENTERPRISE = "enterprise"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


NON_ENTITLED_PLANS = frozenset({Plan.FREE, Plan.PAST_DUE, Plan.CANCELED})


class Mode(str, Enum):
    PLAN = "plan"
    EDIT = "edit"
    BYPASS = "bypass"


ALL_MODES: tuple[Mode, ...] = (Mode.PLAN, Mode.EDIT, Mode.BYPASS)


class Scope(str, Enum):
    ACTIVE_CANVAS = "active_canvas"
    SELECTION = "selection"


class Task(str, Enum):
    CHAT = "chat"
    FIX_GRAPH = "fix_graph"
    EXPLAIN_NODE = "explain_node"
    GENERATE_TEMPLATE = "generate_template"
    GENERATE_THEME = "generate_theme"


RiskLevel = Literal["low", "medium", "high"]
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high")


# Patch op shapes as produced by the model and consumed by the client-side executor.
class AiNodeSpec(TypedDict, total=False):
    id: str
    blockType: str
    label: str
    position: dict[str, float]
    data: dict[str, Any]


class AiEdgeSpec(TypedDict, total=False):
    id: str
    source: str
    sourceHandle: str
    target: str
    targetHandle: str


class AiVariableSpec(TypedDict, total=False):
    id: str
    name: str
    value: float
    unit: str
    description: str


class AddNodeOp(TypedDict):
    op: Literal["addNode"]
    node: AiNodeSpec


class AddEdgeOp(TypedDict):
    op: Literal["addEdge"]
    edge: AiEdgeSpec


class UpdateNodeDataOp(TypedDict):
    op: Literal["updateNodeData"]
    nodeId: str
    data: dict[str, Any]


class RemoveNodeOp(TypedDict):
    op: Literal["removeNode"]
    nodeId: str


class RemoveEdgeOp(TypedDict):
    op: Literal["removeEdge"]
    edgeId: str


class SetInputBindingOp(TypedDict):
    op: Literal["setInputBinding"]
    nodeId: str
    portId: str
    # {"kind": "literal", "value": n} | {"kind": "const", "constOpId": id} | {"kind": "var", "varId": id}
    binding: dict[str, Any]


class CreateVariableOp(TypedDict):
    op: Literal["createVariable"]
    variable: AiVariableSpec


class UpdateVariableOp(TypedDict):
    op: Literal["updateVariable"]
    varId: str
    patch: AiVariableSpec


AiPatchOp = Union[
    AddNodeOp,
    AddEdgeOp,
    UpdateNodeDataOp,
    RemoveNodeOp,
    RemoveEdgeOp,
    SetInputBindingOp,
    CreateVariableOp,
    UpdateVariableOp,
]


class RiskAssessment(TypedDict):
    level: RiskLevel
    reasons: list[str]


class AiResponsePayload(TypedDict, total=False):
    mode: str
    message: str
    assumptions: list[str]
    risk: RiskAssessment
    patch: dict[str, list[AiPatchOp]]
    explanation: dict[str, Any]
    template: dict[str, Any]
    theme: dict[str, Any]


class Diagnostic(BaseModel):
    level: str
    code: str
    message: str
    node_ids: Optional[list[str]] = Field(default=None, alias="nodeIds")

    model_config = ConfigDict(populate_by_name=True)


class ClientContext(BaseModel):
    locale: Optional[str] = None
    theme: Optional[str] = None
    decimal_places: Optional[int] = Field(default=None, alias="decimalPlaces")
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class CopilotRequest(BaseModel):
    mode: Mode
    scope: Scope
    task: Task = Task.CHAT
    user_message: str = Field(alias="userMessage")
    project_id: str = Field(alias="projectId")
    canvas_id: str = Field(alias="canvasId")
    selected_node_ids: list[str] = Field(default_factory=list, alias="selectedNodeIds")
    # Explicit organization for multi-org enterprise members.
    org_id: Optional[str] = Field(default=None, alias="orgId")
    client_context: Optional[ClientContext] = Field(default=None, alias="clientContext")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("task", mode="before")
    @classmethod
    def _default_unknown_task(cls, value: Any) -> Any:
        # Unknown or missing tasks fall back to chat rather than rejecting the request.
        valid = {task.value for task in Task}
        return value if isinstance(value, str) and value in valid else Task.CHAT

    @field_validator("selected_node_ids", mode="before")
    @classmethod
    def _coerce_selection(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []
