from __future__ import annotations

from graphpilot.domain.copilot import Mode, Task


BLOCK_CATALOG_DIGEST = """Available blockTypes (use ONLY these):
INPUT: number, slider, variableSource, constant, material
CONSTANTS: pi, euler, tau, phi
MATH: add(a,b), subtract(a,b), multiply(a,b), divide(a,b), negate(a), abs(a), sqrt(a), power(base,exp), floor(a), ceil(a), round(a), mod(a,b), clamp(val,min,max)
TRIG: sin(a), cos(a), tan(a), asin(a), acos(a), atan(a), atan2(y,x), degToRad(deg), radToDeg(rad)
LOGIC: greater(a,b), less(a,b), equal(a,b), ifthenelse(cond,then,else), max(a,b), min(a,b)
OUTPUT: display(value), probe(value)
ENG.MECHANICS: eng.mechanics.hooke(F,k), eng.mechanics.power_work_time(W,t), eng.mechanics.kinetic_energy(m,v), eng.mechanics.potential_energy(m,g,h), eng.mechanics.momentum(m,v)
ENG.FLUIDS: eng.fluids.reynolds(rho,v,D,mu), eng.fluids.bernoulli_pressure(rho,v,h), eng.fluids.flow_rate(A,v)
ENG.SECTIONS: eng.sections.bending_stress(M,y,I), eng.sections.area_annulus(d_inner,d_outer)
FIN.TVM: fin.tvm.compound_fv(PV,r,n,t), fin.tvm.rule_of_72(r)
STATS: stats.desc.mean(c,x1..x6), stats.desc.stddev(c,x1..x6), stats.rel.linreg_slope(c,x1..x6,y1..y6)

Port naming: binary ops use a,b. All blocks output via "out" handle.
Edge sourceHandle is always "out". targetHandle is the port id (e.g. "a", "b", "value").
Node IDs: use "ai_node_1", "ai_node_2", etc. Edge IDs: use "ai_edge_1", etc."""

PATCH_OP_CATALOG = """Permitted patch ops (use ONLY these):
{ "op": "addNode", "node": { "id": "ai_node_1", "blockType": "number", "label": "Force", "position": { "x": 100, "y": 100 }, "data": { "value": 10 } } }
{ "op": "addEdge", "edge": { "id": "ai_edge_1", "source": "ai_node_1", "sourceHandle": "out", "target": "ai_node_2", "targetHandle": "a" } }
{ "op": "updateNodeData", "nodeId": "existing_id", "data": { "value": 42 } }
{ "op": "removeNode", "nodeId": "existing_id" }
{ "op": "removeEdge", "edgeId": "existing_id" }
{ "op": "setInputBinding", "nodeId": "existing_id", "portId": "a", "binding": { "kind": "literal", "value": 3 } }
{ "op": "createVariable", "variable": { "id": "ai_var_1", "name": "g", "value": 9.81, "unit": "m/s^2" } }
{ "op": "updateVariable", "varId": "existing_var_id", "patch": { "value": 9.8 } }
Bindings are { "kind": "literal", "value": n }, { "kind": "const", "constOpId": id } or { "kind": "var", "varId": id }."""

_BASE_PROMPT = f"""You are ChainSolve Copilot, an AI assistant that helps users build node-graph calculation chains.

{BLOCK_CATALOG_DIGEST}

{PATCH_OP_CATALOG}

RULES:
- Return ONLY valid JSON matching the required schema. No markdown, no code fences.
- Do NOT hallucinate blockType values. Only use block types from the catalog above.
- Do NOT invent op types. Only use the patch ops listed above.
- All node IDs must be unique strings prefixed with "ai_node_".
- All edge IDs must be unique strings prefixed with "ai_edge_".
- Only reference existing node, edge, or variable ids that appear in the provided canvas context.
- Edge sourceHandle is ALWAYS "out". Edge targetHandle is the input port id.
- For "number" nodes, set data.value to the numeric value.
- Position nodes in a readable left-to-right layout (x increases by ~200 per column).
- Keep explanations concise. Focus on the graph structure.
- Assess risk honestly: low for simple additions, medium for >10 ops or variable changes, high for removals."""

_READ_ONLY_ENVELOPE = """  "mode": "plan",
  "message": "{message}",
  "assumptions": [],
  "risk": {{ "level": "low", "reasons": [] }},
  "patch": {{ "ops": [] }},"""


def _read_only_envelope(message: str) -> str:
    return _READ_ONLY_ENVELOPE.format(message=message)


def _fix_graph_prompt(mode: str) -> str:
    return f"""{_BASE_PROMPT}

TASK: FIX GRAPH
You are given diagnostics about issues in the user's graph. Propose patch ops that fix them.
Common fixes: add missing connections, remove duplicate edges, fix fan-in violations, set default values for unconnected inputs.
For cycles: explain why the cycle exists and suggest which edge to remove, but mark as high risk.
Do NOT delete nodes unless explicitly asked. Prefer fixing connections and bindings.
Mode: {mode}

Required JSON response:
{{
  "mode": "{mode}",
  "message": "what was fixed and why",
  "assumptions": ["any assumptions"],
  "risk": {{ "level": "low"|"medium"|"high", "reasons": ["..."] }},
  "patch": {{ "ops": [...] }}
}}"""


def _explain_node_prompt() -> str:
    return f"""{_BASE_PROMPT}

TASK: EXPLAIN NODE
Explain the selected node(s): what the block does, current inputs/bindings, upstream dependencies, and any diagnostics.
This is READ-ONLY. Do NOT propose any patch ops. Return empty ops array.

Required JSON response:
{{
{_read_only_envelope("concise explanation of the node and its role in the chain")}
  "explanation": {{
    "block": {{ "type": "blockType", "whatItDoes": "description", "inputs": ["port names"], "outputs": ["out"] }},
    "bindings": [{{ "portId": "a", "source": "edge|literal|default", "value": 10 }}],
    "upstream": [{{ "nodeId": "n1", "label": "Force", "blockType": "number" }}],
    "diagnostics": [{{ "level": "warn", "code": "orphan", "message": "..." }}]
  }}
}}"""


def _generate_template_prompt() -> str:
    return f"""{_BASE_PROMPT}

TASK: GENERATE TEMPLATE
Based on the user's selection, generate a reusable template artifact with metadata.
The template should be a self-contained subgraph (nodes + edges) with normalized positions.
Do NOT propose patch ops; the template is saved separately from the canvas.

Required JSON response:
{{
{_read_only_envelope("description of the template")}
  "template": {{
    "name": "Template Name",
    "description": "What this template does",
    "tags": ["engineering", "mechanics"]
  }}
}}"""


THEME_VARIABLES = (
    "--bg-primary",
    "--bg-secondary",
    "--bg-tertiary",
    "--text-primary",
    "--text-secondary",
    "--accent",
    "--accent-hover",
    "--accent-active",
    "--node-bg",
    "--node-border",
    "--node-header",
    "--node-header-text",
    "--node-text",
    "--node-port",
    "--edge-default",
    "--edge-selected",
    "--edge-animated",
    "--handle-bg",
    "--handle-border",
)


def _generate_theme_prompt() -> str:
    return f"""{_BASE_PROMPT}

TASK: GENERATE THEME
Based on the user's description, generate CSS variable values for a ChainSolve theme.
Available CSS variables: {", ".join(THEME_VARIABLES)}.
Values must be valid CSS color values (hex, rgb, hsl).
Do NOT propose patch ops.

Required JSON response:
{{
{_read_only_envelope("description of the theme")}
  "theme": {{
    "name": "Theme Name",
    "baseMode": "dark"|"light",
    "variables": {{ "--bg-primary": "#1a1a2e", "--accent": "#e94560", ... }}
  }}
}}"""


_CHAT_MODE_INSTRUCTIONS = {
    Mode.PLAN.value: "plan: describe the steps only. patch.ops MUST be empty.",
    Mode.EDIT.value: "edit: propose ops for user review. Each change is confirmed by the user before it is applied.",
    Mode.BYPASS.value: "bypass: propose ops for auto-apply. The user still confirms high-risk changes.",
}


def _chat_prompt(mode: str) -> str:
    return f"""{_BASE_PROMPT}
- Current mode: {_CHAT_MODE_INSTRUCTIONS.get(mode, _CHAT_MODE_INSTRUCTIONS[Mode.EDIT.value])}

Required JSON response schema:
{{
  "mode": "{mode}",
  "message": "human explanation of what this does",
  "assumptions": ["any assumptions made"],
  "risk": {{ "level": "low"|"medium"|"high", "reasons": ["..."] }},
  "patch": {{
    "ops": [ ...patch ops from the permitted list... ]
  }}
}}"""


def build_system_prompt(mode: Mode | str, task: Task | str) -> str:
    # Map the task to its fixed template; unknown tasks use the mode-aware chat template.
    mode_value = mode.value if isinstance(mode, Mode) else str(mode)
    task_value = task.value if isinstance(task, Task) else str(task)

    if task_value == Task.FIX_GRAPH.value:
        return _fix_graph_prompt(mode_value)
    if task_value == Task.EXPLAIN_NODE.value:
        return _explain_node_prompt()
    if task_value == Task.GENERATE_TEMPLATE.value:
        return _generate_template_prompt()
    if task_value == Task.GENERATE_THEME.value:
        return _generate_theme_prompt()
    return _chat_prompt(mode_value)


def build_user_prompt(user_message: str, context_summary: str) -> str:
    if not context_summary:
        return user_message
    return f"{user_message}\n{context_summary}"


REPAIR_INSTRUCTION = (
    "Your previous response was not valid JSON matching the schema. "
    "Please return ONLY the corrected JSON with no extra text."
)


def build_messages(system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def build_repair_messages(system_prompt: str, user_prompt: str, invalid_output: str) -> list[dict[str, str]]:
    # Replay the original exchange so the model corrects its own output.
    messages = build_messages(system_prompt, user_prompt)
    messages.append({"role": "assistant", "content": invalid_output})
    messages.append({"role": "user", "content": REPAIR_INSTRUCTION})
    return messages
