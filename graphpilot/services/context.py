from __future__ import annotations

import json
import logging
import math
from typing import Any, Iterable, Mapping, Sequence

from graphpilot.domain.copilot import Diagnostic, Scope


logger = logging.getLogger(__name__)

CONTEXT_UNAVAILABLE = "(context unavailable)"

DEFAULT_MAX_NODES = 50
DEFAULT_MAX_EDGES = 50
DEFAULT_MAX_DIAGNOSTICS = 20


def _decode_graph(document: str | bytes | Mapping[str, Any]) -> tuple[list[dict], list[dict]]:
    # Accept the raw canvas file or an already-decoded mapping.
    graph = json.loads(document) if isinstance(document, (str, bytes)) else document
    if not isinstance(graph, Mapping):
        raise ValueError("canvas document is not an object")
    nodes = graph.get("nodes") or []
    edges = graph.get("edges") or []
    if not isinstance(nodes, list) or not isinstance(edges, list):
        raise ValueError("canvas nodes/edges must be lists")
    # Entries without an id (nodes) or endpoints (edges) cannot be referenced by patch ops.
    nodes = [n for n in nodes if isinstance(n, dict) and isinstance(n.get("id"), str)]
    edges = [
        e
        for e in edges
        if isinstance(e, dict) and isinstance(e.get("source"), str) and isinstance(e.get("target"), str)
    ]
    return nodes, edges


def one_hop_closure(selected: Iterable[str], edges: Sequence[Mapping[str, Any]]) -> set[str]:
    # Expand from the original selection only; neighbors of neighbors are not pulled in.
    seeds = set(selected)
    closure = set(seeds)
    for edge in edges:
        source, target = edge.get("source"), edge.get("target")
        if source in seeds:
            closure.add(target)
        if target in seeds:
            closure.add(source)
    return closure


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def format_node(node: Mapping[str, Any]) -> str:
    data = node.get("data")
    data = data if isinstance(data, Mapping) else {}
    line = f"{node['id']}: {data.get('blockType') or '?'}"
    label = data.get("label")
    if label:
        line += f' "{label}"'
    if "value" in data:
        line += f" val={_format_value(data['value'])}"
    return line


def format_edge(edge: Mapping[str, Any]) -> str:
    return f"{edge['source']} -> {edge['target']}:{edge.get('targetHandle') or 'value'}"


def format_diagnostic(diagnostic: Diagnostic) -> str:
    line = f"[{diagnostic.level}] {diagnostic.code}: {diagnostic.message}"
    if diagnostic.node_ids:
        line += f" (nodes: {','.join(diagnostic.node_ids)})"
    return line


def _graph_block(
    nodes: list[dict],
    edges: list[dict],
    *,
    scope: Scope,
    selected_node_ids: Sequence[str],
    max_nodes: int,
    max_edges: int,
) -> str:
    relevant_nodes, relevant_edges = nodes, edges
    if scope == Scope.SELECTION and selected_node_ids:
        closure = one_hop_closure(selected_node_ids, edges)
        relevant_nodes = [n for n in nodes if n["id"] in closure]
        relevant_edges = [e for e in edges if e["source"] in closure and e["target"] in closure]

    shown_nodes = relevant_nodes[:max_nodes]
    shown_edges = relevant_edges[:max_edges]

    lines = [f"Current canvas ({len(nodes)} nodes, {len(edges)} edges):", "NODES:"]
    lines.extend(format_node(n) for n in shown_nodes)
    lines.append("EDGES:")
    lines.extend(format_edge(e) for e in shown_edges)

    # The model must never be left to infer whether it saw the whole graph.
    if len(shown_nodes) < len(relevant_nodes):
        lines.append(f"Nodes truncated (showing {len(shown_nodes)} of {len(relevant_nodes)})")
    if len(shown_edges) < len(relevant_edges):
        lines.append(f"Edges truncated (showing {len(shown_edges)} of {len(relevant_edges)})")
    if len(relevant_nodes) < len(nodes):
        lines.append(f"(Showing {len(relevant_nodes)} of {len(nodes)} nodes)")
    return "\n".join(lines)


def build_context_summary(
    document: str | bytes | Mapping[str, Any] | None,
    *,
    scope: Scope = Scope.ACTIVE_CANVAS,
    selected_node_ids: Sequence[str] = (),
    diagnostics: Sequence[Diagnostic] = (),
    max_nodes: int = DEFAULT_MAX_NODES,
    max_edges: int = DEFAULT_MAX_EDGES,
    max_diagnostics: int = DEFAULT_MAX_DIAGNOSTICS,
) -> str:
    """Render a bounded text summary of the canvas for the user prompt.

    Never raises: an unavailable or malformed document degrades to an explicit
    ``(context unavailable)`` marker. Diagnostics are appended either way.
    """
    if document is None:
        summary = CONTEXT_UNAVAILABLE
    else:
        try:
            nodes, edges = _decode_graph(document)
            summary = _graph_block(
                nodes,
                edges,
                scope=scope,
                selected_node_ids=selected_node_ids,
                max_nodes=max_nodes,
                max_edges=max_edges,
            )
        except (ValueError, TypeError, KeyError, AttributeError, RecursionError) as exc:
            logger.warning("context_summary_unavailable error=%s", type(exc).__name__)
            summary = CONTEXT_UNAVAILABLE

    if diagnostics:
        diag_lines = [format_diagnostic(d) for d in list(diagnostics)[:max_diagnostics]]
        summary += "\n\nDIAGNOSTICS:\n" + "\n".join(diag_lines)
    return summary


def estimate_tokens(text: str) -> int:
    # Rough heuristic of ~4 characters per token.
    return math.ceil(len(text) / 4)
