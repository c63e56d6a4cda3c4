from __future__ import annotations

import json

from graphpilot.domain.copilot import Diagnostic, Scope
from graphpilot.services.context import (
    CONTEXT_UNAVAILABLE,
    build_context_summary,
    estimate_tokens,
    format_node,
    one_hop_closure,
)
from graphpilot.tests.utils.seed import edge, number_node


def _document(nodes: list[dict], edges: list[dict]) -> str:
    return json.dumps({"nodes": nodes, "edges": edges})


def _node_lines(summary: str) -> list[str]:
    lines = summary.splitlines()
    start = lines.index("NODES:") + 1
    end = lines.index("EDGES:")
    return lines[start:end]


def test_full_canvas_is_capped_with_marker() -> None:
    nodes = [number_node(f"n{i}", value=i) for i in range(120)]
    summary = build_context_summary(_document(nodes, []), scope=Scope.ACTIVE_CANVAS)

    assert summary.startswith("Current canvas (120 nodes, 0 edges):")
    assert len(_node_lines(summary)) == 50
    assert "Nodes truncated (showing 50 of 120)" in summary


def test_edges_are_capped_independently() -> None:
    nodes = [number_node("a"), number_node("b")]
    edges = [edge(f"e{i}", "a", "b") for i in range(60)]
    summary = build_context_summary(_document(nodes, edges), scope=Scope.ACTIVE_CANVAS)

    assert "Edges truncated (showing 50 of 60)" in summary
    assert "Nodes truncated" not in summary


def test_selection_uses_one_hop_closure() -> None:
    nodes = [number_node(node_id) for node_id in ("a", "b", "c", "d", "e")]
    edges = [edge("e1", "a", "c"), edge("e2", "c", "d"), edge("e3", "d", "e")]
    summary = build_context_summary(
        _document(nodes, edges),
        scope=Scope.SELECTION,
        selected_node_ids=["a", "b"],
    )

    node_ids = {line.split(":")[0] for line in _node_lines(summary)}
    assert node_ids == {"a", "b", "c"}
    assert "a -> c:a" in summary
    assert "c -> d:a" not in summary
    assert "(Showing 3 of 5 nodes)" in summary


def test_selection_without_ids_falls_back_to_full_canvas() -> None:
    nodes = [number_node("a"), number_node("b")]
    summary = build_context_summary(_document(nodes, []), scope=Scope.SELECTION, selected_node_ids=[])
    assert len(_node_lines(summary)) == 2
    assert "(Showing" not in summary


def test_one_hop_closure_does_not_chain() -> None:
    edges = [edge("e1", "a", "b"), edge("e2", "b", "c"), edge("e3", "z", "a")]
    assert one_hop_closure(["a"], edges) == {"a", "b", "z"}


def test_node_format_includes_label_and_value() -> None:
    assert format_node(number_node("n1", value=10.0, label="Force")) == 'n1: number "Force" val=10'
    assert format_node({"id": "n2", "data": {}}) == "n2: ?"
    assert format_node({"id": "n3", "data": {"blockType": "display", "value": False}}) == "n3: display val=false"
    assert format_node({"id": "n4", "data": {"blockType": "number", "value": None}}) == "n4: number val=null"


def test_missing_document_is_unavailable() -> None:
    assert build_context_summary(None) == CONTEXT_UNAVAILABLE


def test_malformed_document_degrades_without_raising() -> None:
    assert build_context_summary("{not json") == CONTEXT_UNAVAILABLE
    assert build_context_summary(json.dumps([1, 2])) == CONTEXT_UNAVAILABLE
    assert build_context_summary(json.dumps({"nodes": "x"})) == CONTEXT_UNAVAILABLE


def test_deeply_nested_document_degrades_without_raising() -> None:
    depth = 100_000
    document = '{"nodes": ' + "[" * depth + "]" * depth + ', "edges": []}'
    assert build_context_summary(document) == CONTEXT_UNAVAILABLE


def test_diagnostics_are_appended_and_capped() -> None:
    diagnostics = [
        Diagnostic(level="warn", code="orphan", message=f"issue {i}", nodeIds=["n1", "n2"])
        for i in range(25)
    ]
    summary = build_context_summary(None, diagnostics=diagnostics)

    assert summary.startswith(CONTEXT_UNAVAILABLE + "\n\nDIAGNOSTICS:\n")
    diag_lines = summary.split("DIAGNOSTICS:\n", 1)[1].splitlines()
    assert len(diag_lines) == 20
    assert diag_lines[0] == "[warn] orphan: issue 0 (nodes: n1,n2)"


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2
