"""Tests for workflow synthesis."""

from __future__ import annotations

from datetime import UTC, datetime

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.models import (
    Condition,
    ConditionKind,
    DataFlowBinding,
    DependencyEdge,
    DependencyType,
)
from apiflow.analysis.signals import AUTHENTICATION, CRUD
from apiflow.analysis.workflows import WorkflowSynthesizer


def _edge(from_call, to_call, signals=(CRUD,), data_flow=(), conditions=()) -> DependencyEdge:
    return DependencyEdge(
        from_call=from_call,
        to_call=to_call,
        time_between_ms=to_call.timestamp_ms - from_call.timestamp_ms,
        dependency_type=DependencyType.SEQUENTIAL,
        confidence=80.0,
        data_flow=tuple(data_flow),
        conditions=tuple(conditions),
        signals=tuple(signals),
    )


class TestSynthesize:
    """Tests for WorkflowSynthesizer.synthesize."""

    def test_single_edge_produces_no_workflow(self, make_call) -> None:
        edge = _edge(
            make_call("POST", "https://api.example.com/orders", 0),
            make_call("GET", "https://api.example.com/orders", 100),
        )
        assert WorkflowSynthesizer().synthesize([edge]) == []

    def test_groups_by_origin(self, make_call) -> None:
        a1 = make_call("POST", "https://api.example.com/orders", 0)
        a2 = make_call("GET", "https://api.example.com/orders/1", 100)
        a3 = make_call("GET", "https://api.example.com/orders/1/items", 200)
        b1 = make_call("GET", "https://cdn.example.com/a.js", 300)
        b2 = make_call("GET", "https://cdn.example.com/b.js", 400)
        edges = [_edge(a1, a2), _edge(b1, b2), _edge(a2, a3)]

        workflows = WorkflowSynthesizer().synthesize(edges)

        assert [w.base_url for w in workflows] == ["https://api.example.com"]
        (workflow,) = workflows
        assert len(workflow.steps) == 2
        assert workflow.frequency == 1

    def test_lower_edge_minimum(self, make_call) -> None:
        edge = _edge(
            make_call("GET", "https://cdn.example.com/a.js", 0),
            make_call("GET", "https://cdn.example.com/b.js", 100),
        )
        config = AnalyzerConfig(min_workflow_edges=1)

        (workflow,) = WorkflowSynthesizer(config).synthesize([edge])

        assert workflow.base_url == "https://cdn.example.com"

    def test_unparseable_origin_is_skipped(self, make_call) -> None:
        good = make_call("GET", "https://api.example.com/a", 0)
        edges = [
            _edge(make_call("GET", "not-a-url", 0), good),
            _edge(make_call("GET", "also bad", 0), good),
        ]
        assert WorkflowSynthesizer().synthesize(edges) == []

    def test_steps_form_a_chain(self, make_call) -> None:
        calls = [
            make_call("POST", "https://api.example.com/orders", 0, status=201),
            make_call("GET", "https://api.example.com/orders/9", 100),
            make_call("PUT", "https://api.example.com/orders/9", 200),
        ]
        binding = DataFlowBinding("url.path.9", "url.path.9")
        condition = Condition(ConditionKind.STATUS, "statusCode", "equals", 201)
        edges = [
            _edge(calls[0], calls[1], conditions=[condition]),
            _edge(calls[1], calls[2], data_flow=[binding]),
        ]
        detected_at = datetime(2024, 5, 1, tzinfo=UTC)

        (workflow,) = WorkflowSynthesizer().synthesize(edges, detected_at=detected_at)

        assert workflow.description == "Auto-detected workflow with 2 steps"
        assert workflow.last_detected == detected_at
        first, second = workflow.steps
        assert first.id == "step_0"
        assert first.order == 0
        assert first.dependencies == []
        assert first.endpoint_id == "https://api.example.com/orders:POST"
        assert first.conditions == [condition]
        assert second.id == "step_1"
        assert second.dependencies == ["step_0"]
        assert second.endpoint_id == "https://api.example.com/orders/9:GET"
        (variable,) = second.variables
        assert variable.to_dict() == {
            "name": "url.path.9",
            "source": "response",
            "path": "url.path.9",
            "target": "header",
        }

    def test_to_dict_shape(self, make_call) -> None:
        calls = [make_call("GET", f"https://api.example.com/{i}", i) for i in range(3)]
        (workflow,) = WorkflowSynthesizer().synthesize(
            [_edge(calls[0], calls[1]), _edge(calls[1], calls[2])]
        )

        data = workflow.to_dict()

        assert data["baseUrl"] == "https://api.example.com"
        assert data["steps"][1]["endpointId"] == "https://api.example.com/1:GET"
        assert data["steps"][1]["dependencies"] == ["step_0"]


class TestGenerateName:
    """Tests for workflow naming heuristics."""

    def _edges(self, make_call, methods, signals=(CRUD,)):
        calls = [
            make_call(m, f"https://api.example.com/r{i}", i * 10) for i, m in enumerate(methods)
        ]
        return [_edge(a, b, signals=signals) for a, b in zip(calls, calls[1:])]

    def test_authentication_wins(self, make_call) -> None:
        edges = self._edges(make_call, ["POST", "GET", "GET"], signals=(AUTHENTICATION,))
        assert WorkflowSynthesizer().generate_name(edges) == "Authentication Flow"

    def test_create_and_fetch(self, make_call) -> None:
        edges = self._edges(make_call, ["POST", "GET", "DELETE"])
        assert WorkflowSynthesizer().generate_name(edges) == "Create and Fetch Flow"

    def test_fetch_and_update(self, make_call) -> None:
        edges = self._edges(make_call, ["GET", "PUT", "GET"])
        assert WorkflowSynthesizer().generate_name(edges) == "Fetch and Update Flow"

    def test_fetch_and_delete(self, make_call) -> None:
        edges = self._edges(make_call, ["GET", "DELETE", "GET"])
        assert WorkflowSynthesizer().generate_name(edges) == "Fetch and Delete Flow"

    def test_fallback_lists_origin_methods(self, make_call) -> None:
        edges = self._edges(make_call, ["GET", "GET", "GET"])
        assert WorkflowSynthesizer().generate_name(edges) == "API Workflow (GET → GET)"
