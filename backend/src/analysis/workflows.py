"""
Workflow synthesis from accepted dependency edges.

Edges are grouped by the origin of their source call; each large enough
group becomes a linear chain of steps named with method-pattern heuristics.
"""

from __future__ import annotations

from collections.abc import Sequence as SequenceABC
from datetime import UTC, datetime

import structlog

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.identity import endpoint_id, url_origin
from apiflow.analysis.models import (
    DependencyEdge,
    Workflow,
    WorkflowStep,
    WorkflowVariable,
)
from apiflow.analysis.signals import AUTHENTICATION

logger = structlog.get_logger(__name__)


class WorkflowSynthesizer:
    """Builds named workflows from the dependency edges of one sequence."""

    # (required methods, name); first match wins
    NAME_RULES: tuple[tuple[frozenset[str], str], ...] = (
        (frozenset({"POST", "GET"}), "Create and Fetch Flow"),
        (frozenset({"GET", "PUT"}), "Fetch and Update Flow"),
        (frozenset({"GET", "DELETE"}), "Fetch and Delete Flow"),
    )

    def __init__(self, config: AnalyzerConfig | None = None) -> None:
        self.config = config or AnalyzerConfig()
        self._log = logger.bind(component="workflow_synthesizer")

    def synthesize(
        self,
        edges: SequenceABC[DependencyEdge],
        detected_at: datetime | None = None,
    ) -> list[Workflow]:
        """
        Group edges by origin and emit one workflow per qualifying group.

        Args:
            edges: Accepted edges of one sequence, in detection order
            detected_at: Detection time (defaults to now)

        Returns:
            Workflows in order of first appearance of their origin
        """
        detected_at = detected_at or datetime.now(UTC)
        groups: dict[str, list[DependencyEdge]] = {}

        for edge in edges:
            base_url = url_origin(edge.from_call.url)
            if base_url is None:
                self._log.debug(
                    "Skipping edge with unparseable origin",
                    url=edge.from_call.url,
                )
                continue
            groups.setdefault(base_url, []).append(edge)

        workflows = [
            self.create_workflow(base_url, group, detected_at)
            for base_url, group in groups.items()
            if len(group) >= self.config.min_workflow_edges
        ]

        self._log.debug(
            "Workflow synthesis complete",
            edges=len(edges),
            origins=len(groups),
            workflows=len(workflows),
        )
        return workflows

    def create_workflow(
        self,
        base_url: str,
        edges: SequenceABC[DependencyEdge],
        detected_at: datetime | None = None,
    ) -> Workflow:
        """Build a linear workflow; each step depends on the one before it."""
        steps: list[WorkflowStep] = []
        for index, edge in enumerate(edges):
            steps.append(
                WorkflowStep(
                    id=f"step_{index}",
                    endpoint_id=endpoint_id(edge.from_call.url, edge.from_call.method),
                    order=index,
                    dependencies=[f"step_{index - 1}"] if index > 0 else [],
                    conditions=list(edge.conditions),
                    variables=[
                        WorkflowVariable(name=flow.source_field, path=flow.source_field)
                        for flow in edge.data_flow
                    ],
                )
            )

        return Workflow(
            name=self.generate_name(edges),
            description=f"Auto-detected workflow with {len(steps)} steps",
            base_url=base_url,
            steps=steps,
            frequency=1,
            last_detected=detected_at or datetime.now(UTC),
        )

    def generate_name(self, edges: SequenceABC[DependencyEdge]) -> str:
        if any(AUTHENTICATION in edge.signals for edge in edges):
            return "Authentication Flow"

        methods = [edge.from_call.method for edge in edges]
        present = set(methods)
        for required, name in self.NAME_RULES:
            if required <= present:
                return name

        return f"API Workflow ({' → '.join(methods)})"
