"""
Data structures produced by the workflow analysis engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from apiflow.capture.models import CallRecord


class DependencyType(StrEnum):
    """How one call relates to a later one."""

    SEQUENTIAL = "sequential"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"
    DATA_FLOW = "data_flow"


class ConditionKind(StrEnum):
    """What a dependency condition inspects."""

    STATUS = "status"
    RESPONSE_DATA = "response_data"
    HEADER = "header"


@dataclass(frozen=True, slots=True)
class DataFlowBinding:
    """A value produced by one call and consumed by another."""

    source_field: str
    target_field: str
    transformation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sourceField": self.source_field,
            "targetField": self.target_field,
        }
        if self.transformation is not None:
            data["transformation"] = self.transformation
        return data


@dataclass(frozen=True, slots=True)
class Condition:
    """A precondition on the origin call for the dependency to hold."""

    kind: ConditionKind
    field: str
    operator: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.kind),
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class Sequence:
    """Time-ordered calls from one tab with no gap above the sequence window."""

    calls: tuple[CallRecord, ...]
    tab_id: int

    @property
    def session_start(self) -> datetime:
        return self.calls[0].timestamp

    @property
    def session_end(self) -> datetime:
        return self.calls[-1].timestamp

    @property
    def duration_ms(self) -> int:
        return self.calls[-1].timestamp_ms - self.calls[0].timestamp_ms

    def __len__(self) -> int:
        return len(self.calls)


@dataclass(frozen=True, slots=True)
class Signal:
    """Contribution of a single heuristic to a pair's score."""

    name: str
    points: float
    type_candidate: DependencyType | None = None
    data_flow: tuple[DataFlowBinding, ...] = ()
    conditions: tuple[Condition, ...] = ()


@dataclass(frozen=True, slots=True)
class PairAssessment:
    """Scored relationship between two calls, before thresholding."""

    from_call: CallRecord
    to_call: CallRecord
    time_between_ms: int
    dependency_type: DependencyType
    confidence: float
    signals: tuple[Signal, ...] = ()

    @property
    def signal_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.signals)

    @property
    def data_flow(self) -> tuple[DataFlowBinding, ...]:
        return tuple(b for s in self.signals for b in s.data_flow)

    @property
    def conditions(self) -> tuple[Condition, ...]:
        return tuple(c for s in self.signals for c in s.conditions)

    def to_edge(self) -> DependencyEdge:
        return DependencyEdge(
            from_call=self.from_call,
            to_call=self.to_call,
            time_between_ms=self.time_between_ms,
            dependency_type=self.dependency_type,
            confidence=self.confidence,
            data_flow=self.data_flow,
            conditions=self.conditions,
            signals=self.signal_names,
        )


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """A scored, typed claim that ``from_call`` relates to ``to_call``."""

    from_call: CallRecord
    to_call: CallRecord
    time_between_ms: int
    dependency_type: DependencyType
    confidence: float
    data_flow: tuple[DataFlowBinding, ...] = ()
    conditions: tuple[Condition, ...] = ()
    signals: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromCall": self.from_call.id,
            "toCall": self.to_call.id,
            "fromUrl": f"{self.from_call.method} {self.from_call.url}",
            "toUrl": f"{self.to_call.method} {self.to_call.url}",
            "timeBetween": self.time_between_ms,
            "dependencyType": str(self.dependency_type),
            "confidence": self.confidence,
            "dataFlow": [b.to_dict() for b in self.data_flow],
            "conditions": [c.to_dict() for c in self.conditions],
            "signals": list(self.signals),
        }


@dataclass(frozen=True, slots=True)
class WorkflowVariable:
    """A data-flow binding carried into a workflow step."""

    name: str
    path: str
    source: str = "response"
    target: str = "header"

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "source": self.source,
            "path": self.path,
            "target": self.target,
        }


@dataclass(slots=True)
class WorkflowStep:
    """One endpoint invocation inside a workflow."""

    id: str
    endpoint_id: str
    order: int
    dependencies: list[str] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    variables: list[WorkflowVariable] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "endpointId": self.endpoint_id,
            "order": self.order,
            "dependencies": list(self.dependencies),
            "conditions": [c.to_dict() for c in self.conditions],
            "variables": [v.to_dict() for v in self.variables],
        }


@dataclass(slots=True)
class Workflow:
    """A named chain of endpoint steps synthesized from dependency edges."""

    name: str
    base_url: str
    steps: list[WorkflowStep]
    description: str = ""
    frequency: int = 1
    last_detected: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "baseUrl": self.base_url,
            "steps": [s.to_dict() for s in self.steps],
            "frequency": self.frequency,
            "lastDetected": self.last_detected.isoformat(),
        }
