"""
Pairwise dependency detection.

Scores every ordered pair of calls in a sequence with the weighted signals
from ``apiflow.analysis.signals`` and emits typed edges above the confidence
threshold.
"""

from __future__ import annotations

from collections.abc import Sequence as SequenceABC

import structlog

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.models import (
    DependencyEdge,
    DependencyType,
    PairAssessment,
    Sequence,
    Signal,
)
from apiflow.analysis.signals import DEFAULT_SIGNALS, SignalFn
from apiflow.capture.models import CallRecord

logger = structlog.get_logger(__name__)


def reduce_type(
    signals: SequenceABC[Signal],
    precedence: SequenceABC[DependencyType],
) -> DependencyType:
    """
    Resolve the dependency type of a pair from its fired signals.

    Candidates are applied in precedence order and the last one applied wins;
    with no candidate the pair is sequential.
    """
    candidates = {s.type_candidate for s in signals if s.type_candidate is not None}
    resolved = DependencyType.SEQUENTIAL
    for dependency_type in precedence:
        if dependency_type in candidates:
            resolved = dependency_type
    return resolved


def clamp_confidence(points: float) -> float:
    return max(0.0, min(points, 100.0))


class DependencyDetector:
    """
    Detects dependencies between calls of a sequence.

    Stateless between calls: the same sequence always yields the same edges.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        signals: SequenceABC[SignalFn] = DEFAULT_SIGNALS,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self._signals = tuple(signals)
        self._log = logger.bind(component="dependency_detector")

    def assess_pair(
        self, from_call: CallRecord, to_call: CallRecord
    ) -> PairAssessment | None:
        """
        Score one ordered pair regardless of the confidence threshold.

        Returns:
            The assessment, or None when the calls are further apart than
            the sequence window (no signal is evaluated then)
        """
        time_between = to_call.timestamp_ms - from_call.timestamp_ms
        if time_between > self.config.max_sequence_gap_ms:
            return None

        fired: list[Signal] = []
        for signal_fn in self._signals:
            signal = signal_fn(from_call, to_call, time_between, self.config)
            if signal is not None and signal.points >= 0:
                fired.append(signal)

        return PairAssessment(
            from_call=from_call,
            to_call=to_call,
            time_between_ms=time_between,
            dependency_type=reduce_type(fired, self.config.type_precedence),
            confidence=clamp_confidence(sum(s.points for s in fired)),
            signals=tuple(fired),
        )

    def analyze_pair(
        self, from_call: CallRecord, to_call: CallRecord
    ) -> DependencyEdge | None:
        """Edge for the pair if it reaches the confidence threshold."""
        assessment = self.assess_pair(from_call, to_call)
        if assessment is None or assessment.confidence < self.config.min_confidence:
            return None
        return assessment.to_edge()

    def detect(self, sequence: Sequence | SequenceABC[CallRecord]) -> list[DependencyEdge]:
        """
        Detect dependencies among all ordered pairs of a sequence.

        Args:
            sequence: A Sequence or time-ordered calls

        Returns:
            Edges with confidence at or above the threshold, ordered by
            origin call then target call
        """
        calls = list(sequence.calls if isinstance(sequence, Sequence) else sequence)
        limit = self.config.max_sequence_size
        if len(calls) > limit:
            self._log.warning(
                "Sequence exceeds size bound, keeping most recent calls",
                size=len(calls),
                limit=limit,
            )
            calls = calls[-limit:]

        edges: list[DependencyEdge] = []
        for i, from_call in enumerate(calls[:-1]):
            for to_call in calls[i + 1:]:
                edge = self.analyze_pair(from_call, to_call)
                if edge is not None:
                    edges.append(edge)

        self._log.debug(
            "Dependency detection complete",
            calls=len(calls),
            edges=len(edges),
        )
        return edges
