"""
Sequence grouping.

Partitions a tab's calls into temporally coherent sequences: a new sequence
starts whenever the gap to the previous call exceeds the configured window.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.models import Sequence
from apiflow.capture.models import CallRecord, sort_by_time

logger = structlog.get_logger(__name__)


def group_calls_into_sequences(
    calls: Iterable[CallRecord],
    config: AnalyzerConfig | None = None,
) -> list[Sequence]:
    """
    Group calls into sequences of at least two calls.

    Args:
        calls: Calls of one tab, in any order
        config: Analyzer configuration (gap window)

    Returns:
        Sequences in chronological order; singletons are dropped
    """
    config = config or AnalyzerConfig()
    ordered = sort_by_time(calls)

    sequences: list[Sequence] = []
    current: list[CallRecord] = []
    last_ms: int | None = None

    for call in ordered:
        call_ms = call.timestamp_ms
        if last_ms is not None and call_ms - last_ms > config.max_sequence_gap_ms:
            if len(current) > 1:
                sequences.append(Sequence(calls=tuple(current), tab_id=current[0].tab_id))
            current = []
        current.append(call)
        last_ms = call_ms

    if len(current) > 1:
        sequences.append(Sequence(calls=tuple(current), tab_id=current[0].tab_id))

    logger.debug(
        "Grouped calls into sequences",
        calls=len(ordered),
        sequences=len(sequences),
    )
    return sequences
