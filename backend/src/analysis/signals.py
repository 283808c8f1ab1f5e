"""
Dependency signals.

Each signal inspects an ordered pair of calls and either abstains (None) or
returns the points it contributes together with an optional dependency type
candidate, data-flow bindings and conditions. Signals never subtract points.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from functools import lru_cache

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.identity import parse_url, path_segments, path_template
from apiflow.analysis.models import (
    Condition,
    ConditionKind,
    DataFlowBinding,
    DependencyType,
    Signal,
)
from apiflow.capture.models import CallRecord, Header

SignalFn = Callable[[CallRecord, CallRecord, int, AnalyzerConfig], Signal | None]

URL_SIMILARITY = "url_similarity"
AUTHENTICATION = "authentication"
CRUD = "crud"
DATA_FLOW = "data_flow"
CONDITIONAL = "conditional"
PARALLEL = "parallel"


@lru_cache(maxsize=16)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def url_similarity(url1: str, url2: str) -> float:
    """
    Fraction of path segments equal at the same position.

    Returns 0 when hosts differ or either URL cannot be parsed.
    """
    parts1 = parse_url(url1)
    parts2 = parse_url(url2)
    if parts1 is None or parts2 is None:
        return 0.0
    if parts1.hostname != parts2.hostname:
        return 0.0

    segments1 = path_segments(url1) or []
    segments2 = path_segments(url2) or []
    longest = max(len(segments1), len(segments2))
    if longest == 0:
        return 0.0
    common = sum(1 for a, b in zip(segments1, segments2) if a == b)
    return common / longest


def auth_headers(call: CallRecord, config: AnalyzerConfig) -> list[Header]:
    """Request headers whose name contains an auth-bearing pattern."""
    return [
        header
        for header in call.request_headers
        if any(p in header.name.lower() for p in config.auth_header_patterns)
    ]


def is_authentication_flow(
    from_call: CallRecord, to_call: CallRecord, config: AnalyzerConfig
) -> bool:
    """Origin hits an auth endpoint and the target presents credentials."""
    if not any(p in from_call.url for p in config.auth_url_patterns):
        return False
    return bool(auth_headers(to_call, config))


def detect_auth_token_flow(
    from_call: CallRecord, to_call: CallRecord, config: AnalyzerConfig
) -> DataFlowBinding | None:
    headers = auth_headers(to_call, config)
    if not headers:
        return None
    return DataFlowBinding(
        source_field="response.token",
        target_field=f"headers.{headers[0].name}",
        transformation="bearer_prefix",
    )


def similarity_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    fraction = url_similarity(from_call.url, to_call.url)
    if fraction <= 0:
        return None
    return Signal(name=URL_SIMILARITY, points=fraction * config.weights.url_similarity)


def authentication_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    if not is_authentication_flow(from_call, to_call, config):
        return None
    points = config.weights.authentication
    bindings: tuple[DataFlowBinding, ...] = ()
    token_flow = detect_auth_token_flow(from_call, to_call, config)
    if token_flow is not None:
        points += config.weights.token_flow
        bindings = (token_flow,)
    return Signal(
        name=AUTHENTICATION,
        points=points,
        type_candidate=DependencyType.DATA_FLOW,
        data_flow=bindings,
    )


def crud_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    pair = (from_call.method.upper(), to_call.method.upper())
    if pair not in config.crud_sequences:
        return None
    return Signal(
        name=CRUD,
        points=config.weights.crud,
        type_candidate=DependencyType.SEQUENTIAL,
    )


def identifier_flow(
    from_call: CallRecord, to_call: CallRecord, config: AnalyzerConfig
) -> list[DataFlowBinding]:
    """
    Identifier-shaped URL parts of the origin that recur in the target.

    Works on the raw URL text split on ``/`` so it needs no URL parsing.
    """
    pattern = _compile(config.identifier_pattern)
    to_parts = to_call.url.split("/")
    bindings: list[DataFlowBinding] = []
    for from_part in from_call.url.split("/"):
        if not pattern.match(from_part):
            continue
        for to_part in to_parts:
            if from_part == to_part:
                bindings.append(
                    DataFlowBinding(
                        source_field=f"url.path.{from_part}",
                        target_field=f"url.path.{to_part}",
                    )
                )
    return bindings


def data_flow_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    bindings = identifier_flow(from_call, to_call, config)
    if not bindings:
        return None
    return Signal(
        name=DATA_FLOW,
        points=config.weights.data_flow,
        type_candidate=DependencyType.DATA_FLOW,
        data_flow=tuple(bindings),
    )


def conditional_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    status = from_call.status
    if status is None or not 200 <= status < 300:
        return None
    return Signal(
        name=CONDITIONAL,
        points=config.weights.conditional,
        type_candidate=DependencyType.CONDITIONAL,
        conditions=(
            Condition(
                kind=ConditionKind.STATUS,
                field="statusCode",
                operator="equals",
                value=status,
            ),
        ),
    )


def are_similar_endpoints(url1: str, url2: str) -> bool:
    """Both URLs reduce to the same ``/:id`` path template."""
    template1 = path_template(url1)
    template2 = path_template(url2)
    if template1 is None or template2 is None:
        return False
    return template1 == template2


def parallel_signal(
    from_call: CallRecord, to_call: CallRecord, time_between_ms: int, config: AnalyzerConfig
) -> Signal | None:
    if time_between_ms >= config.parallel_window_ms:
        return None
    if not are_similar_endpoints(from_call.url, to_call.url):
        return None
    return Signal(
        name=PARALLEL,
        points=config.weights.parallel,
        type_candidate=DependencyType.PARALLEL,
    )


# Evaluation order; bindings and conditions are reported in this order.
DEFAULT_SIGNALS: tuple[SignalFn, ...] = (
    similarity_signal,
    authentication_signal,
    crud_signal,
    data_flow_signal,
    conditional_signal,
    parallel_signal,
)
