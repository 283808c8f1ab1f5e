"""Tests for sequence grouping and URL identity helpers."""

from __future__ import annotations

import pytest

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.identity import (
    dependency_id,
    endpoint_id,
    normalize_workflow_name,
    path_template,
    url_origin,
    workflow_id,
)
from apiflow.analysis.sequences import group_calls_into_sequences


class TestGroupCallsIntoSequences:
    """Tests for group_calls_into_sequences."""

    def test_empty_input(self) -> None:
        assert group_calls_into_sequences([]) == []

    def test_single_call_is_dropped(self, make_call) -> None:
        assert group_calls_into_sequences([make_call("GET", "https://a.test/x")]) == []

    def test_gap_splits_sequences(self, make_call) -> None:
        calls = [
            make_call("GET", "https://a.test/1", 0),
            make_call("GET", "https://a.test/2", 1000),
            make_call("GET", "https://a.test/3", 40000),
            make_call("GET", "https://a.test/4", 41000),
        ]

        sequences = group_calls_into_sequences(calls)

        assert [len(s) for s in sequences] == [2, 2]
        assert sequences[0].calls[0].url.endswith("/1")
        assert sequences[1].calls[0].url.endswith("/3")

    def test_gap_equal_to_window_does_not_split(self, make_call) -> None:
        calls = [
            make_call("GET", "https://a.test/1", 0),
            make_call("GET", "https://a.test/2", 30000),
        ]
        assert len(group_calls_into_sequences(calls)) == 1

    def test_isolated_call_between_sequences_is_dropped(self, make_call) -> None:
        calls = [
            make_call("GET", "https://a.test/1", 0),
            make_call("GET", "https://a.test/2", 100),
            make_call("GET", "https://a.test/lonely", 60000),
            make_call("GET", "https://a.test/3", 120000),
            make_call("GET", "https://a.test/4", 120100),
        ]

        sequences = group_calls_into_sequences(calls)

        urls = [c.url for s in sequences for c in s.calls]
        assert "https://a.test/lonely" not in urls
        assert len(sequences) == 2

    def test_unsorted_input_is_ordered(self, make_call) -> None:
        calls = [
            make_call("GET", "https://a.test/b", 500),
            make_call("GET", "https://a.test/a", 0),
        ]

        (sequence,) = group_calls_into_sequences(calls)

        assert [c.url for c in sequence.calls] == ["https://a.test/a", "https://a.test/b"]
        assert sequence.duration_ms == 500
        assert sequence.tab_id == 1

    def test_custom_gap(self, make_call) -> None:
        calls = [
            make_call("GET", "https://a.test/1", 0),
            make_call("GET", "https://a.test/2", 2000),
        ]
        config = AnalyzerConfig(max_sequence_gap_ms=1000)

        assert group_calls_into_sequences(calls, config) == []

    def test_every_sequence_respects_gap(self, make_call) -> None:
        offsets = [0, 100, 31000, 31050, 90000, 90001, 90002, 150000]
        calls = [make_call("GET", f"https://a.test/{i}", ms) for i, ms in enumerate(offsets)]

        for sequence in group_calls_into_sequences(calls):
            assert len(sequence) >= 2
            for a, b in zip(sequence.calls, sequence.calls[1:]):
                assert b.timestamp_ms - a.timestamp_ms <= 30000


class TestIdentity:
    """Tests for endpoint and workflow identity keys."""

    def test_endpoint_id_ignores_query(self) -> None:
        assert (
            endpoint_id("https://api.example.com/users/1?x=1", "get")
            == "https://api.example.com/users/1:GET"
        )

    def test_endpoint_id_empty_path(self) -> None:
        assert endpoint_id("https://api.example.com", "POST") == "https://api.example.com/:POST"

    def test_endpoint_id_unparseable(self) -> None:
        with pytest.raises(ValueError):
            endpoint_id("not a url", "GET")

    def test_origin_drops_default_port(self) -> None:
        assert url_origin("https://api.example.com:443/x") == "https://api.example.com"
        assert url_origin("http://localhost:8080/x") == "http://localhost:8080"

    def test_origin_unparseable(self) -> None:
        assert url_origin("/relative/path") is None

    def test_path_template(self) -> None:
        assert path_template("https://a.test/users/42/posts/7") == "/users/:id/posts/:id"

    def test_dependency_id(self) -> None:
        assert dependency_id("a:GET", "b:POST") == "a:GET->b:POST"

    def test_workflow_id_normalizes_name(self) -> None:
        assert normalize_workflow_name("Create and Fetch Flow") == "create-and-fetch-flow"
        assert (
            workflow_id("https://api.example.com", "Authentication Flow")
            == "https://api.example.com:authentication-flow"
        )
