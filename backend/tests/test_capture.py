"""Tests for captured call records."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from apiflow.capture.models import CallRecord, Header, parse_headers, parse_timestamp, sort_by_time


class TestParseTimestamp:
    """Tests for timestamp normalization."""

    def test_iso_with_z_suffix(self) -> None:
        ts = parse_timestamp("2024-05-01T12:00:00.250Z")
        assert ts == datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=UTC)

    def test_epoch_milliseconds(self) -> None:
        ts = parse_timestamp(1714564800000)
        assert ts == datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

    def test_naive_datetime_is_treated_as_utc(self) -> None:
        ts = parse_timestamp(datetime(2024, 5, 1, 12, 0, 0))
        assert ts.tzinfo is UTC

    def test_offset_string_is_converted_to_utc(self) -> None:
        ts = parse_timestamp("2024-05-01T14:00:01+02:00")

        assert ts == datetime(2024, 5, 1, 12, 0, 1, tzinfo=UTC)
        assert ts.utcoffset() == timedelta(0)
        assert ts.tzinfo is UTC

    def test_aware_datetime_is_converted_to_utc(self) -> None:
        eastern = timezone(timedelta(hours=-5))
        ts = parse_timestamp(datetime(2024, 5, 1, 7, 0, 0, tzinfo=eastern))

        assert ts == datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)
        assert ts.tzinfo is UTC

    def test_mixed_offsets_keep_real_gap(self) -> None:
        a = CallRecord.from_dict({"url": "https://a.test/", "timestamp": "2024-05-01T12:00:00Z"})
        b = CallRecord.from_dict(
            {"url": "https://a.test/", "timestamp": "2024-05-01T14:00:01+02:00"}
        )

        assert b.timestamp_ms - a.timestamp_ms == 1000

    def test_missing_means_now(self) -> None:
        before = datetime.now(UTC)
        assert parse_timestamp(None) >= before

    def test_invalid_string_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestParseHeaders:
    """Tests for header parsing."""

    def test_list_of_dicts(self) -> None:
        headers = parse_headers([{"name": "Authorization", "value": "Bearer x"}])
        assert headers == (Header("Authorization", "Bearer x"),)

    def test_mapping(self) -> None:
        headers = parse_headers({"X-Api-Key": "k"})
        assert headers == (Header("X-Api-Key", "k"),)

    def test_empty(self) -> None:
        assert parse_headers(None) == ()
        assert parse_headers([]) == ()


class TestCallRecord:
    """Tests for CallRecord."""

    def test_from_dict_camel_case(self) -> None:
        call = CallRecord.from_dict(
            {
                "id": "c1",
                "method": "post",
                "url": "https://api.example.com/orders",
                "timestamp": "2024-05-01T12:00:00Z",
                "tabId": 7,
                "requestHeaders": [{"name": "Content-Type", "value": "application/json"}],
                "status": 201,
                "size": 42,
            }
        )

        assert call.id == "c1"
        assert call.method == "POST"
        assert call.tab_id == 7
        assert call.status == 201
        assert call.body_size == 42
        assert call.request_header("content-type") == Header("Content-Type", "application/json")

    def test_from_dict_snake_case_and_generated_id(self) -> None:
        call = CallRecord.from_dict(
            {"url": "https://api.example.com/", "tab_id": 3, "timestamp": 0}
        )

        assert call.id
        assert call.method == "GET"
        assert call.tab_id == 3
        assert call.status is None

    def test_to_dict_uses_camel_case(self) -> None:
        call = CallRecord.from_dict(
            {"id": "c1", "url": "https://a.test/x", "tabId": 1, "timestamp": 0}
        )
        data = call.to_dict()

        assert data["tabId"] == 1
        assert data["requestHeaders"] == []
        assert data["timestamp"].startswith("1970-01-01T00:00:00")

    def test_timestamp_ms(self) -> None:
        call = CallRecord.from_dict({"url": "https://a.test/", "timestamp": 1500})
        assert call.timestamp_ms == 1500

    def test_sort_by_time_is_stable(self) -> None:
        a = CallRecord.from_dict({"id": "a", "url": "https://a.test/", "timestamp": 10})
        b = CallRecord.from_dict({"id": "b", "url": "https://a.test/", "timestamp": 5})
        c = CallRecord.from_dict({"id": "c", "url": "https://a.test/", "timestamp": 10})

        assert [x.id for x in sort_by_time([a, b, c])] == ["b", "a", "c"]
