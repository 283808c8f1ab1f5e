"""
Captured HTTP call records.

Records are produced by the browser capture layer and only read by the
analysis engine. Payload parsing accepts both the extension's camelCase
shape and snake_case.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Header:
    """A single HTTP header as captured."""

    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True, slots=True)
class CallRecord:
    """
    One captured HTTP(S) call from a browser tab.

    Immutable; ``timestamp`` is always timezone-aware UTC.
    """

    id: str
    method: str
    url: str
    timestamp: datetime
    tab_id: int
    request_headers: tuple[Header, ...] = field(default_factory=tuple)
    response_headers: tuple[Header, ...] = field(default_factory=tuple)
    status: int | None = None
    body_size: int = 0

    @property
    def timestamp_ms(self) -> int:
        """Epoch milliseconds of the call."""
        return int(self.timestamp.timestamp() * 1000)

    def request_header(self, name: str) -> Header | None:
        """Return the first request header matching ``name`` case-insensitively."""
        wanted = name.lower()
        for header in self.request_headers:
            if header.name.lower() == wanted:
                return header
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "url": self.url,
            "timestamp": self.timestamp.isoformat(),
            "tabId": self.tab_id,
            "requestHeaders": [h.to_dict() for h in self.request_headers],
            "responseHeaders": [h.to_dict() for h in self.response_headers],
            "status": self.status,
            "size": self.body_size,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CallRecord:
        """Build a record from a capture-layer payload."""
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            method=str(data.get("method", "GET")).upper(),
            url=str(data.get("url", "")),
            timestamp=parse_timestamp(data.get("timestamp")),
            tab_id=int(_first(data, "tabId", "tab_id", default=0) or 0),
            request_headers=parse_headers(
                _first(data, "requestHeaders", "request_headers")
            ),
            response_headers=parse_headers(
                _first(data, "responseHeaders", "response_headers")
            ),
            status=_optional_int(data.get("status")),
            body_size=int(_first(data, "size", "bodySize", "body_size", default=0) or 0),
        )


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def parse_timestamp(value: Any) -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime.

    Accepts datetimes, ISO 8601 strings and epoch milliseconds. Values with
    another offset are converted to UTC; naive values are taken as UTC. A
    missing value means "now".
    """
    if value is None:
        return datetime.now(UTC)
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_headers(value: Any) -> tuple[Header, ...]:
    """Parse headers given as ``[{name, value}]`` or as a mapping."""
    if not value:
        return ()
    if isinstance(value, Mapping):
        return tuple(Header(str(k), str(v)) for k, v in value.items())
    headers: list[Header] = []
    for item in value:
        if isinstance(item, Header):
            headers.append(item)
        elif isinstance(item, Mapping):
            headers.append(Header(str(item.get("name", "")), str(item.get("value", ""))))
    return tuple(headers)


def sort_by_time(calls: Iterable[CallRecord]) -> list[CallRecord]:
    """Return calls in ascending timestamp order (stable)."""
    return sorted(calls, key=lambda call: call.timestamp)
