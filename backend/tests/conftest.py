"""Pytest fixtures for apiflow tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from itertools import count
from pathlib import Path

import pytest

from apiflow.analysis.config import AnalyzerConfig
from apiflow.capture.models import CallRecord, Header

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

CallFactory = Callable[..., CallRecord]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database_url(temp_dir: Path) -> str:
    """SQLite database in a temporary directory."""
    return f"sqlite+aiosqlite:///{temp_dir / 'apiflow-test.db'}"


@pytest.fixture
def config() -> AnalyzerConfig:
    """Default analyzer configuration."""
    return AnalyzerConfig()


@pytest.fixture
def make_call() -> CallFactory:
    """
    Factory for captured calls.

    ``at_ms`` is the offset from a fixed base time; headers may be passed
    as a mapping.
    """
    ids = count(1)

    def _make(
        method: str,
        url: str,
        at_ms: int = 0,
        *,
        status: int | None = 200,
        headers: dict[str, str] | None = None,
        tab_id: int = 1,
        call_id: str | None = None,
    ) -> CallRecord:
        return CallRecord(
            id=call_id or f"call-{next(ids)}",
            method=method,
            url=url,
            timestamp=BASE_TIME + timedelta(milliseconds=at_ms),
            tab_id=tab_id,
            request_headers=tuple(Header(k, v) for k, v in (headers or {}).items()),
            status=status,
        )

    return _make


@pytest.fixture
def login_flow(make_call: CallFactory) -> list[CallRecord]:
    """Login followed by an authenticated profile fetch."""
    return [
        make_call("POST", "https://api.example.com/login", 0),
        make_call(
            "GET",
            "https://api.example.com/profile",
            500,
            headers={"Authorization": "Bearer abc"},
        ),
    ]
