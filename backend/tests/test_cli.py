"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from apiflow.cli import create_parser, main


@pytest.fixture
def capture_file(temp_dir: Path) -> Path:
    auth = [{"name": "Authorization", "value": "Bearer t"}]
    calls = [
        {"id": "a", "method": "POST", "url": "https://api.example.com/login",
         "timestamp": 0, "tabId": 1, "status": 200},
        {"id": "b", "method": "GET", "url": "https://api.example.com/orders",
         "timestamp": 300, "tabId": 1, "status": 200, "requestHeaders": auth},
        {"id": "c", "method": "GET", "url": "https://api.example.com/cart",
         "timestamp": 600, "tabId": 1, "status": 200, "requestHeaders": auth},
        {"id": "d", "method": "GET", "url": "https://other.test/x",
         "timestamp": 0, "tabId": 2},
    ]
    path = temp_dir / "capture.json"
    path.write_text(json.dumps({"calls": calls}))
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_analyze_arguments(self) -> None:
        args = create_parser().parse_args(
            ["analyze", "capture.json", "--min-confidence", "50", "-f", "json"]
        )

        assert args.command == "analyze"
        assert args.min_confidence == 50.0
        assert args.format == "json"
        assert args.max_gap_ms is None

    def test_no_command_prints_help(self) -> None:
        assert main([]) == 1


class TestAnalyzeCommand:
    """Tests for the analyze command."""

    def test_json_output(self, capture_file: Path, capsys) -> None:
        assert main(["analyze", str(capture_file), "--format", "json"]) == 0

        output = json.loads(capsys.readouterr().out)
        by_tab = {entry["tabId"]: entry for entry in output}
        assert set(by_tab) == {1, 2}
        assert len(by_tab[1]["dependencies"]) == 2
        assert by_tab[1]["workflows"][0]["name"] == "Authentication Flow"
        assert by_tab[2]["sequences"] == 0

    def test_text_output(self, capture_file: Path, capsys) -> None:
        assert main(["analyze", str(capture_file)]) == 0

        output = capsys.readouterr().out
        assert "Tab 1: 1 sequences, 2 dependencies, 1 workflows" in output
        assert "Workflow: Authentication Flow (https://api.example.com)" in output

    def test_missing_file(self, temp_dir: Path) -> None:
        assert main(["analyze", str(temp_dir / "nope.json")]) == 1
