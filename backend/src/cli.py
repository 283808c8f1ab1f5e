"""
Command-line interface for apiflow.

Provides offline workflow analysis of exported call captures and the API
server entry point.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any

import structlog

from apiflow import __version__
from apiflow.analysis.analyzer import AnalysisResult, analyze_calls
from apiflow.analysis.config import AnalyzerConfig, load_analyzer_config
from apiflow.analysis.dependencies import DependencyDetector
from apiflow.analysis.workflows import WorkflowSynthesizer
from apiflow.capture.models import CallRecord

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose if hasattr(args, "verbose") else False)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if hasattr(args, "verbose") and args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="apiflow",
        description="apiflow - infer API dependencies and workflows from captured calls",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"apiflow {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze an exported JSON capture without a database",
    )
    analyze_parser.add_argument(
        "path",
        help="JSON file holding a list of calls or an object with a 'calls' list",
    )
    analyze_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Analyzer YAML configuration file",
    )
    analyze_parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Override the minimum confidence for emitted dependencies",
    )
    analyze_parser.add_argument(
        "--max-gap-ms",
        type=int,
        default=None,
        help="Override the maximum gap between calls of one sequence",
    )
    analyze_parser.add_argument(
        "--format", "-f",
        choices=["json", "text"],
        default="text",
        help="Output format",
    )
    analyze_parser.set_defaults(func=cmd_analyze)

    server_parser = subparsers.add_parser("server", help="Run the API server")
    server_parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to",
    )
    server_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to listen on",
    )
    server_parser.set_defaults(func=cmd_server)

    return parser


def configure_logging(verbose: bool) -> None:
    """Configure structured logging."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging

    logging.basicConfig(level=getattr(logging, level), stream=sys.stderr)


def load_calls(path: Path) -> list[CallRecord]:
    """Read captured calls from a JSON export."""
    with path.open() as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("calls", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of calls")
    return [CallRecord.from_dict(item) for item in data]


def analyze_export(
    calls: list[CallRecord], config: AnalyzerConfig
) -> dict[int, AnalysisResult]:
    """Run the pure analysis stages per tab."""
    by_tab: dict[int, list[CallRecord]] = defaultdict(list)
    for call in calls:
        by_tab[call.tab_id].append(call)

    detector = DependencyDetector(config)
    synthesizer = WorkflowSynthesizer(config)
    return {
        tab_id: analyze_calls(tab_calls, config, detector=detector, synthesizer=synthesizer)
        for tab_id, tab_calls in sorted(by_tab.items())
    }


def cmd_analyze(args: argparse.Namespace) -> int:
    """Analyze an exported capture."""
    path = Path(args.path)
    if not path.is_file():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1

    config = load_analyzer_config(args.config).with_overrides(
        min_confidence=args.min_confidence,
        max_sequence_gap_ms=args.max_gap_ms,
    )
    calls = load_calls(path)
    results = analyze_export(calls, config)

    print(format_results(results, args.format))
    return 0


def format_results(results: dict[int, AnalysisResult], format_type: str) -> str:
    """Format analysis results for output."""
    if format_type == "json":
        output: list[dict[str, Any]] = [
            {
                "tabId": tab_id,
                "sequences": len(result.sequences),
                "dependencies": [edge.to_dict() for edge in result.dependencies],
                "workflows": [workflow.to_dict() for workflow in result.workflows],
            }
            for tab_id, result in results.items()
        ]
        return json.dumps(output, indent=2, default=str)

    lines: list[str] = []
    for tab_id, result in results.items():
        lines.append(
            f"Tab {tab_id}: {len(result.sequences)} sequences, "
            f"{len(result.dependencies)} dependencies, {len(result.workflows)} workflows"
        )
        for edge in result.dependencies:
            lines.append(
                f"  {edge.from_call.method} {edge.from_call.url} -> "
                f"{edge.to_call.method} {edge.to_call.url} "
                f"[{edge.dependency_type}, {edge.confidence:.0f}%, {edge.time_between_ms}ms]"
            )
        for workflow in result.workflows:
            lines.append(f"  Workflow: {workflow.name} ({workflow.base_url})")
            for step in workflow.steps:
                lines.append(f"    {step.order + 1}. {step.endpoint_id}")

    return "\n".join(lines) if lines else "No calls to analyze"


def cmd_server(args: argparse.Namespace) -> int:
    """Run the API server."""
    from dotenv import load_dotenv

    from apiflow.api.main import run_server

    load_dotenv()
    run_server(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
