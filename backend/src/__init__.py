"""
apiflow: workflow inference over captured browser API calls.

Groups a tab's HTTP calls into time-bounded sequences, scores pairwise
dependencies with weighted heuristics, and synthesizes recurring workflows.
"""

__version__ = "1.0.0"

from apiflow.analysis import (
    AnalysisReport,
    AnalyzerConfig,
    DependencyDetector,
    DependencyEdge,
    DependencyType,
    Sequence,
    Workflow,
    WorkflowAnalyzer,
    WorkflowSynthesizer,
    group_calls_into_sequences,
    load_analyzer_config,
)
from apiflow.capture import CallRecord, Header

__all__ = [
    "AnalysisReport",
    "AnalyzerConfig",
    "CallRecord",
    "DependencyDetector",
    "DependencyEdge",
    "DependencyType",
    "Header",
    "Sequence",
    "Workflow",
    "WorkflowAnalyzer",
    "WorkflowSynthesizer",
    "__version__",
    "group_calls_into_sequences",
    "load_analyzer_config",
]
