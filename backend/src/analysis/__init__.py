"""
Workflow analysis engine.

Provides:
- Sequence grouping of a tab's calls by time gap
- Pairwise dependency detection with weighted confidence signals
- Workflow synthesis from accepted dependency edges
- Async orchestration with per-tab serialization and cancellation
"""

from apiflow.analysis.analyzer import (
    AnalysisCancelledError,
    AnalysisReport,
    AnalysisResult,
    AnalysisSink,
    CallSource,
    WorkflowAnalyzer,
    analyze_calls,
)
from apiflow.analysis.config import (
    AnalyzerConfig,
    AnalyzerSettings,
    SignalWeights,
    load_analyzer_config,
)
from apiflow.analysis.dependencies import DependencyDetector
from apiflow.analysis.identity import endpoint_id, url_origin, workflow_id
from apiflow.analysis.models import (
    Condition,
    ConditionKind,
    DataFlowBinding,
    DependencyEdge,
    DependencyType,
    PairAssessment,
    Sequence,
    Signal,
    Workflow,
    WorkflowStep,
    WorkflowVariable,
)
from apiflow.analysis.sequences import group_calls_into_sequences
from apiflow.analysis.workflows import WorkflowSynthesizer

__all__ = [
    # Orchestration
    "AnalysisCancelledError",
    "AnalysisReport",
    "AnalysisResult",
    "AnalysisSink",
    "CallSource",
    "WorkflowAnalyzer",
    "analyze_calls",
    # Configuration
    "AnalyzerConfig",
    "AnalyzerSettings",
    "SignalWeights",
    "load_analyzer_config",
    # Stages
    "DependencyDetector",
    "WorkflowSynthesizer",
    "group_calls_into_sequences",
    # Identity
    "endpoint_id",
    "url_origin",
    "workflow_id",
    # Models
    "Condition",
    "ConditionKind",
    "DataFlowBinding",
    "DependencyEdge",
    "DependencyType",
    "PairAssessment",
    "Sequence",
    "Signal",
    "Workflow",
    "WorkflowStep",
    "WorkflowVariable",
]
