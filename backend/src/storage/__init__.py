"""
Storage module for captured calls and analysis results.

Provides async SQLAlchemy persistence with create-or-merge upserts for
dependencies and workflows.
"""

from apiflow.storage.database import (
    AnalysisRepository,
    CallRepository,
    DatabaseManager,
)
from apiflow.storage.models import ApiCallModel, ApiDependencyModel, ApiWorkflowModel

__all__ = [
    "AnalysisRepository",
    "ApiCallModel",
    "ApiDependencyModel",
    "ApiWorkflowModel",
    "CallRepository",
    "DatabaseManager",
]
