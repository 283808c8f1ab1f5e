"""
REST API for call ingestion and workflow analysis results.
"""

from apiflow.api.main import create_app, run_server

__all__ = ["create_app", "run_server"]
