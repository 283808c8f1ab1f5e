"""
Database models for captured calls and analysis results.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text

from apiflow.storage.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ApiCallModel(Base):
    """Captured call database model."""

    __tablename__ = "api_calls"

    id = Column(String(128), primary_key=True)
    method = Column(String(16), nullable=False)
    url = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True, default=_utcnow)
    tab_id = Column(Integer, nullable=False, index=True)
    request_headers = Column(JSON, nullable=False, default=list)
    response_headers = Column(JSON, nullable=False, default=list)
    status = Column(Integer, nullable=True)
    size = Column(Integer, nullable=False, default=0)


class ApiDependencyModel(Base):
    """Dependency between two endpoints, merged across detections."""

    __tablename__ = "api_dependencies"

    id = Column(String(2048), primary_key=True)
    from_endpoint_id = Column(String(1024), nullable=False, index=True)
    to_endpoint_id = Column(String(1024), nullable=False, index=True)
    dependency_type = Column(String(32), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    frequency = Column(Integer, nullable=False, default=1)
    avg_time_between = Column(Float, nullable=False, default=0.0)
    data_flow = Column(JSON, nullable=False, default=list)
    conditions = Column(JSON, nullable=False, default=list)
    last_seen = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ApiWorkflowModel(Base):
    """Detected workflow, merged across detections."""

    __tablename__ = "api_workflows"

    id = Column(String(1024), primary_key=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    base_url = Column(String(512), nullable=False, index=True)
    steps = Column(JSON, nullable=False, default=list)
    frequency = Column(Integer, nullable=False, default=0)
    last_detected = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
