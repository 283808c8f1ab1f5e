"""
Database management for captured calls and analysis results.

Provides async SQLAlchemy storage (SQLite via aiosqlite by default,
PostgreSQL via asyncpg) and the repositories the analyzer reads from and
upserts into.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from apiflow.analysis.identity import (
    dependency_id,
    endpoint_id,
    normalize_workflow_name,
    workflow_id,
)
from apiflow.analysis.models import DependencyEdge, Workflow
from apiflow.capture.models import CallRecord, parse_headers, parse_timestamp
from apiflow.storage.base import Base
from apiflow.storage.models import ApiCallModel, ApiDependencyModel, ApiWorkflowModel

logger = structlog.get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./apiflow.db"

# Newest calls per tab handed to the analyzer
TAB_CALL_LIMIT = 100


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(
        self,
        database_url: str | None = None,
        pool_size: int = 5,
        max_overflow: int = 10,
    ) -> None:
        url = database_url or os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)

        engine_options: dict[str, Any] = {
            "echo": os.environ.get("SQL_ECHO", "false").lower() == "true",
        }
        if not url.startswith("sqlite"):
            engine_options.update(pool_size=pool_size, max_overflow=max_overflow)

        self._engine = create_async_engine(url, **engine_options)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.url = url

        self._log = logger.bind(component="database_manager")

    async def create_tables(self) -> None:
        """Create all database tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._log.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all database tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        self._log.info("Database tables dropped")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session committed on exit."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()


class CallRepository:
    """Repository for captured calls."""

    def __init__(self, db_manager: DatabaseManager, tab_limit: int = TAB_CALL_LIMIT) -> None:
        self._db = db_manager
        self._tab_limit = tab_limit
        self._log = logger.bind(component="call_repository")

    async def save_call(self, call: CallRecord) -> CallRecord:
        """Insert a call, or overwrite the stored call with the same id."""
        async with self._db.session() as session:
            await session.merge(
                ApiCallModel(
                    id=call.id,
                    method=call.method,
                    url=call.url,
                    timestamp=parse_timestamp(call.timestamp),
                    tab_id=call.tab_id,
                    request_headers=[h.to_dict() for h in call.request_headers],
                    response_headers=[h.to_dict() for h in call.response_headers],
                    status=call.status,
                    size=call.body_size,
                )
            )
        self._log.debug("Call saved", call_id=call.id, tab_id=call.tab_id)
        return call

    async def list_calls_for_tab(self, tab_id: int) -> list[CallRecord]:
        """Most recent calls of a tab, oldest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ApiCallModel)
                .where(ApiCallModel.tab_id == tab_id)
                .order_by(ApiCallModel.timestamp.desc())
                .limit(self._tab_limit)
            )
            rows = result.scalars().all()
        return [_call_from_row(row) for row in reversed(rows)]

    async def clear_calls_for_tab(self, tab_id: int) -> int:
        """Delete all calls of a tab; returns the number removed."""
        async with self._db.session() as session:
            result = await session.execute(
                delete(ApiCallModel).where(ApiCallModel.tab_id == tab_id)
            )
        self._log.info("Cleared calls for tab", tab_id=tab_id, removed=result.rowcount)
        return result.rowcount or 0


class AnalysisRepository:
    """
    Repository for dependencies and workflows.

    Upserts merge repeat detections with a single UPDATE statement so
    concurrent runs cannot lose frequency increments.
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager
        self._log = logger.bind(component="analysis_repository")

    async def upsert_dependency(
        self, edge: DependencyEdge, seen_at: datetime | None = None
    ) -> None:
        """
        Insert a dependency or merge it into the stored one.

        Merging increments ``frequency`` and folds ``time_between_ms`` into
        the running mean ``avg_time_between``.

        Raises:
            ValueError: If either call URL cannot be turned into an endpoint id
        """
        seen_at = seen_at or datetime.now(UTC)
        from_id = endpoint_id(edge.from_call.url, edge.from_call.method)
        to_id = endpoint_id(edge.to_call.url, edge.to_call.method)
        dep_id = dependency_id(from_id, to_id)

        if await self._merge_dependency(dep_id, edge, seen_at):
            return

        try:
            async with self._db.session() as session:
                session.add(
                    ApiDependencyModel(
                        id=dep_id,
                        from_endpoint_id=from_id,
                        to_endpoint_id=to_id,
                        dependency_type=str(edge.dependency_type),
                        confidence=edge.confidence,
                        frequency=1,
                        avg_time_between=float(edge.time_between_ms),
                        data_flow=[b.to_dict() for b in edge.data_flow],
                        conditions=[c.to_dict() for c in edge.conditions],
                        last_seen=seen_at,
                        created_at=seen_at,
                    )
                )
        except IntegrityError:
            # Another run inserted the same identity first
            self._log.debug("Dependency insert raced, merging", dependency_id=dep_id)
            await self._merge_dependency(dep_id, edge, seen_at)

    async def _merge_dependency(
        self, dep_id: str, edge: DependencyEdge, seen_at: datetime
    ) -> bool:
        table = ApiDependencyModel.__table__
        stmt = (
            update(table)
            .where(table.c.id == dep_id)
            .values(
                frequency=table.c.frequency + 1,
                avg_time_between=table.c.avg_time_between
                + (float(edge.time_between_ms) - table.c.avg_time_between)
                / (table.c.frequency + 1),
                dependency_type=str(edge.dependency_type),
                confidence=edge.confidence,
                data_flow=[b.to_dict() for b in edge.data_flow],
                conditions=[c.to_dict() for c in edge.conditions],
                last_seen=seen_at,
            )
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
        return bool(result.rowcount)

    async def upsert_workflow(self, workflow: Workflow) -> None:
        """Insert a workflow or bump the frequency of the stored one."""
        wf_id = workflow_id(workflow.base_url, workflow.name)

        if await self._merge_workflow(wf_id, workflow):
            return

        try:
            async with self._db.session() as session:
                session.add(
                    ApiWorkflowModel(
                        id=wf_id,
                        name=workflow.name,
                        description=workflow.description,
                        base_url=workflow.base_url,
                        steps=[s.to_dict() for s in workflow.steps],
                        frequency=workflow.frequency or 1,
                        last_detected=workflow.last_detected,
                        created_at=workflow.last_detected,
                        updated_at=workflow.last_detected,
                    )
                )
        except IntegrityError:
            self._log.debug("Workflow insert raced, merging", workflow_id=wf_id)
            await self._merge_workflow(wf_id, workflow)

    async def _merge_workflow(self, wf_id: str, workflow: Workflow) -> bool:
        table = ApiWorkflowModel.__table__
        now = datetime.now(UTC)
        stmt = (
            update(table)
            .where(table.c.id == wf_id)
            .values(
                frequency=table.c.frequency + 1,
                name=workflow.name,
                description=workflow.description,
                steps=[s.to_dict() for s in workflow.steps],
                last_detected=workflow.last_detected,
                updated_at=now,
            )
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
        return bool(result.rowcount)

    async def list_dependencies(self) -> list[dict[str, Any]]:
        """All dependencies, most confident and most frequent first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ApiDependencyModel).order_by(
                    ApiDependencyModel.confidence.desc(),
                    ApiDependencyModel.frequency.desc(),
                )
            )
            return [_dependency_to_dict(row) for row in result.scalars().all()]

    async def list_dependencies_by_base_url(self, base_url: str) -> list[dict[str, Any]]:
        """Dependencies whose origin endpoint belongs to ``base_url``."""
        prefix = f"{base_url.rstrip('/')}/"
        async with self._db.session() as session:
            result = await session.execute(
                select(ApiDependencyModel)
                .where(ApiDependencyModel.from_endpoint_id.startswith(prefix, autoescape=True))
                .order_by(ApiDependencyModel.confidence.desc())
            )
            return [_dependency_to_dict(row) for row in result.scalars().all()]

    async def get_dependency(
        self, from_endpoint_id: str, to_endpoint_id: str
    ) -> dict[str, Any] | None:
        async with self._db.session() as session:
            row = await session.get(
                ApiDependencyModel, dependency_id(from_endpoint_id, to_endpoint_id)
            )
            return _dependency_to_dict(row) if row is not None else None

    async def list_workflows(self) -> list[dict[str, Any]]:
        """All workflows, most frequent and most recent first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ApiWorkflowModel).order_by(
                    ApiWorkflowModel.frequency.desc(),
                    ApiWorkflowModel.last_detected.desc(),
                )
            )
            return [_workflow_to_dict(row) for row in result.scalars().all()]

    async def list_workflows_by_base_url(self, base_url: str) -> list[dict[str, Any]]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ApiWorkflowModel)
                .where(ApiWorkflowModel.base_url == base_url.rstrip("/"))
                .order_by(ApiWorkflowModel.frequency.desc())
            )
            return [_workflow_to_dict(row) for row in result.scalars().all()]

    async def get_workflow(self, base_url: str, name: str) -> dict[str, Any] | None:
        async with self._db.session() as session:
            row = await session.get(ApiWorkflowModel, workflow_id(base_url, name))
            return _workflow_to_dict(row) if row is not None else None

    async def clear(self) -> dict[str, int]:
        """Delete all dependencies and workflows."""
        async with self._db.session() as session:
            deps = await session.execute(delete(ApiDependencyModel))
            workflows = await session.execute(delete(ApiWorkflowModel))
        removed = {
            "dependencies": deps.rowcount or 0,
            "workflows": workflows.rowcount or 0,
        }
        self._log.info("Cleared analysis results", **removed)
        return removed


def _call_from_row(row: ApiCallModel) -> CallRecord:
    return CallRecord(
        id=row.id,
        method=row.method,
        url=row.url,
        timestamp=parse_timestamp(row.timestamp),
        tab_id=row.tab_id,
        request_headers=parse_headers(row.request_headers),
        response_headers=parse_headers(row.response_headers),
        status=row.status,
        body_size=row.size or 0,
    )


def _dependency_to_dict(row: ApiDependencyModel) -> dict[str, Any]:
    return {
        "id": row.id,
        "from_endpoint_id": row.from_endpoint_id,
        "to_endpoint_id": row.to_endpoint_id,
        "dependency_type": row.dependency_type,
        "confidence": row.confidence,
        "frequency": row.frequency,
        "avg_time_between": row.avg_time_between,
        "data_flow": row.data_flow or [],
        "conditions": row.conditions or [],
        "last_seen": row.last_seen,
        "created_at": row.created_at,
    }


def _workflow_to_dict(row: ApiWorkflowModel) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "normalized_name": normalize_workflow_name(row.name),
        "description": row.description,
        "base_url": row.base_url,
        "steps": row.steps or [],
        "frequency": row.frequency,
        "last_detected": row.last_detected,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }
