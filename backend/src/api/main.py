"""
FastAPI application for apiflow.

Provides REST endpoints to ingest captured calls, trigger and query
workflow analysis, and clear stored results.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from apiflow import __version__
from apiflow.analysis.analyzer import AnalysisCancelledError, WorkflowAnalyzer
from apiflow.analysis.config import AnalyzerConfig, load_analyzer_config
from apiflow.capture.models import CallRecord, Header, parse_timestamp
from apiflow.storage.database import AnalysisRepository, CallRepository, DatabaseManager

logger = structlog.get_logger(__name__)


class HeaderPayload(BaseModel):
    """A captured header."""

    name: str
    value: str = ""


class CallPayload(BaseModel):
    """Captured call sent by the browser extension or web app."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    method: str = "GET"
    url: str
    timestamp: datetime | int | None = None
    tab_id: int = Field(default=0, alias="tabId")
    request_headers: list[HeaderPayload] = Field(default_factory=list, alias="requestHeaders")
    response_headers: list[HeaderPayload] = Field(default_factory=list, alias="responseHeaders")
    status: int | None = None
    size: int = 0

    def to_record(self) -> CallRecord:
        return CallRecord.from_dict(
            {
                "id": self.id,
                "method": self.method,
                "url": self.url,
                "timestamp": self.timestamp,
                "tab_id": self.tab_id,
                "request_headers": [Header(h.name, h.value) for h in self.request_headers],
                "response_headers": [Header(h.name, h.value) for h in self.response_headers],
                "status": self.status or None,
                "size": self.size,
            }
        )


class CallResponse(BaseModel):
    """Stored call."""

    id: str
    method: str
    url: str
    timestamp: datetime
    tab_id: int
    request_headers: list[HeaderPayload]
    response_headers: list[HeaderPayload]
    status: int | None = None
    size: int = 0

    @classmethod
    def from_record(cls, call: CallRecord) -> CallResponse:
        return cls(
            id=call.id,
            method=call.method,
            url=call.url,
            timestamp=parse_timestamp(call.timestamp),
            tab_id=call.tab_id,
            request_headers=[HeaderPayload(name=h.name, value=h.value) for h in call.request_headers],
            response_headers=[HeaderPayload(name=h.name, value=h.value) for h in call.response_headers],
            status=call.status,
            size=call.body_size,
        )


class DependencyResponse(BaseModel):
    """Stored dependency between two endpoints."""

    id: str
    from_endpoint_id: str
    to_endpoint_id: str
    dependency_type: str
    confidence: float
    frequency: int
    avg_time_between: float
    data_flow: list[dict[str, Any]]
    conditions: list[dict[str, Any]]
    last_seen: datetime
    created_at: datetime


class WorkflowResponse(BaseModel):
    """Stored workflow."""

    id: str
    name: str
    normalized_name: str
    description: str | None = None
    base_url: str
    steps: list[dict[str, Any]]
    frequency: int
    last_detected: datetime
    created_at: datetime
    updated_at: datetime


class AnalysisResponse(BaseModel):
    """Summary of a synchronous analysis run."""

    success: bool
    message: str
    report: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str


class AppState:
    """Application state container."""

    db_manager: DatabaseManager | None = None
    calls: CallRepository | None = None
    results: AnalysisRepository | None = None
    analyzer: WorkflowAnalyzer | None = None


def create_app(
    database_url: str | None = None,
    analyzer_config: AnalyzerConfig | None = None,
) -> FastAPI:
    """Create FastAPI application."""
    state = AppState()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan management."""
        log = logger.bind(component="api")
        log.info("Starting apiflow API server")

        state.db_manager = DatabaseManager(
            database_url=database_url or os.environ.get("DATABASE_URL")
        )
        await state.db_manager.create_tables()
        state.calls = CallRepository(state.db_manager)
        state.results = AnalysisRepository(state.db_manager)
        state.analyzer = WorkflowAnalyzer(
            source=state.calls,
            sink=state.results,
            config=analyzer_config or load_analyzer_config(os.environ.get("APIFLOW_CONFIG")),
        )

        log.info("apiflow API server started", database=state.db_manager.url)

        yield

        log.info("Shutting down apiflow API server")
        await state.analyzer.shutdown()
        await state.db_manager.close()

    app = FastAPI(
        title="apiflow",
        description="Dependency and workflow inference over captured API calls",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_services() -> tuple[CallRepository, AnalysisRepository, WorkflowAnalyzer]:
        if state.calls is None or state.results is None or state.analyzer is None:
            raise HTTPException(status_code=503, detail="Storage not available")
        return state.calls, state.results, state.analyzer

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(UTC),
            version=__version__,
        )

    @app.post("/api/api-calls", response_model=CallResponse)
    async def save_api_call(payload: CallPayload) -> CallResponse:
        """Store a captured call and schedule analysis of its tab."""
        calls, _, analyzer = require_services()
        try:
            record = payload.to_record()
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid API call data: {e}") from e

        saved = await calls.save_call(record)

        if saved.tab_id:
            analyzer.schedule(saved.tab_id)

        return CallResponse.from_record(saved)

    @app.get("/api/api-calls/tab/{tab_id}", response_model=list[CallResponse])
    async def list_tab_calls(tab_id: int) -> list[CallResponse]:
        """List the stored calls of a tab, oldest first."""
        calls, _, _ = require_services()
        return [CallResponse.from_record(c) for c in await calls.list_calls_for_tab(tab_id)]

    @app.delete("/api/api-calls/tab/{tab_id}")
    async def clear_tab_calls(tab_id: int) -> dict[str, Any]:
        """Forget a tab: cancel its analysis runs, then delete its calls."""
        calls, _, analyzer = require_services()
        cancelled = analyzer.cancel_tab(tab_id)
        await analyzer.wait_idle(tab_id)
        removed = await calls.clear_calls_for_tab(tab_id)
        return {"status": "cleared", "tab_id": tab_id, "removed": removed, "cancelled": cancelled}

    @app.get("/api/workflows", response_model=list[WorkflowResponse])
    async def list_workflows(
        base_url: str | None = Query(None, description="Restrict to one origin"),
    ) -> list[dict[str, Any]]:
        """List detected workflows, most frequent first."""
        _, results, _ = require_services()
        try:
            if base_url:
                return await results.list_workflows_by_base_url(base_url)
            return await results.list_workflows()
        except Exception as e:
            logger.error("Error fetching workflows", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to fetch workflows") from e

    @app.get("/api/dependencies", response_model=list[DependencyResponse])
    async def list_dependencies(
        base_url: str | None = Query(None, description="Restrict to one origin"),
    ) -> list[dict[str, Any]]:
        """List detected dependencies, most confident first."""
        _, results, _ = require_services()
        try:
            if base_url:
                return await results.list_dependencies_by_base_url(base_url)
            return await results.list_dependencies()
        except Exception as e:
            logger.error("Error fetching dependencies", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to fetch dependencies") from e

    @app.post("/api/analyze-workflows/{tab_id}", response_model=AnalysisResponse)
    async def analyze_workflows(tab_id: int) -> AnalysisResponse:
        """Run workflow analysis for a tab and wait for it to finish."""
        _, _, analyzer = require_services()
        try:
            report = await analyzer.analyze_tab(tab_id)
        except AnalysisCancelledError as e:
            logger.info("Workflow analysis cancelled", tab_id=tab_id)
            raise HTTPException(status_code=409, detail="Workflow analysis was cancelled") from e
        except Exception as e:
            logger.error("Error analyzing workflows", tab_id=tab_id, error=str(e))
            raise HTTPException(status_code=500, detail="Failed to analyze workflows") from e

        return AnalysisResponse(
            success=True,
            message="Workflow analysis completed",
            report=report.summary(),
        )

    @app.delete("/api/analysis")
    async def clear_analysis() -> dict[str, Any]:
        """Cancel running analyses and delete all dependencies and workflows."""
        _, results, analyzer = require_services()
        cancelled = analyzer.cancel_all()
        await analyzer.wait_idle()
        removed = await results.clear()
        return {"status": "cleared", "cancelled": cancelled, **removed}

    return app


def run_server(host: str = "0.0.0.0", port: int = 8080) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run(
        "apiflow.api.main:create_app",
        host=host,
        port=port,
        factory=True,
        reload=os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run_server()
