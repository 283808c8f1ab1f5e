"""
Workflow analysis orchestration.

Runs the pure stages (grouping, detection, synthesis) over all calls of a
tab and writes the results through an upsert sink:
- Runs for the same tab are serialized
- Background runs are fire-and-forget with a timeout
- Runs can be cancelled when a tab closes or data is cleared
- A failed upsert never aborts the rest of the batch
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from apiflow.analysis.config import AnalyzerConfig
from apiflow.analysis.dependencies import DependencyDetector
from apiflow.analysis.models import DependencyEdge, Sequence, Workflow
from apiflow.analysis.sequences import group_calls_into_sequences
from apiflow.analysis.workflows import WorkflowSynthesizer
from apiflow.capture.models import CallRecord

logger = structlog.get_logger(__name__)


class CallSource(Protocol):
    """Supplies the captured calls of a tab."""

    async def list_calls_for_tab(self, tab_id: int) -> list[CallRecord]: ...


class AnalysisSink(Protocol):
    """Create-or-merge storage for analysis results."""

    async def upsert_dependency(
        self, edge: DependencyEdge, seen_at: datetime | None = None
    ) -> None: ...

    async def upsert_workflow(self, workflow: Workflow) -> None: ...


@dataclass
class AnalysisResult:
    """Output of the pure stages for one set of calls."""

    sequences: list[Sequence] = field(default_factory=list)
    dependencies: list[DependencyEdge] = field(default_factory=list)
    workflows: list[Workflow] = field(default_factory=list)


class AnalysisCancelledError(Exception):
    """Raised to the caller of a run that was cancelled by a clear or shutdown."""

    def __init__(self, tab_id: int) -> None:
        super().__init__(f"Workflow analysis for tab {tab_id} was cancelled")
        self.tab_id = tab_id


def analyze_calls(
    calls: Iterable[CallRecord],
    config: AnalyzerConfig | None = None,
    *,
    detector: DependencyDetector | None = None,
    synthesizer: WorkflowSynthesizer | None = None,
) -> AnalysisResult:
    """Run grouping, detection and synthesis without side effects."""
    config = config or AnalyzerConfig()
    detector = detector or DependencyDetector(config)
    synthesizer = synthesizer or WorkflowSynthesizer(config)

    result = AnalysisResult(sequences=group_calls_into_sequences(calls, config))
    for sequence in result.sequences:
        edges = detector.detect(sequence)
        result.dependencies.extend(edges)
        result.workflows.extend(synthesizer.synthesize(edges))
    return result


@dataclass
class AnalysisReport:
    """Outcome of one analysis run for a tab."""

    tab_id: int
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    calls: int = 0
    sequences: int = 0
    dependencies: list[DependencyEdge] = field(default_factory=list)
    workflows: list[Workflow] = field(default_factory=list)
    stored_dependencies: int = 0
    stored_workflows: int = 0
    failed_upserts: int = 0

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def summary(self) -> dict[str, Any]:
        return {
            "tabId": self.tab_id,
            "calls": self.calls,
            "sequences": self.sequences,
            "dependencies": len(self.dependencies),
            "workflows": len(self.workflows),
            "storedDependencies": self.stored_dependencies,
            "storedWorkflows": self.stored_workflows,
            "failedUpserts": self.failed_upserts,
            "durationMs": self.duration_ms,
        }


class WorkflowAnalyzer:
    """
    Analyzes a tab's captured calls and persists dependencies and workflows.

    The analysis itself is re-run from scratch on the full call set of the
    tab each time; there is no incremental state.
    """

    def __init__(
        self,
        source: CallSource,
        sink: AnalysisSink,
        config: AnalyzerConfig | None = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self._source = source
        self._sink = sink
        self._detector = DependencyDetector(self.config)
        self._synthesizer = WorkflowSynthesizer(self.config)
        # Entries vanish once no run holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._tasks: dict[int, set[asyncio.Task[Any]]] = {}
        self._log = logger.bind(component="workflow_analyzer")

    def analyze_calls(self, calls: Iterable[CallRecord]) -> AnalysisResult:
        """Run grouping, detection and synthesis without side effects."""
        return analyze_calls(
            calls,
            self.config,
            detector=self._detector,
            synthesizer=self._synthesizer,
        )

    async def analyze_tab(self, tab_id: int) -> AnalysisReport:
        """
        Analyze all calls of a tab and upsert the results.

        Runs for the same tab wait for each other so frequency counters are
        not updated concurrently from one tab. The run is tracked like a
        background run, so cancel_tab and cancel_all reach it too.

        Raises:
            AnalysisCancelledError: If the run was cancelled before it finished
        """
        task = self._track(tab_id, self._locked_run(tab_id))
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise AnalysisCancelledError(tab_id) from None

    async def _locked_run(self, tab_id: int) -> AnalysisReport:
        lock = self._locks.get(tab_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tab_id] = lock
        async with lock:
            return await self._run(tab_id)

    async def _run(self, tab_id: int) -> AnalysisReport:
        log = self._log.bind(tab_id=tab_id)
        report = AnalysisReport(tab_id=tab_id)

        calls = await self._source.list_calls_for_tab(tab_id)
        report.calls = len(calls)
        if len(calls) < 2:
            report.finished_at = datetime.now(UTC)
            log.debug("Not enough calls to analyze", calls=len(calls))
            return report

        result = self.analyze_calls(calls)
        report.sequences = len(result.sequences)
        report.dependencies = result.dependencies
        report.workflows = result.workflows

        seen_at = datetime.now(UTC)
        for edge in result.dependencies:
            try:
                await self._sink.upsert_dependency(edge, seen_at)
                report.stored_dependencies += 1
            except Exception as e:
                report.failed_upserts += 1
                log.error(
                    "Failed to store dependency",
                    from_url=edge.from_call.url,
                    to_url=edge.to_call.url,
                    error=str(e),
                )

        for workflow in result.workflows:
            try:
                await self._sink.upsert_workflow(workflow)
                report.stored_workflows += 1
            except Exception as e:
                report.failed_upserts += 1
                log.error(
                    "Failed to store workflow",
                    workflow=workflow.name,
                    base_url=workflow.base_url,
                    error=str(e),
                )

        report.finished_at = datetime.now(UTC)
        log.info(
            "Workflow analysis complete",
            calls=report.calls,
            sequences=report.sequences,
            dependencies=len(report.dependencies),
            workflows=len(report.workflows),
            failed_upserts=report.failed_upserts,
            duration_ms=report.duration_ms,
        )
        return report

    def schedule(self, tab_id: int) -> asyncio.Task[AnalysisReport | None]:
        """
        Start a background analysis for a tab.

        Errors and timeouts are logged, never raised to the caller.
        """
        return self._track(tab_id, self._run_in_background(tab_id))

    def _track(
        self, tab_id: int, coro: Coroutine[Any, Any, AnalysisReport | None]
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"workflow-analysis-{tab_id}")
        self._tasks.setdefault(tab_id, set()).add(task)
        task.add_done_callback(lambda t: self._forget(tab_id, t))
        return task

    async def _run_in_background(self, tab_id: int) -> AnalysisReport | None:
        try:
            return await asyncio.wait_for(
                self._locked_run(tab_id),
                timeout=self.config.analysis_timeout_seconds,
            )
        except TimeoutError:
            self._log.warning(
                "Background workflow analysis timed out",
                tab_id=tab_id,
                timeout_seconds=self.config.analysis_timeout_seconds,
            )
        except asyncio.CancelledError:
            self._log.info("Background workflow analysis cancelled", tab_id=tab_id)
            raise
        except Exception as e:
            self._log.error(
                "Background workflow analysis failed",
                tab_id=tab_id,
                error=str(e),
            )
        return None

    def _forget(self, tab_id: int, task: asyncio.Task[Any]) -> None:
        tasks = self._tasks.get(tab_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._tasks[tab_id]

    def pending(self, tab_id: int | None = None) -> int:
        """Number of runs still in flight."""
        if tab_id is not None:
            return len(self._tasks.get(tab_id, ()))
        return sum(len(tasks) for tasks in self._tasks.values())

    def cancel_tab(self, tab_id: int) -> int:
        """Cancel in-flight runs for a tab; returns how many were cancelled."""
        tasks = list(self._tasks.get(tab_id, ()))
        for task in tasks:
            task.cancel()
        if tasks:
            self._log.info("Cancelled workflow analysis", tab_id=tab_id, runs=len(tasks))
        return len(tasks)

    def cancel_all(self) -> int:
        return sum(self.cancel_tab(tab_id) for tab_id in list(self._tasks))

    async def wait_idle(self, tab_id: int | None = None) -> None:
        """Wait for in-flight runs (of one tab, or all) to finish."""
        if tab_id is not None:
            tasks = list(self._tasks.get(tab_id, ()))
        else:
            tasks = [t for tasks in self._tasks.values() for t in tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding runs and wait for them to unwind."""
        self.cancel_all()
        await self.wait_idle()
