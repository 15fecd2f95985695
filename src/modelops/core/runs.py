"""Run coordination: executing a plan against a warehouse.

This module owns one end-to-end run. Waves are driven sequentially; within a
wave, models are materialized on a thread pool bounded by the requested
concurrency. Threads only wait on warehouse I/O, so a pool keeps the
concurrency explicit and predictable without an event loop.

Failure handling is per model: an execution error is recorded in that
model's RunRecord and every downstream model is skipped. Only the aggregate
outcome reaches the caller, through the finalized RunReport.

Two overlapping runs against the same models are not guarded against here;
the invoking scheduler must prevent them.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from modelops.core.errors import CancellationError, ModelOpsError
from modelops.core.graph import DependencyGraph
from modelops.core.materializer import Materializer
from modelops.core.planner import ExecutionPlan
from modelops.core.retry import RetryPolicy, is_transient
from modelops.core.warehouse import Warehouse

logger = logging.getLogger(__name__)


class ModelState(str, Enum):
    """
    Lifecycle of one model within a run.

    PENDING -> RUNNING -> {SUCCEEDED, FAILED}; models that never start end in
    one of the SKIPPED states.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_UPSTREAM_FAILED = "skipped-upstream-failed"
    SKIPPED_CANCELLED = "skipped-cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (ModelState.PENDING, ModelState.RUNNING)

    @property
    def is_skipped(self) -> bool:
        return self in (ModelState.SKIPPED_UPSTREAM_FAILED, ModelState.SKIPPED_CANCELLED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RunRequest:
    """
    Everything a run needs besides the plan.

    Attributes:
        selection: Selection expression the plan was built from.
        concurrency: Maximum models materialized at once.
        fail_fast: Cancel remaining work after the first failure.
        dry_run: Resolve and print the plan only.
        retry: Retry policy for transient warehouse errors.
        run_id: Identifier stamped on the report.
    """

    selection: str = ""
    concurrency: int = 4
    fail_fast: bool = False
    dry_run: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")


@dataclass(frozen=True)
class RunRecord:
    """
    Sealed result of one model within a run.

    Attributes:
        model: Model name.
        outcome: Terminal state.
        started_at: When the first attempt began (None if never started).
        ended_at: When the model reached its terminal state.
        attempts: Number of materialization attempts made.
        rows: Rows affected or resulting row count, when reported.
        bytes: Bytes written, when reported.
        error: Error message for failed models, skip reason for skipped ones.
        transient: True if the final error was classified as transient.
    """

    model: str
    outcome: ModelState
    started_at: datetime | None = None
    ended_at: datetime | None = None
    attempts: int = 0
    rows: int | None = None
    bytes: int | None = None
    error: str | None = None
    transient: bool = False

    @property
    def duration_s(self) -> float:
        if self.started_at is None or self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.model,
            "outcome": self.outcome.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_s": round(self.duration_s, 3),
            "attempts": self.attempts,
            "rows": self.rows,
            "bytes": self.bytes,
            "error": self.error,
        }


class ReportFinalizedError(RuntimeError):
    """Raised when a finalized report is modified."""


class RunReport:
    """
    Aggregate of RunRecords for one run.

    Created at run start, appended to as models complete and frozen by
    `finalize()`.
    """

    def __init__(self, run_id: str, selection: str = "", started_at: datetime | None = None):
        self.run_id = run_id
        self.selection = selection
        self.started_at = started_at or _now()
        self.ended_at: datetime | None = None
        self._records: dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    @property
    def finalized(self) -> bool:
        return self.ended_at is not None

    def add(self, record: RunRecord) -> None:
        """Append a sealed record."""
        with self._lock:
            if self.finalized:
                raise ReportFinalizedError("Run report is finalized")
            if record.model in self._records:
                raise ValueError(f"Model '{record.model}' already has a record in this run")
            self._records[record.model] = record

    def finalize(self, ended_at: datetime | None = None) -> RunReport:
        with self._lock:
            if not self.finalized:
                self.ended_at = ended_at or _now()
        return self

    @property
    def records(self) -> list[RunRecord]:
        return list(self._records.values())

    def get(self, model: str) -> RunRecord | None:
        return self._records.get(model)

    def outcome_of(self, model: str) -> ModelState | None:
        record = self._records.get(model)
        return record.outcome if record else None

    def _names(self, *states: ModelState) -> list[str]:
        return sorted(r.model for r in self._records.values() if r.outcome in states)

    @property
    def succeeded(self) -> list[str]:
        return self._names(ModelState.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._names(ModelState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._names(ModelState.SKIPPED_UPSTREAM_FAILED, ModelState.SKIPPED_CANCELLED)

    @property
    def success(self) -> bool:
        """True only if every selected model succeeded."""
        return all(r.outcome == ModelState.SUCCEEDED for r in self._records.values())

    @property
    def status(self) -> str:
        return "success" if self.success else "partial_failure"

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started": self.started_at.isoformat(),
            "ended": self.ended_at.isoformat() if self.ended_at else None,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "selection": self.selection,
            "summary": self.summary(),
            "failed_models": self.failed,
            "skipped_models": self.skipped,
            "models": [r.to_dict() for r in self._records.values()],
        }

    def write_json(self, path: str | Path) -> Path:
        """Persist the report as JSON and return the written path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.to_dict(), indent=2))
        return target


class CancelToken:
    """External cancellation signal shared with a running coordinator."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


class RunListener(Protocol):
    """Observer notified as models start and finish (e.g. progress displays)."""

    def on_model_start(self, model: str, attempt: int) -> None:
        ...

    def on_model_finish(self, record: RunRecord) -> None:
        ...


class RunCoordinator:
    """
    Drives an ExecutionPlan to completion.

    Args:
        graph: Graph the plan was built from (used to find downstream models).
        warehouse: Warehouse handle passed to the materializer.
        listener: Optional observer for start/finish events.
        cancel_token: Optional external cancellation signal.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        warehouse: Warehouse,
        *,
        listener: RunListener | None = None,
        cancel_token: CancelToken | None = None,
    ):
        self.graph = graph
        self.materializer = Materializer(warehouse)
        self.listener = listener
        self.cancel_token = cancel_token or CancelToken()

    def run(self, plan: ExecutionPlan, request: RunRequest) -> RunReport:
        """
        Execute `plan` and return the finalized report.

        Never raises for model failures; inspect `report.success` instead.
        """
        names = plan.models
        if len(names) != len(set(names)):
            raise ValueError("A model appears more than once in the execution plan")

        report = RunReport(run_id=request.run_id, selection=request.selection)
        abort = threading.Event()
        in_plan = set(names)

        logger.info(
            "run %s: %d model(s) in %d wave(s), concurrency=%d",
            request.run_id,
            len(names),
            len(plan),
            request.concurrency,
        )

        for index, wave in enumerate(plan, start=1):
            runnable: list[str] = []
            for name in wave:
                skipped = self._skip_reason(name, report, in_plan, abort)
                if skipped is not None:
                    self._finish(report, skipped)
                else:
                    runnable.append(name)

            if not runnable:
                continue

            logger.debug("wave %d: %s", index, ", ".join(runnable))
            workers = min(request.concurrency, len(runnable))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [
                    pool.submit(self._execute, name, request, abort) for name in runnable
                ]
                for f in as_completed(futures):
                    record = f.result()
                    self._finish(report, record)
                    if record.outcome == ModelState.FAILED and request.fail_fast:
                        abort.set()

        report.finalize()
        logger.info(
            "run %s finished: %s (%d succeeded, %d failed, %d skipped)",
            request.run_id,
            report.status,
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
        )
        return report

    def _skip_reason(
        self,
        name: str,
        report: RunReport,
        in_plan: set[str],
        abort: threading.Event,
    ) -> RunRecord | None:
        """Return a skip record if `name` must not start, else None."""
        for upstream in sorted(self.graph.ancestors(name) & in_plan):
            outcome = report.outcome_of(upstream)
            if outcome in (ModelState.FAILED, ModelState.SKIPPED_UPSTREAM_FAILED):
                return RunRecord(
                    model=name,
                    outcome=ModelState.SKIPPED_UPSTREAM_FAILED,
                    ended_at=_now(),
                    error=f"upstream '{upstream}' did not succeed",
                )
            if outcome == ModelState.SKIPPED_CANCELLED:
                return self._cancelled(name)

        if abort.is_set() or self.cancel_token.cancelled:
            return self._cancelled(name)
        return None

    @staticmethod
    def _cancelled(name: str) -> RunRecord:
        return RunRecord(
            model=name,
            outcome=ModelState.SKIPPED_CANCELLED,
            ended_at=_now(),
            error="run cancelled before the model started",
        )

    def _finish(self, report: RunReport, record: RunRecord) -> None:
        report.add(record)
        if self.listener is not None:
            self.listener.on_model_finish(record)

    def _execute(self, name: str, request: RunRequest, abort: threading.Event) -> RunRecord:
        """Materialize one model with retries. Never raises."""
        if abort.is_set() or self.cancel_token.cancelled:
            return self._cancelled(name)

        model = self.graph.get(name)
        started_at = _now()
        attempt = 0
        while True:
            attempt += 1
            if self.listener is not None:
                self.listener.on_model_start(name, attempt)
            try:
                result = self.materializer.materialize(model)
            except CancellationError as exc:
                logger.warning("%s: cancelled while running: %s", name, exc)
                return RunRecord(
                    model=name,
                    outcome=ModelState.SKIPPED_CANCELLED,
                    started_at=started_at,
                    ended_at=_now(),
                    attempts=attempt,
                    error=str(exc) or "cancelled while running",
                )
            except Exception as exc:  # noqa: BLE001 - recorded per model
                if request.retry.should_retry(exc, attempt):
                    logger.warning(
                        "%s: transient error on attempt %d, retrying in %.1fs: %s",
                        name,
                        attempt,
                        request.retry.backoff_seconds,
                        exc,
                    )
                    if not self.cancel_token.wait(request.retry.backoff_seconds):
                        continue
                    logger.warning("%s: cancelled while waiting to retry", name)
                    return RunRecord(
                        model=name,
                        outcome=ModelState.SKIPPED_CANCELLED,
                        started_at=started_at,
                        ended_at=_now(),
                        attempts=attempt,
                        error=f"cancelled while waiting to retry after: {exc}",
                    )
                if not isinstance(exc, ModelOpsError):
                    logger.exception("%s: unexpected error", name)
                else:
                    logger.error("%s failed: %s", name, exc)
                return RunRecord(
                    model=name,
                    outcome=ModelState.FAILED,
                    started_at=started_at,
                    ended_at=_now(),
                    attempts=attempt,
                    error=str(exc) or exc.__class__.__name__,
                    transient=is_transient(exc),
                )

            logger.info("%s: %s built", name, result.relation)
            return RunRecord(
                model=name,
                outcome=ModelState.SUCCEEDED,
                started_at=started_at,
                ended_at=_now(),
                attempts=attempt,
                rows=result.rows,
            )
