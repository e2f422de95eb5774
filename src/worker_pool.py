"""Fixed pool of analysis workers draining the bounded task queue."""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any

from src.analysis_pipeline import perform_analysis
from src.config_utils import DepotConfig, resolve_worker_timeout
from src.errors import PersistenceError, RecordConflictError, UnreadableFileError
from src.logging_utils import set_task_context
from src.result_store import InMemoryResultStore
from src.schema import (
    AnalysisParameters,
    AnalysisSections,
    AnalysisStatus,
    AnalysisTask,
    FailureKind,
    StoredFile,
)
from src.task_queue import AnalysisQueue
from src.text_utils import utc_timestamp

Pipeline = Callable[
    [AnalysisTask, AnalysisParameters, threading.Event], AnalysisSections
]

TIMEOUT_ERROR_MESSAGE = "Analysis timed out"
QUEUE_POLL_INTERVAL = 1.0
SHUTDOWN_JOIN_TIMEOUT = 2.0
NORMAL_JOIN_TIMEOUT = 5.0

LOGGER_NAME = "depot_analysis.workers"
scheduler_logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class SchedulerStats:
    """Point-in-time view of the scheduler for health reporting."""

    queue_capacity: int
    queue_depth: int
    worker_count: int
    workers_alive: int
    in_flight: int
    abandoned_running: int
    submitted: int
    dropped: int
    completed: int
    failed: int
    timed_out: int


def _join_threads_with_timeout(
    threads: Iterable[threading.Thread], timeout: float
) -> list[str]:
    """Join threads for up to timeout seconds, returning names still alive."""

    lingering: list[str] = []
    deadline = time.monotonic() + max(timeout, 0)
    for thread in threads:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            if thread.is_alive():
                lingering.append(thread.name or repr(thread))
            continue
        thread.join(remaining)
        if thread.is_alive():
            lingering.append(thread.name or repr(thread))
    return lingering


class AnalysisScheduler:
    """Owns the analysis queue, its workers and the per-task deadline race.

    Each worker takes one task at a time, creates its pending record, runs the
    pipeline on a helper thread and waits for it until the task's deadline. The
    side that finishes first writes the terminal record. A pipeline that misses
    its deadline is told to stop through its cancel event and its eventual
    result is discarded.
    """

    def __init__(
        self,
        store: InMemoryResultStore,
        params: AnalysisParameters,
        *,
        queue_size: int,
        worker_count: int,
        worker_timeout: str | float | None,
        pipeline: Pipeline = perform_analysis,
        poll_interval: float = QUEUE_POLL_INTERVAL,
    ) -> None:
        if worker_count < 0:
            raise ValueError("Worker count cannot be negative")
        self.store = store
        self.params = params
        self.worker_count = worker_count
        self.worker_timeout = resolve_worker_timeout(worker_timeout)
        self.queue = AnalysisQueue(queue_size)
        self._pipeline = pipeline
        self._poll_interval = poll_interval
        self._threads: list[threading.Thread] = []
        self._abandoned: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._started = False
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._in_flight = 0

    @classmethod
    def from_config(
        cls, config: DepotConfig, store: InMemoryResultStore, **kwargs: Any
    ) -> AnalysisScheduler:
        return cls(
            store,
            config.analysis_params,
            queue_size=config.worker_pool.analysis_queue_size,
            worker_count=config.worker_pool.max_concurrent_analysis,
            worker_timeout=config.worker_pool.worker_timeout,
            **kwargs,
        )

    def start(self) -> None:
        """Start the worker threads. Calling this twice is an error."""
        with self._lock:
            if self._started:
                raise RuntimeError("Analysis scheduler already started")
            self._started = True

        if self.worker_count == 0:
            scheduler_logger.warning(
                "No analysis workers configured; queued files will not be analyzed"
            )

        for worker_id in range(1, self.worker_count + 1):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=f"analysis-worker-{worker_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        scheduler_logger.info(
            "Started %d analysis worker(s) (queue capacity %d, timeout %.1fs)",
            self.worker_count,
            self.queue.capacity,
            self.worker_timeout,
        )

    def submit(self, stored_file: StoredFile) -> bool:
        """Queue ``stored_file`` for analysis without blocking.

        Returns False, after logging a warning, when the task was dropped
        because the queue is full or closed.
        """
        if stored_file.id is None:
            raise ValueError("Files must be registered before they are submitted")

        task = AnalysisTask(
            task_id=uuid.uuid4().hex,
            file_id=stored_file.id,
            file_path=stored_file.file_path,
            file_name=stored_file.file_name,
            file_size=stored_file.file_size,
            upload_time=stored_file.upload_time,
            esp_id=stored_file.esp_id,
            delivery_key=stored_file.delivery_key,
            parameters=self.params,
        )
        accepted = self.queue.try_enqueue(task)

        with self._lock:
            self._counts["submitted" if accepted else "dropped"] += 1

        if accepted:
            scheduler_logger.debug(
                "Queued %s (ID: %d) for analysis [%s]",
                stored_file.file_name,
                stored_file.id,
                task.task_id,
            )
        else:
            reason = "closed" if self.queue.closed else "full"
            scheduler_logger.warning(
                "Analysis queue is %s. File %s (ID: %d) was not queued for analysis",
                reason,
                stored_file.file_name,
                stored_file.id,
            )
        return accepted

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until every accepted task has reached a terminal record."""
        return self.queue.wait_until_empty(timeout)

    def shutdown(
        self, *, drain: bool = True, timeout: float | None = None
    ) -> list[str]:
        """Stop admitting work and stop the workers.

        With ``drain`` the workers first finish everything already queued (for
        up to ``timeout`` seconds); otherwise queued tasks are dropped and each
        worker stops after its current task. Returns the names of worker threads
        still alive afterwards.
        """
        self.queue.close()

        if drain and self._threads:
            if not self.queue.wait_until_empty(timeout):
                scheduler_logger.warning(
                    "Queue did not drain within %ss; stopping workers anyway", timeout
                )
                drain = False

        if not drain or not self._threads:
            self._stop_event.set()
            dropped = self.queue.drain()
            if dropped:
                scheduler_logger.warning(
                    "Dropped %d queued analysis task(s) during shutdown", len(dropped)
                )
            with self._lock:
                self._counts["dropped"] += len(dropped)

        join_timeout = NORMAL_JOIN_TIMEOUT if drain else SHUTDOWN_JOIN_TIMEOUT
        lingering = _join_threads_with_timeout(self._threads, join_timeout)
        if lingering:
            scheduler_logger.warning(
                "Shutdown timeout reached; threads still running: %s",
                ", ".join(lingering),
            )
        else:
            scheduler_logger.info("All analysis workers stopped")
        return lingering

    def stats(self) -> SchedulerStats:
        with self._lock:
            self._prune_abandoned()
            return SchedulerStats(
                queue_capacity=self.queue.capacity,
                queue_depth=self.queue.qsize(),
                worker_count=self.worker_count,
                workers_alive=sum(1 for t in self._threads if t.is_alive()),
                in_flight=self._in_flight,
                abandoned_running=len(self._abandoned),
                submitted=self._counts["submitted"],
                dropped=self._counts["dropped"],
                completed=self._counts["completed"],
                failed=self._counts["failed"],
                timed_out=self._counts["timed_out"],
            )

    def _prune_abandoned(self) -> None:
        # Caller holds self._lock.
        self._abandoned = [t for t in self._abandoned if t.is_alive()]

    def _worker_loop(self, worker_id: int) -> None:
        """Worker thread for file analysis."""
        worker_logger = scheduler_logger.getChild(f"worker-{worker_id}")
        worker_logger.debug("Analysis worker %d started", worker_id)

        while not self._stop_event.is_set():
            try:
                task = self.queue.get(timeout=self._poll_interval)
            except queue.Empty:
                if self.queue.closed:
                    break
                continue

            with self._lock:
                self._in_flight += 1
            set_task_context(task.task_id)
            try:
                self._execute(task, worker_logger)
            except Exception as exc:
                worker_logger.exception(
                    "Analysis worker %d error on %s (ID: %d): %s",
                    worker_id,
                    task.file_name,
                    task.file_id,
                    exc,
                )
            finally:
                set_task_context(None)
                with self._lock:
                    self._in_flight -= 1
                self.queue.task_done()

        worker_logger.debug("Analysis worker %d stopped", worker_id)

    def _execute(self, task: AnalysisTask, worker_logger: logging.Logger) -> None:
        try:
            self.store.create_record(task)
        except (PersistenceError, RecordConflictError) as exc:
            worker_logger.error(
                "Failed to create analysis record for %s (ID: %d): %s",
                task.file_name,
                task.file_id,
                exc,
            )
            return

        started = time.monotonic()
        deadline = started + self.worker_timeout
        cancel_event = threading.Event()
        future: concurrent.futures.Future[AnalysisSections] = (
            concurrent.futures.Future()
        )
        runner = threading.Thread(
            target=self._run_pipeline,
            args=(task, cancel_event, future),
            name=f"analysis-{task.task_id[:8]}",
            daemon=True,
        )
        runner.start()

        done, _ = concurrent.futures.wait(
            [future], timeout=max(deadline - time.monotonic(), 0)
        )
        if not done:
            cancel_event.set()
            with self._lock:
                self._prune_abandoned()
                self._abandoned.append(runner)
            worker_logger.warning(
                "Analysis of file %s (ID: %d) timed out after %.1fs",
                task.file_name,
                task.file_id,
                self.worker_timeout,
            )
            self._commit(
                task,
                worker_logger,
                status=AnalysisStatus.FAILED,
                error=TIMEOUT_ERROR_MESSAGE,
                failure_kind=FailureKind.TIMEOUT,
                started=started,
            )
            return

        exc = future.exception()
        if exc is None:
            self._commit(
                task,
                worker_logger,
                status=AnalysisStatus.COMPLETED,
                sections=future.result(),
                started=started,
            )
        elif isinstance(exc, UnreadableFileError):
            worker_logger.error(
                "Cannot analyze %s (ID: %d): %s", task.file_name, task.file_id, exc
            )
            self._commit(
                task,
                worker_logger,
                status=AnalysisStatus.FAILED,
                error=str(exc),
                failure_kind=FailureKind.UNREADABLE_FILE,
                started=started,
            )
        else:
            worker_logger.error(
                "Analysis of %s (ID: %d) raised: %s",
                task.file_name,
                task.file_id,
                exc,
                exc_info=exc,
            )
            self._commit(
                task,
                worker_logger,
                status=AnalysisStatus.FAILED,
                error=f"Analysis failed: {exc}",
                failure_kind=FailureKind.INTERNAL_ERROR,
                started=started,
            )

    def _run_pipeline(
        self,
        task: AnalysisTask,
        cancel_event: threading.Event,
        future: concurrent.futures.Future[AnalysisSections],
    ) -> None:
        # Only computes; the waiting worker decides whether the result is kept.
        if not future.set_running_or_notify_cancel():
            return
        set_task_context(task.task_id)
        try:
            sections = self._pipeline(task, task.parameters, cancel_event)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(sections)
        if cancel_event.is_set():
            scheduler_logger.debug(
                "Discarded late result for %s (ID: %d)", task.file_name, task.file_id
            )

    def _commit(
        self,
        task: AnalysisTask,
        worker_logger: logging.Logger,
        *,
        status: AnalysisStatus,
        started: float,
        sections: AnalysisSections | None = None,
        error: str | None = None,
        failure_kind: FailureKind | None = None,
    ) -> bool:
        try:
            committed = self.store.update_record(
                task.file_id,
                status=status,
                sections=sections,
                error=error,
                failure_kind=failure_kind,
                task_id=task.task_id,
                # Unreadable content was never analyzed.
                mark_analyzed=failure_kind is not FailureKind.UNREADABLE_FILE,
            )
        except PersistenceError as exc:
            worker_logger.error(
                "Failed to update analysis record for %s (ID: %d): %s",
                task.file_name,
                task.file_id,
                exc,
            )
            return False

        if not committed:
            worker_logger.info(
                "Analysis record for %s (ID: %d) was already final; result discarded",
                task.file_name,
                task.file_id,
            )
            return False

        with self._lock:
            if failure_kind is FailureKind.TIMEOUT:
                self._counts["timed_out"] += 1
            self._counts[status.value] += 1

        worker_logger.info(
            "Analysis of %s (ID: %d) %s in %.2fs",
            task.file_name,
            task.file_id,
            status.value,
            time.monotonic() - started,
        )
        return True


def health_payload(stats: SchedulerStats) -> dict[str, Any]:
    """Return the health-check body: overall status, time and scheduler stats."""
    healthy = stats.workers_alive == stats.worker_count
    return {
        "status": "healthy" if healthy else "degraded",
        "time": utc_timestamp(),
        "scheduler": asdict(stats),
    }
