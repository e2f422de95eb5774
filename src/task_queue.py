from __future__ import annotations

import logging
import queue
import threading

from src.schema import AnalysisTask

logger = logging.getLogger("depot_analysis.queue")


class AnalysisQueue:
    """Bounded FIFO of pending analysis tasks.

    Producers never block: ``try_enqueue`` drops the task and returns False when
    the queue is full or closed. Consumers block in ``get`` with a timeout so
    they can notice a close.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("Queue capacity cannot be negative")
        self.capacity = capacity
        # queue.Queue treats maxsize=0 as unbounded; keep it bounded at 1 and
        # reject everything up front instead.
        self._queue: queue.Queue[AnalysisTask] = queue.Queue(
            maxsize=max(capacity, 1)
        )
        self._closed = threading.Event()
        self._admission_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def try_enqueue(self, task: AnalysisTask) -> bool:
        if self.capacity == 0:
            return False
        with self._admission_lock:
            if self._closed.is_set():
                return False
            try:
                self._queue.put_nowait(task)
            except queue.Full:
                return False
        return True

    def get(self, timeout: float | None = None) -> AnalysisTask:
        """Return the next task, raising ``queue.Empty`` after ``timeout``."""
        return self._queue.get(timeout=timeout)

    def task_done(self) -> None:
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    def unfinished_tasks(self) -> int:
        with self._queue.mutex:
            return self._queue.unfinished_tasks

    def wait_until_empty(self, timeout: float | None = None) -> bool:
        """Wait until every enqueued task has been marked done."""
        with self._queue.all_tasks_done:
            return self._queue.all_tasks_done.wait_for(
                lambda: self._queue.unfinished_tasks == 0, timeout
            )

    def close(self) -> None:
        """Stop admitting tasks; queued tasks remain available to ``get``."""
        with self._admission_lock:
            if self._closed.is_set():
                return
            self._closed.set()
            logger.debug("Analysis queue closed with %d task(s) pending", self.qsize())

    def drain(self) -> list[AnalysisTask]:
        """Remove and return every queued task without processing it."""
        dropped: list[AnalysisTask] = []
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return dropped
            dropped.append(task)
            self._queue.task_done()
