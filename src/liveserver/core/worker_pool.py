"""
=============================================================================
WORKER POOL
=============================================================================

Worker threads that serve HTTP connections.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   accept loop ──submit(conn)──►  [ bounded queue ]                  │
    │                                        │                             │
    │                         ┌──────────────┼──────────────┐             │
    │                         ▼              ▼              ▼             │
    │                     Worker-0       Worker-1  ...  Worker-N          │
    │                   (keep-alive loop for one connection at a time)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

- min_workers threads start with the pool; more are added (up to
  max_workers) when every worker is busy and jobs are waiting.
- submit() never blocks the accept loop: a full queue returns False and
  the caller answers 503.
- shutdown() sends one poison pill (None) per worker.

WebSocket connections do not stay in this pool. After the upgrade the
reload channel gives each one its own reader thread and the worker returns
here.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Job:
    """A deferred call: ``func(*args)``."""

    func: Callable[..., Any]
    args: tuple = ()
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """Pulls jobs off the shared queue until it receives a poison pill."""

    def __init__(self, jobs: "queue.Queue[Optional[Job]]", worker_id: int, name_prefix: str):
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)
        self.jobs = jobs
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.jobs_completed = 0
        self.jobs_failed = 0

    def run(self):
        logger.debug(f"{self.name} started")

        while True:
            job = self.jobs.get()
            try:
                if job is None:
                    break
                self._execute(job)
            finally:
                self.jobs.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute(self, job: Job):
        self.state = WorkerState.BUSY
        started = time.time()
        try:
            job.func(*job.args)
            self.jobs_completed += 1
        except Exception as e:
            # A failing job must not take the worker down with it
            logger.exception(f"{self.name} job failed after {time.time() - started:.3f}s: {e}")
            self.jobs_failed += 1
        finally:
            self.state = WorkerState.IDLE


class WorkerPool:
    """
    Bounded pool of worker threads.

    Usage:
        pool = WorkerPool(min_workers=4, max_workers=32)
        pool.start()
        if not pool.submit(handle, conn):
            reject(conn)
        pool.shutdown(timeout=2.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 32,
        queue_size: int = 100,
        name_prefix: str = "http-worker",
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.name_prefix = name_prefix
        self._jobs: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutting_down = False
        self._next_worker_id = 0

    def start(self):
        with self._lock:
            if self._started:
                return
            for _ in range(self.min_workers):
                self._add_worker_locked()
            self._started = True
        logger.debug(f"Worker pool started with {self.min_workers} workers")

    def _add_worker_locked(self) -> Worker:
        worker = Worker(self._jobs, self._next_worker_id, self.name_prefix)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], *args: Any) -> bool:
        """
        Queue ``func(*args)`` without blocking.

        Returns:
            True if queued, False if the pool is saturated or stopping.
        """
        if not self._started or self._shutting_down:
            return False

        try:
            self._jobs.put_nowait(Job(func=func, args=args))
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if busy >= len(self._workers) - 1 and self._jobs.qsize() > 0:
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._add_worker_locked()

    def shutdown(self, timeout: Optional[float] = 2.0):
        """
        Stop all workers.

        Queued jobs that have not started are dropped. Workers still busy
        after ``timeout`` are left to finish on their own (they are daemon
        threads).
        """
        with self._lock:
            if not self._started:
                return
            self._shutting_down = True
            workers = list(self._workers)

        # Drop queued jobs so the poison pills are next in line
        try:
            while True:
                dropped = self._jobs.get_nowait()
                self._jobs.task_done()
                if dropped is not None:
                    logger.debug("Dropped queued job during shutdown")
        except queue.Empty:
            pass

        for _ in workers:
            try:
                self._jobs.put_nowait(None)
            except queue.Full:
                break

        deadline = time.time() + timeout if timeout is not None else None
        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.time())
            worker.join(timeout=remaining)
            if worker.is_alive():
                logger.warning(f"{worker.name} still busy at shutdown")

        with self._lock:
            self._workers.clear()
            self._started = False
        logger.debug("Worker pool stopped")

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def stats(self) -> dict:
        return {
            "workers": len(self._workers),
            "busy": self.busy_workers,
            "queued": self._jobs.qsize(),
            "completed": sum(w.jobs_completed for w in self._workers),
            "failed": sum(w.jobs_failed for w in self._workers),
        }
