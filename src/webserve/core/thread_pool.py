"""
=============================================================================
WORKER THREAD POOL
=============================================================================

Each accepted connection becomes one task. A worker owns the connection
for its whole keep-alive lifetime: reading heads and bodies, routing,
writing responses. Blocking I/O (and the latency simulation sleep) ties up
only that worker.

    accept loop ──submit(conn)──► [ bounded queue ] ──► Worker-0
                                                   ├──► Worker-1
                                                   └──► Worker-N  (≤ max)

    - min_workers threads start immediately
    - one more is added when every worker is busy and tasks are waiting
    - a full queue makes submit(block=False) return False (server sends 503)
    - shutdown() sends one None "poison pill" per worker

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """
    A deferred call. Tasks that waited longer than timeout are dropped,
    and on_drop (if any) runs instead of func.
    """

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None
    on_drop: Optional[Callable[[], Any]] = None
    submitted_at: float = field(default_factory=time.time)

    @property
    def is_stale(self) -> bool:
        return self.timeout is not None and time.time() - self.submitted_at > self.timeout


class Worker(threading.Thread):
    """Pulls tasks off the shared queue until it receives None."""

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int):
        super().__init__(name=f"webserve-worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")
        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.task_queue.task_done()
        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        started = time.time()
        try:
            if task.is_stale:
                logger.warning(
                    f"Task dropped after waiting {started - task.submitted_at:.2f}s "
                    f"(timeout {task.timeout}s)"
                )
                self.tasks_failed += 1
                if task.on_drop is not None:
                    task.on_drop()
                return
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
        except Exception as e:
            logger.exception(
                f"Worker {self.worker_id} task failed after {time.time() - started:.3f}s: {e}"
            )
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Bounded pool of worker threads.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()
        if not pool.submit(handle, args=(conn,), block=False):
            reject(conn)
        pool.shutdown()
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 16, queue_size: int = 100):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError("Need 1 <= min_workers <= max_workers")
        self.min_workers = min_workers
        self.max_workers = max_workers
        self._queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def start(self):
        with self._lock:
            if self._started:
                return
            logger.info(f"Starting thread pool with {self.min_workers} workers")
            for _ in range(self.min_workers):
                self._spawn()
            self._started = True

    def _spawn(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(self._queue, len(self._workers))
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        block: bool = True,
        queue_timeout: Optional[float] = None,
        on_drop: Optional[Callable[[], Any]] = None,
    ) -> bool:
        """
        Queue a call.

        on_drop runs on the worker instead of func when the task waited
        longer than timeout.

        Returns:
            True if queued, False if the queue was full.

        Raises:
            RuntimeError: if the pool is not running.
        """
        if not self._started or self._closed:
            raise RuntimeError("Thread pool is not running")

        task = Task(
            func=func, args=args, kwargs=kwargs or {}, timeout=timeout, on_drop=on_drop
        )
        try:
            self._queue.put(task, block=block, timeout=queue_timeout)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            if len(self._workers) >= self.max_workers or self._queue.qsize() == 0:
                return
            if all(w.state == WorkerState.BUSY for w in self._workers):
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._spawn()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """Stop all workers after the tasks already queued."""
        with self._lock:
            if self._closed or not self._started:
                self._closed = True
                return
            self._closed = True
            workers = list(self._workers)

        for _ in workers:
            self._queue.put(None)

        if wait:
            deadline = None if timeout is None else time.time() + timeout
            for worker in workers:
                remaining = None if deadline is None else max(deadline - time.time(), 0)
                worker.join(remaining)

        logger.info("Thread pool stopped")

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            workers = list(self._workers)
        return {
            "workers": len(workers),
            "busy": sum(1 for w in workers if w.state == WorkerState.BUSY),
            "queued": self._queue.qsize(),
            "completed": sum(w.tasks_completed for w in workers),
            "failed": sum(w.tasks_failed for w in workers),
        }
