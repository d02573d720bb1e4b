"""Bounded-concurrency job pool with optional fail-fast.

Wraps a ThreadPoolExecutor whose submissions are gated by a semaphore of
max_workers slots. The coordinating thread takes a slot before submitting
each job, so at most max_workers jobs ever run at once and the rest wait in
the caller's job list, not in the executor queue.

With fail_fast enabled, the first job that raises stops all further
submissions. Jobs already running are never interrupted: the pool waits
for them to drain before returning.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class PoolRun:
    """Result of running a batch of jobs.

    Attributes:
        futures: One future per submitted job, in submission order
        submitted: Number of jobs that were started
        first_error: The first exception raised by any job, if any
    """

    futures: list[Future[Any]]
    submitted: int
    first_error: Optional[BaseException]

    @property
    def failed(self) -> bool:
        return self.first_error is not None


class CompilePool:
    """Thread pool running independent jobs with a concurrency limit.

    Args:
        max_workers: Maximum number of jobs running at the same time.
        fail_fast: Stop starting new jobs once any job has failed.
    """

    def __init__(self, max_workers: int, fail_fast: bool = True) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._max_workers = max_workers
        self._fail_fast = fail_fast
        self._lock = threading.Lock()
        self._first_error: Optional[BaseException] = None
        self._failure_seen = threading.Event()

    @property
    def max_workers(self) -> int:
        """Maximum number of concurrent jobs."""
        return self._max_workers

    @property
    def fail_fast(self) -> bool:
        return self._fail_fast

    def run(self, jobs: Sequence[Callable[[], Any]]) -> PoolRun:
        """Run jobs with bounded concurrency and wait for all started jobs.

        Args:
            jobs: Zero-argument callables. A job fails by raising.

        Returns:
            PoolRun with the futures of every started job and the first error.
        """
        with self._lock:
            self._first_error = None
        self._failure_seen.clear()

        slots = threading.BoundedSemaphore(self._max_workers)
        futures: list[Future[Any]] = []

        def on_done(future: Future[Any]) -> None:
            # Record the failure before freeing the slot so the coordinator
            # sees it when it wakes up for the next submission.
            if not future.cancelled() and future.exception() is not None:
                self._record_failure(future.exception())  # type: ignore[arg-type]
            slots.release()

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="compile") as executor:
            for index, job in enumerate(jobs):
                slots.acquire()
                if self._fail_fast and self._failure_seen.is_set():
                    slots.release()
                    logger.debug("Fail-fast: not starting %d remaining job(s)", len(jobs) - index)
                    break
                future = executor.submit(job)
                future.add_done_callback(on_done)
                futures.append(future)
            # Leaving the executor waits for in-flight jobs to finish

        with self._lock:
            first_error = self._first_error
        return PoolRun(futures=futures, submitted=len(futures), first_error=first_error)

    def _record_failure(self, error: BaseException) -> None:
        with self._lock:
            if self._first_error is None:
                self._first_error = error
        self._failure_seen.set()
