"""Bounded worker pool for running one reconciliation phase."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from ..exceptions import PoolError

logger = logging.getLogger(__name__)


class BoundedPool:
    """Runs jobs on at most ``parallelism`` worker threads.

    A pool lives for exactly one phase: it is filled, drained and thrown
    away, which makes the end of a phase a barrier for the next one.

    After the first failure, jobs that have not started yet are skipped.
    Jobs already running are left to finish since a spawned process cannot
    be interrupted without leaving the target half updated.

    Examples:
        >>> pool = BoundedPool(4)
        >>> for path in ["a.txt", "b.txt"]:
        ...     pool.submit(lambda p=path: upload(p), on_success=record)
        >>> error = pool.drain()
    """

    def __init__(self, parallelism: int, name: str = "pool"):
        """Initialize the pool.

        Args:
            parallelism: Maximum number of concurrently running jobs (>= 1)
            name: Thread name prefix, used in log records

        Raises:
            ValueError: If parallelism is smaller than 1
        """
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")
        self.parallelism = parallelism
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=parallelism, thread_name_prefix=name
        )
        self._lock = threading.Lock()
        self._failed = threading.Event()
        self._errors: list[BaseException] = []
        self._futures: list[Future] = []
        self._closed = False
        self.completed = 0
        self.skipped = 0

    def submit(
        self,
        job: Callable[[], Any],
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> Future:
        """Queue a job.

        Args:
            job: Callable running one complete target pipeline
            on_success: Called with the job's return value once it succeeded

        Returns:
            Future of the job

        Raises:
            RuntimeError: If the pool has already been drained
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} no longer accepts jobs")
            future = self._executor.submit(self._run, job, on_success)
            self._futures.append(future)
        return future

    def _run(
        self,
        job: Callable[[], Any],
        on_success: Optional[Callable[[Any], None]],
    ) -> None:
        if self._failed.is_set():
            with self._lock:
                self.skipped += 1
            return

        try:
            result = job()
            if on_success is not None:
                on_success(result)
        except Exception as e:
            with self._lock:
                self._errors.append(e)
            self._failed.set()
            logger.debug("Job failed in %s: %s", self.name, e)
            return

        with self._lock:
            self.completed += 1

    def drain(self) -> Optional[PoolError]:
        """Stop accepting jobs and wait for every queued and running job.

        Returns:
            PoolError wrapping the first failure, None if all jobs succeeded
        """
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

        if self.skipped:
            logger.debug(
                "%s skipped %d job(s) after a failure", self.name, self.skipped
            )
        if not self._errors:
            return None
        return PoolError(self._errors[0], failed=len(self._errors))

    @property
    def failed(self) -> bool:
        return self._failed.is_set()

    def __enter__(self) -> "BoundedPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self._closed:
            self.drain()
