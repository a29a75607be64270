#!/usr/bin/env python3
"""
Background dispatch for persistence writes and notifications.

Tasks run after the allow/deny decision is final and never feed back into
the request path.

Delivery semantics:
- At-least-once with bounded retries: a task that raises is retried up to
  max_attempts times, so a write may be repeated (duplicate log lines are
  acceptable)
- A task that still fails after the last attempt is logged, not raised
- Tasks run in submission order on a single worker thread
"""

import concurrent.futures
import logging
import threading
import time
from typing import Callable, Optional, Set


class BackgroundDispatcher:
    """Single-worker fire-and-forget task runner with retries."""

    def __init__(
        self,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        thread_name_prefix: str = 'requestguard-dispatch',
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")

        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.logger = logging.getLogger(__name__)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=thread_name_prefix
        )
        self._pending: Set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._failures = 0

    @property
    def failures(self) -> int:
        """Number of tasks that exhausted their retries."""
        with self._lock:
            return self._failures

    def submit(self, name: str, fn: Callable, *args, **kwargs) -> Optional[concurrent.futures.Future]:
        """
        Schedule a task.

        Returns:
            Future of the task, or None if the dispatcher is shut down
        """
        try:
            future = self._executor.submit(self._run, name, fn, *args, **kwargs)
        except RuntimeError as e:
            self.logger.error(f"Dropped background task {name}: {e}")
            return None

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all pending tasks.

        Returns:
            True if every pending task finished within timeout
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _discard(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, name: str, fn: Callable, *args, **kwargs) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                fn(*args, **kwargs)
                return True
            except Exception as e:
                if attempt < self.max_attempts:
                    self.logger.warning(
                        f"Background task {name} failed "
                        f"(attempt {attempt}/{self.max_attempts}): {e}"
                    )
                    if self.retry_delay:
                        time.sleep(self.retry_delay * attempt)
                else:
                    self.logger.error(
                        f"Background task {name} failed after "
                        f"{self.max_attempts} attempts: {e}"
                    )

        with self._lock:
            self._failures += 1
        return False
