"""Bounded retries and non-blocking dispatch for best-effort side effects.

Commits and start-count increments run off the participant's path: they are
submitted to a small worker pool and their outcome is kept on the returned
``Future`` and in ``TaskDispatcher.failures`` so nothing is silently dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple, Type

from . import config
from .errors import TransportError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    delay_sec: float = 0.5
    retry_on: Tuple[Type[BaseException], ...] = (TransportError,)

    @classmethod
    def from_cfg(cls, cfg: dict | None = None) -> "RetryPolicy":
        cfg = cfg or {}
        return cls(
            max_attempts=max(1, int(cfg.get("COMMIT_MAX_ATTEMPTS", config.COMMIT_MAX_ATTEMPTS))),
            delay_sec=max(0.0, float(cfg.get("COMMIT_RETRY_DELAY_SEC", config.COMMIT_RETRY_DELAY_SEC))),
        )


def run_with_retry(
    policy: RetryPolicy,
    fn: Callable[..., Any],
    *args: Any,
    label: str = "task",
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[Any, int]:
    """Call ``fn`` until it succeeds or ``policy`` is exhausted.

    Returns ``(value, attempts)``. Exceptions outside ``policy.retry_on`` and
    the last retryable one propagate unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn(*args), attempt
        except policy.retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            log.warning("%s attempt %d/%d failed: %s; retrying in %.2fs", label, attempt, policy.max_attempts, e, policy.delay_sec)
            sleep(policy.delay_sec)


class TaskDispatcher:
    """Thread-pool dispatcher; ``submit`` never blocks the caller."""

    def __init__(self, workers: int | None = None):
        self._pool = ThreadPoolExecutor(max_workers=workers or config.DISPATCH_WORKERS, thread_name_prefix="pick-dispatch")
        self._lock = threading.Lock()
        self.failures: List[Tuple[str, BaseException]] = []

    def _on_done(self, label: str, fut: Future) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            with self._lock:
                self.failures.append((label, exc))
            log.error("background task %s failed: %s", label, exc, exc_info=exc)

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        fut = self._pool.submit(fn, *args, **kwargs)
        fut.add_done_callback(lambda f: self._on_done(label, f))
        return fut

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class InlineDispatcher(TaskDispatcher):
    """Runs tasks on the calling thread; for CLIs and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.failures = []

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        fut: Future = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as e:
            fut.set_exception(e)
        self._on_done(label, fut)
        return fut

    def shutdown(self, wait: bool = True) -> None:
        return None
