"""Resilience primitives guarding the optional refinement stage.

A circuit breaker stops calling a stage that keeps failing, and a timeout
bounds how long a single call may take.  Both raise; callers decide what
the fallback is.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from typing import Any, Callable, TypeVar

log = logging.getLogger("sikg.resilience")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Circuit Breaker
# ---------------------------------------------------------------------------

class CircuitOpen(Exception):
    """Raised instead of calling the guarded function while the circuit is open."""


class CircuitBreaker:
    """Three-state circuit breaker (CLOSED → OPEN → HALF_OPEN → CLOSED).

    Parameters
    ----------
    failure_threshold:
        Consecutive failures that open the circuit.
    recovery_timeout:
        Seconds spent OPEN before a trial call is allowed (HALF_OPEN).
    success_threshold:
        Consecutive HALF_OPEN successes needed to close again.
    name:
        Label used in log messages.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 1,
        name: str = "default",
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.name = name
        self._state = self.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == self.OPEN and time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = self.HALF_OPEN
                self._successes = 0
            return self._state

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state != self.HALF_OPEN:
                return
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._state = self.CLOSED
                log.info("Circuit '%s' closed", self.name)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._opened_at = time.monotonic()
            if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != self.OPEN:
                    log.warning("Circuit '%s' opened after %d failures", self.name, self._failures)
                self._state = self.OPEN

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            if self.state == self.OPEN:
                raise CircuitOpen(f"Circuit '{self.name}' is open")
            try:
                result = func(*args, **kwargs)
            except Exception:
                self.record_failure()
                raise
            self.record_success()
            return result

        return wrapper

    def reset(self) -> None:
        with self._lock:
            self._state = self.CLOSED
            self._failures = 0
            self._successes = 0


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------

class OperationTimeout(Exception):
    """Raised when a guarded call runs past its deadline."""


def with_timeout(seconds: float) -> Callable:
    """Decorator raising ``OperationTimeout`` after *seconds*.

    The call runs on a daemon thread; a call that overruns keeps running in
    the background but its result is discarded.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            outcome: dict[str, Any] = {}

            def target() -> None:
                try:
                    outcome["result"] = func(*args, **kwargs)
                except BaseException as e:
                    outcome["error"] = e

            worker = threading.Thread(target=target, daemon=True)
            worker.start()
            worker.join(timeout=seconds)
            if worker.is_alive():
                raise OperationTimeout(f"{func.__name__} exceeded {seconds}s")
            if "error" in outcome:
                raise outcome["error"]
            return outcome["result"]

        return wrapper
    return decorator
