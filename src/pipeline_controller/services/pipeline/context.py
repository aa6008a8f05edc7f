"""Deadline and cancellation carried through one reconciliation pass."""

from __future__ import annotations

import threading
import time
from typing import Protocol

from pipeline_controller.services.pipeline.exceptions import (
    ReconcileCancelledError,
    ReconcileTimeoutError,
)


class StopFlag(Protocol):
    """Anything answering ``is_set()``: a ``threading.Event`` or kopf's ``stopped``."""

    def is_set(self) -> bool: ...


class ReconcileContext:
    """Deadline plus cancellation flag for one reconciliation.

    Blocking calls size their own timeouts from ``remaining()`` and call
    ``check()`` between steps. Subprocesses and retry loops poll
    ``cancelled`` so an expired or cancelled pass stops instead of leaking
    network work.

    Example:
        >>> ctx = ReconcileContext(timeout=30)
        >>> ctx.check()
        >>> ctx.remaining() <= 30
        True
    """

    def __init__(self, timeout: float | None = None, stopped: StopFlag | None = None) -> None:
        """Initialize the context.

        Args:
            timeout: Seconds until the deadline; None for no deadline.
            stopped: Outer flag that cancels the pass once set.
        """
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()
        self._stopped = stopped
        self._reason = ""

    @classmethod
    def background(cls) -> ReconcileContext:
        """A context with no deadline."""
        return cls(timeout=None)

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        if self._stopped is not None and self._stopped.is_set():
            self.cancel("operator stopped handling the pipeline")
            return True
        return False

    def wait_cancelled(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds for cancellation.

        Returns:
            True if the pass was cancelled.
        """
        if self._stopped is None:
            return self._cancelled.wait(timeout)
        deadline = time.monotonic() + timeout
        while not self.cancelled:
            left = deadline - time.monotonic()
            if left <= 0:
                return False
            self._cancelled.wait(min(left, 0.1))
        return True

    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self, default: float = 300.0) -> float:
        """Seconds left before the deadline, or ``default`` when unbounded."""
        if self._deadline is None:
            return default
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the pass was cancelled or ran out of time.

        Raises:
            ReconcileCancelledError: If ``cancel`` was called or the outer flag is set.
            ReconcileTimeoutError: If the deadline passed.
        """
        if self.cancelled:
            raise ReconcileCancelledError(f"reconciliation cancelled: {self._reason}")
        if self.expired():
            raise ReconcileTimeoutError("reconciliation deadline exceeded")
