"""
Cancellation and deadline handling for blocking operations.

Every credential, Vault and registry operation accepts an optional
OperationContext. The context is checked before each blocking step and its
remaining time bounds subprocess and HTTP timeouts.
"""

import threading
import time
from typing import Optional

from cloud_deploy.error_utils import OperationCancelledError


class OperationContext:
    """Deadline plus cancel flag shared by one top-level operation."""

    def __init__(self, timeout: Optional[float] = None):
        """Initialize OperationContext

        Args:
            timeout: Seconds until the deadline expires (None = no deadline)
        """
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; in-flight skopeo calls are killed on their next poll."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self, default: Optional[float] = None) -> Optional[float]:
        """Seconds left before the deadline, capped by default when both are set."""
        if self._deadline is None:
            return default
        left = max(0.0, self._deadline - time.monotonic())
        if default is None:
            return left
        return min(left, default)

    def check(self, operation: str = "operation") -> None:
        """Raise OperationCancelledError if the context was cancelled or its deadline passed."""
        if self.cancelled:
            raise OperationCancelledError(
                f"{operation} cancelled",
                details={"operation": operation, "reason": "cancelled"},
            )
        if self.expired:
            raise OperationCancelledError(
                f"{operation} exceeded its deadline",
                suggestions=["Increase the operation timeout"],
                details={"operation": operation, "reason": "deadline exceeded"},
            )

    def wait(self, seconds: float) -> None:
        """Sleep for up to seconds, returning early if the context is cancelled."""
        seconds = self.remaining(seconds)
        if seconds:
            self._cancelled.wait(seconds)


def ensure_context(ctx: Optional[OperationContext]) -> OperationContext:
    """Return ctx, or a fresh context without a deadline."""
    return ctx if ctx is not None else OperationContext()
