"""
Cancellation and deadline propagation for long-running operations.
"""
import threading
import time
from typing import Optional

from ..errors import OperationCancelled


class Context:
    """
    Carries a cancel flag and an optional deadline through a call.

    Operations call check() between units of work; it raises
    OperationCancelled once the context is cancelled or past its deadline.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        :param timeout: Seconds from now after which the context expires.
        """
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        if self._cancelled.is_set():
            raise OperationCancelled("operation cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise OperationCancelled("operation deadline exceeded")


def ensure_context(ctx: Optional[Context]) -> Context:
    """Returns ctx, or a context that is never cancelled."""
    return ctx if ctx is not None else Context()
