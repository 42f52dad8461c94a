"""Wall-clock budgeting for receipt extraction calls.

A ``Deadline`` travels with one extraction call and is checked between
pipeline stages; the ``TimeoutGuard`` runs the call on a worker pool and
abandons it when the budget runs out.
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TypeVar

from receipt_ocr.errors import OcrTimeoutError
from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Deadline:
    """Cooperative cancellation token with a fixed time budget.

    Args:
        budget_s: Seconds available from construction.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        budget_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.budget_s = budget_s
        self._clock = clock
        self._start = clock()
        self._cancelled = threading.Event()

    @property
    def elapsed(self) -> float:
        """Seconds since the deadline was created."""
        return self._clock() - self._start

    def remaining(self) -> float:
        """Seconds left in the budget, never negative."""
        return max(0.0, self.budget_s - self.elapsed)

    @property
    def expired(self) -> bool:
        """Whether the budget is spent or the deadline was cancelled."""
        return self._cancelled.is_set() or self.remaining() <= 0.0

    def cancel(self) -> None:
        """Mark the deadline as expired so in-flight work stops at its next check."""
        self._cancelled.set()

    def check(self) -> None:
        """Raise if the deadline has expired.

        Raises:
            OcrTimeoutError: When the budget is spent or the call was abandoned.
        """
        if self.expired:
            raise OcrTimeoutError(self.elapsed, self.budget_s)


class TimeoutGuard:
    """Runs pipeline callables under a hard wall-clock budget.

    Args:
        executor: Worker pool the guarded calls are submitted to.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def run(self, fn: Callable[[Deadline], T], budget_s: float) -> T:
        """Run ``fn`` with a fresh deadline and wait at most ``budget_s``.

        Args:
            fn: Callable receiving the call's ``Deadline``.
            budget_s: Wall-clock budget in seconds.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            OcrTimeoutError: When the budget expires before ``fn`` finishes.
        """
        deadline = Deadline(budget_s)
        future = self._executor.submit(fn, deadline)
        try:
            return future.result(timeout=budget_s)
        except FuturesTimeoutError:
            deadline.cancel()
            future.cancel()
            logger.error(
                "Abandoning extraction after %.0fms (budget %.0fms)",
                deadline.elapsed * 1000,
                budget_s * 1000,
            )
            raise OcrTimeoutError(deadline.elapsed, budget_s) from None
