"""Cooperative cancellation for a single flow run."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class FlowCancelledError(Exception):
    """Raised at a suspension point once the run has been cancelled."""

    def __init__(self, message: str = "Flow execution cancelled"):
        super().__init__(message)


def is_cancellation(error: BaseException) -> bool:
    return isinstance(error, FlowCancelledError | asyncio.CancelledError)


class CancellationToken:
    """
    One-shot cancellation signal shared by everything in a run.

    Nodes call ``check()`` at their own suspension points; long-running
    collaborators (provider streams) register a callback with
    ``add_callback()`` so they can abort promptly. Nothing is interrupted
    forcibly: a node in the middle of synchronous work finishes that work.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")
        return True

    def check(self) -> None:
        if self._event.is_set():
            raise FlowCancelledError()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run ``callback`` on cancellation (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first (then raise)."""
        self.check()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except TimeoutError:
            return
        raise FlowCancelledError()
