"""Debounced execution of state writes on the event loop."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce rapid calls into a single invocation after a quiet window.

    Every ``schedule`` call restarts the window; only the most recently
    scheduled callback runs. Callbacks should read current state when they
    run rather than capture it, so the latest state always wins.
    """

    def __init__(self, delay_seconds: float) -> None:
        """Initialize the debouncer.

        Args:
            delay_seconds: Quiet window before the pending callback runs.
        """
        self.delay_seconds = delay_seconds
        self._pending: Callable[[], None] | None = None
        self._task: asyncio.Task | None = None

    @property
    def has_pending(self) -> bool:
        """Whether a callback is waiting to run."""
        return self._pending is not None

    def schedule(self, callback: Callable[[], None]) -> None:
        """Schedule ``callback``, replacing any pending one and restarting the window.

        Outside a running event loop (or with a zero window) the callback
        runs immediately.
        """
        self._cancel_task()
        self._pending = callback

        if self.delay_seconds <= 0:
            self.flush()
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return

        self._task = loop.create_task(self._run_later())

    def flush(self) -> None:
        """Run the pending callback now, if any."""
        self._cancel_task()
        callback, self._pending = self._pending, None
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Debounced write failed")

    def cancel(self) -> None:
        """Drop the pending callback without running it."""
        self._cancel_task()
        self._pending = None

    async def _run_later(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        self._task = None
        callback, self._pending = self._pending, None
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Debounced write failed")

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
