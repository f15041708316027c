"""Cooperative cancellation token."""

from __future__ import annotations

import asyncio
import threading

# Granularity of cancellable sleeps, in seconds.
_POLL_INTERVAL = 0.05


class CancelToken:
    """A cancellation flag shared by every operation of one call.

    The token may be set from any thread. Work checks it at its own
    suspension points; nothing is interrupted preemptively.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancellation.

        :returns: ``True`` if the full delay elapsed, ``False`` if cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self.cancelled:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return True
            await asyncio.sleep(min(remaining, _POLL_INTERVAL))
        return False
