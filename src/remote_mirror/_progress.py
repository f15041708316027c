"""Progress reporting and human-readable formatting."""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Optional

log = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


class Progress:
    """Forwards event strings to a caller-supplied sink and to the log.

    Events are logged inline. The sink runs on a delivery thread, in event
    order, so a slow sink never holds up listings or transfers. A sink that
    raises is logged and otherwise ignored. Call :meth:`close` (or
    :meth:`aclose` from a coroutine) to wait until every pending event has
    been delivered.

    :param sink: Callable receiving one human-readable line per event.
    """

    __slots__ = ("_sink", "_queue", "_thread", "_lock")

    def __init__(self, sink: Optional[ProgressSink] = None) -> None:
        self._sink = sink
        self._queue: queue.SimpleQueue[Optional[str]] = queue.SimpleQueue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def __call__(self, message: str, *, level: int = logging.INFO) -> None:
        log.log(level, "%s", message)
        if self._sink is None:
            return
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._deliver, name="remote-mirror-progress", daemon=True)
                self._thread.start()
            self._queue.put(message)

    def _deliver(self) -> None:
        sink = self._sink
        assert sink is not None
        while True:
            message = self._queue.get()
            if message is None:
                return
            try:
                sink(message)
            except Exception:
                log.exception("Progress sink raised; event dropped: %s", message)

    def close(self) -> None:
        """Block until pending events are delivered and stop the delivery thread.

        Reporting again afterwards starts a new thread.
        """
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            self._queue.put(None)
        thread.join()

    async def aclose(self) -> None:
        """Like :meth:`close`, without blocking the event loop."""
        await asyncio.to_thread(self.close)

    def __enter__(self) -> Progress:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def format_size(size: int) -> str:
    """Format a byte count, e.g. ``format_size(1536)`` returns ``"1.5 KB"``."""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"


def format_age(age: timedelta) -> str:
    seconds = age.total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)} minutes"
    if seconds < 86400:
        return f"{int(seconds // 3600)} hours"
    return f"{int(seconds // 86400)} days"
