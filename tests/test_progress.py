"""Tests for progress reporting, formatting and cancellation."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta

import pytest

from remote_mirror._cancel import CancelToken
from remote_mirror._progress import Progress, format_age, format_size


class TestProgress:
    def test_forwards_to_sink(self) -> None:
        events: list[str] = []
        with Progress(events.append) as progress:
            progress("Scanned: / (3 items)")
            progress("Scanned: /@CBA (2 items)")
        assert events == ["Scanned: / (3 items)", "Scanned: /@CBA (2 items)"]

    def test_logs_events(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="remote_mirror._progress"):
            Progress()("hello")
        assert "hello" in caplog.text

    def test_raising_sink_is_contained(self, caplog: pytest.LogCaptureFixture) -> None:
        def sink(message: str) -> None:
            raise RuntimeError("ui gone")

        with Progress(sink) as progress:
            progress("event")
        assert "Progress sink raised" in caplog.text

    def test_slow_sink_does_not_hold_up_caller(self) -> None:
        events: list[str] = []

        def sink(message: str) -> None:
            time.sleep(0.1)
            events.append(message)

        progress = Progress(sink)
        started = time.monotonic()
        for index in range(5):
            progress(f"event {index}")
        assert time.monotonic() - started < 0.1
        progress.close()
        assert events == [f"event {index}" for index in range(5)]

    def test_reporting_after_close_restarts_delivery(self) -> None:
        events: list[str] = []
        progress = Progress(events.append)
        progress("first")
        progress.close()
        progress("second")
        asyncio.run(progress.aclose())
        assert events == ["first", "second"]


class TestFormatting:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (1024**2, "1 MB"), (5 * 1024**3, "5 GB")],
    )
    def test_format_size(self, size: int, expected: str) -> None:
        assert format_size(size) == expected

    @pytest.mark.parametrize(
        ("age", "expected"),
        [
            (timedelta(seconds=5), "just now"),
            (timedelta(minutes=5), "5 minutes"),
            (timedelta(hours=3), "3 hours"),
            (timedelta(days=2), "2 days"),
        ],
    )
    def test_format_age(self, age: timedelta, expected: str) -> None:
        assert format_age(age) == expected


class TestCancelToken:
    def test_initially_clear(self) -> None:
        assert not CancelToken().cancelled

    def test_cancel_is_idempotent(self) -> None:
        token = CancelToken()
        token.cancel()
        token.cancel()
        assert token.cancelled

    def test_sleep_completes(self) -> None:
        assert asyncio.run(CancelToken().sleep(0.01)) is True

    def test_sleep_wakes_on_cancel(self) -> None:
        token = CancelToken()

        async def scenario() -> bool:
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            return await token.sleep(30)

        assert asyncio.run(scenario()) is False
