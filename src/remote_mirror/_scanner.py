"""Concurrent recursive discovery of a remote tree."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import threading
from typing import TYPE_CHECKING

from remote_mirror._cancel import CancelToken
from remote_mirror._config import DEFAULT_CONCURRENCY
from remote_mirror._errors import ListingError
from remote_mirror._listing import ListingParser
from remote_mirror._models import Outcome, RemoteEntry, Snapshot
from remote_mirror._path import normalize_remote
from remote_mirror._progress import Progress

if TYPE_CHECKING:
    from remote_mirror._client import RemoteClient, RemoteSession

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ScanResult:
    """What a scan discovered.

    :param root: The remote path the scan started from.
    :param snapshot: Every directory listed successfully.
    :param outcome: ``OK`` or ``CANCELLED``.
    :param failed_paths: Directories whose listing failed; their subtrees are missing.
    """

    root: str
    snapshot: Snapshot
    outcome: Outcome
    failed_paths: tuple[str, ...] = ()

    @property
    def cancelled(self) -> bool:
        return self.outcome is Outcome.CANCELLED


class _SnapshotBuilder:
    """Collects listings from many workers under one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listings: dict[str, tuple[RemoteEntry, ...]] = {}

    def add(self, path: str, entries: tuple[RemoteEntry, ...]) -> None:
        with self._lock:
            self._listings[path] = entries

    def freeze(self) -> Snapshot:
        with self._lock:
            return Snapshot(self._listings)


class _ScanRun:
    """State shared by the workers of one scan."""

    def __init__(self, cancel: CancelToken) -> None:
        self.cancel = cancel
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.builder = _SnapshotBuilder()
        self.failed: list[str] = []
        self._claimed: set[str] = set()

    def submit(self, path: str) -> bool:
        """Queue ``path`` unless cancelled or already claimed by this scan."""
        if self.cancel.cancelled:
            return False
        # No await between the check and the insert: atomic on the event loop.
        if path in self._claimed:
            return False
        self._claimed.add(path)
        self.queue.put_nowait(path)
        return True


class DirectoryScanner:
    """Builds a :class:`Snapshot` of everything below a remote path.

    A fixed pool of workers pulls directory paths from a queue, lists them
    and pushes newly discovered subdirectories back. The pool size bounds
    the number of listing operations in flight. Each path is listed at
    most once per scan.

    :param client: Session factory for the repository.
    :param parser: Listing parser. Defaults to all dialects.
    :param concurrency: Number of workers (simultaneous listings).
    :param progress: Receives one event per scanned directory. Closing it is
        left to the caller.
    """

    def __init__(
        self,
        client: RemoteClient,
        *,
        parser: ListingParser | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: Progress | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._client = client
        self._parser = parser or ListingParser()
        self._concurrency = concurrency
        self._progress = progress or Progress()

    async def scan(self, root: str = "/", *, cancel: CancelToken | None = None) -> ScanResult:
        """Scan ``root`` and everything below it.

        Listing failures abandon the failing subtree only. Cancellation stops
        further fan-out; the partial snapshot is returned with a
        ``CANCELLED`` outcome.
        """
        root = normalize_remote(root)
        run = _ScanRun(cancel or CancelToken())
        if not run.submit(root):
            return ScanResult(root=root, snapshot=Snapshot(), outcome=Outcome.CANCELLED)

        workers = [asyncio.create_task(self._worker(run)) for _ in range(self._concurrency)]
        try:
            await run.queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        outcome = Outcome.CANCELLED if run.cancel.cancelled else Outcome.OK
        return ScanResult(
            root=root,
            snapshot=run.builder.freeze(),
            outcome=outcome,
            failed_paths=tuple(run.failed),
        )

    async def _worker(self, run: _ScanRun) -> None:
        session: RemoteSession | None = None
        try:
            while True:
                path = await run.queue.get()
                try:
                    if run.cancel.cancelled:
                        continue
                    if session is None or session.closed:
                        session = await self._client.open_session()
                    entries = await self._parser.list_directory(session, path)
                    run.builder.add(path, entries)
                    self._progress(f"Scanned: {path} ({len(entries)} items)")
                    for child in entries:
                        if child.is_dir:
                            run.submit(child.path)
                except ListingError as exc:
                    run.failed.append(path)
                    self._progress(f"Error scanning {path}: {exc}", level=logging.WARNING)
                except Exception as exc:
                    run.failed.append(path)
                    log.debug("Unexpected error while listing %s", path, exc_info=True)
                    self._progress(f"Error scanning {path}: {exc}", level=logging.WARNING)
                    if session is not None:
                        await _close_quietly(session)
                        session = None
                finally:
                    run.queue.task_done()
        finally:
            if session is not None:
                await _close_quietly(session)


async def _close_quietly(session: RemoteSession) -> None:
    with contextlib.suppress(Exception):
        await session.close()
