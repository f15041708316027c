"""Bounded-concurrency execution of a transfer plan."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
import shutil
from typing import TYPE_CHECKING

from remote_mirror._cancel import CancelToken
from remote_mirror._config import DEFAULT_CONCURRENCY
from remote_mirror._errors import TransferError
from remote_mirror._models import Outcome, SyncCounters
from remote_mirror._progress import Progress, format_size

if TYPE_CHECKING:
    from pathlib import Path

    from remote_mirror._client import RemoteClient, RemoteSession
    from remote_mirror._models import RemoteEntry, TransferPlan

log = logging.getLogger(__name__)

PART_SUFFIX = ".part"


class _Status(enum.Enum):
    DONE = "done"
    CANCELLED = "cancelled"


def part_path(target: Path) -> Path:
    """Temporary file a download of ``target`` is streamed into."""
    return target.with_name(f".{target.name}{PART_SUFFIX}")


class TransferExecutor:
    """Realizes a :class:`TransferPlan` on the local filesystem.

    Orphans are removed first, then files are downloaded by a fixed pool of
    workers, each holding one remote session. A failing file is counted and
    logged; it never stops the batch.

    :param client: Session factory for the repository.
    :param concurrency: Number of simultaneous downloads.
    :param chunk_size: Read size for streamed downloads.
    :param progress: Receives one event per download and deletion. Closing it
        is left to the caller.
    """

    def __init__(
        self,
        client: RemoteClient,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        chunk_size: int = 65536,
        progress: Progress | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._client = client
        self._concurrency = concurrency
        self._chunk_size = chunk_size
        self._progress = progress or Progress()

    async def execute(
        self,
        plan: TransferPlan,
        *,
        cancel: CancelToken | None = None,
        counters: SyncCounters | None = None,
    ) -> tuple[Outcome, SyncCounters]:
        """Delete the plan's orphans and download its stale files.

        :returns: ``CANCELLED`` if the token fired before the plan finished,
            otherwise ``OK``, with the tallies.
        """
        cancel = cancel or CancelToken()
        counters = counters if counters is not None else SyncCounters()
        counters.increment("skipped", plan.up_to_date)

        for path in plan.to_delete:
            if cancel.cancelled:
                return Outcome.CANCELLED, counters
            if await asyncio.to_thread(self._delete, path):
                counters.increment("deleted")

        if plan.to_download:
            await self._download_all(plan.to_download, cancel, counters)
        return (Outcome.CANCELLED if cancel.cancelled else Outcome.OK), counters

    # region: downloads

    async def _download_all(
        self,
        items: tuple[tuple[RemoteEntry, Path], ...],
        cancel: CancelToken,
        counters: SyncCounters,
    ) -> None:
        queue: asyncio.Queue[tuple[RemoteEntry, Path]] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        size = min(self._concurrency, len(items))
        workers = [asyncio.create_task(self._worker(queue, cancel, counters)) for _ in range(size)]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self,
        queue: asyncio.Queue[tuple[RemoteEntry, Path]],
        cancel: CancelToken,
        counters: SyncCounters,
    ) -> None:
        session: RemoteSession | None = None
        try:
            while True:
                entry, target = await queue.get()
                try:
                    if cancel.cancelled:
                        continue
                    if session is None or session.closed:
                        session = await self._client.open_session()
                    status = await self._download(session, entry, target, cancel)
                    if status is _Status.DONE:
                        counters.increment("downloaded")
                except TransferError as exc:
                    counters.increment("failed")
                    self._progress(f"Failed to download {entry.name}: {exc}", level=logging.WARNING)
                except Exception as exc:
                    counters.increment("failed")
                    log.debug("Unexpected error while downloading %s", entry.path, exc_info=True)
                    self._progress(f"Failed to download {entry.name}: {exc}", level=logging.WARNING)
                    if session is not None:
                        with contextlib.suppress(Exception):
                            await session.close()
                        session = None
                finally:
                    queue.task_done()
        finally:
            if session is not None:
                with contextlib.suppress(Exception):
                    await session.close()

    async def _download(self, session: RemoteSession, entry: RemoteEntry, target: Path, cancel: CancelToken) -> _Status:
        """Stream ``entry`` into ``target`` through a temporary file.

        The token is checked after every chunk. On cancellation or failure
        the temporary file is removed and ``target`` is left as it was.
        Filesystem calls run in worker threads so a slow disk does not stall
        the other transfers.
        """
        self._progress(f"Downloading: {entry.name} => {target} ({format_size(entry.size)})")
        try:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise TransferError(f"Cannot create directory: {exc}", path=str(target.parent)) from None

        partial = part_path(target)
        finished = False
        try:
            handle = await asyncio.to_thread(partial.open, "wb")
            try:
                async with contextlib.aclosing(session.download(entry.path, self._chunk_size)) as chunks:
                    async for chunk in chunks:
                        await asyncio.to_thread(handle.write, chunk)
                        if cancel.cancelled:
                            log.info("Download of %s cancelled", entry.path)
                            return _Status.CANCELLED
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.replace, partial, target)
            finished = True
        except OSError as exc:
            raise TransferError(f"Cannot write {target}: {exc}", path=entry.path) from None
        finally:
            if not finished:
                with contextlib.suppress(OSError):
                    partial.unlink()

        if entry.modified_at is not None:
            await asyncio.to_thread(_set_mtime, target, entry.modified_at.timestamp())
        return _Status.DONE

    # endregion

    # region: deletions

    def _delete(self, path: Path) -> bool:
        """Remove one orphan. Directories still holding files are kept."""
        try:
            if path.is_symlink() or path.is_file():
                path.unlink(missing_ok=True)
                self._progress(f"Deleted (not on remote): {path.name}")
                return True
            if path.is_dir():
                if _contains_files(path):
                    log.info("Keeping %s: it still contains files", path)
                    return False
                shutil.rmtree(path)
                self._progress(f"Deleted directory (not on remote): {path.name}")
                return True
        except OSError as exc:
            self._progress(f"Failed to delete {path.name}: {exc}", level=logging.WARNING)
        return False

    # endregion


def _set_mtime(target: Path, stamp: float) -> None:
    try:
        os.utime(target, (stamp, stamp))
    except OSError as exc:
        log.debug("Cannot set modification time of %s: %s", target, exc)


def _contains_files(directory: Path) -> bool:
    for _current, _dirnames, filenames in os.walk(directory):
        if filenames:
            return True
    return False
