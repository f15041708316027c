"""Mirror, the primary user-facing entry point."""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from remote_mirror._cache import SnapshotCache
from remote_mirror._cancel import CancelToken
from remote_mirror._config import MirrorConfig, Repository
from remote_mirror._errors import ConnectivityError, MirrorError
from remote_mirror._executor import TransferExecutor
from remote_mirror._listing import ListingParser
from remote_mirror._models import CacheRecord, Outcome, Snapshot, SyncCounters, SyncResult
from remote_mirror._path import ROOT, normalize_remote
from remote_mirror._planner import SyncPlanner
from remote_mirror._progress import Progress, format_age, format_size
from remote_mirror._scanner import DirectoryScanner

if TYPE_CHECKING:
    from collections.abc import Iterable

    from remote_mirror._client import RemoteClient
    from remote_mirror._models import RemoteEntry
    from remote_mirror._progress import ProgressSink

log = logging.getLogger(__name__)

ClientFactory = Callable[[Repository, MirrorConfig], "RemoteClient"]


class SyncState(enum.Enum):
    """Stages of one sync call."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SCANNING = "scanning"
    CACHE_WRITING = "cache_writing"
    PLANNING = "planning"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TERMINAL = frozenset({SyncState.COMPLETED, SyncState.CANCELLED, SyncState.FAILED})

_TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.IDLE: frozenset({SyncState.CONNECTING}),
    SyncState.CONNECTING: frozenset({SyncState.SCANNING, SyncState.PLANNING, SyncState.FAILED}),
    SyncState.SCANNING: frozenset({SyncState.CACHE_WRITING}),
    SyncState.CACHE_WRITING: frozenset({SyncState.PLANNING}),
    SyncState.PLANNING: frozenset({SyncState.TRANSFERRING}),
    SyncState.TRANSFERRING: frozenset({SyncState.COMPLETED}),
}


class SyncRun:
    """Tracks the state of one sync call and rejects impossible transitions.

    ``CANCELLED`` is reachable from every non-terminal state.
    """

    def __init__(self, label: str) -> None:
        self.label = label
        self.state = SyncState.IDLE
        self.history: list[SyncState] = [SyncState.IDLE]

    def advance(self, state: SyncState) -> None:
        if self.state in _TERMINAL:
            raise RuntimeError(f"Sync of {self.label} already ended in {self.state.name}")
        if state is not SyncState.CANCELLED and state not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"Illegal sync transition {self.state.name} -> {state.name}")
        log.debug("Sync of %s: %s -> %s", self.label, self.state.name, state.name)
        self.state = state
        self.history.append(state)


def default_client_factory(repository: Repository, config: MirrorConfig) -> RemoteClient:
    """Build an FTP client for ``repository``."""
    from remote_mirror.clients._ftp import FtpClient

    return FtpClient.from_config(repository, config)


class Mirror:
    """Mirrors remote repositories onto local directories.

    The remote tree is the source of truth: stale local files are replaced
    and local content absent remotely is removed. Remote trees are cached
    on disk so that repeated syncs do not rescan.

    :param config: Engine settings. Defaults to :class:`MirrorConfig`.
    :param cache: Snapshot cache. Defaults to one under ``config.cache_dir``.
    :param client_factory: Builds the protocol client for a repository.
    :param parser: Listing parser shared by all scans.
    """

    def __init__(
        self,
        config: MirrorConfig | None = None,
        *,
        cache: SnapshotCache | None = None,
        client_factory: ClientFactory | None = None,
        parser: ListingParser | None = None,
    ) -> None:
        self._config = config or MirrorConfig()
        self._config.validate()
        self._cache = cache or SnapshotCache(self._config.cache_dir)
        self._client_factory = client_factory or default_client_factory
        self._parser = parser or ListingParser()
        self._planner = SyncPlanner()

    def __repr__(self) -> str:
        return f"Mirror(cache={self._cache!r})"

    @property
    def config(self) -> MirrorConfig:
        return self._config

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    # region: sync

    async def sync(
        self,
        repository: Repository,
        destination: str | Path,
        *,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
        force_refresh: bool = False,
    ) -> SyncResult:
        """Mirror the whole repository onto ``destination``.

        Only a connection failure fails the call; listing and transfer
        errors are logged, counted and skipped.
        """
        return await self._sync(repository, ROOT, Path(destination), progress, cancel, force_refresh)

    async def sync_folder(
        self,
        repository: Repository,
        remote_path: str,
        destination: str | Path,
        *,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
        force_refresh: bool = False,
    ) -> SyncResult:
        """Mirror one remote folder onto ``destination``.

        A cached record is used when it covers ``remote_path`` completely;
        otherwise the folder is scanned and merged into the cached record.
        """
        return await self._sync(
            repository, normalize_remote(remote_path), Path(destination), progress, cancel, force_refresh
        )

    async def _sync(
        self,
        repository: Repository,
        root: str,
        destination: Path,
        sink: ProgressSink | None,
        cancel: CancelToken | None,
        force_refresh: bool,
    ) -> SyncResult:
        report = Progress(sink)
        try:
            return await self._run_sync(report, repository, root, destination, cancel or CancelToken(), force_refresh)
        finally:
            await report.aclose()

    async def _run_sync(
        self,
        report: Progress,
        repository: Repository,
        root: str,
        destination: Path,
        cancel: CancelToken,
        force_refresh: bool,
    ) -> SyncResult:
        counters = SyncCounters()
        run = SyncRun(repository.label)
        client = self._client_factory(repository, self._config)

        if cancel.cancelled:
            return self._cancelled(run, report, counters)

        run.advance(SyncState.CONNECTING)
        report(f"Connecting to {client.url(ROOT)}...")
        try:
            await client.check_connection()
        except ConnectivityError as exc:
            run.advance(SyncState.FAILED)
            report(f"Failed to connect to repository {repository.label}: {exc}", level=logging.ERROR)
            return SyncResult(Outcome.FAILED, counters, exc)
        if cancel.cancelled:
            return self._cancelled(run, report, counters)

        snapshot = await self._resolve_snapshot(run, report, client, repository, root, cancel, force_refresh)
        if snapshot is None:
            return self._cancelled(run, report, counters)

        run.advance(SyncState.PLANNING)
        plan = await asyncio.to_thread(self._planner.plan, snapshot, root, destination, complete=True)
        report(
            f"{len(plan.to_download)} files need to be downloaded ({format_size(plan.download_bytes)}), "
            f"{plan.up_to_date} files up-to-date, {len(plan.to_delete)} local paths to remove"
        )
        if cancel.cancelled:
            return self._cancelled(run, report, counters)

        run.advance(SyncState.TRANSFERRING)
        executor = TransferExecutor(
            client,
            concurrency=self._config.transfer_concurrency,
            chunk_size=self._config.chunk_size,
            progress=report,
        )
        outcome, counters = await executor.execute(plan, cancel=cancel, counters=counters)
        if outcome is Outcome.CANCELLED:
            return self._cancelled(run, report, counters)

        run.advance(SyncState.COMPLETED)
        summary = f"Sync completed: {counters.downloaded} downloaded, {counters.skipped} up-to-date"
        if counters.deleted:
            summary += f", {counters.deleted} deleted"
        if counters.failed:
            summary += f", {counters.failed} failed"
        report(summary)
        return SyncResult(Outcome.OK, counters)

    async def _resolve_snapshot(
        self,
        run: SyncRun,
        report: Progress,
        client: RemoteClient,
        repository: Repository,
        root: str,
        cancel: CancelToken,
        force_refresh: bool,
    ) -> Snapshot | None:
        """Snapshot complete for ``root``, from cache or from a fresh scan.

        :returns: ``None`` if the scan was cancelled.
        """
        now = _utcnow()
        record = self._cache.load(repository.stable_id)
        reason = self._cache.invalid_reason(record, repository, self._config.cache_lifetime, now=now)
        if reason is not None:
            record = None
        if force_refresh:
            report("Force refresh - rebuilding cache...")
        elif record is not None and record.covers(root):
            age = format_age(now - record.scanned_at)
            report(f"Using cached directory structure (scanned {age if age == 'just now' else age + ' ago'})")
            report(f"  {record.total_files} files, {record.total_directories} directories cached")
            return record.snapshot
        else:
            report(f"Building fresh cache ({reason or f'{root} not cached yet'})...")

        run.advance(SyncState.SCANNING)
        result = await self._scanner(client, report).scan(root, cancel=cancel)
        if result.cancelled:
            return None
        report(f"Cache built: {result.snapshot.total_files} files in {result.snapshot.total_directories} directories")

        run.advance(SyncState.CACHE_WRITING)
        self._store_scan(repository, record, result.snapshot, root, report)
        return result.snapshot

    def _store_scan(
        self,
        repository: Repository,
        record: CacheRecord | None,
        snapshot: Snapshot,
        root: str,
        report: Progress,
    ) -> CacheRecord:
        complete = root in snapshot
        if record is not None and root != ROOT:
            updated = self._cache.merge(record, snapshot, root, complete=complete)
        else:
            updated = CacheRecord.build(
                repository,
                snapshot,
                scanned_at=_utcnow(),
                lifetime=self._config.cache_lifetime,
                complete_roots=frozenset({root}) if complete else frozenset(),
            )
        if self._cache.save(updated):
            report(
                f"Cache saved: {updated.total_files} files, {updated.total_directories} directories "
                f"(expires in {format_age(updated.expires_at - _utcnow())})"
            )
        return updated

    @staticmethod
    def _cancelled(run: SyncRun, report: Progress, counters: SyncCounters) -> SyncResult:
        run.advance(SyncState.CANCELLED)
        report("Download cancelled by user.")
        return SyncResult(Outcome.CANCELLED, counters)

    def _scanner(self, client: RemoteClient, report: Progress) -> DirectoryScanner:
        return DirectoryScanner(
            client,
            parser=self._parser,
            concurrency=self._config.scan_concurrency,
            progress=report,
        )

    # endregion

    # region: browsing and cache management

    async def browse(self, repository: Repository, path: str = ROOT) -> tuple[RemoteEntry, ...]:
        """List one remote directory, from the cache when possible.

        A live listing is merged into the cached record without marking the
        directory as completely scanned, so it never drives deletions.

        :raises ConnectivityError: If the host cannot be reached.
        :raises ListingError: If the directory cannot be listed.
        """
        path = normalize_remote(path)
        record = self._cache.load(repository.stable_id)
        valid = record is not None and self._cache.is_valid(record, repository, self._config.cache_lifetime)
        if valid and record is not None and path in record.snapshot:
            log.debug("Serving %s of %s from cache", path, repository.label)
            return record.snapshot[path]

        client = self._client_factory(repository, self._config)
        async with await client.open_session() as session:
            entries = await self._parser.list_directory(session, path)

        listing = Snapshot({path: entries})
        if valid and record is not None:
            updated = self._cache.merge(record, listing, path, complete=False)
        else:
            updated = CacheRecord.build(
                repository, listing, scanned_at=_utcnow(), lifetime=self._config.cache_lifetime
            )
        self._cache.save(updated)
        return entries

    async def refresh_cache(
        self,
        repository: Repository,
        *,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> CacheRecord | None:
        """Discard the cached record and rescan the whole repository.

        :returns: The new record, or ``None`` if cancelled.
        :raises ConnectivityError: If the host cannot be reached.
        """
        report = Progress(progress)
        try:
            self._cache.invalidate(repository.stable_id)
            client = self._client_factory(repository, self._config)
            await client.check_connection()
            result = await self._scanner(client, report).scan(ROOT, cancel=cancel)
            if result.cancelled:
                return None
            record = self._store_scan(repository, None, result.snapshot, ROOT, report)
            report(f"Cache refreshed for {repository.label}")
            return record
        finally:
            await report.aclose()

    async def cache_all(
        self,
        repositories: Iterable[Repository],
        *,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> tuple[int, int]:
        """Scan every repository lacking a valid cache, one after another.

        Scans are spaced by ``config.pacing_delay`` seconds. Repositories
        that cannot be scanned are counted as skipped.

        :returns: ``(cached, skipped)``.
        """
        report = Progress(progress)
        try:
            return await self._cache_each(list(repositories), report, cancel or CancelToken())
        finally:
            await report.aclose()

    async def _cache_each(self, repos: list[Repository], report: Progress, cancel: CancelToken) -> tuple[int, int]:
        cached = skipped = 0
        for index, repository in enumerate(repos, start=1):
            if cancel.cancelled:
                break
            prefix = f"Caching repositories ({index}/{len(repos)}, {skipped} skipped) - {repository.label}"
            record = self._cache.load(repository.stable_id)
            if (
                record is not None
                and self._cache.is_valid(record, repository, self._config.cache_lifetime)
                and record.covers(ROOT)
            ):
                report(f"{prefix}: already cached")
                skipped += 1
                continue

            report(f"{prefix}: scanning...")
            try:
                refreshed = await self.refresh_cache(repository, cancel=cancel)
            except MirrorError as exc:
                report(f"Failed to cache {repository.label}: {exc}", level=logging.WARNING)
                skipped += 1
            else:
                if refreshed is None:
                    break
                cached += 1

            if index < len(repos) and not await cancel.sleep(self._config.pacing_delay):
                break

        report(f"Background caching complete ({cached} cached, {skipped} skipped)")
        return cached, skipped

    async def check_connection(self, repository: Repository) -> bool:
        """Return ``True`` if the repository accepts a login."""
        client = self._client_factory(repository, self._config)
        try:
            await client.check_connection()
        except ConnectivityError as exc:
            log.info("Connection check failed for %s: %s", repository.label, exc)
            return False
        return True

    def describe_cache(self, repository: Repository) -> str:
        return self._cache.describe(repository.stable_id)

    def invalidate_cache(self, repository: Repository) -> None:
        self._cache.invalidate(repository.stable_id)

    def clear_expired_caches(self) -> int:
        return self._cache.clear_expired()

    # endregion


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)
