"""Immutable data models for remote trees, plans and results."""

from __future__ import annotations

import dataclasses
import enum
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING

from remote_mirror._path import ROOT, is_within

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime, timedelta
    from pathlib import Path

    from remote_mirror._config import Repository
    from remote_mirror._errors import MirrorError


@dataclasses.dataclass(frozen=True)
class RemoteEntry:
    """One child of a remote directory.

    :param name: Entry name (final path component).
    :param path: Absolute remote path, unique within a snapshot.
    :param is_dir: ``True`` for directories.
    :param size: Size in bytes. Always ``0`` for directories.
    :param modified_at: Last modification time, or ``None`` when unknown.
    """

    name: str
    path: str
    is_dir: bool
    size: int = 0
    modified_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be >= 0, got {self.size}")
        if self.is_dir and self.size:
            object.__setattr__(self, "size", 0)


class Snapshot(Mapping[str, tuple[RemoteEntry, ...]]):
    """The discovered remote tree: directory path to its direct children.

    The mapping is the only answer to "does this remote path exist". A
    directory entry whose path is not a key was never listed successfully.

    :param listings: Mapping of directory path to child entries, in listing order.
    """

    __slots__ = ("_listings",)

    def __init__(self, listings: Mapping[str, tuple[RemoteEntry, ...] | list[RemoteEntry]] | None = None) -> None:
        self._listings: dict[str, tuple[RemoteEntry, ...]] = {
            path: tuple(entries) for path, entries in (listings or {}).items()
        }

    def __getitem__(self, path: str) -> tuple[RemoteEntry, ...]:
        return self._listings[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._listings)

    def __len__(self) -> int:
        return len(self._listings)

    def __repr__(self) -> str:
        return f"Snapshot(directories={len(self)}, files={self.total_files})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snapshot):
            return self._listings == other._listings
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._listings))

    def entries(self) -> Iterator[RemoteEntry]:
        """Iterate every entry of every listed directory."""
        for children in self._listings.values():
            yield from children

    def walk(self, root: str = ROOT) -> Iterator[tuple[str, tuple[RemoteEntry, ...]]]:
        """Yield ``(directory, children)`` pairs reachable from ``root``, depth-first.

        Directories that were never listed are not yielded.
        """
        pending = [root]
        while pending:
            current = pending.pop()
            children = self._listings.get(current)
            if children is None:
                continue
            yield current, children
            pending.extend(child.path for child in reversed(children) if child.is_dir)

    def subtree(self, root: str) -> Snapshot:
        """Return the part of this snapshot at or below ``root``."""
        return Snapshot({path: children for path, children in self._listings.items() if is_within(root, path)})

    def merged(self, other: Snapshot) -> Snapshot:
        """Union of both snapshots; listings from ``other`` take precedence."""
        combined = dict(self._listings)
        combined.update(other._listings)
        return Snapshot(combined)

    @property
    def total_files(self) -> int:
        return sum(1 for entry in self.entries() if not entry.is_dir)

    @property
    def total_directories(self) -> int:
        return len(self._listings)

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.entries())


@dataclasses.dataclass(frozen=True)
class CacheRecord:
    """A persisted snapshot of one repository.

    :param repository_id: Stable repository identity (the cache key).
    :param fingerprint: Hash of the connection identity the snapshot was taken with.
    :param scanned_at: When the snapshot was taken (UTC).
    :param expires_at: When the record stops being valid (UTC).
    :param snapshot: The remote tree.
    :param complete_roots: Remote paths whose whole subtree was scanned.
    :param repository_name: Display name of the repository.
    """

    repository_id: str
    fingerprint: str
    scanned_at: datetime
    expires_at: datetime
    snapshot: Snapshot
    total_files: int = 0
    total_directories: int = 0
    total_bytes: int = 0
    complete_roots: frozenset[str] = frozenset()
    repository_name: str = ""

    @classmethod
    def build(
        cls,
        repository: Repository,
        snapshot: Snapshot,
        *,
        scanned_at: datetime,
        lifetime: timedelta,
        complete_roots: frozenset[str] = frozenset(),
    ) -> CacheRecord:
        """Create a record for ``repository`` with counters derived from ``snapshot``."""
        return cls(
            repository_id=repository.stable_id,
            fingerprint=repository.fingerprint,
            scanned_at=scanned_at,
            expires_at=scanned_at + lifetime,
            snapshot=snapshot,
            total_files=snapshot.total_files,
            total_directories=snapshot.total_directories,
            total_bytes=snapshot.total_bytes,
            complete_roots=frozenset(complete_roots),
            repository_name=repository.name,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def covers(self, path: str) -> bool:
        """Return ``True`` if the subtree at ``path`` was scanned completely."""
        if path not in self.snapshot:
            return False
        return any(is_within(root, path) for root in self.complete_roots)


class Outcome(enum.Enum):
    """Terminal outcome of a scan, a transfer batch or a sync call."""

    OK = "ok"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclasses.dataclass
class SyncCounters:
    """Per-call tallies. Increments are safe from concurrent workers."""

    downloaded: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    _lock: threading.Lock = dataclasses.field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in ("downloaded", "skipped", "deleted", "failed"):
            raise AttributeError(f"Unknown counter {name!r}")
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)


@dataclasses.dataclass(frozen=True)
class TransferPlan:
    """What one sync call will do to the local tree.

    :param to_download: ``(entry, local_path)`` pairs that are missing or stale.
    :param to_delete: Local orphans, files first, then directories deepest first.
    :param up_to_date: Number of remote files already present with matching size.
    """

    to_download: tuple[tuple[RemoteEntry, Path], ...] = ()
    to_delete: tuple[Path, ...] = ()
    up_to_date: int = 0

    @property
    def download_bytes(self) -> int:
        return sum(entry.size for entry, _ in self.to_download)


@dataclasses.dataclass(frozen=True)
class SyncResult:
    """Result of one sync call.

    :param outcome: How the call ended.
    :param counters: Download/skip/delete/failure tallies.
    :param error: The fatal error when ``outcome`` is ``FAILED``.
    """

    outcome: Outcome
    counters: SyncCounters
    error: MirrorError | None = None

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.OK
