"""Disk-persisted snapshot cache, one JSON record per repository."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from remote_mirror._errors import CacheError
from remote_mirror._models import CacheRecord, RemoteEntry, Snapshot
from remote_mirror._path import is_within
from remote_mirror._progress import format_age, format_size

if TYPE_CHECKING:
    from collections.abc import Iterator

    from remote_mirror._config import Repository

log = logging.getLogger(__name__)

FORMAT_VERSION = 1
_SUFFIX = ".json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class SnapshotCache:
    """Stores one :class:`CacheRecord` per repository under ``directory``.

    Read and write failures never propagate: a record that cannot be read
    is a cache miss, a record that cannot be written is logged and dropped.
    Records are replaced atomically, so concurrent readers see either the
    old or the new record.

    :param directory: Directory holding the record files. Created on first save.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._directory = Path(directory)
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def __repr__(self) -> str:
        return f"SnapshotCache(directory={str(self._directory)!r})"

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, repository_id: str) -> Path:
        """File that holds the record of ``repository_id``."""
        slug = _UNSAFE_CHARS.sub("_", repository_id).strip("._")[:64] or "repository"
        digest = hashlib.sha256(repository_id.encode()).hexdigest()[:12]
        return self._directory / f"{slug}-{digest}{_SUFFIX}"

    # region: load / save / invalidate

    def load(self, repository_id: str) -> CacheRecord | None:
        """Return the stored record, or ``None`` when absent or unreadable."""
        try:
            return self.read(repository_id)
        except CacheError as exc:
            log.warning("Ignoring unreadable cache record: %s", exc)
            return None

    def read(self, repository_id: str) -> CacheRecord | None:
        """Like :meth:`load` but raises instead of treating failures as a miss.

        :raises CacheError: If the record exists but cannot be read or decoded.
        """
        path = self.path_for(repository_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheError(f"Cannot read cache record: {exc}", path=str(path), repository=repository_id) from None
        try:
            record = record_from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError) as exc:
            raise CacheError(f"Corrupt cache record: {exc}", path=str(path), repository=repository_id) from None
        if record.repository_id != repository_id:
            raise CacheError(
                f"Cache record belongs to {record.repository_id!r}",
                path=str(path),
                repository=repository_id,
            )
        return record

    def save(self, record: CacheRecord) -> bool:
        """Persist ``record``, replacing any previous one.

        :returns: ``True`` if the record was written.
        """
        try:
            self.write(record)
        except CacheError as exc:
            log.warning("Cache record not saved: %s", exc)
            return False
        return True

    def write(self, record: CacheRecord) -> None:
        """Like :meth:`save` but raises on failure.

        :raises CacheError: If the record cannot be written.
        """
        path = self.path_for(record.repository_id)
        payload = json.dumps(record_to_dict(record), ensure_ascii=False, separators=(",", ":"))
        with self._lock_for(record.repository_id):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".~tmp.", suffix=_SUFFIX)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(payload)
                    os.replace(tmp_path, path)
                except BaseException:
                    with contextlib.suppress(OSError):
                        os.unlink(tmp_path)
                    raise
            except OSError as exc:
                raise CacheError(
                    f"Cannot write cache record: {exc}", path=str(path), repository=record.repository_id
                ) from None
        log.debug(
            "Saved cache record for %s (%d files, %d directories)",
            record.repository_id,
            record.total_files,
            record.total_directories,
        )

    def invalidate(self, repository_id: str) -> None:
        """Remove the record of ``repository_id``, if any."""
        path = self.path_for(repository_id)
        with self._lock_for(repository_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                log.warning("Cannot remove cache record %s: %s", path, exc)
                return
        log.info("Invalidated cache for %s", repository_id)

    def repository_ids(self) -> Iterator[str]:
        """Identities of all readable records."""
        if not self._directory.is_dir():
            return
        for path in sorted(self._directory.glob(f"*{_SUFFIX}")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                yield str(data["repository_id"])
            except (OSError, ValueError, TypeError, KeyError):
                log.debug("Skipping unreadable cache file %s", path)

    def clear_expired(self, *, now: datetime | None = None) -> int:
        """Remove every expired or unreadable record.

        :returns: The number of records removed.
        """
        now = now or _utcnow()
        removed = 0
        if not self._directory.is_dir():
            return removed
        for path in sorted(self._directory.glob(f"*{_SUFFIX}")):
            try:
                record = record_from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, TypeError, KeyError):
                record = None
            if record is not None and not record.is_expired(now):
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                log.warning("Cannot remove cache record %s: %s", path, exc)
        if removed:
            log.info("Removed %d expired cache records", removed)
        return removed

    # endregion

    # region: validity and merging

    @staticmethod
    def is_valid(
        record: CacheRecord,
        repository: Repository,
        max_age: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Return ``True`` if ``record`` may be used for ``repository``.

        A record is valid when it belongs to the repository, its fingerprint
        matches the current connection identity, it has not expired and,
        when ``max_age`` is given, it is younger than ``max_age``.
        """
        now = now or _utcnow()
        if record.repository_id != repository.stable_id:
            return False
        if record.fingerprint != repository.fingerprint:
            return False
        if record.is_expired(now):
            return False
        return max_age is None or now - record.scanned_at < max_age

    @staticmethod
    def invalid_reason(
        record: CacheRecord | None,
        repository: Repository,
        max_age: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> str | None:
        """Human-readable reason why ``record`` cannot be used, ``None`` if it can."""
        now = now or _utcnow()
        if record is None:
            return "no cache found"
        if record.repository_id != repository.stable_id or record.fingerprint != repository.fingerprint:
            return "repository settings changed"
        if record.is_expired(now) or (max_age is not None and now - record.scanned_at >= max_age):
            return "cache expired"
        return None

    @staticmethod
    def merge(record: CacheRecord, snapshot: Snapshot, root: str, *, complete: bool) -> CacheRecord:
        """Fold a newly scanned part of the tree into ``record``.

        Listings in ``snapshot`` replace cached listings of the same path.
        When ``complete`` is set the scan covered all of ``root``, so cached
        listings below ``root`` that the scan no longer found are dropped and
        ``root`` becomes a complete root. Listings outside ``root`` are kept.

        The merged record keeps the scan time and expiry of ``record``.
        """
        if complete:
            kept = {path: children for path, children in record.snapshot.items() if not is_within(root, path)}
            base = Snapshot(kept)
            roots = {r for r in record.complete_roots if not is_within(root, r)} | {root}
        else:
            base = record.snapshot
            roots = set(record.complete_roots)
        merged = base.merged(snapshot)
        return CacheRecord(
            repository_id=record.repository_id,
            fingerprint=record.fingerprint,
            scanned_at=record.scanned_at,
            expires_at=record.expires_at,
            snapshot=merged,
            total_files=merged.total_files,
            total_directories=merged.total_directories,
            total_bytes=merged.total_bytes,
            complete_roots=frozenset(roots),
            repository_name=record.repository_name,
        )

    # endregion

    def describe(self, repository_id: str, *, now: datetime | None = None) -> str:
        """One-line summary of the cached record of ``repository_id``."""
        record = self.load(repository_id)
        if record is None:
            return "No cache available"
        now = now or _utcnow()
        age = format_age(now - record.scanned_at)
        if record.is_expired(now):
            state = "expired"
        else:
            state = f"expires in {format_age(record.expires_at - now)}"
        scanned = "just now" if age == "just now" else f"{age} ago"
        return (
            f"Cached {scanned}, {state}: {record.total_files} files, "
            f"{record.total_directories} directories, {format_size(record.total_bytes)}"
        )

    def _lock_for(self, repository_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(repository_id, threading.Lock())


# region: serialization


def record_to_dict(record: CacheRecord) -> dict[str, Any]:
    """Plain-dict form of ``record`` for JSON encoding."""
    return {
        "version": FORMAT_VERSION,
        "repository_id": record.repository_id,
        "repository_name": record.repository_name,
        "fingerprint": record.fingerprint,
        "scanned_at": record.scanned_at.isoformat(),
        "expires_at": record.expires_at.isoformat(),
        "total_files": record.total_files,
        "total_directories": record.total_directories,
        "total_bytes": record.total_bytes,
        "complete_roots": sorted(record.complete_roots),
        "snapshot": {
            path: [_entry_to_dict(entry) for entry in children] for path, children in record.snapshot.items()
        },
    }


def record_from_dict(data: dict[str, Any]) -> CacheRecord:
    """Inverse of :func:`record_to_dict`.

    :raises ValueError: On an unknown format version or malformed values.
    :raises TypeError: If the record or its snapshot is not a JSON object.
    :raises KeyError: If a required field is missing.
    """
    if not isinstance(data, dict):
        raise TypeError("cache record must be a JSON object")
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise ValueError(f"unsupported cache format version {version!r}")
    raw_snapshot = data["snapshot"]
    if not isinstance(raw_snapshot, dict):
        raise TypeError("snapshot must be a JSON object")
    snapshot = Snapshot(
        {str(path): tuple(_entry_from_dict(item) for item in children) for path, children in raw_snapshot.items()}
    )
    return CacheRecord(
        repository_id=str(data["repository_id"]),
        fingerprint=str(data["fingerprint"]),
        scanned_at=_parse_datetime(data["scanned_at"]),
        expires_at=_parse_datetime(data["expires_at"]),
        snapshot=snapshot,
        total_files=int(data["total_files"]),
        total_directories=int(data["total_directories"]),
        total_bytes=int(data["total_bytes"]),
        complete_roots=frozenset(str(root) for root in data.get("complete_roots", ())),
        repository_name=str(data.get("repository_name", "")),
    )


def _entry_to_dict(entry: RemoteEntry) -> dict[str, Any]:
    return {
        "name": entry.name,
        "path": entry.path,
        "is_dir": entry.is_dir,
        "size": entry.size,
        "modified_at": entry.modified_at.isoformat() if entry.modified_at is not None else None,
    }


def _entry_from_dict(data: dict[str, Any]) -> RemoteEntry:
    modified = data.get("modified_at")
    return RemoteEntry(
        name=str(data["name"]),
        path=str(data["path"]),
        is_dir=bool(data["is_dir"]),
        size=int(data.get("size", 0)),
        modified_at=_parse_datetime(modified) if modified is not None else None,
    )


def _parse_datetime(raw: object) -> datetime:
    value = datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# endregion
