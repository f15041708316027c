"""Local-versus-remote comparison producing a transfer plan."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from remote_mirror._errors import InvalidPath
from remote_mirror._models import RemoteEntry, TransferPlan
from remote_mirror._path import normalize_remote, relative_parts

if TYPE_CHECKING:
    from remote_mirror._models import Snapshot

log = logging.getLogger(__name__)


def needs_download(local_path: Path, remote_size: int) -> bool:
    """Return ``True`` if ``local_path`` is missing or its size differs from ``remote_size``.

    Size is the only staleness signal; modification times are not compared.
    """
    try:
        return local_path.stat().st_size != remote_size
    except FileNotFoundError:
        return True
    except OSError as exc:
        log.debug("Cannot stat %s (%s); scheduling download", local_path, exc)
        return True


class _Expected:
    """Local paths implied by a snapshot, compared case-normalized."""

    def __init__(self) -> None:
        self.files: set[str] = set()
        self.dirs: set[str] = set()
        self.unknown: set[str] = set()

    @staticmethod
    def key(path: Path | str) -> str:
        return os.path.normcase(os.path.normpath(str(path)))


class SyncPlanner:
    """Decides what to download, skip and delete under a local destination."""

    def plan(self, snapshot: Snapshot, root: str, destination: Path | str, *, complete: bool) -> TransferPlan:
        """Compare the subtree of ``snapshot`` at ``root`` with ``destination``.

        Files missing locally or of a different size are downloaded. When
        ``complete`` is set, local files and directories with no remote
        counterpart are scheduled for deletion. Local content below a remote
        directory that was never listed is left alone.

        :param snapshot: The remote tree.
        :param root: Remote directory mirrored onto ``destination``.
        :param destination: Local directory.
        :param complete: Whether ``snapshot`` holds all of ``root``'s subtree.
        """
        root = normalize_remote(root)
        destination = Path(destination)
        if root not in snapshot:
            log.warning("Remote path %s was never listed; nothing to plan", root)
            return TransferPlan()

        expected = _Expected()
        expected.dirs.add(expected.key(destination))
        to_download: list[tuple[RemoteEntry, Path]] = []
        up_to_date = 0

        for directory, children in snapshot.walk(root):
            try:
                local_dir = destination.joinpath(*relative_parts(root, directory))
            except InvalidPath:
                log.warning("Skipping %s: outside of %s", directory, root)
                continue
            for entry in children:
                local_path = local_dir / entry.name
                if entry.is_dir:
                    expected.dirs.add(expected.key(local_path))
                    if entry.path not in snapshot:
                        expected.unknown.add(expected.key(local_path))
                    continue
                expected.files.add(expected.key(local_path))
                if needs_download(local_path, entry.size):
                    to_download.append((entry, local_path))
                else:
                    up_to_date += 1

        to_delete: tuple[Path, ...] = ()
        if complete:
            to_delete = self._orphans(destination, expected)
        else:
            log.debug("Snapshot of %s is partial; orphan deletion skipped", root)

        return TransferPlan(to_download=tuple(to_download), to_delete=to_delete, up_to_date=up_to_date)

    @staticmethod
    def _orphans(destination: Path, expected: _Expected) -> tuple[Path, ...]:
        """Local files, then directories (deepest first), absent from ``expected``."""
        if not destination.is_dir():
            return ()
        orphan_files: list[Path] = []
        orphan_dirs: list[Path] = []
        for current, dirnames, filenames in os.walk(destination):
            here = Path(current)
            for name in filenames:
                path = here / name
                if expected.key(path) not in expected.files:
                    orphan_files.append(path)
            keep: list[str] = []
            for name in dirnames:
                path = here / name
                key = expected.key(path)
                if key in expected.unknown:
                    continue
                if key not in expected.dirs:
                    orphan_dirs.append(path)
                if not path.is_symlink():
                    keep.append(name)
            dirnames[:] = keep
        orphan_files.sort()
        orphan_dirs.sort(key=lambda p: (-len(p.parts), str(p)))
        return (*orphan_files, *orphan_dirs)
