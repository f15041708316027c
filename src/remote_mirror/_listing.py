"""Directory listing parser with dialect fallback.

Three listing formats are understood, tried in this order:

* facts (``MLSD``): ``type=file;size=1024;modify=20240101120000; name``
* unix (``LIST``): ``-rw-r--r-- 1 owner group 1024 Jan 01 12:00 name``
* names (``NLST``): one bare name per line; type and size come from a
  per-name size lookup, and a name whose lookup fails for any reason is
  taken as a directory.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from remote_mirror._client import Dialect
from remote_mirror._errors import InvalidPath, ListingError, MirrorError
from remote_mirror._models import RemoteEntry
from remote_mirror._path import check_name, join_remote

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from remote_mirror._client import RemoteSession

log = logging.getLogger(__name__)

_PSEUDO_NAMES = frozenset({".", ".."})
_PSEUDO_TYPES = frozenset({"cdir", "pdir"})
_DIR_TYPES = frozenset({"dir", "cdir", "pdir"})

_UNIX_LINE = re.compile(
    r"^(?P<mode>[-dlbcps])\S*\s+"  # type + permissions
    r"\S+\s+\S+\s+\S+\s+"  # links, owner, group
    r"(?P<size>\d+)\s+"
    r"(?P<month>\S+)\s+(?P<day>\S+)\s+(?P<clock>\S+)\s+"
    r"(?P<name>.+)$"
)

_MONTHS = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}


@dataclasses.dataclass(frozen=True)
class ParseResult:
    """Outcome of one dialect attempt.

    :param dialect: The dialect that was tried.
    :param entries: Parsed children when the attempt succeeded.
    :param error: Why the attempt failed, ``None`` on success.
    """

    dialect: Dialect
    entries: tuple[RemoteEntry, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# region: date parsing


def parse_facts_timestamp(value: str) -> datetime | None:
    """Parse an ``MLSD`` ``modify`` fact (``YYYYMMDDHHMMSS[.sss]``, UTC)."""
    digits = value.strip()
    if len(digits) < 14 or not digits[:14].isdigit():
        return None
    try:
        return datetime.strptime(digits[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_unix_timestamp(month: str, day: str, clock: str, *, now: datetime | None = None) -> datetime | None:
    """Parse the three date columns of a unix listing line.

    ``clock`` is either ``HH:MM`` (recent files, year omitted) or a year.
    A year-less date that would lie in the future belongs to last year.
    """
    month_number = _MONTHS.get(month[:3].lower())
    if month_number is None or not day.isdigit():
        return None
    now = now or datetime.now(tz=timezone.utc)
    try:
        if ":" in clock:
            hour, minute = (int(part) for part in clock.split(":", 1))
            stamp = datetime(now.year, month_number, int(day), hour, minute, tzinfo=timezone.utc)
            if stamp > now + timedelta(days=1):
                stamp = stamp.replace(year=now.year - 1)
            return stamp
        if clock.isdigit():
            return datetime(int(clock), month_number, int(day), tzinfo=timezone.utc)
    except ValueError:
        return None
    return None


# endregion

# region: dialect parsers


def parse_facts(lines: Iterable[str], directory: str) -> list[RemoteEntry]:
    """Parse a fact-per-line listing of ``directory``.

    :raises ValueError: If a line is not a fact listing line.
    """
    entries: list[RemoteEntry] = []
    for line in _content_lines(lines):
        raw_facts, sep, name = line.partition(" ")
        if not sep or "=" not in raw_facts:
            raise ValueError(f"not a fact line: {line!r}")
        facts: dict[str, str] = {}
        for fact in raw_facts.split(";"):
            key, eq, value = fact.partition("=")
            if eq:
                facts[key.strip().lower()] = value.strip()
        kind = facts.get("type", "").lower()
        if not kind:
            raise ValueError(f"fact line without a type: {line!r}")
        if kind in _PSEUDO_TYPES or name in _PSEUDO_NAMES:
            continue
        entry = _make_entry(
            directory,
            name,
            is_dir=kind in _DIR_TYPES,
            size=_parse_size(facts.get("size")),
            modified_at=parse_facts_timestamp(facts.get("modify", "")),
        )
        if entry is not None:
            entries.append(entry)
    return entries


def parse_unix(lines: Iterable[str], directory: str, *, now: datetime | None = None) -> list[RemoteEntry]:
    """Parse an ``ls -l`` style listing of ``directory``.

    :raises ValueError: If a line does not have the fixed column layout.
    """
    entries: list[RemoteEntry] = []
    for line in _content_lines(lines):
        if line.lower().startswith("total "):
            continue
        match = _UNIX_LINE.match(line)
        if match is None:
            raise ValueError(f"not a unix listing line: {line!r}")
        name = match["name"]
        if match["mode"] == "l":
            name = name.split(" -> ", 1)[0]
        if name in _PSEUDO_NAMES:
            continue
        entry = _make_entry(
            directory,
            name,
            is_dir=match["mode"] == "d",
            size=int(match["size"]),
            modified_at=parse_unix_timestamp(match["month"], match["day"], match["clock"], now=now),
        )
        if entry is not None:
            entries.append(entry)
    return entries


def parse_names(lines: Iterable[str]) -> list[str]:
    """Parse a bare name listing. Servers that answer with paths are reduced to names."""
    names: list[str] = []
    for line in _content_lines(lines):
        name = line.rstrip("/").rsplit("/", 1)[-1]
        if name in _PSEUDO_NAMES or not name:
            continue
        names.append(name)
    return names


# endregion


class ListingParser:
    """Turns a remote directory into entries, trying each dialect in turn.

    :param dialects: Dialects to try, in order. Defaults to all of them.
    """

    def __init__(self, dialects: Sequence[Dialect] = tuple(Dialect)) -> None:
        if not dialects:
            raise ValueError("at least one dialect is required")
        self._dialects = tuple(dialects)

    @property
    def dialects(self) -> tuple[Dialect, ...]:
        return self._dialects

    async def list_directory(self, session: RemoteSession, path: str) -> tuple[RemoteEntry, ...]:
        """List the direct children of ``path``.

        :raises ListingError: If no dialect produced a listing.
        """
        attempts: list[str] = []
        for dialect in self._dialects:
            result = await self.attempt(session, path, dialect)
            if result.ok:
                if attempts:
                    log.debug("Listed %s with %s after: %s", path, dialect.name, "; ".join(attempts))
                return result.entries
            log.debug("Dialect %s failed for %s: %s", dialect.name, path, result.error)
            attempts.append(f"{dialect.name}: {result.error}")
        raise ListingError(
            f"No listing dialect worked ({'; '.join(attempts)})",
            path=path,
            attempts=tuple(attempts),
        )

    async def attempt(self, session: RemoteSession, path: str, dialect: Dialect) -> ParseResult:
        """Fetch and parse one dialect. Never raises ``ListingError``."""
        try:
            lines = await session.fetch_listing(path, dialect)
        except ListingError as exc:
            return ParseResult(dialect, error=str(exc))
        try:
            if dialect is Dialect.FACTS:
                entries = parse_facts(lines, path)
            elif dialect is Dialect.UNIX:
                entries = parse_unix(lines, path)
            else:
                entries = await self._probe_names(session, path, parse_names(lines))
        except ValueError as exc:
            return ParseResult(dialect, error=str(exc))
        return ParseResult(dialect, entries=tuple(entries))

    @staticmethod
    async def _probe_names(session: RemoteSession, directory: str, names: list[str]) -> list[RemoteEntry]:
        entries: list[RemoteEntry] = []
        for name in names:
            try:
                check_name(name)
            except InvalidPath:
                log.warning("Skipping unusable name %r in %s", name, directory)
                continue
            full = join_remote(directory, name)
            try:
                size, modified_at = await session.probe(full)
            except MirrorError as exc:
                log.debug("Treating %s as a directory: %s", full, exc)
                entries.append(RemoteEntry(name=name, path=full, is_dir=True))
                continue
            entries.append(RemoteEntry(name=name, path=full, is_dir=False, size=size, modified_at=modified_at))
        return entries


# region: helpers

def _content_lines(lines: Iterable[str]) -> Iterable[str]:
    for raw in lines:
        line = raw.rstrip("\r\n")
        if line.strip():
            yield line


def _parse_size(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def _make_entry(
    directory: str,
    name: str,
    *,
    is_dir: bool,
    size: int,
    modified_at: datetime | None,
) -> RemoteEntry | None:
    try:
        check_name(name)
    except InvalidPath:
        log.warning("Skipping unusable name %r in %s", name, directory)
        return None
    return RemoteEntry(
        name=name,
        path=join_remote(directory, name),
        is_dir=is_dir,
        size=0 if is_dir else size,
        modified_at=modified_at,
    )


# endregion
