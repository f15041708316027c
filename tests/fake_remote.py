"""In-memory remote repository for testing, rendered in every listing dialect.

The tree is a dict of file path to content; directories are implied by the
file paths plus any explicitly given empty directories. Failure, delay and
cancellation hooks let tests steer the engine without a network.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from remote_mirror._client import Dialect, RemoteClient, RemoteSession
from remote_mirror._errors import ConnectivityError, ListingError, TransferError
from remote_mirror._path import ROOT, join_remote, normalize_remote, parent_of, remote_url

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable

MTIME = datetime(2024, 1, 15, 12, 30, tzinfo=timezone.utc)


class FakeClient(RemoteClient):
    """Session factory over an in-memory tree.

    :param files: Mapping of absolute file path to content.
    :param dirs: Extra (possibly empty) directories.
    """

    def __init__(self, files: dict[str, bytes] | None = None, dirs: Iterable[str] = ()) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {ROOT}
        self.mtimes: dict[str, datetime] = {}
        for path in dirs:
            self.mkdir(path)
        for path, data in (files or {}).items():
            self.put(path, data)

        self.unreachable = False
        self.supported: set[Dialect] = set(Dialect)
        self.failing_paths: set[str] = set()
        self.failing_downloads: set[str] = set()
        self.failing_lookups: set[str] = set()
        self.close_on_failure = False
        self.listing_delay = 0.0
        self.on_chunk: Callable[[str], None] | None = None
        self.on_list: Callable[[str], None] | None = None

        self.listed: Counter[str] = Counter()
        self.downloaded: Counter[str] = Counter()
        self.sessions_opened = 0
        self.in_flight = 0
        self.max_in_flight = 0

    # region: tree editing

    def mkdir(self, path: str) -> None:
        path = normalize_remote(path)
        while path not in self.dirs:
            self.dirs.add(path)
            path = parent_of(path)

    def put(self, path: str, data: bytes, modified_at: datetime = MTIME) -> None:
        path = normalize_remote(path)
        self.mkdir(parent_of(path))
        self.files[path] = data
        self.mtimes[path] = modified_at

    def remove(self, path: str) -> None:
        path = normalize_remote(path)
        prefix = path.rstrip("/") + "/"
        self.files = {p: d for p, d in self.files.items() if p != path and not p.startswith(prefix)}
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(prefix)}

    def children(self, path: str) -> list[tuple[str, bool]]:
        """``(name, is_dir)`` pairs directly below ``path``, sorted by name."""
        found = {p.rsplit("/", 1)[1]: False for p in self.files if parent_of(p) == path}
        found.update({d.rsplit("/", 1)[1]: True for d in self.dirs if d != ROOT and parent_of(d) == path})
        return sorted(found.items())

    # endregion

    @property
    def name(self) -> str:
        return "fake"

    def url(self, path: str) -> str:
        return remote_url("fake.invalid", 21, path)

    async def open_session(self) -> FakeSession:
        await asyncio.sleep(0)
        if self.unreachable:
            raise ConnectivityError("Cannot reach fake.invalid:21", repository="fake")
        self.sessions_opened += 1
        return FakeSession(self)


class FakeSession(RemoteSession):
    def __init__(self, client: FakeClient) -> None:
        self._client = client
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self, path: str) -> None:
        if self._closed:
            raise ConnectivityError("Session is closed", path=path, repository="fake")

    async def fetch_listing(self, path: str, dialect: Dialect) -> list[str]:
        self._check_open(path)
        client = self._client
        client.in_flight += 1
        client.max_in_flight = max(client.max_in_flight, client.in_flight)
        try:
            await asyncio.sleep(client.listing_delay)
            if dialect not in client.supported:
                raise ListingError(f"500 {dialect.value} not understood", path=path)
            if path in client.failing_paths or path not in client.dirs:
                raise ListingError("550 Directory not available", path=path)
            client.listed[path] += 1
            if client.on_list is not None:
                client.on_list(path)
            return [self._render(path, name, is_dir, dialect) for name, is_dir in client.children(path)]
        finally:
            client.in_flight -= 1

    def _render(self, directory: str, name: str, is_dir: bool, dialect: Dialect) -> str:
        full = join_remote(directory, name)
        size = 0 if is_dir else len(self._client.files[full])
        stamp = MTIME if is_dir else self._client.mtimes[full]
        if dialect is Dialect.FACTS:
            kind = "dir" if is_dir else "file"
            return f"Type={kind};Size={size};Modify={stamp:%Y%m%d%H%M%S}; {name}\r\n"
        if dialect is Dialect.UNIX:
            mode = "drwxr-xr-x" if is_dir else "-rw-r--r--"
            return f"{mode}   1 owner    group {size:>10} {stamp:%b %d %Y} {name}\r\n"
        return f"{name}\r\n"

    async def probe(self, path: str) -> tuple[int, datetime | None]:
        self._check_open(path)
        await asyncio.sleep(0)
        if path in self._client.failing_lookups:
            raise ConnectivityError("Connection reset", path=path, repository="fake")
        if path not in self._client.files:
            raise ListingError("550 Not a plain file", path=path)
        return len(self._client.files[path]), self._client.mtimes[path]

    async def download(self, path: str, chunk_size: int) -> AsyncGenerator[bytes, None]:
        self._check_open(path)
        client = self._client
        if path in client.failing_downloads or path not in client.files:
            if client.close_on_failure:
                self._closed = True
            raise TransferError("550 Transfer refused", path=path)
        client.downloaded[path] += 1
        data = client.files[path]
        for offset in range(0, len(data), chunk_size):
            await asyncio.sleep(0)
            yield data[offset : offset + chunk_size]
            if client.on_chunk is not None:
                client.on_chunk(path)

    async def close(self) -> None:
        self._closed = True
