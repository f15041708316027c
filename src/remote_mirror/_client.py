"""Remote client abstract base classes: the protocol boundary."""

from __future__ import annotations

import abc
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from datetime import datetime
    from types import TracebackType


class Dialect(enum.Enum):
    """Directory listing formats, in order of preference.

    The value is the protocol command that requests the format.
    """

    FACTS = "MLSD"
    UNIX = "LIST"
    NAMES = "NLST"


class RemoteSession(abc.ABC):
    """One authenticated conversation with the remote host.

    A session serves one operation at a time. Protocol-native exceptions
    must never leak: they are mapped to ``remote_mirror`` errors.
    """

    @abc.abstractmethod
    async def fetch_listing(self, path: str, dialect: Dialect) -> list[str]:
        """Return the raw response lines of a listing of ``path`` in ``dialect``.

        :raises ListingError: If the server refuses or fails the listing.
        """

    @abc.abstractmethod
    async def probe(self, path: str) -> tuple[int, datetime | None]:
        """Return ``(size, modified_at)`` of the file at ``path``.

        Used for bare name listings, which carry no type or size.

        :raises ListingError: If ``path`` is not a file the server can size.
        """

    @abc.abstractmethod
    def download(self, path: str, chunk_size: int) -> AsyncGenerator[bytes, None]:
        """Stream the content of the file at ``path`` in chunks.

        :raises TransferError: If the file cannot be retrieved.
        """

    @property
    def closed(self) -> bool:
        """``True`` once the session can no longer serve operations.

        Owners check this before reusing a session and open a new one when
        it is set.
        """
        return False

    async def close(self) -> None:  # noqa: B027
        """Release the session. Default is a no-op."""

    async def __aenter__(self) -> RemoteSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


class RemoteClient(abc.ABC):
    """Factory of sessions for one repository."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Protocol identifier (e.g. ``'ftp'``)."""

    @abc.abstractmethod
    async def open_session(self) -> RemoteSession:
        """Connect and authenticate a new session.

        :raises ConnectivityError: If the host cannot be reached or refuses the login.
        """

    @abc.abstractmethod
    def url(self, path: str) -> str:
        """Protocol address of ``path``, escaped for the wire."""

    async def check_connection(self) -> None:
        """Open and close a session to verify reachability and credentials.

        :raises ConnectivityError: If the check fails.
        """
        session = await self.open_session()
        await session.close()
