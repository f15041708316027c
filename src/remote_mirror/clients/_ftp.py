"""FTP client using aioftp."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

import aioftp

from remote_mirror._client import RemoteClient, RemoteSession
from remote_mirror._errors import ConnectivityError, ListingError, MirrorError, TransferError
from remote_mirror._listing import parse_facts_timestamp
from remote_mirror._path import remote_url

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator
    from datetime import datetime

    from remote_mirror._client import Dialect
    from remote_mirror._config import MirrorConfig, Repository

log = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, EOFError)


class FtpSession(RemoteSession):
    """One logged-in FTP control connection.

    :param client: Connected and authenticated aioftp client.
    :param label: Repository label used in error messages.
    :param timeout: Seconds allowed for the closing ``QUIT``.
    """

    def __init__(self, client: aioftp.Client, *, label: str, timeout: float, encoding: str = "utf-8") -> None:
        self._client = client
        self._label = label
        self._timeout = timeout
        self._encoding = encoding
        self._closed = False

    # region: error mapping

    @contextmanager
    def _errors(self, path: str, error_type: type[MirrorError]) -> Iterator[None]:
        """Map aioftp/OS exceptions to remote_mirror errors.

        Server refusals become ``error_type``; transport failures become
        :class:`ConnectivityError`.
        """
        try:
            yield
        except MirrorError:
            raise
        except aioftp.StatusCodeError as exc:
            raise error_type(f"Server refused: {_describe_status(exc)}", path=path, repository=self._label) from None
        except _TRANSPORT_ERRORS as exc:
            self._abandon()
            raise ConnectivityError(f"Connection lost: {exc!r}", path=path, repository=self._label) from None
        except aioftp.AIOFTPException as exc:
            raise error_type(str(exc), path=path, repository=self._label) from None

    def _abandon(self) -> None:
        """Drop the control connection without a ``QUIT`` exchange."""
        if not self._closed:
            self._closed = True
            self._client.close()

    # endregion

    @property
    def closed(self) -> bool:
        return self._closed

    async def fetch_listing(self, path: str, dialect: Dialect) -> list[str]:
        lines: list[str] = []
        with self._errors(path, ListingError):
            async with self._client.get_stream(f"{dialect.value} {path}", "1xx") as stream:
                while True:
                    line = await stream.readline()
                    if not line:
                        break
                    lines.append(line.decode(self._encoding, errors="replace"))
        return lines

    async def probe(self, path: str) -> tuple[int, datetime | None]:
        with self._errors(path, ListingError):
            _code, info = await self._client.command(f"SIZE {path}", "213")
        try:
            size = int(info[-1].strip())
        except (IndexError, ValueError):
            raise ListingError(f"Unexpected SIZE reply {info!r}", path=path, repository=self._label) from None

        modified_at = None
        try:
            with self._errors(path, ListingError):
                _code, info = await self._client.command(f"MDTM {path}", "213")
            modified_at = parse_facts_timestamp(info[-1]) if info else None
        except ListingError:
            log.debug("MDTM not available for %s", path)
        return size, modified_at

    async def download(self, path: str, chunk_size: int) -> AsyncGenerator[bytes, None]:
        """Stream ``path`` in blocks.

        A refused ``RETR`` raises :class:`TransferError` and leaves the
        session usable. Abandoning the generator once data is flowing closes
        the session, since the control connection still owes the reply for
        the aborted transfer.
        """
        with self._errors(path, TransferError):
            async with self._client.download_stream(path) as stream:
                try:
                    async for block in stream.iter_by_block(chunk_size):
                        yield bytes(block)
                except (GeneratorExit, asyncio.CancelledError):
                    self._abandon()
                    raise

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(aioftp.AIOFTPException, *_TRANSPORT_ERRORS):
            await asyncio.wait_for(self._client.quit(), timeout=self._timeout)
        self._client.close()


class FtpClient(RemoteClient):
    """Opens FTP sessions for one repository.

    :param repository: Connection descriptor.
    :param timeout: Connection, socket and path timeout in seconds.
    :param connect_attempts: Connection attempts before giving up.
    :param encoding: Encoding of commands and listings.
    """

    def __init__(
        self,
        repository: Repository,
        *,
        timeout: float = 10.0,
        connect_attempts: int = 3,
        encoding: str = "utf-8",
    ) -> None:
        self._repository = repository
        self._timeout = timeout
        self._connect_attempts = connect_attempts
        self._encoding = encoding

    @classmethod
    def from_config(cls, repository: Repository, config: MirrorConfig) -> FtpClient:
        return cls(repository, timeout=config.timeout, connect_attempts=config.connect_attempts)

    def __repr__(self) -> str:
        return f"FtpClient({self.url('/')!r})"

    @property
    def name(self) -> str:
        return "ftp"

    def url(self, path: str) -> str:
        return remote_url(self._repository.host, self._repository.port, path)

    async def open_session(self) -> FtpSession:
        """Connect and log in, retrying transport failures with backoff."""
        from tenacity import (
            before_sleep_log,
            retry,
            retry_if_exception_type,
            stop_after_attempt,
            wait_exponential,
        )

        repo = self._repository

        @retry(
            retry=retry_if_exception_type(_TRANSPORT_ERRORS),
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        async def _do_connect() -> aioftp.Client:
            log.info("Connecting to %s:%d as %s", repo.host, repo.port, repo.username)
            client = aioftp.Client(
                socket_timeout=self._timeout,
                connection_timeout=self._timeout,
                path_timeout=self._timeout,
                encoding=self._encoding,
            )
            try:
                await client.connect(repo.host, repo.port)
                await client.login(repo.username, repo.password)
            except BaseException:
                client.close()
                raise
            return client

        try:
            client = await _do_connect()
        except aioftp.StatusCodeError as exc:
            raise ConnectivityError(f"Login refused: {_describe_status(exc)}", repository=repo.label) from None
        except _TRANSPORT_ERRORS as exc:
            raise ConnectivityError(f"Cannot reach {repo.host}:{repo.port}: {exc!r}", repository=repo.label) from None
        except aioftp.AIOFTPException as exc:
            raise ConnectivityError(str(exc), repository=repo.label) from None
        return FtpSession(client, label=repo.label, timeout=self._timeout, encoding=self._encoding)


def _describe_status(exc: aioftp.StatusCodeError) -> str:
    received = getattr(exc, "received_codes", ())
    info = getattr(exc, "info", ())
    code = str(received[-1]) if received else "?"
    text = " ".join(str(line).strip() for line in info) if info else ""
    return f"{code} {text}".strip()
