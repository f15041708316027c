"""Normalized error hierarchy for remote_mirror."""

from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base class for all remote_mirror errors.

    :param message: Human-readable error description.
    :param path: The remote or local path involved in the error, if any.
    :param repository: The repository identity involved, if any.
    """

    def __init__(self, message: str = "", *, path: Optional[str] = None, repository: Optional[str] = None) -> None:
        self.path = path
        self.repository = repository
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        if self.repository is not None:
            parts.append(f"repository={self.repository!r}")
        return " | ".join(parts) if len(parts) > 1 else parts[0]

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(super().__str__())]
        if self.path is not None:
            args.append(f"path={self.path!r}")
        if self.repository is not None:
            args.append(f"repository={self.repository!r}")
        return f"{cls}({', '.join(args)})"


class ConnectivityError(MirrorError):
    """Raised when the remote host cannot be reached or refuses the login.

    Fatal for a whole sync call.
    """


class ListingError(MirrorError):
    """Raised when a directory listing cannot be obtained in any dialect.

    :param attempts: Per-dialect failure descriptions, in the order tried.
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        repository: Optional[str] = None,
        attempts: tuple[str, ...] = (),
    ) -> None:
        self.attempts = attempts
        super().__init__(message, path=path, repository=repository)


class TransferError(MirrorError):
    """Raised when a single file cannot be downloaded or a local path cannot be removed."""


class CacheError(MirrorError):
    """Raised when a cache record cannot be read or written."""


class InvalidPath(MirrorError):
    """Raised for malformed remote paths or names that cannot be mirrored safely."""
