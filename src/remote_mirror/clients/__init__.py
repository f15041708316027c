"""Protocol client implementations."""

__all__: list[str] = []

try:
    from remote_mirror.clients._ftp import FtpClient, FtpSession

    __all__ = [*__all__, "FtpClient", "FtpSession"]
except ImportError:  # pragma: no cover
    pass
