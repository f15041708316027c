"""Configuration model: immutable data containers describing repositories and the engine."""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import os
from datetime import timedelta
from pathlib import Path

DEFAULT_CONCURRENCY = 8
CACHE_DIR_ENV = "REMOTE_MIRROR_CACHE_DIR"


def default_cache_dir() -> Path:
    """Cache directory from ``REMOTE_MIRROR_CACHE_DIR``, else ``~/.cache/remote-mirror``."""
    override = os.environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".cache" / "remote-mirror"


@dataclasses.dataclass(frozen=True)
class Repository:
    """Describes one remote repository.

    :param host: Remote host name or address.
    :param port: Control port (default: 21).
    :param username: Login name.
    :param password: Login password. Never shown in ``repr``.
    :param stable_id: Identity that survives edits of the connection settings.
    :param name: Display name.
    """

    host: str
    port: int = 21
    username: str = "anonymous"
    password: str = dataclasses.field(default="", repr=False)
    stable_id: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        if not self.host or not self.host.strip():
            raise ValueError("host must be a non-empty string")
        if not self.stable_id:
            object.__setattr__(self, "stable_id", f"{self.host}:{self.port}")

    @property
    def fingerprint(self) -> str:
        """Stable hash of the connection identity (host, port, username)."""
        digest = hashlib.sha256(f"{self.host}:{self.port}:{self.username}".encode()).digest()
        return base64.b64encode(digest).decode("ascii")

    @property
    def label(self) -> str:
        return self.name or self.host

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Repository:
        """Construct from a plain dict (e.g. one entry of a repositories file).

        :param data: Dict with at least a ``host`` key.
        """
        if "host" not in data:
            msg = "Repository config requires a 'host'"
            raise KeyError(msg)
        return cls(
            host=str(data["host"]),
            port=int(data.get("port", 21)),  # type: ignore[call-overload]
            username=str(data.get("username", "anonymous")),
            password=str(data.get("password", "")),
            stable_id=str(data.get("stable_id", data.get("id", ""))),
            name=str(data.get("name", "")),
        )


@dataclasses.dataclass(frozen=True)
class MirrorConfig:
    """Engine settings.

    :param cache_dir: Directory holding one cache record per repository.
    :param cache_lifetime: How long a scanned snapshot stays valid.
    :param scan_concurrency: Simultaneous listing operations per scan.
    :param transfer_concurrency: Simultaneous downloads per sync call.
    :param chunk_size: Read size for streamed downloads, in bytes.
    :param timeout: Socket and connection timeout in seconds.
    :param connect_attempts: Connection attempts before giving up.
    :param pacing_delay: Seconds to wait between scans of different repositories.
    """

    cache_dir: Path = dataclasses.field(default_factory=default_cache_dir)
    cache_lifetime: timedelta = timedelta(hours=1)
    scan_concurrency: int = DEFAULT_CONCURRENCY
    transfer_concurrency: int = DEFAULT_CONCURRENCY
    chunk_size: int = 65536
    timeout: float = 10.0
    connect_attempts: int = 3
    pacing_delay: float = 1.0

    def validate(self) -> None:
        """Check that budgets and sizes are usable.

        :raises ValueError: If any setting is out of range.
        """
        for name in ("scan_concurrency", "transfer_concurrency", "chunk_size", "connect_attempts"):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.pacing_delay < 0:
            raise ValueError(f"pacing_delay must be >= 0, got {self.pacing_delay}")
        if self.cache_lifetime <= timedelta(0):
            raise ValueError("cache_lifetime must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> MirrorConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        Durations are given in seconds (``cache_lifetime``, ``timeout``,
        ``pacing_delay``). Unknown keys are rejected.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            msg = f"Unknown mirror settings: {unknown}"
            raise TypeError(msg)

        kwargs: dict[str, object] = dict(data)
        if "cache_dir" in kwargs:
            kwargs["cache_dir"] = Path(str(kwargs["cache_dir"])).expanduser()
        if "cache_lifetime" in kwargs:
            kwargs["cache_lifetime"] = timedelta(seconds=float(kwargs["cache_lifetime"]))  # type: ignore[arg-type]
        config = cls(**kwargs)  # type: ignore[arg-type]
        config.validate()
        return config
