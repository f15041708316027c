"""Cached, incremental mirroring of remote FTP directory trees."""

from remote_mirror._cache import SnapshotCache
from remote_mirror._cancel import CancelToken
from remote_mirror._client import Dialect, RemoteClient, RemoteSession
from remote_mirror._config import MirrorConfig, Repository
from remote_mirror._errors import (
    CacheError,
    ConnectivityError,
    InvalidPath,
    ListingError,
    MirrorError,
    TransferError,
)
from remote_mirror._executor import TransferExecutor
from remote_mirror._listing import ListingParser, ParseResult
from remote_mirror._mirror import Mirror, SyncRun, SyncState
from remote_mirror._models import (
    CacheRecord,
    Outcome,
    RemoteEntry,
    Snapshot,
    SyncCounters,
    SyncResult,
    TransferPlan,
)
from remote_mirror._planner import SyncPlanner, needs_download
from remote_mirror._progress import Progress, format_age, format_size
from remote_mirror._scanner import DirectoryScanner, ScanResult

__version__ = "0.1.0"

__all__ = [
    # Core
    "Mirror",
    "SyncRun",
    "SyncState",
    "DirectoryScanner",
    "ScanResult",
    "SyncPlanner",
    "TransferExecutor",
    "SnapshotCache",
    "ListingParser",
    "ParseResult",
    # Clients
    "RemoteClient",
    "RemoteSession",
    "Dialect",
    # Models
    "RemoteEntry",
    "Snapshot",
    "CacheRecord",
    "TransferPlan",
    "SyncCounters",
    "SyncResult",
    "Outcome",
    # Config
    "Repository",
    "MirrorConfig",
    # Cancellation & progress
    "CancelToken",
    "Progress",
    "format_size",
    "format_age",
    "needs_download",
    # Errors
    "MirrorError",
    "ConnectivityError",
    "ListingError",
    "TransferError",
    "CacheError",
    "InvalidPath",
    # Version
    "__version__",
]
