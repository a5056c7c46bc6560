"""Sync core for vaultsync - scanning, diffing, transfers and continuous sync."""

from .config import SyncConfig, SyncConfigStore
from .conflict import (
    ConflictOutcome,
    ConflictResolution,
    apply_conflict_resolution,
    conflict_file_path,
    create_conflict_file,
    detect_conflict,
    force_resolution,
    resolve_conflict,
)
from .daemon import (
    DaemonStatus,
    get_daemon_status,
    rotate_log_if_needed,
    start_daemon,
    stop_daemon,
)
from .diff import (
    DiffAction,
    DiffDirection,
    SyncDiff,
    SyncDiffEntry,
    compute_pull_diff,
    compute_push_diff,
    format_diff,
    merge_bidirectional_diffs,
)
from .engine import SyncEngine, SyncError, SyncResult, retry_with_backoff
from .ignore import (
    DEFAULT_IGNORE_PATTERNS,
    IGNORE_FILE_NAME,
    load_ignore_file,
    resolve_ignore_patterns,
    should_ignore,
    should_ignore_tree,
)
from .modes import ConflictStrategy, SyncMode
from .operations import SyncOperations
from .poller import PollResult, RemotePoller
from .progress import ProgressListener, SyncPhase, SyncProgress
from .scanner import scan_local_files, scan_remote_files
from .state import (
    FileState,
    SyncState,
    SyncStateManager,
    build_file_state,
    build_remote_file_state,
    hash_file_content,
)
from .watcher import LocalWatcher

__all__ = [
    "SyncEngine",
    "SyncError",
    "SyncResult",
    "retry_with_backoff",
    "SyncMode",
    "ConflictStrategy",
    "SyncConfig",
    "SyncConfigStore",
    "SyncOperations",
    "FileState",
    "SyncState",
    "SyncStateManager",
    "build_file_state",
    "build_remote_file_state",
    "hash_file_content",
    "DiffAction",
    "DiffDirection",
    "SyncDiff",
    "SyncDiffEntry",
    "compute_pull_diff",
    "compute_push_diff",
    "format_diff",
    "merge_bidirectional_diffs",
    "ConflictOutcome",
    "ConflictResolution",
    "apply_conflict_resolution",
    "conflict_file_path",
    "create_conflict_file",
    "detect_conflict",
    "force_resolution",
    "resolve_conflict",
    "DEFAULT_IGNORE_PATTERNS",
    "IGNORE_FILE_NAME",
    "load_ignore_file",
    "resolve_ignore_patterns",
    "should_ignore",
    "should_ignore_tree",
    "scan_local_files",
    "scan_remote_files",
    "ProgressListener",
    "SyncPhase",
    "SyncProgress",
    "LocalWatcher",
    "PollResult",
    "RemotePoller",
    "DaemonStatus",
    "get_daemon_status",
    "rotate_log_if_needed",
    "start_daemon",
    "stop_daemon",
]
