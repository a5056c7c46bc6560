"""State management for tracking sync history.

Each sync pair has a baseline state file ``<state_dir>/<sync_id>.json``
holding the last-known fingerprint of every tracked document on both sides.
Three-way comparisons against this baseline are what distinguish one-sided
edits from genuine conflicts.
"""

import hashlib
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from ..config import config
from ..utils import EPOCH_ISO, format_iso_timestamp, utc_now_iso

logger = logging.getLogger(__name__)


def hash_file_content(content: Union[str, bytes]) -> str:
    """Compute the SHA-256 fingerprint of file content.

    Text is encoded as UTF-8 first, so ``"abc"`` and ``b"abc"`` hash the same.

    Args:
        content: Raw bytes or decoded text

    Returns:
        Lowercase 64 character hex digest
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


@dataclass
class FileState:
    """Fingerprint of one tracked document on one side."""

    path: str
    """Document path (relative, forward slashes)"""

    hash: str
    """SHA-256 hex digest of the content"""

    mtime: str
    """Last modification time as ISO 8601 timestamp"""

    size: int
    """Content size in bytes"""

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "hash": self.hash,
            "mtime": self.mtime,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileState":
        return cls(
            path=data.get("path", ""),
            hash=data.get("hash", ""),
            mtime=data.get("mtime", EPOCH_ISO),
            size=int(data.get("size", 0)),
        )


def build_file_state(absolute_path: Path, doc_path: str) -> FileState:
    """Build a FileState for a file on the local filesystem.

    Args:
        absolute_path: Path of the file on disk
        doc_path: Relative document path (forward slashes)

    Returns:
        FileState with hash, mtime and size read from disk
    """
    content = Path(absolute_path).read_bytes()
    stat = os.stat(absolute_path)
    mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
    return FileState(
        path=doc_path,
        hash=hash_file_content(content),
        mtime=format_iso_timestamp(mtime),
        size=stat.st_size,
    )


def build_content_state(
    doc_path: str, content: Union[str, bytes], mtime: Optional[str] = None
) -> FileState:
    """Build a FileState from in-memory content (defaults mtime to now)."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return FileState(
        path=doc_path,
        hash=hash_file_content(data),
        mtime=mtime or utc_now_iso(),
        size=len(data),
    )


def build_remote_file_state(doc_path: str, content: str, updated_at: str) -> FileState:
    """Build a FileState from remote content and the server timestamp."""
    return build_content_state(doc_path, content, updated_at)


def has_file_changed(current: FileState, known: FileState) -> bool:
    """Check if a file changed compared to a known state.

    Only the hash counts; mtime and size are advisory.
    """
    return current.hash != known.hash


@dataclass
class SyncState:
    """Baseline memory for one sync configuration."""

    sync_id: str
    local: dict[str, FileState] = field(default_factory=dict)
    remote: dict[str, FileState] = field(default_factory=dict)
    updated_at: str = EPOCH_ISO

    def record(self, doc_path: str, local: FileState, remote: FileState) -> None:
        """Record both sides of a path after a successful reconciliation."""
        self.local[doc_path] = local
        self.remote[doc_path] = remote

    def forget(self, doc_path: str) -> None:
        """Remove a path from both sides of the baseline."""
        self.local.pop(doc_path, None)
        self.remote.pop(doc_path, None)

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "syncId": self.sync_id,
            "local": {p: s.to_dict() for p, s in sorted(self.local.items())},
            "remote": {p: s.to_dict() for p, s in sorted(self.remote.items())},
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict, sync_id: str) -> "SyncState":
        """Create SyncState from dictionary."""
        return cls(
            sync_id=data.get("syncId") or sync_id,
            local={
                p: FileState.from_dict(s) for p, s in (data.get("local") or {}).items()
            },
            remote={
                p: FileState.from_dict(s) for p, s in (data.get("remote") or {}).items()
            },
            updated_at=data.get("updatedAt") or EPOCH_ISO,
        )


class SyncStateManager:
    """Loads and saves per-sync baseline state.

    Loading never raises: a missing or corrupt state file yields an empty
    baseline. A coarse per-sync-id lock is available through :meth:`lock`
    and :meth:`update` so that the watcher, the poller and the executor do
    not lose each other's updates within one process.
    """

    _locks: dict[str, threading.RLock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize state manager.

        Args:
            state_dir: Directory to store state files. Defaults to
                ``<vaultsync home>/sync-state``
        """
        self.state_dir = Path(state_dir) if state_dir else config.state_dir

    def _state_file(self, sync_id: str) -> Path:
        return self.state_dir / f"{sync_id}.json"

    @contextmanager
    def lock(self, sync_id: str) -> Iterator[None]:
        """Hold the in-process lock for a sync id."""
        with self._locks_guard:
            lock = self._locks.setdefault(sync_id, threading.RLock())
        with lock:
            yield

    def load_state(self, sync_id: str) -> SyncState:
        """Load sync state, returning an empty baseline if none is stored."""
        state_file = self._state_file(sync_id)
        if not state_file.exists():
            logger.debug(f"No sync state found at {state_file}")
            return SyncState(sync_id=sync_id)

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state file does not contain an object")
            return SyncState.from_dict(data, sync_id)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load sync state for {sync_id}: {e}")
            return SyncState(sync_id=sync_id)

    def save_state(self, state: SyncState) -> None:
        """Write sync state to disk, creating the state directory if needed.

        The file is written to a temporary sibling and renamed into place.
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        state.updated_at = utc_now_iso()
        state_file = self._state_file(state.sync_id)
        suffix = f"{os.getpid()}.{threading.get_ident()}.tmp"
        tmp_file = state_file.with_name(f"{state_file.name}.{suffix}")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
            f.write("\n")
        os.replace(tmp_file, state_file)
        logger.debug(
            f"Saved sync state with {len(state.local)} local / "
            f"{len(state.remote)} remote entries to {state_file}"
        )

    def update(self, sync_id: str, mutate: Callable[[SyncState], None]) -> SyncState:
        """Re-read, mutate and save the state under the per-sync lock.

        Args:
            sync_id: Sync configuration id
            mutate: Function applied to the freshly loaded state

        Returns:
            The saved state
        """
        with self.lock(sync_id):
            state = self.load_state(sync_id)
            mutate(state)
            self.save_state(state)
            return state

    def delete_state(self, sync_id: str) -> bool:
        """Delete sync state.

        Returns:
            True if state was deleted, False if no state existed
        """
        state_file = self._state_file(sync_id)
        if state_file.exists():
            state_file.unlink()
            logger.debug(f"Deleted sync state at {state_file}")
            return True
        return False
