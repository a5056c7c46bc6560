"""Sync modes and conflict strategies."""

from enum import Enum


class SyncMode(str, Enum):
    """Direction of synchronization for a sync pair."""

    PULL = "pull"
    """Remote to local only"""

    PUSH = "push"
    """Local to remote only"""

    SYNC = "sync"
    """Bidirectional with conflict detection"""

    @property
    def allows_upload(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.SYNC)

    @property
    def allows_download(self) -> bool:
        return self in (SyncMode.PULL, SyncMode.SYNC)

    @property
    def allows_remote_delete(self) -> bool:
        """Whether local deletions may be propagated to the remote vault."""
        return self.allows_upload

    @property
    def is_bidirectional(self) -> bool:
        return self == SyncMode.SYNC


class ConflictStrategy(str, Enum):
    """How to pick a winner when both sides changed since the baseline."""

    NEWER = "newer"
    LOCAL = "local"
    REMOTE = "remote"
    ASK = "ask"
    """Needs an interactive prompt; headless resolution falls back to NEWER"""
