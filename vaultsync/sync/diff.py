"""Diff generation for sync operations.

Compares current local and remote fingerprints against the last-known
baseline to decide which documents must be transferred or deleted.
"""

from dataclasses import dataclass, field
from enum import Enum

from .conflict import detect_conflict
from .state import FileState, SyncState


class DiffAction(str, Enum):
    """What needs to happen to a document."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class DiffDirection(str, Enum):
    """Which replica is the source of the change."""

    UPLOAD = "upload"
    """Local to remote"""

    DOWNLOAD = "download"
    """Remote to local"""


@dataclass
class SyncDiffEntry:
    """A single pending change."""

    path: str
    """Document path (relative, forward slashes)"""

    action: DiffAction
    direction: DiffDirection

    size_bytes: int
    """Bytes to transfer (0 for deletes)"""

    reason: str
    """Human-readable reason for this change"""


@dataclass
class SyncDiff:
    """Pending changes for one pull or push run. Never persisted."""

    uploads: list[SyncDiffEntry] = field(default_factory=list)
    downloads: list[SyncDiffEntry] = field(default_factory=list)
    deletes: list[SyncDiffEntry] = field(default_factory=list)
    total_bytes: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.uploads or self.downloads or self.deletes)

    @property
    def operation_count(self) -> int:
        return len(self.uploads) + len(self.downloads) + len(self.deletes)


def compute_pull_diff(
    local_files: dict[str, FileState],
    remote_files: dict[str, FileState],
    last_state: SyncState,
) -> SyncDiff:
    """Compute the changes needed to bring local up to date with remote.

    Args:
        local_files: Current local fingerprints by path
        remote_files: Current remote fingerprints by path
        last_state: Baseline from the previous sync

    Returns:
        SyncDiff with downloads and local deletes
    """
    downloads: list[SyncDiffEntry] = []
    deletes: list[SyncDiffEntry] = []

    for doc_path, remote in remote_files.items():
        local = local_files.get(doc_path)
        last_remote = last_state.remote.get(doc_path)

        if local is None:
            if doc_path in last_state.local:
                reason = "Deleted locally, exists remotely (pull restores)"
            else:
                reason = "New remote file"
            downloads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.CREATE,
                    DiffDirection.DOWNLOAD,
                    remote.size,
                    reason,
                )
            )
        elif last_remote is not None and remote.hash != last_remote.hash:
            downloads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.UPDATE,
                    DiffDirection.DOWNLOAD,
                    remote.size,
                    "Remote file updated",
                )
            )
        elif last_remote is None and remote.hash != local.hash:
            # First sync for this path: pull prefers remote
            downloads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.UPDATE,
                    DiffDirection.DOWNLOAD,
                    remote.size,
                    "Content differs (first sync, pull prefers remote)",
                )
            )

    for doc_path in last_state.remote:
        if doc_path not in remote_files and doc_path in local_files:
            deletes.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.DELETE,
                    DiffDirection.DOWNLOAD,
                    0,
                    "Deleted from remote",
                )
            )

    total_bytes = sum(d.size_bytes for d in downloads)
    return SyncDiff(
        uploads=[], downloads=downloads, deletes=deletes, total_bytes=total_bytes
    )


def compute_push_diff(
    local_files: dict[str, FileState],
    remote_files: dict[str, FileState],
    last_state: SyncState,
) -> SyncDiff:
    """Compute the changes needed to bring remote up to date with local.

    Mirror image of :func:`compute_pull_diff`.
    """
    uploads: list[SyncDiffEntry] = []
    deletes: list[SyncDiffEntry] = []

    for doc_path, local in local_files.items():
        remote = remote_files.get(doc_path)
        last_local = last_state.local.get(doc_path)

        if remote is None:
            if doc_path in last_state.remote:
                reason = "Deleted remotely, exists locally (push restores)"
            else:
                reason = "New local file"
            uploads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.CREATE,
                    DiffDirection.UPLOAD,
                    local.size,
                    reason,
                )
            )
        elif last_local is not None and local.hash != last_local.hash:
            uploads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.UPDATE,
                    DiffDirection.UPLOAD,
                    local.size,
                    "Local file updated",
                )
            )
        elif last_local is None and local.hash != remote.hash:
            uploads.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.UPDATE,
                    DiffDirection.UPLOAD,
                    local.size,
                    "Content differs (first sync, push prefers local)",
                )
            )

    for doc_path in last_state.local:
        if doc_path not in local_files and doc_path in remote_files:
            deletes.append(
                SyncDiffEntry(
                    doc_path,
                    DiffAction.DELETE,
                    DiffDirection.UPLOAD,
                    0,
                    "Deleted locally",
                )
            )

    total_bytes = sum(u.size_bytes for u in uploads)
    return SyncDiff(
        uploads=uploads, downloads=[], deletes=deletes, total_bytes=total_bytes
    )


def format_diff(diff: SyncDiff) -> str:
    """Format a diff for human-readable display."""
    if diff.is_empty:
        return "Everything is up to date."

    symbols = {DiffAction.CREATE: "+", DiffAction.UPDATE: "~", DiffAction.DELETE: "-"}
    lines = []
    for entry in [*diff.downloads, *diff.uploads, *diff.deletes]:
        lines.append(f"  {symbols[entry.action]} {entry.path} ({entry.reason})")

    total_kb = -(-diff.total_bytes // 1024)
    lines.append("")
    lines.append(f"{diff.operation_count} file(s), {total_kb} KB to transfer")
    return "\n".join(lines)


def _filtered(diff: SyncDiff, drop: set[str]) -> SyncDiff:
    uploads = [e for e in diff.uploads if e.path not in drop]
    downloads = [e for e in diff.downloads if e.path not in drop]
    deletes = [e for e in diff.deletes if e.path not in drop]
    total_bytes = sum(e.size_bytes for e in [*uploads, *downloads])
    return SyncDiff(uploads, downloads, deletes, total_bytes)


def merge_bidirectional_diffs(
    push_diff: SyncDiff,
    pull_diff: SyncDiff,
    local_files: dict[str, FileState],
    remote_files: dict[str, FileState],
    last_state: SyncState,
) -> tuple[SyncDiff, SyncDiff, list[str]]:
    """Settle paths that both diffs want to touch in a two-way sync.

    A deletion on one side wins over a restore from the other side unless the
    other side changed the document since the last sync. Paths that both
    sides changed are returned as conflicts and removed from both diffs.

    Returns:
        Tuple of (push_diff, pull_diff, conflict_paths)
    """
    push_drop: set[str] = set()
    pull_drop: set[str] = set()
    conflicts: list[str] = []

    pushed = {e.path for e in push_diff.uploads}
    pulled = {e.path for e in pull_diff.downloads}

    for entry in push_diff.deletes:
        if entry.path not in pulled:
            continue
        remote = remote_files[entry.path]
        last_remote = last_state.remote.get(entry.path)
        if last_remote is None or remote.hash != last_remote.hash:
            push_drop.add(entry.path)
        else:
            pull_drop.add(entry.path)

    for entry in pull_diff.deletes:
        if entry.path not in pushed:
            continue
        local = local_files[entry.path]
        last_local = last_state.local.get(entry.path)
        if last_local is None or local.hash != last_local.hash:
            pull_drop.add(entry.path)
        else:
            push_drop.add(entry.path)

    for doc_path in sorted(pushed & pulled):
        local = local_files.get(doc_path)
        remote = remote_files.get(doc_path)
        if local is None or remote is None:
            continue
        if detect_conflict(
            local,
            remote,
            last_state.local.get(doc_path),
            last_state.remote.get(doc_path),
        ):
            conflicts.append(doc_path)
            push_drop.add(doc_path)
            pull_drop.add(doc_path)

    return (
        _filtered(push_diff, push_drop),
        _filtered(pull_diff, pull_drop),
        conflicts,
    )
