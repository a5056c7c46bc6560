"""Conflict detection and resolution for bidirectional sync."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from ..utils import parse_iso_timestamp, utc_now_iso
from .modes import ConflictStrategy
from .operations import SyncOperations, atomic_write_text
from .state import FileState, build_content_state

logger = logging.getLogger(__name__)
conflict_logger = logging.getLogger("vaultsync.conflicts")


class ConflictResolution(str, Enum):
    """Which side wins a conflict."""

    LOCAL = "local"
    REMOTE = "remote"


def detect_conflict(
    local: FileState,
    remote: FileState,
    last_local: Optional[FileState],
    last_remote: Optional[FileState],
) -> bool:
    """Detect whether a document has a bidirectional conflict.

    Without a baseline on either side (first sync) any content difference is
    a conflict. Otherwise both sides must have moved since the baseline. Two
    sides that independently reached the same new content still count as a
    conflict.
    """
    if last_local is None or last_remote is None:
        return local.hash != remote.hash
    local_changed = local.hash != last_local.hash
    remote_changed = remote.hash != last_remote.hash
    return local_changed and remote_changed


def _mtime_key(state: FileState) -> float:
    dt = parse_iso_timestamp(state.mtime)
    return dt.timestamp() if dt else 0.0


def resolve_conflict(
    strategy: Union[str, ConflictStrategy], local: FileState, remote: FileState
) -> ConflictResolution:
    """Pick the winning side of a conflict.

    ``newer`` keeps the side with the later mtime, ties favor local. ``ask``
    cannot prompt from the engine and behaves like ``newer``.
    """
    strategy = ConflictStrategy(strategy)
    if strategy == ConflictStrategy.LOCAL:
        return ConflictResolution.LOCAL
    if strategy == ConflictStrategy.REMOTE:
        return ConflictResolution.REMOTE
    if _mtime_key(local) >= _mtime_key(remote):
        return ConflictResolution.LOCAL
    return ConflictResolution.REMOTE


def conflict_file_path(
    doc_path: str, source: str, timestamp: Optional[str] = None
) -> str:
    """Build the relative path of a conflict backup.

    ``notes/a.md`` becomes ``notes/a.conflicted.remote.2025-01-15T10-30-00-123Z.md``.
    """
    stamp = (timestamp or utc_now_iso()).replace(":", "-").replace(".", "-")
    directory, _, name = doc_path.rpartition("/")
    base, dot, ext = name.rpartition(".")
    if not dot or not base:
        base, ext = name, ""
    backup_name = f"{base}.conflicted.{source}.{stamp}" + (f".{ext}" if ext else "")
    return f"{directory}/{backup_name}" if directory else backup_name


def create_conflict_file(
    local_root: Path, doc_path: str, content: str, source: str
) -> str:
    """Write the losing content next to the document as a timestamped backup.

    Returns:
        Relative path of the created backup
    """
    backup_path = conflict_file_path(doc_path, source)
    atomic_write_text(Path(local_root) / Path(*backup_path.split("/")), content)
    return backup_path


def format_conflict_log(
    doc_path: str,
    resolution: Union[str, ConflictResolution],
    backup_path: Optional[str],
) -> str:
    """Format a conflict log entry."""
    winner = ConflictResolution(resolution).value
    note = f" (backup: {backup_path})" if backup_path else ""
    return f"[{utc_now_iso()}] CONFLICT {doc_path}: resolved={winner}{note}"


@dataclass
class ConflictOutcome:
    """Result of resolving one conflict."""

    resolution: ConflictResolution
    backup_path: str
    local: FileState
    """New local baseline"""

    remote: FileState
    """New remote baseline"""


def apply_conflict_resolution(
    operations: SyncOperations,
    strategy: Union[str, ConflictStrategy],
    doc_path: str,
    local_content: str,
    local_state: FileState,
    remote_content: str,
    remote_state: FileState,
    on_local_write: Optional[Callable[[str], None]] = None,
) -> ConflictOutcome:
    """Resolve a detected conflict and make the winner live on both replicas.

    The losing content is saved as a backup beside the document. The returned
    baselines both point at the winning content so the same conflict is not
    raised again.

    Args:
        operations: Document operations for the sync pair
        strategy: Conflict strategy from the sync config
        doc_path: Document path
        local_content: Current local text
        local_state: Fingerprint of the local text
        remote_content: Current remote text
        remote_state: Fingerprint of the remote text
        on_local_write: Called with the path before the local file is replaced

    Returns:
        ConflictOutcome describing the winner, backup and new baselines
    """
    resolution = resolve_conflict(strategy, local_state, remote_state)

    if resolution == ConflictResolution.LOCAL:
        backup = create_conflict_file(
            operations.local_root, doc_path, remote_content, "remote"
        )
        operations.upload(doc_path, local_content)
        new_local = local_state
        new_remote = build_content_state(doc_path, local_content)
        logger.info(f"Conflict: {doc_path} - used local, saved remote as {backup}")
    else:
        backup = create_conflict_file(
            operations.local_root, doc_path, local_content, "local"
        )
        if on_local_write is not None:
            on_local_write(doc_path)
        operations.write_local(doc_path, remote_content)
        new_local = build_content_state(doc_path, remote_content)
        new_remote = remote_state
        logger.info(f"Conflict: {doc_path} - used remote, saved local as {backup}")

    conflict_logger.warning(format_conflict_log(doc_path, resolution, backup))
    return ConflictOutcome(resolution, backup, new_local, new_remote)


def force_resolution(
    operations: SyncOperations,
    doc_path: str,
    resolution: Union[str, ConflictResolution],
) -> tuple[FileState, FileState]:
    """Manually settle a document by copying one side over the other.

    No backup is written; the caller has chosen which version to keep.

    Returns:
        New (local, remote) baselines

    Raises:
        FileNotFoundError: If ``local`` is chosen and the local file is missing
    """
    resolution = ConflictResolution(resolution)
    if resolution == ConflictResolution.LOCAL:
        content = operations.read_local(doc_path)
        operations.upload(doc_path, content)
    else:
        content = operations.download(doc_path)
    conflict_logger.warning(format_conflict_log(doc_path, resolution, None))
    state = build_content_state(doc_path, content)
    return state, build_content_state(doc_path, content)
