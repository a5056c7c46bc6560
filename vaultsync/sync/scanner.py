"""Directory scanning utilities for sync operations."""

import logging
from pathlib import Path
from typing import Optional

from ..api import VaultClient
from ..utils import TRACKED_EXTENSION
from .ignore import should_ignore, should_ignore_tree
from .state import FileState, SyncState, build_file_state, build_remote_file_state

logger = logging.getLogger(__name__)


def scan_local_files(
    local_path: Path,
    ignore_patterns: list[str],
    extension: str = TRACKED_EXTENSION,
) -> dict[str, FileState]:
    """Scan a local directory tree for tracked documents.

    The walk uses an explicit stack so deep trees do not grow the call
    stack. Ignored directories are pruned before they are entered.

    Args:
        local_path: Root of the sync pair
        ignore_patterns: Patterns from :func:`resolve_ignore_patterns`
        extension: Only files with this suffix are tracked

    Returns:
        Mapping of relative document path to FileState

    Examples:
        >>> files = scan_local_files(Path("/home/user/notes"), [".git/"])
        >>> sorted(files)  # doctest: +SKIP
        ['daily/2025-01-15.md', 'index.md']
    """
    root = Path(local_path)
    files: dict[str, FileState] = {}
    if not root.is_dir():
        return files

    stack: list[tuple[Path, str]] = [(root, "")]
    while stack:
        directory, prefix = stack.pop()
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            continue

        for item in entries:
            rel_path = f"{prefix}/{item.name}" if prefix else item.name
            if item.is_symlink():
                continue
            if item.is_dir():
                if not should_ignore(rel_path + "/", ignore_patterns):
                    stack.append((item, rel_path))
            elif item.is_file() and item.name.endswith(extension):
                if should_ignore(rel_path, ignore_patterns):
                    continue
                try:
                    files[rel_path] = build_file_state(item, rel_path)
                except OSError as e:
                    # Skip files we can't read
                    logger.warning(f"Cannot read {rel_path}: {e}")

    return files


def scan_remote_files(
    client: VaultClient,
    vault_id: str,
    ignore_patterns: list[str],
    last_state: Optional[SyncState] = None,
    extension: str = TRACKED_EXTENSION,
) -> dict[str, FileState]:
    """Build remote fingerprints for every document in a vault.

    The listing only carries metadata. If the baseline already records the
    same server mtime for a path, its hash is reused; otherwise the content is
    fetched and hashed. Documents are filtered the same way as the local walk:
    paths under an ignored directory at any depth and paths without the
    tracked extension are left out.

    Args:
        client: Vault API client
        vault_id: Remote vault id
        ignore_patterns: Patterns from :func:`resolve_ignore_patterns`
        last_state: Baseline used to skip fetching unchanged documents
        extension: Only documents with this suffix are tracked

    Returns:
        Mapping of document path to FileState
    """
    files: dict[str, FileState] = {}
    fetched = 0
    for doc in client.list_documents(vault_id):
        if not doc.path.endswith(extension):
            continue
        if should_ignore_tree(doc.path, ignore_patterns):
            continue
        known = last_state.remote.get(doc.path) if last_state else None
        if known is not None and known.mtime == doc.file_modified_at and known.hash:
            files[doc.path] = FileState(
                path=doc.path,
                hash=known.hash,
                mtime=doc.file_modified_at,
                size=doc.size_bytes,
            )
            continue
        remote = client.get_document(vault_id, doc.path)
        fetched += 1
        files[doc.path] = build_remote_file_state(
            doc.path, remote.content, doc.file_modified_at or remote.updated_at
        )

    logger.debug(f"Scanned {len(files)} remote document(s), fetched {fetched}")
    return files
