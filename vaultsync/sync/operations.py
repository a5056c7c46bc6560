"""Sync operations wrapper for unified local/remote document access."""

import logging
import os
import secrets
from pathlib import Path
from typing import Optional

from ..api import VaultClient
from ..models import DocumentContent

logger = logging.getLogger(__name__)


def to_doc_path(absolute_path: Path, base_path: Path) -> str:
    """Convert an absolute path into a relative document path.

    Uses forward slashes on every platform.
    """
    return Path(absolute_path).relative_to(base_path).as_posix()


def atomic_write_text(target: Path, content: str) -> None:
    """Write a file through a temp file plus rename.

    Prevents partial reads if the process is interrupted mid-write. Parent
    directories are created as needed.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = target.with_name(f"{target.name}.tmp.{secrets.token_hex(4)}")
    try:
        tmp_file.write_bytes(content.encode("utf-8"))
        os.replace(tmp_file, target)
    except BaseException:
        tmp_file.unlink(missing_ok=True)
        raise


class SyncOperations:
    """Reads and writes documents on both replicas of one sync pair."""

    def __init__(self, client: VaultClient, vault_id: str, local_root: Path):
        """Initialize sync operations.

        Args:
            client: Vault API client
            vault_id: Remote vault id
            local_root: Root of the local directory tree
        """
        self.client = client
        self.vault_id = vault_id
        self.local_root = Path(local_root)

    def local_file(self, doc_path: str) -> Path:
        return self.local_root / Path(*doc_path.split("/"))

    def read_local(self, doc_path: str) -> str:
        """Read a local document as UTF-8 text (no newline translation)."""
        return self.local_file(doc_path).read_bytes().decode("utf-8")

    def write_local(self, doc_path: str, content: str) -> Path:
        """Atomically write a local document, creating parent directories."""
        target = self.local_file(doc_path)
        atomic_write_text(target, content)
        return target

    def delete_local(self, doc_path: str) -> bool:
        """Delete a local document.

        Returns:
            True if a file was removed, False if it was already gone
        """
        target = self.local_file(doc_path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def fetch_remote(self, doc_path: str) -> DocumentContent:
        return self.client.get_document(self.vault_id, doc_path)

    def upload(self, doc_path: str, content: str) -> None:
        self.client.put_document(self.vault_id, doc_path, content)

    def delete_remote(self, doc_path: str) -> None:
        self.client.delete_document(self.vault_id, doc_path)

    def download(self, doc_path: str, remote: Optional[DocumentContent] = None) -> str:
        """Fetch a remote document and write it locally.

        Args:
            doc_path: Document path
            remote: Already fetched content, skips the API call when given

        Returns:
            The downloaded content
        """
        if remote is None:
            remote = self.fetch_remote(doc_path)
        self.write_local(doc_path, remote.content)
        logger.debug(f"Downloaded {doc_path} ({len(remote.content)} chars)")
        return remote.content
