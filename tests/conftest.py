"""Shared fixtures for vaultsync tests."""

from pathlib import Path
from typing import Optional

import pytest

from vaultsync.exceptions import VaultNotFoundError
from vaultsync.models import DocumentContent, RemoteDocument
from vaultsync.sync.config import SyncConfigStore
from vaultsync.sync.state import SyncStateManager


class FakeVault:
    """In-memory stand-in for VaultClient.

    Every write bumps a logical clock so server timestamps are strictly
    increasing. Calls are recorded in ``calls`` as ``(method, path)``.
    """

    def __init__(self):
        self.docs: dict[str, tuple[str, str]] = {}
        self.calls: list[tuple[str, Optional[str]]] = []
        self.errors: dict[tuple[str, str], Exception] = {}
        self._tick = 0

    def _next_timestamp(self) -> str:
        self._tick += 1
        minutes, seconds = divmod(self._tick, 60)
        return f"2025-01-15T10:{minutes:02d}:{seconds:02d}.000Z"

    def seed(self, path: str, content: str, modified_at: Optional[str] = None) -> str:
        stamp = modified_at or self._next_timestamp()
        self.docs[path] = (content, stamp)
        return stamp

    def fail(self, method: str, path: str, error: Exception) -> None:
        self.errors[(method, path)] = error

    def _check(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        error = self.errors.get((method, path))
        if error is not None:
            raise error

    def list_documents(self, vault_id: str) -> list[RemoteDocument]:
        self.calls.append(("list", None))
        return [
            RemoteDocument(
                path=path,
                size_bytes=len(content.encode("utf-8")),
                file_modified_at=stamp,
            )
            for path, (content, stamp) in sorted(self.docs.items())
        ]

    def get_document(self, vault_id: str, path: str) -> DocumentContent:
        self._check("get", path)
        if path not in self.docs:
            raise VaultNotFoundError(f"Document not found: {path}")
        content, stamp = self.docs[path]
        return DocumentContent(content=content, updated_at=stamp)

    def put_document(self, vault_id: str, path: str, content: str) -> None:
        self._check("put", path)
        self.docs[path] = (content, self._next_timestamp())

    def delete_document(self, vault_id: str, path: str) -> None:
        self._check("delete", path)
        if path not in self.docs:
            raise VaultNotFoundError(f"Document not found: {path}")
        del self.docs[path]

    def close(self) -> None:
        pass

    def __enter__(self) -> "FakeVault":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@pytest.fixture
def vault():
    """Provide an empty in-memory vault."""
    return FakeVault()


@pytest.fixture
def local_dir(tmp_path):
    """Local side of a sync pair."""
    path = tmp_path / "notes"
    path.mkdir()
    return path


@pytest.fixture
def state_manager(tmp_path):
    return SyncStateManager(state_dir=tmp_path / "home" / "sync-state")


@pytest.fixture
def config_store(tmp_path, state_manager):
    return SyncConfigStore(
        syncs_file=tmp_path / "home" / "syncs.json", state_manager=state_manager
    )


@pytest.fixture
def make_config(config_store, local_dir):
    """Factory creating a persisted sync config for ``local_dir``."""

    def _make(mode="sync", on_conflict="newer", **kwargs):
        return config_store.create_sync_config(
            "vault-1", local_dir, mode=mode, on_conflict=on_conflict, **kwargs
        )

    return _make


def write(root: Path, doc_path: str, content: str) -> Path:
    """Write a local document, creating parent directories."""
    target = root / doc_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content.encode("utf-8"))
    return target
