"""Tests for sync configuration persistence."""

import json
from pathlib import Path

import pytest

from vaultsync.exceptions import SyncConfigError
from vaultsync.sync.config import DEFAULT_CONFIG_IGNORE, SyncConfig, SyncConfigStore
from vaultsync.sync.modes import ConflictStrategy, SyncMode
from vaultsync.sync.state import SyncState
from vaultsync.utils import EPOCH_ISO


class TestSyncConfig:
    """Tests for the SyncConfig dataclass."""

    def test_from_dict_defaults(self):
        sync_config = SyncConfig.from_dict(
            {"id": "abc", "vaultId": "v1", "localPath": "/tmp/notes"}
        )
        assert sync_config.mode == SyncMode.SYNC
        assert sync_config.on_conflict == ConflictStrategy.NEWER
        assert sync_config.ignore == DEFAULT_CONFIG_IGNORE
        assert sync_config.last_sync_at == EPOCH_ISO
        assert sync_config.auto_sync is False
        assert sync_config.local_path == Path("/tmp/notes")

    def test_round_trip_keeps_interval(self):
        sync_config = SyncConfig(
            id="abc",
            vault_id="v1",
            local_path=Path("/tmp/notes"),
            mode="push",
            sync_interval="5m",
            auto_sync=True,
        )
        data = sync_config.to_dict()
        assert data["mode"] == "push"
        assert data["syncInterval"] == "5m"
        assert SyncConfig.from_dict(data) == sync_config

    def test_interval_omitted_when_unset(self):
        sync_config = SyncConfig(id="abc", vault_id="v1", local_path=Path("/x"))
        assert "syncInterval" not in sync_config.to_dict()

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            SyncConfig(id="abc", vault_id="v1", local_path=Path("/x"), mode="both")


class TestSyncConfigStore:
    """Tests for SyncConfigStore."""

    def test_empty_store(self, config_store):
        assert config_store.load_sync_configs() == []

    def test_create_and_get(self, config_store, local_dir):
        created = config_store.create_sync_config("v1", local_dir, mode="pull")

        assert len(created.id) == 36
        assert created.local_path.is_absolute()
        assert config_store.get_sync_config(created.id) == created
        assert config_store.get_sync_config_by_vault_id("v1") == created
        assert config_store.get_sync_config("missing") is None

    def test_relative_path_made_absolute(self, config_store, local_dir, monkeypatch):
        monkeypatch.chdir(local_dir.parent)
        created = config_store.create_sync_config("v1", local_dir.name)
        assert created.local_path == local_dir.absolute()

    def test_duplicate_rejected(self, config_store, local_dir):
        config_store.create_sync_config("v1", local_dir)
        with pytest.raises(SyncConfigError, match="already exists"):
            config_store.create_sync_config("v1", local_dir)

    def test_same_vault_other_path_allowed(self, config_store, local_dir, tmp_path):
        config_store.create_sync_config("v1", local_dir)
        config_store.create_sync_config("v1", tmp_path / "other")
        assert len(config_store.load_sync_configs()) == 2

    def test_delete_removes_state(self, config_store, state_manager, local_dir):
        created = config_store.create_sync_config("v1", local_dir)
        state_manager.save_state(SyncState(sync_id=created.id))

        assert config_store.delete_sync_config(created.id) is True
        assert config_store.load_sync_configs() == []
        assert not (state_manager.state_dir / f"{created.id}.json").exists()
        assert config_store.delete_sync_config(created.id) is False

    def test_update_last_sync(self, config_store, local_dir):
        created = config_store.create_sync_config("v1", local_dir)
        config_store.update_last_sync(created.id, "2025-01-15T10:00:00.000Z")
        stored = config_store.get_sync_config(created.id)
        assert stored.last_sync_at == "2025-01-15T10:00:00.000Z"

    def test_update_last_sync_unknown_id(self, config_store):
        with pytest.raises(SyncConfigError):
            config_store.update_last_sync("missing")

    def test_update_sync_config(self, config_store, local_dir):
        created = config_store.create_sync_config("v1", local_dir)
        updated = config_store.update_sync_config(
            created.id, mode="push", auto_sync=True, sync_interval="1h"
        )
        assert updated.mode == SyncMode.PUSH
        assert config_store.get_sync_config(created.id).auto_sync is True

    def test_update_rejects_identity_fields(self, config_store, local_dir):
        created = config_store.create_sync_config("v1", local_dir)
        with pytest.raises(SyncConfigError, match="Cannot edit"):
            config_store.update_sync_config(created.id, vault_id="v2")

    def test_corrupt_file_is_empty(self, config_store):
        config_store.syncs_file.parent.mkdir(parents=True, exist_ok=True)
        config_store.syncs_file.write_text("{{{", encoding="utf-8")
        assert config_store.load_sync_configs() == []

    def test_invalid_entries_skipped(self, config_store):
        config_store.syncs_file.parent.mkdir(parents=True, exist_ok=True)
        config_store.syncs_file.write_text(
            json.dumps(
                [
                    {"id": "good", "vaultId": "v1", "localPath": "/x"},
                    {"vaultId": "missing-id"},
                    {"id": "bad-mode", "vaultId": "v1", "localPath": "/y", "mode": "?"},
                ]
            ),
            encoding="utf-8",
        )
        assert [c.id for c in config_store.load_sync_configs()] == ["good"]

    def test_default_paths_follow_config(self, tmp_path, monkeypatch):
        from vaultsync.config import config

        monkeypatch.setattr(config, "home", tmp_path)
        store = SyncConfigStore()
        assert store.syncs_file == tmp_path / "syncs.json"
        assert store.state_manager.state_dir == tmp_path / "sync-state"
