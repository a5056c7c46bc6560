"""Tests for fingerprints and sync state persistence."""

import json
import threading

from vaultsync.sync.state import (
    FileState,
    SyncState,
    SyncStateManager,
    build_content_state,
    build_file_state,
    build_remote_file_state,
    has_file_changed,
    hash_file_content,
)


class TestHashFileContent:
    """Tests for hash_file_content."""

    def test_known_digest(self):
        assert hash_file_content("abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_str_and_bytes_agree(self):
        text = "héllo"
        assert hash_file_content(text) == hash_file_content(text.encode("utf-8"))

    def test_empty_content(self):
        digest = hash_file_content(b"")
        assert len(digest) == 64
        assert digest == hash_file_content("")

    def test_different_content(self):
        assert hash_file_content("a") != hash_file_content("b")


class TestFileStateBuilders:
    """Tests for FileState construction."""

    def test_build_file_state(self, tmp_path):
        path = tmp_path / "a.md"
        path.write_bytes("# Über\n".encode("utf-8"))

        state = build_file_state(path, "a.md")

        assert state.path == "a.md"
        assert state.hash == hash_file_content("# Über\n")
        assert state.size == len("# Über\n".encode("utf-8"))
        assert state.mtime.endswith("Z")

    def test_build_remote_file_state_uses_server_time(self):
        state = build_remote_file_state("a.md", "hello", "2025-01-15T10:00:00.000Z")
        assert state.mtime == "2025-01-15T10:00:00.000Z"
        assert state.size == 5

    def test_build_content_state_defaults_mtime(self):
        state = build_content_state("a.md", "x")
        assert state.mtime.startswith("20")

    def test_has_file_changed_ignores_mtime(self):
        a = FileState("a.md", "h1", "2025-01-01T00:00:00.000Z", 1)
        b = FileState("a.md", "h1", "2025-06-01T00:00:00.000Z", 1)
        c = FileState("a.md", "h2", "2025-01-01T00:00:00.000Z", 1)
        assert has_file_changed(a, b) is False
        assert has_file_changed(a, c) is True


class TestSyncStateManager:
    """Tests for SyncStateManager."""

    def test_missing_state_is_empty(self, state_manager):
        state = state_manager.load_state("abc")
        assert state.sync_id == "abc"
        assert state.local == {}
        assert state.remote == {}

    def test_corrupt_state_is_empty(self, tmp_path):
        manager = SyncStateManager(state_dir=tmp_path)
        (tmp_path / "abc.json").write_text("{not json", encoding="utf-8")
        assert manager.load_state("abc").local == {}

    def test_non_object_state_is_empty(self, tmp_path):
        manager = SyncStateManager(state_dir=tmp_path)
        (tmp_path / "abc.json").write_text("[1, 2]", encoding="utf-8")
        assert manager.load_state("abc").remote == {}

    def test_save_and_load(self, state_manager):
        state = SyncState(sync_id="abc")
        local = build_content_state("a.md", "one")
        remote = build_remote_file_state("a.md", "one", "2025-01-15T10:00:00.000Z")
        state.record("a.md", local, remote)
        state_manager.save_state(state)

        loaded = state_manager.load_state("abc")
        assert loaded.local["a.md"] == local
        assert loaded.remote["a.md"] == remote
        assert loaded.updated_at != "1970-01-01T00:00:00.000Z"

    def test_persisted_format_is_camel_case(self, state_manager):
        state_manager.save_state(SyncState(sync_id="abc"))
        data = json.loads((state_manager.state_dir / "abc.json").read_text())
        assert set(data) == {"syncId", "local", "remote", "updatedAt"}

    def test_no_temp_files_left(self, state_manager):
        state_manager.save_state(SyncState(sync_id="abc"))
        assert [p.name for p in state_manager.state_dir.iterdir()] == ["abc.json"]

    def test_forget(self, state_manager):
        state = build_content_state("a.md", "x")
        state_manager.update("abc", lambda s: s.record("a.md", state, state))
        state_manager.update("abc", lambda s: s.forget("a.md"))
        state = state_manager.load_state("abc")
        assert "a.md" not in state.local
        assert "a.md" not in state.remote

    def test_concurrent_updates_are_not_lost(self, state_manager):
        def add(name):
            state = build_content_state(name, name)
            state_manager.update("abc", lambda s: s.record(name, state, state))

        threads = [
            threading.Thread(target=add, args=(f"doc{i}.md",)) for i in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(state_manager.load_state("abc").local) == 10

    def test_delete_state(self, state_manager):
        state_manager.save_state(SyncState(sync_id="abc"))
        assert state_manager.delete_state("abc") is True
        assert state_manager.delete_state("abc") is False
