"""Remote poller: pulls remote changes into the local directory on a timer."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..api import VaultClient
from ..exceptions import SyncConfigError
from ..models import RemoteDocument
from ..utils import DEFAULT_POLL_INTERVAL, TRACKED_EXTENSION
from .config import SyncConfig, SyncConfigStore
from .conflict import apply_conflict_resolution, detect_conflict
from .ignore import should_ignore_tree
from .operations import SyncOperations
from .state import (
    FileState,
    SyncState,
    SyncStateManager,
    build_content_state,
    build_file_state,
    build_remote_file_state,
    hash_file_content,
)

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    """Summary of one poll tick."""

    downloaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return len(self.downloaded) + len(self.deleted) + len(self.conflicts)


class RemotePoller:
    """Periodically lists the remote vault and applies remote-side changes.

    Ticks run at a fixed interval. A tick that would start while the previous
    one is still running is skipped.
    """

    def __init__(
        self,
        client: VaultClient,
        sync_config: SyncConfig,
        ignore_patterns: list[str],
        interval: float = DEFAULT_POLL_INTERVAL,
        state_manager: Optional[SyncStateManager] = None,
        config_store: Optional[SyncConfigStore] = None,
        on_local_write: Optional[Callable[[str], None]] = None,
    ):
        """Initialize the poller.

        Args:
            client: Vault API client
            sync_config: Sync pair to poll
            ignore_patterns: Patterns from :func:`resolve_ignore_patterns`
            interval: Seconds between ticks
            state_manager: Baseline state persistence
            config_store: Store used to record lastSyncAt
            on_local_write: Called with a document path before the poller
                writes or deletes that local file
        """
        self.client = client
        self.sync_config = sync_config
        self.ignore_patterns = ignore_patterns
        self.interval = interval
        self.state_manager = state_manager or SyncStateManager()
        self.config_store = config_store or SyncConfigStore(
            state_manager=self.state_manager
        )
        self.on_local_write = on_local_write
        self.operations = SyncOperations(
            client, sync_config.vault_id, sync_config.local_path
        )
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, f"[poll:{self.sync_config.short_id}] {message}")

    def _notify(self, doc_path: str) -> None:
        if self.on_local_write is not None:
            self.on_local_write(doc_path)

    def _is_tracked(self, doc_path: str) -> bool:
        if not doc_path.endswith(TRACKED_EXTENSION):
            return False
        return not should_ignore_tree(doc_path, self.ignore_patterns)

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        """Start polling in a background thread. The first tick runs at once."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"vaultsync-poll-{self.sync_config.short_id}",
            daemon=True,
        )
        self._thread.start()
        self._log(f"Polling every {self.interval:g}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and wait for an in-flight tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        self.poll()
        while not self._stop_event.wait(self.interval):
            self.poll()

    # =========================
    # Tick
    # =========================

    def poll(self) -> Optional[PollResult]:
        """Run one poll tick.

        Returns:
            PollResult, or None if a tick was already running
        """
        if not self._tick_lock.acquire(blocking=False):
            self._log("Previous poll still running, skipping tick", logging.DEBUG)
            return None
        try:
            return self._poll_once()
        except Exception as e:
            self._log(f"Poll failed: {e}", logging.ERROR)
            return PollResult(errors=[str(e)])
        finally:
            self._tick_lock.release()

    def _poll_once(self) -> PollResult:
        sync_id = self.sync_config.id
        result = PollResult()
        state = self.state_manager.load_state(sync_id)
        records: dict[str, tuple[FileState, FileState]] = {}
        refreshed: dict[str, FileState] = {}
        forgotten: list[str] = []

        documents = self.client.list_documents(self.sync_config.vault_id)
        remote_paths = set()

        for doc in documents:
            path = doc.path
            if not self._is_tracked(path):
                continue
            remote_paths.add(path)

            last_remote = state.remote.get(path)
            if last_remote is not None and doc.file_modified_at == last_remote.mtime:
                continue

            try:
                outcome = self._apply_remote(doc, state, result)
            except Exception as e:
                self._log(f"Failed to pull {path}: {e}", logging.ERROR)
                result.errors.append(path)
                continue
            if isinstance(outcome, FileState):
                refreshed[path] = outcome
            elif outcome is not None:
                records[path] = outcome

        for path in list(state.remote):
            if path in remote_paths or not self._is_tracked(path):
                continue
            try:
                local_file = self.operations.local_file(path)
                if local_file.exists():
                    self._notify(path)
                    self.operations.delete_local(path)
                    self._log(f"Deleted locally (removed from remote): {path}")
                forgotten.append(path)
                result.deleted.append(path)
            except OSError as e:
                self._log(f"Failed to delete {path}: {e}", logging.ERROR)
                result.errors.append(path)

        if records or refreshed or forgotten:

            def mutate(current: SyncState) -> None:
                for path, remote_state in refreshed.items():
                    current.remote[path] = remote_state
                for path, (local_state, remote_state) in records.items():
                    current.record(path, local_state, remote_state)
                for path in forgotten:
                    current.forget(path)

            self.state_manager.update(sync_id, mutate)

        if result.changes:
            self._log(f"Applied {result.changes} remote change(s)")
            try:
                self.config_store.update_last_sync(sync_id)
            except SyncConfigError as e:
                self._log(f"Not recording last sync time: {e}", logging.DEBUG)
        return result

    def _apply_remote(
        self, doc: RemoteDocument, state: SyncState, result: PollResult
    ):
        """Bring one changed remote document into the local directory.

        Returns:
            A refreshed remote FileState when only metadata changed, a
            (local, remote) baseline pair after a content change, or None
        """
        path = doc.path
        remote = self.operations.fetch_remote(path)
        remote_state = build_remote_file_state(
            path, remote.content, doc.file_modified_at or remote.updated_at
        )
        last_local = state.local.get(path)
        last_remote = state.remote.get(path)

        if last_remote is not None and remote_state.hash == last_remote.hash:
            return remote_state

        local_file = self.operations.local_file(path)
        if local_file.exists():
            local_content = self.operations.read_local(path)
            local_state = build_file_state(local_file, path)
            if hash_file_content(local_content) == remote_state.hash:
                return local_state, remote_state

            if detect_conflict(local_state, remote_state, last_local, last_remote):
                outcome = apply_conflict_resolution(
                    self.operations,
                    self.sync_config.on_conflict,
                    path,
                    local_content,
                    local_state,
                    remote.content,
                    remote_state,
                    on_local_write=self.on_local_write,
                )
                result.conflicts.append(path)
                return outcome.local, outcome.remote

        self._notify(path)
        self.operations.write_local(path, remote.content)
        self._log(f"Pulled: {path}")
        result.downloaded.append(path)
        return build_content_state(path, remote.content), remote_state
