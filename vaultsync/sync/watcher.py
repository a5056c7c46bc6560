"""Local file watcher for continuous sync.

Uses watchdog to observe the local directory. Events are debounced per
path, so a burst of writes to one file produces a single reconciliation.
Files written by the sync itself are remembered for a few seconds and their
events are ignored to avoid feedback loops.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..api import VaultClient
from ..exceptions import SyncConfigError, VaultNotFoundError
from ..utils import TRACKED_EXTENSION
from .config import SyncConfig, SyncConfigStore
from .conflict import apply_conflict_resolution, detect_conflict
from .ignore import should_ignore_tree
from .operations import SyncOperations, to_doc_path
from .state import (
    SyncStateManager,
    build_content_state,
    build_file_state,
    build_remote_file_state,
    hash_file_content,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5  # seconds
RECENTLY_WRITTEN_TTL = 5.0  # seconds


class RecentlyWrittenSet:
    """Paths written by the sync, remembered for a short time-to-live.

    Entries are not removed when they expire; an expired entry is simply
    reported as absent.
    """

    def __init__(
        self,
        ttl: float = RECENTLY_WRITTEN_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._written: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, doc_path: str) -> None:
        with self._lock:
            self._written[doc_path] = self._clock()

    def __contains__(self, doc_path: str) -> bool:
        with self._lock:
            written_at = self._written.get(doc_path)
        if written_at is None:
            return False
        return self._clock() - written_at <= self.ttl

    def clear(self) -> None:
        with self._lock:
            self._written.clear()


class Debouncer:
    """Per-key delayed calls that are re-armed by repeated events.

    At most one callback per key runs at a time. :meth:`close` cancels
    pending timers and waits for running callbacks to finish.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._timers: dict[str, threading.Timer] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running = 0
        self._closed = False

    def schedule(self, key: str, fn: Callable[[], None]) -> None:
        """Arm (or re-arm) the timer for ``key``."""
        with self._lock:
            if self._closed:
                return
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self.delay, self._fire, args=(key, fn))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: str, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._closed or self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]
            self._running += 1
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        try:
            with key_lock:
                fn()
        except Exception:
            logger.exception(f"Unhandled error while processing {key}")
        finally:
            with self._lock:
                self._running -= 1
                self._idle.notify_all()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def close(self, timeout: Optional[float] = None) -> None:
        """Cancel pending timers and wait for in-flight callbacks."""
        with self._lock:
            self._closed = True
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._idle.wait_for(lambda: self._running == 0, timeout=timeout)


class _WatchHandler(FileSystemEventHandler):
    """Translates watchdog events into debounced watcher calls."""

    def __init__(self, watcher: "LocalWatcher"):
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue_change(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue_change(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue_delete(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher.queue_delete(os.fsdecode(event.src_path))
        self.watcher.queue_change(os.fsdecode(event.dest_path))


class LocalWatcher:
    """Watches a sync pair's local directory and pushes changes."""

    def __init__(
        self,
        client: VaultClient,
        sync_config: SyncConfig,
        ignore_patterns: list[str],
        state_manager: Optional[SyncStateManager] = None,
        config_store: Optional[SyncConfigStore] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        observer_factory: Callable[[], Any] = Observer,
    ):
        """Initialize the watcher.

        Args:
            client: Vault API client
            sync_config: Sync pair to watch
            ignore_patterns: Patterns from :func:`resolve_ignore_patterns`
            state_manager: Baseline state persistence
            config_store: Store used to record lastSyncAt
            debounce: Quiet period per path before processing, in seconds
            observer_factory: Creates the watchdog observer
        """
        self.client = client
        self.sync_config = sync_config
        self.ignore_patterns = ignore_patterns
        self.state_manager = state_manager or SyncStateManager()
        self.config_store = config_store or SyncConfigStore(
            state_manager=self.state_manager
        )
        self.operations = SyncOperations(
            client, sync_config.vault_id, sync_config.local_path
        )
        self.recently_written = RecentlyWrittenSet()
        self._debouncer = Debouncer(debounce)
        self._observer_factory = observer_factory
        self._observer: Optional[Any] = None
        self._root = Path(sync_config.local_path)

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, f"[sync:{self.sync_config.short_id}] {message}")

    def start(self) -> None:
        """Start observing the local directory."""
        if self._observer is not None:
            return
        self._observer = self._observer_factory()
        self._observer.schedule(_WatchHandler(self), str(self._root), recursive=True)
        self._observer.start()
        self._log("Watching for changes...")

    def stop(self) -> None:
        """Stop watching.

        Pending debounce timers are cancelled, in-flight reconciliations are
        allowed to finish, and the observer thread is joined.
        """
        self._debouncer.close()
        self.recently_written.clear()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self._log("Stopped watching")

    def notify_local_write(self, doc_path: str) -> None:
        """Record a write made by the sync so its event is not pushed back."""
        self.recently_written.add(doc_path)

    # =========================
    # Event intake
    # =========================

    def _doc_path(self, abs_path: str) -> Optional[str]:
        try:
            return to_doc_path(Path(abs_path), self._root)
        except ValueError:
            return None

    def _is_relevant(self, doc_path: str) -> bool:
        if should_ignore_tree(doc_path, self.ignore_patterns):
            return False
        if not doc_path.endswith(TRACKED_EXTENSION):
            return False
        if doc_path in self.recently_written:
            self._log(f"Skipping {doc_path} (recently written by sync)", logging.DEBUG)
            return False
        return True

    def queue_change(self, abs_path: str) -> None:
        self._debouncer.schedule(abs_path, lambda: self.handle_file_change(abs_path))

    def queue_delete(self, abs_path: str) -> None:
        self._debouncer.schedule(abs_path, lambda: self.handle_file_delete(abs_path))

    # =========================
    # Reconciliation
    # =========================

    def handle_file_change(self, abs_path: str) -> None:
        """Reconcile one created or modified local file."""
        doc_path = self._doc_path(abs_path)
        if not doc_path or not self._is_relevant(doc_path):
            return

        try:
            self._reconcile_change(doc_path)
        except FileNotFoundError:
            self._log(f"{doc_path} vanished before sync", logging.DEBUG)
        except Exception as e:
            self._log(f"Failed to sync {doc_path}: {e}", logging.ERROR)

    def _reconcile_change(self, doc_path: str) -> None:
        sync_config = self.sync_config
        content = self.operations.read_local(doc_path)
        local_state = build_file_state(self.operations.local_file(doc_path), doc_path)
        local_hash = hash_file_content(content)
        state = self.state_manager.load_state(sync_config.id)
        last_local = state.local.get(doc_path)
        last_remote = state.remote.get(doc_path)

        if sync_config.mode.is_bidirectional and last_remote is not None:
            try:
                remote = self.operations.fetch_remote(doc_path)
            except VaultNotFoundError:
                remote = None
            except Exception as e:
                self._log(
                    f"Remote check failed for {doc_path}, pushing: {e}", logging.WARNING
                )
                remote = None

            if remote is not None:
                remote_hash = hash_file_content(remote.content)
                if remote_hash != last_remote.hash:
                    remote_state = build_remote_file_state(
                        doc_path, remote.content, remote.updated_at
                    )
                    if detect_conflict(
                        local_state, remote_state, last_local, last_remote
                    ):
                        outcome = apply_conflict_resolution(
                            self.operations,
                            sync_config.on_conflict,
                            doc_path,
                            content,
                            local_state,
                            remote.content,
                            remote_state,
                            on_local_write=self.notify_local_write,
                        )
                        self.state_manager.update(
                            sync_config.id,
                            lambda s: s.record(doc_path, outcome.local, outcome.remote),
                        )
                        self._touch_last_sync()
                        return

        if not sync_config.mode.allows_upload:
            return
        unchanged = last_local is not None and local_hash == last_local.hash
        if unchanged and last_remote is not None:
            self._log(f"Unchanged since last sync: {doc_path}", logging.DEBUG)
            return

        self.operations.upload(doc_path, content)
        self._log(f"Pushed: {doc_path}")
        self.state_manager.update(
            sync_config.id,
            lambda s: s.record(
                doc_path, local_state, build_content_state(doc_path, content)
            ),
        )
        self._touch_last_sync()

    def handle_file_delete(self, abs_path: str) -> None:
        """Propagate one local deletion to the remote vault."""
        doc_path = self._doc_path(abs_path)
        if not doc_path or not self._is_relevant(doc_path):
            return
        if not self.sync_config.mode.allows_remote_delete:
            return
        if os.path.exists(abs_path):
            # Re-created before the debounce fired
            self.handle_file_change(abs_path)
            return

        try:
            try:
                self.operations.delete_remote(doc_path)
                self._log(f"Deleted remote: {doc_path}")
            except VaultNotFoundError:
                self._log(f"Remote already gone: {doc_path}", logging.DEBUG)
            self.state_manager.update(self.sync_config.id, lambda s: s.forget(doc_path))
            self._touch_last_sync()
        except Exception as e:
            self._log(f"Failed to delete remote {doc_path}: {e}", logging.ERROR)

    def _touch_last_sync(self) -> None:
        try:
            self.config_store.update_last_sync(self.sync_config.id)
        except SyncConfigError as e:
            self._log(f"Not recording last sync time: {e}", logging.DEBUG)
