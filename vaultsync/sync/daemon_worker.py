"""Daemon worker process.

Runs detached (spawned by :func:`vaultsync.sync.daemon.start_daemon`) and
keeps every auto-sync pair in continuous sync: one startup reconciliation per
pair, then a local watcher and, for bidirectional pairs, a remote poller.
"""

import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import click

from ..api import VaultClient
from ..utils import DEFAULT_POLL_INTERVAL, parse_sync_interval
from .config import SyncConfig, SyncConfigStore
from ..exceptions import DaemonError
from .daemon import release_pid
from .engine import SyncEngine, SyncResult
from .ignore import resolve_ignore_patterns
from .modes import SyncMode
from .poller import RemotePoller
from .state import SyncStateManager
from .watcher import LocalWatcher

logger = logging.getLogger("vaultsync.daemon")

LOG_FORMAT = "[%(asctime)s] %(message)s"


@dataclass
class ManagedSync:
    """Running components of one sync pair."""

    sync_id: str
    watcher: Optional[LocalWatcher] = None
    poller: Optional[RemotePoller] = None

    @property
    def short_id(self) -> str:
        return self.sync_id[:8]


def summarize_result(result: SyncResult) -> str:
    parts = []
    if result.files_uploaded:
        parts.append(f"{result.files_uploaded} uploaded")
    if result.files_downloaded:
        parts.append(f"{result.files_downloaded} downloaded")
    if result.files_deleted:
        parts.append(f"{result.files_deleted} deleted")
    return ", ".join(parts) if parts else "up to date"


class DaemonWorker:
    """Owns the watchers and pollers of every auto-sync pair."""

    def __init__(
        self,
        config_store: Optional[SyncConfigStore] = None,
        state_manager: Optional[SyncStateManager] = None,
        client_factory: Callable[[], VaultClient] = VaultClient,
        pid_file: Optional[Path] = None,
        watcher_factory: Callable[..., Any] = LocalWatcher,
        poller_factory: Callable[..., Any] = RemotePoller,
    ):
        self.state_manager = state_manager or SyncStateManager()
        self.config_store = config_store or SyncConfigStore(
            state_manager=self.state_manager
        )
        self.client_factory = client_factory
        self.pid_file = pid_file
        self.watcher_factory = watcher_factory
        self.poller_factory = poller_factory
        self.managed: list[ManagedSync] = []
        self.client: Optional[VaultClient] = None
        self._shutdown_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._stopped = False

    # =========================
    # Startup
    # =========================

    def start(self) -> int:
        """Reconcile and start every auto-sync pair.

        Returns:
            Number of pairs now running continuously (0 if nothing to do)

        Raises:
            DaemonError: If pairs should have started but none did
            Exception: Anything that prevents the daemon from starting at all
        """
        logger.info("Daemon starting...")
        configs = [c for c in self.config_store.load_sync_configs() if c.auto_sync]
        if not configs:
            logger.info("No auto-sync configurations found, nothing to do")
            return 0

        logger.info(f"Found {len(configs)} auto-sync configuration(s)")
        self.client = self.client_factory()

        for sync_config in configs:
            self.reconcile(sync_config)

        failed = 0
        for sync_config in configs:
            try:
                managed = self.start_sync(sync_config)
            except Exception as e:
                logger.error(f"Failed to start sync {sync_config.short_id}: {e}")
                failed += 1
                continue
            if managed is not None:
                self.managed.append(managed)
                logger.info(
                    f"Started sync: {sync_config.short_id} ({sync_config.local_path})"
                )
        if failed and not self.managed:
            raise DaemonError("No syncs could be started")
        return len(self.managed)

    def reconcile(self, sync_config: SyncConfig) -> Optional[SyncResult]:
        """Catch up on changes made while the daemon was not running.

        Failures are logged and do not stop other pairs from starting.
        """
        if self.client is None:
            raise DaemonError("Cannot reconcile before the daemon has started")
        logger.info(
            f"Reconciling {sync_config.short_id} ({sync_config.mode.value} mode)..."
        )
        engine = SyncEngine(
            self.client,
            config_store=self.config_store,
            state_manager=self.state_manager,
        )
        try:
            result = engine.reconcile(sync_config)
        except Exception as e:
            logger.error(f"Reconciliation failed for {sync_config.short_id}: {e}")
            return None
        for error in result.errors:
            logger.warning(f"  Sync error: {error.path}: {error.error}")
        logger.info(f"Reconciled {sync_config.short_id}: {summarize_result(result)}")
        return result

    def start_sync(self, sync_config: SyncConfig) -> Optional[ManagedSync]:
        """Start the watcher and poller for one pair.

        Pull-only pairs have nothing to watch locally and get neither.
        """
        if sync_config.mode == SyncMode.PULL:
            logger.info(f"Sync {sync_config.short_id} is pull-only, not watching")
            return None

        ignore_patterns = resolve_ignore_patterns(
            sync_config.ignore, sync_config.local_path
        )
        managed = ManagedSync(sync_id=sync_config.id)
        managed.watcher = self.watcher_factory(
            self.client,
            sync_config,
            ignore_patterns,
            state_manager=self.state_manager,
            config_store=self.config_store,
        )
        managed.watcher.start()

        if sync_config.mode.is_bidirectional:
            interval = parse_sync_interval(sync_config.sync_interval)
            managed.poller = self.poller_factory(
                self.client,
                sync_config,
                ignore_patterns,
                interval=interval or DEFAULT_POLL_INTERVAL,
                state_manager=self.state_manager,
                config_store=self.config_store,
                on_local_write=managed.watcher.notify_local_write,
            )
            managed.poller.start()
        return managed

    # =========================
    # Shutdown
    # =========================

    def request_shutdown(self, signum: Optional[int] = None, frame: Any = None) -> None:
        """Signal handler: ask the main loop to shut down."""
        if signum is not None and not self._shutdown_event.is_set():
            logger.info(f"Received {signal.Signals(signum).name}")
        self._shutdown_event.set()

    def shutdown(self) -> bool:
        """Stop all pollers, then all watchers, and release the PID file.

        Runs once; later calls return False.
        """
        with self._shutdown_lock:
            if self._stopped:
                return False
            self._stopped = True

        logger.info("Daemon shutting down...")
        for managed in self.managed:
            if managed.poller is None:
                continue
            try:
                managed.poller.stop()
            except Exception as e:
                logger.error(f"Error stopping poller {managed.short_id}: {e}")

        for managed in self.managed:
            try:
                if managed.watcher is not None:
                    managed.watcher.stop()
                logger.info(f"Stopped sync: {managed.short_id}")
            except Exception as e:
                logger.error(f"Error stopping sync {managed.short_id}: {e}")

        self.managed.clear()
        if self.client is not None:
            self.client.close()
        self._release_pid_file()
        logger.info("Daemon stopped.")
        return True

    # =========================
    # Main loop
    # =========================

    def _release_pid_file(self) -> None:
        if not release_pid(os.getpid(), self.pid_file):
            logger.debug("PID file is not ours, leaving it")

    def install_signal_handlers(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self.request_shutdown)

    def run(self) -> int:
        """Start, block until a termination signal, then shut down.

        Returns:
            Process exit code
        """
        self.install_signal_handlers()
        try:
            running = self.start()
        except DaemonError as e:
            logger.error(f"FATAL: {e}")
            self._release_pid_file()
            return 1
        except Exception as e:
            logger.exception(f"FATAL: {e}")
            self._release_pid_file()
            return 1

        if running == 0:
            self._release_pid_file()
            return 0

        logger.info(f"Daemon running with {running} sync(s)")
        self._shutdown_event.wait()
        self.shutdown()
        return 0


def _log_thread_exception(args: threading.ExceptHookArgs) -> None:
    if args.exc_type is SystemExit:
        return
    thread_name = args.thread.name if args.thread else "unknown"
    logger.error(
        f"UNCAUGHT ERROR in {thread_name}: {args.exc_value}",
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    threading.excepthook = _log_thread_exception


def run_worker(verbose: bool = False) -> int:
    """Configure logging and run a worker until it is told to stop."""
    setup_logging(verbose)
    return DaemonWorker().run()


@click.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Run the vaultsync daemon worker in the foreground."""
    sys.exit(run_worker(verbose))


if __name__ == "__main__":
    main()
