"""Tests for the daemon worker."""

import logging
import os
import signal
import threading
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from vaultsync.exceptions import DaemonError
from vaultsync.sync import daemon_worker
from vaultsync.sync.daemon import read_pid, write_pid
from vaultsync.sync.daemon_worker import (
    DaemonWorker,
    _log_thread_exception,
    summarize_result,
)
from vaultsync.sync.engine import SyncResult


@pytest.fixture
def pid_file(tmp_path):
    return tmp_path / "daemon.pid"


@pytest.fixture
def make_worker(vault, config_store, state_manager, pid_file):
    def _make(**kwargs):
        kwargs.setdefault("client_factory", lambda: vault)
        kwargs.setdefault("watcher_factory", Mock())
        kwargs.setdefault("poller_factory", Mock())
        return DaemonWorker(
            config_store=config_store,
            state_manager=state_manager,
            pid_file=pid_file,
            **kwargs,
        )

    return _make


class TestSummarizeResult:
    def test_up_to_date(self):
        assert summarize_result(SyncResult()) == "up to date"

    def test_counts(self):
        result = SyncResult(files_uploaded=2, files_deleted=1)
        assert summarize_result(result) == "2 uploaded, 1 deleted"


class TestStart:
    """Tests for DaemonWorker.start."""

    def test_no_auto_sync_pairs(self, make_worker, make_config):
        make_config(auto_sync=False)
        client_factory = Mock()
        worker = make_worker(client_factory=client_factory)

        assert worker.start() == 0
        client_factory.assert_not_called()

    def test_push_pair_gets_watcher_only(self, make_worker, make_config):
        sync_config = make_config(mode="push", auto_sync=True)
        worker = make_worker()

        assert worker.start() == 1

        managed = worker.managed[0]
        assert managed.sync_id == sync_config.id
        managed.watcher.start.assert_called_once()
        assert managed.poller is None
        worker.poller_factory.assert_not_called()

    def test_sync_pair_gets_poller(self, make_worker, make_config, vault):
        make_config(auto_sync=True, sync_interval="10s")
        worker = make_worker()

        worker.start()

        managed = worker.managed[0]
        managed.poller.start.assert_called_once()
        kwargs = worker.poller_factory.call_args[1]
        assert kwargs["interval"] == 10.0
        assert kwargs["on_local_write"] is managed.watcher.notify_local_write
        assert worker.poller_factory.call_args[0][0] is vault

    def test_default_poll_interval(self, make_worker, make_config):
        make_config(auto_sync=True)
        worker = make_worker()
        worker.start()
        assert worker.poller_factory.call_args[1]["interval"] == 30.0

    def test_pull_only_pair_is_reconciled_but_not_watched(
        self, make_worker, make_config, vault, local_dir
    ):
        make_config(mode="pull", auto_sync=True)
        vault.seed("a.md", "remote")
        worker = make_worker()

        assert worker.start() == 0

        assert (local_dir / "a.md").read_text() == "remote"
        worker.watcher_factory.assert_not_called()

    def test_reconcile_failure_does_not_block_start(self, make_worker, make_config):
        make_config(auto_sync=True)
        client = Mock()
        client.list_documents.side_effect = RuntimeError("offline")
        worker = make_worker(client_factory=lambda: client)

        assert worker.start() == 1

    def test_one_failing_pair_does_not_stop_others(
        self, make_worker, make_config, tmp_path
    ):
        make_config(mode="push", auto_sync=True)
        other = tmp_path / "other"
        other.mkdir()
        worker = make_worker()
        worker.config_store.create_sync_config(
            "vault-2", other, mode="push", auto_sync=True
        )
        worker.watcher_factory.side_effect = [RuntimeError("inotify limit"), Mock()]

        assert worker.start() == 1

    def test_all_pairs_failing_to_start_raises(self, make_worker, make_config):
        make_config(mode="push", auto_sync=True)
        worker = make_worker()
        worker.watcher_factory.side_effect = RuntimeError("inotify limit")

        with pytest.raises(DaemonError, match="No syncs could be started"):
            worker.start()

    def test_reconcile_requires_started_client(self, make_worker, make_config):
        sync_config = make_config(auto_sync=True)
        with pytest.raises(DaemonError):
            make_worker().reconcile(sync_config)


class TestShutdown:
    """Tests for DaemonWorker.shutdown."""

    def test_stops_pollers_before_watchers(self, make_worker, make_config, pid_file):
        make_config(auto_sync=True)
        worker = make_worker()
        worker.start()
        write_pid(os.getpid(), pid_file)
        order = []
        managed = worker.managed[0]
        managed.poller.stop.side_effect = lambda: order.append("poller")
        managed.watcher.stop.side_effect = lambda: order.append("watcher")

        assert worker.shutdown() is True

        assert order == ["poller", "watcher"]
        assert worker.managed == []
        assert read_pid(pid_file) is None

    def test_runs_once(self, make_worker, make_config):
        make_config(auto_sync=True)
        client = Mock()
        client.list_documents.return_value = []
        worker = make_worker(client_factory=lambda: client)
        worker.start()

        assert worker.shutdown() is True
        assert worker.shutdown() is False
        client.close.assert_called_once()

    def test_stop_errors_are_logged(self, make_worker, make_config, caplog):
        make_config(auto_sync=True)
        worker = make_worker()
        worker.start()
        worker.managed[0].poller.stop.side_effect = RuntimeError("stuck")

        worker.shutdown()

        assert "Error stopping poller" in caplog.text
        worker.watcher_factory.return_value.stop.assert_called_once()


class TestRun:
    """Tests for DaemonWorker.run."""

    def test_fatal_start_exits_1(self, make_worker, pid_file):
        worker = make_worker()
        worker.config_store = Mock()
        worker.config_store.load_sync_configs.side_effect = RuntimeError("boom")
        write_pid(os.getpid(), pid_file)

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 1
        assert read_pid(pid_file) is None

    def test_nothing_to_do_exits_0(self, make_worker, pid_file):
        write_pid(os.getpid(), pid_file)
        worker = make_worker()

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 0
        assert read_pid(pid_file) is None

    def test_no_pair_started_exits_1(self, make_worker, make_config, pid_file):
        make_config(mode="push", auto_sync=True)
        write_pid(os.getpid(), pid_file)
        worker = make_worker()
        worker.watcher_factory.side_effect = RuntimeError("inotify limit")

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 1
        assert read_pid(pid_file) is None

    def test_pull_only_pairs_exit_0(self, make_worker, make_config):
        make_config(mode="pull", auto_sync=True)
        worker = make_worker()

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 0

    def test_foreground_run_keeps_background_pid_file(self, make_worker, pid_file):
        write_pid(os.getpid() + 1, pid_file)
        worker = make_worker()

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 0
        assert read_pid(pid_file) == os.getpid() + 1

    def test_waits_for_shutdown_signal(self, make_worker, make_config):
        make_config(auto_sync=True)
        worker = make_worker()
        worker.request_shutdown(signal.SIGTERM, None)

        with patch.object(worker, "install_signal_handlers"):
            assert worker.run() == 0
        assert worker._stopped is True

    def test_installs_handlers(self, make_worker):
        worker = make_worker()
        with patch("vaultsync.sync.daemon_worker.signal.signal") as install:
            worker.install_signal_handlers()
        installed = {c[0][0] for c in install.call_args_list}
        assert installed == {signal.SIGTERM, signal.SIGINT}


class TestThreadExceptionHook:
    def _args(self, exc_type, exc):
        return threading.ExceptHookArgs(
            (exc_type, exc, None, threading.current_thread())
        )

    def test_logs_uncaught_errors(self, caplog):
        with caplog.at_level(logging.ERROR, logger="vaultsync.daemon"):
            _log_thread_exception(self._args(ValueError, ValueError("bad")))
        assert "UNCAUGHT ERROR" in caplog.text

    def test_ignores_system_exit(self, caplog):
        _log_thread_exception(self._args(SystemExit, SystemExit(0)))
        assert caplog.text == ""


class TestMain:
    def test_exit_code_from_worker(self):
        with patch.object(daemon_worker, "run_worker", return_value=0) as run:
            result = CliRunner().invoke(daemon_worker.main, ["--verbose"])
        assert result.exit_code == 0
        run.assert_called_once_with(True)
