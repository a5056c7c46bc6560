"""Tests for CLI output helpers and the progress display."""

import json

from vaultsync.cli_progress import SyncProgressDisplay
from vaultsync.output import OutputFormatter
from vaultsync.sync.progress import SyncPhase, SyncProgress, SyncProgressTracker


class TestOutputFormatter:
    """Tests for OutputFormatter."""

    def test_json_output(self, capsys):
        OutputFormatter(json_output=True).output_json({"a": 1})
        assert json.loads(capsys.readouterr().out) == {"a": 1}

    def test_quiet_suppresses_info(self, capsys):
        out = OutputFormatter(quiet=True)
        out.info("hello")
        out.success("done")
        assert capsys.readouterr().out == ""

    def test_json_mode_suppresses_text(self, capsys):
        out = OutputFormatter(json_output=True)
        out.print("plain")
        out.warning("careful")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_errors_always_shown(self, capsys):
        OutputFormatter(json_output=True, quiet=True).error("broken")
        assert "broken" in capsys.readouterr().err

    def test_summary_as_json(self, capsys):
        OutputFormatter(json_output=True).print_summary("T", [("Uploaded", "2")])
        assert json.loads(capsys.readouterr().out) == {"Uploaded": "2"}

    def test_format_size(self):
        assert OutputFormatter.format_size(0) == "0 B"


def snapshot(phase, current=0, total=0, current_file=None):
    return SyncProgress(phase, current, total, 10, 20, current_file)


class TestSyncProgressDisplay:
    """Tests for SyncProgressDisplay."""

    def test_ignores_events_outside_context(self):
        SyncProgressDisplay()(snapshot(SyncPhase.SCANNING))

    def test_tracks_transfer(self):
        display = SyncProgressDisplay(label="Pulling")
        with display:
            display(snapshot(SyncPhase.TRANSFERRING, 2, 4, "a.md"))
            task = display._progress.tasks[0]
            assert task.description == "Pulling: a.md"
            assert task.total == 4
            assert task.completed == 1
            assert task.fields["transfer_info"].startswith("2/4 files")

            display(snapshot(SyncPhase.COMPLETE, 4, 4))
            assert task.completed == 4
        assert display._progress is None


class TestSyncProgressTracker:
    def test_listener_errors_are_swallowed(self):
        def broken(progress):
            raise RuntimeError("display gone")

        SyncProgressTracker(broken).emit(snapshot(SyncPhase.SCANNING))

    def test_without_listener(self):
        SyncProgressTracker().emit(snapshot(SyncPhase.COMPLETE))
