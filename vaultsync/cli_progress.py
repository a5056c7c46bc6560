"""CLI progress display for sync operations.

Provides a Rich-based progress bar that works as a listener for the
transfer progress reported by :class:`vaultsync.sync.engine.SyncEngine`.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.progress import SyncPhase, SyncProgress
from .utils import format_size


class SyncProgressDisplay:
    """Rich-based progress display for pull and push runs.

    Use as a context manager and pass the instance itself as the engine's
    progress listener.
    """

    def __init__(self, label: str = "Syncing") -> None:
        self.label = label
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def _format_transfer(self, info: SyncProgress) -> str:
        transferred = format_size(info.bytes_transferred)
        total = format_size(info.total_bytes)
        return f"{info.current}/{info.total} files, {transferred}/{total}"

    def __call__(self, info: SyncProgress) -> None:
        """Handle a progress snapshot from the engine."""
        if self._progress is None or self._task is None:
            return

        if info.phase == SyncPhase.SCANNING:
            self._progress.update(self._task, description="Scanning...")
        elif info.phase == SyncPhase.COMPUTING:
            self._progress.update(self._task, description="Computing changes...")
        elif info.phase == SyncPhase.TRANSFERRING:
            self._progress.update(
                self._task,
                description=f"{self.label}: {info.current_file or ''}",
                total=info.total,
                completed=info.current - 1,
                transfer_info=self._format_transfer(info),
            )
        elif info.phase == SyncPhase.COMPLETE:
            self._progress.update(
                self._task,
                description=f"{self.label} complete",
                total=info.total or 1,
                completed=info.total or 1,
                transfer_info=self._format_transfer(info),
            )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[cyan]{task.fields[transfer_info]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            "Preparing...", total=None, transfer_info="0/0 files"
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
