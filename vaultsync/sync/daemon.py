"""Background daemon process management.

Starts, stops and inspects the detached worker process that keeps sync pairs
in continuous sync. The worker's process id lives in a PID file; the worker
writes its output to a log file that is rotated on start.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..config import config
from ..exceptions import DaemonError
from ..utils import format_iso_timestamp

logger = logging.getLogger(__name__)

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MiB
MAX_LOG_AGE_DAYS = 7
DAEMON_ENV_FLAG = "VAULTSYNC_DAEMON"
WORKER_MODULE = "vaultsync.sync.daemon_worker"


@dataclass
class DaemonStatus:
    """Snapshot of the daemon's state."""

    running: bool
    pid: Optional[int]
    log_file: Path
    uptime: Optional[int] = None
    """Seconds since the daemon was started"""
    started_at: Optional[str] = None
    """ISO 8601 start time"""

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "pid": self.pid,
            "log_file": str(self.log_file),
            "uptime": self.uptime,
            "started_at": self.started_at,
        }


def read_pid(pid_file: Optional[Path] = None) -> Optional[int]:
    """Read the recorded daemon PID.

    Returns:
        The PID, or None if there is no readable PID file
    """
    pid_file = pid_file or config.pid_file
    try:
        return int(pid_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def write_pid(pid: int, pid_file: Optional[Path] = None) -> None:
    pid_file = pid_file or config.pid_file
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(f"{pid}\n", encoding="utf-8")


def remove_pid(pid_file: Optional[Path] = None) -> None:
    pid_file = pid_file or config.pid_file
    pid_file.unlink(missing_ok=True)


def release_pid(pid: int, pid_file: Optional[Path] = None) -> bool:
    """Remove the PID file only if it records ``pid``.

    A foreground worker must not delete the file of a background daemon.

    Returns:
        True if the file was removed
    """
    if read_pid(pid_file) != pid:
        return False
    remove_pid(pid_file)
    return True


def is_process_running(pid: int) -> bool:
    """Check whether a process exists without signalling it."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


def get_daemon_status(
    pid_file: Optional[Path] = None, log_file: Optional[Path] = None
) -> DaemonStatus:
    """Report whether the daemon is running.

    A PID file that points at a dead process is removed.
    """
    pid_file = pid_file or config.pid_file
    log_file = log_file or config.log_file
    pid = read_pid(pid_file)
    running = pid is not None and is_process_running(pid)

    if pid is not None and not running:
        logger.debug(f"Removing stale PID file for {pid}")
        remove_pid(pid_file)

    if not running:
        return DaemonStatus(running=False, pid=None, log_file=log_file)

    uptime = None
    started_at = None
    try:
        stat = pid_file.stat()
        created = getattr(stat, "st_birthtime", stat.st_mtime)
        started = datetime.fromtimestamp(created, tz=timezone.utc)
        started_at = format_iso_timestamp(started)
        uptime = max(0, int(time.time() - created))
    except OSError:
        pass

    return DaemonStatus(
        running=True, pid=pid, log_file=log_file, uptime=uptime, started_at=started_at
    )


def rotate_log_if_needed(log_file: Optional[Path] = None) -> Optional[Path]:
    """Rotate the daemon log when it grows past the size limit.

    Rotated copies older than the age limit are deleted. Rotation problems
    are logged and otherwise ignored.

    Returns:
        Path of the rotated copy, or None if no rotation happened
    """
    log_file = log_file or config.log_file
    rotated = None
    try:
        if log_file.exists() and log_file.stat().st_size > MAX_LOG_SIZE:
            stamp = int(time.time() * 1000)
            rotated = log_file.with_name(f"{log_file.name}.{stamp}.old")
            log_file.rename(rotated)
            logger.info(f"Rotated daemon log to {rotated.name}")

        cutoff = time.time() - MAX_LOG_AGE_DAYS * 24 * 60 * 60
        for old in log_file.parent.glob(f"{log_file.name}.*.old"):
            if old.stat().st_mtime < cutoff:
                old.unlink()
                logger.debug(f"Removed old daemon log {old.name}")
    except OSError as e:
        logger.warning(f"Log rotation failed: {e}")
    return rotated


def start_daemon(
    pid_file: Optional[Path] = None, log_file: Optional[Path] = None
) -> int:
    """Launch the worker as a detached background process.

    Returns:
        PID of the new process

    Raises:
        DaemonError: If the daemon is already running or cannot be spawned
    """
    pid_file = pid_file or config.pid_file
    log_file = log_file or config.log_file
    status = get_daemon_status(pid_file, log_file)
    if status.running:
        raise DaemonError(f"Daemon is already running (PID: {status.pid})")

    log_file.parent.mkdir(parents=True, exist_ok=True)
    rotate_log_if_needed(log_file)

    env = {**os.environ, DAEMON_ENV_FLAG: "1"}
    with open(log_file, "ab") as log_handle:
        try:
            process = subprocess.Popen(
                [sys.executable, "-m", WORKER_MODULE],
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=log_handle,
                env=env,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            raise DaemonError(f"Failed to spawn daemon process: {e}") from e

    write_pid(process.pid, pid_file)
    logger.info(f"Daemon started (PID: {process.pid})")
    return process.pid


def stop_daemon(pid_file: Optional[Path] = None) -> bool:
    """Send SIGTERM to the running daemon.

    The PID file is removed in every case.

    Returns:
        True if a running daemon was signalled
    """
    pid_file = pid_file or config.pid_file
    pid = read_pid(pid_file)
    try:
        if pid is None or not is_process_running(pid):
            return False
        os.kill(pid, signal.SIGTERM)
        logger.info(f"Sent SIGTERM to daemon (PID: {pid})")
        return True
    except OSError as e:
        logger.warning(f"Could not stop daemon (PID: {pid}): {e}")
        return False
    finally:
        remove_pid(pid_file)
