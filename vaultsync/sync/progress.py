"""Progress notifications for sync runs.

The transfer executor reports progress through a :class:`SyncProgressTracker`.
Listeners are an optional side channel: a missing or failing listener never
affects the outcome of a run.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    SCANNING = "scanning"
    COMPUTING = "computing"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"


@dataclass
class SyncProgress:
    """Snapshot of a running transfer."""

    phase: SyncPhase
    current: int
    total: int
    bytes_transferred: int
    total_bytes: int
    current_file: Optional[str] = None


ProgressListener = Callable[[SyncProgress], None]


class SyncProgressTracker:
    """Forwards progress snapshots to an optional listener."""

    def __init__(self, listener: Optional[ProgressListener] = None):
        self.listener = listener

    def emit(self, progress: SyncProgress) -> None:
        """Deliver a snapshot; listener errors are logged and dropped."""
        if self.listener is None:
            return
        try:
            self.listener(progress)
        except Exception as e:
            logger.debug(f"Progress listener failed: {e}")
