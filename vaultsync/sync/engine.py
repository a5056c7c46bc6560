"""Core sync engine: executes pull and push diffs against a vault."""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from ..api import VaultClient
from ..exceptions import (
    SyncConfigError,
    VaultAuthenticationError,
    VaultConfigError,
    VaultInvalidResponseError,
    VaultNotFoundError,
    VaultPermissionError,
    VaultQuotaError,
)
from ..utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY
from .config import SyncConfig, SyncConfigStore
from .conflict import apply_conflict_resolution
from .diff import (
    SyncDiff,
    SyncDiffEntry,
    compute_pull_diff,
    compute_push_diff,
    merge_bidirectional_diffs,
)
from .ignore import resolve_ignore_patterns
from .operations import SyncOperations
from .progress import ProgressListener, SyncPhase, SyncProgress, SyncProgressTracker
from .scanner import scan_local_files, scan_remote_files
from .state import FileState, SyncState, SyncStateManager, build_content_state

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QUOTA_RE = re.compile(r"quota|storage limit|limit exceeded", re.IGNORECASE)
_PERMISSION_RE = re.compile(
    r"permission|forbidden|unauthorized|access denied", re.IGNORECASE
)


def is_quota_error(error: BaseException) -> bool:
    """Whether an error means the account ran out of storage or plan limits."""
    return isinstance(error, VaultQuotaError) or bool(_QUOTA_RE.search(str(error)))


def is_permission_error(error: BaseException) -> bool:
    """Whether an error is an authorization failure that retrying cannot fix."""
    if isinstance(error, (VaultPermissionError, VaultAuthenticationError)):
        return True
    return bool(_PERMISSION_RE.search(str(error)))


def is_retryable_error(error: BaseException) -> bool:
    """Whether another attempt could succeed where this one failed."""
    if isinstance(
        error, (VaultNotFoundError, VaultConfigError, VaultInvalidResponseError)
    ):
        return False
    return not (is_quota_error(error) or is_permission_error(error))


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` and retry transient failures with exponential backoff.

    The delay doubles after each failed attempt (0.5s, 1s, 2s with the
    defaults). Errors rejected by :func:`is_retryable_error` (missing
    documents, configuration and malformed responses, quota and permission
    failures) are raised on the first attempt.

    The vault client retries network errors and 5xx responses on its own, so
    with its default of two retries a request that keeps failing is sent up
    to ``3 * (max_retries + 1)`` times per item.

    Args:
        fn: Zero-argument callable to invoke
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry in seconds
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        Exception: The last error once all attempts are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if not is_retryable_error(e) or attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            logger.debug(
                f"Attempt {attempt + 1}/{max_retries + 1} failed, "
                f"retrying in {delay:.1f}s: {e}"
            )
            sleep(delay)
    raise AssertionError("unreachable")


@dataclass
class SyncError:
    """A failed item of a sync run."""

    path: str
    error: str


@dataclass
class SyncResult:
    """Aggregate outcome of executing one diff."""

    files_uploaded: int = 0
    files_downloaded: int = 0
    files_deleted: int = 0
    bytes_transferred: int = 0
    errors: list[SyncError] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return self.files_uploaded + self.files_downloaded + self.files_deleted

    def merge(self, other: "SyncResult") -> None:
        self.files_uploaded += other.files_uploaded
        self.files_downloaded += other.files_downloaded
        self.files_deleted += other.files_deleted
        self.bytes_transferred += other.bytes_transferred
        self.errors.extend(other.errors)
        self.conflicts.extend(other.conflicts)


class SyncEngine:
    """Scans, diffs and executes transfers for sync pairs."""

    def __init__(
        self,
        client: VaultClient,
        config_store: Optional[SyncConfigStore] = None,
        state_manager: Optional[SyncStateManager] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        """Initialize sync engine.

        Args:
            client: Vault API client
            config_store: Store used to record lastSyncAt
            state_manager: Baseline state persistence
            max_retries: Retries per transfer for transient errors
            retry_delay: Initial backoff delay in seconds
        """
        self.client = client
        self.state_manager = state_manager or SyncStateManager()
        self.config_store = config_store or SyncConfigStore(
            state_manager=self.state_manager
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep: Callable[[float], None] = time.sleep

    def _retry(self, fn: Callable[[], T]) -> T:
        return retry_with_backoff(fn, self.max_retries, self.retry_delay, self._sleep)

    # =========================
    # Scanning / planning
    # =========================

    def scan_local(
        self, sync_config: SyncConfig, ignore_patterns: Optional[list[str]] = None
    ) -> dict[str, FileState]:
        if ignore_patterns is None:
            ignore_patterns = resolve_ignore_patterns(
                sync_config.ignore, sync_config.local_path
            )
        return scan_local_files(sync_config.local_path, ignore_patterns)

    def scan_remote(
        self,
        sync_config: SyncConfig,
        ignore_patterns: Optional[list[str]] = None,
        last_state: Optional[SyncState] = None,
    ) -> dict[str, FileState]:
        if ignore_patterns is None:
            ignore_patterns = resolve_ignore_patterns(
                sync_config.ignore, sync_config.local_path
            )
        return scan_remote_files(
            self.client, sync_config.vault_id, ignore_patterns, last_state
        )

    def scan(
        self, sync_config: SyncConfig, listener: Optional[ProgressListener] = None
    ) -> tuple[dict[str, FileState], dict[str, FileState], SyncState]:
        """Scan both replicas of a sync pair.

        Returns:
            Tuple of (local_files, remote_files, last_state)
        """
        ignore_patterns = resolve_ignore_patterns(
            sync_config.ignore, sync_config.local_path
        )
        last_state = self.state_manager.load_state(sync_config.id)
        tracker = SyncProgressTracker(listener)
        tracker.emit(SyncProgress(SyncPhase.SCANNING, 0, 0, 0, 0))
        local_files = self.scan_local(sync_config, ignore_patterns)
        remote_files = self.scan_remote(sync_config, ignore_patterns, last_state)
        return local_files, remote_files, last_state

    def compute_diffs(
        self, sync_config: SyncConfig, listener: Optional[ProgressListener] = None
    ) -> tuple[SyncDiff, SyncDiff]:
        """Scan both replicas and compute the push and pull diffs.

        Diffs for directions the sync mode does not allow are empty.

        Returns:
            Tuple of (push_diff, pull_diff)
        """
        local_files, remote_files, last_state = self.scan(sync_config, listener)
        tracker = SyncProgressTracker(listener)
        tracker.emit(SyncProgress(SyncPhase.COMPUTING, 0, 0, 0, 0))

        push_diff = SyncDiff()
        pull_diff = SyncDiff()
        if sync_config.mode.allows_upload:
            push_diff = compute_push_diff(local_files, remote_files, last_state)
        if sync_config.mode.allows_download:
            pull_diff = compute_pull_diff(local_files, remote_files, last_state)
        return push_diff, pull_diff

    def reconcile(
        self, sync_config: SyncConfig, listener: Optional[ProgressListener] = None
    ) -> SyncResult:
        """Run one full reconciliation (push, then pull) for a sync pair.

        In two-way mode, documents changed on both sides are settled with the
        pair's conflict strategy instead of being transferred twice.

        Returns:
            Combined result of both directions
        """
        local_files, remote_files, last_state = self.scan(sync_config, listener)
        tracker = SyncProgressTracker(listener)
        tracker.emit(SyncProgress(SyncPhase.COMPUTING, 0, 0, 0, 0))

        push_diff = SyncDiff()
        pull_diff = SyncDiff()
        conflicts: list[str] = []
        if sync_config.mode.allows_upload:
            push_diff = compute_push_diff(local_files, remote_files, last_state)
        if sync_config.mode.allows_download:
            pull_diff = compute_pull_diff(local_files, remote_files, last_state)
        if sync_config.mode.is_bidirectional:
            push_diff, pull_diff, conflicts = merge_bidirectional_diffs(
                push_diff, pull_diff, local_files, remote_files, last_state
            )

        result = SyncResult()
        if conflicts:
            result.merge(
                self.resolve_conflicts(
                    sync_config, conflicts, local_files, remote_files
                )
            )
        if not push_diff.is_empty:
            result.merge(self.execute_push(sync_config, push_diff, listener))
        if not pull_diff.is_empty:
            result.merge(self.execute_pull(sync_config, pull_diff, listener))
        return result

    def resolve_conflicts(
        self,
        sync_config: SyncConfig,
        paths: list[str],
        local_files: dict[str, FileState],
        remote_files: dict[str, FileState],
    ) -> SyncResult:
        """Apply the pair's conflict strategy to documents changed on both sides."""
        operations = SyncOperations(
            self.client, sync_config.vault_id, sync_config.local_path
        )
        result = SyncResult()
        for doc_path in paths:
            try:
                local_content = operations.read_local(doc_path)
                remote = self._retry(lambda: operations.fetch_remote(doc_path))
                outcome = apply_conflict_resolution(
                    operations,
                    sync_config.on_conflict,
                    doc_path,
                    local_content,
                    local_files[doc_path],
                    remote.content,
                    remote_files[doc_path],
                )
                self.state_manager.update(
                    sync_config.id,
                    lambda s: s.record(doc_path, outcome.local, outcome.remote),
                )
                result.conflicts.append(doc_path)
            except Exception as e:
                logger.warning(f"Failed to resolve conflict for {doc_path}: {e}")
                result.errors.append(SyncError(path=doc_path, error=str(e)))
        return result

    # =========================
    # Execution
    # =========================

    def execute_pull(
        self,
        sync_config: SyncConfig,
        diff: SyncDiff,
        listener: Optional[ProgressListener] = None,
    ) -> SyncResult:
        """Download remote changes and apply remote deletions locally."""
        operations = SyncOperations(
            self.client, sync_config.vault_id, sync_config.local_path
        )

        def transfer(entry: SyncDiffEntry) -> tuple[FileState, FileState]:
            remote = self._retry(lambda: operations.fetch_remote(entry.path))
            operations.download(entry.path, remote)
            return (
                build_content_state(entry.path, remote.content),
                build_content_state(entry.path, remote.content, remote.updated_at),
            )

        def delete(entry: SyncDiffEntry) -> None:
            operations.delete_local(entry.path)

        return self._execute(
            sync_config, diff, diff.downloads, transfer, delete, "downloaded", listener
        )

    def execute_push(
        self,
        sync_config: SyncConfig,
        diff: SyncDiff,
        listener: Optional[ProgressListener] = None,
    ) -> SyncResult:
        """Upload local changes and apply local deletions remotely."""
        operations = SyncOperations(
            self.client, sync_config.vault_id, sync_config.local_path
        )

        def transfer(entry: SyncDiffEntry) -> tuple[FileState, FileState]:
            content = operations.read_local(entry.path)
            self._retry(lambda: operations.upload(entry.path, content))
            state = build_content_state(entry.path, content)
            return state, build_content_state(entry.path, content)

        def delete(entry: SyncDiffEntry) -> None:
            self._retry(lambda: operations.delete_remote(entry.path))

        return self._execute(
            sync_config, diff, diff.uploads, transfer, delete, "uploaded", listener
        )

    def _execute(
        self,
        sync_config: SyncConfig,
        diff: SyncDiff,
        transfers: list[SyncDiffEntry],
        transfer: Callable[[SyncDiffEntry], tuple[FileState, FileState]],
        delete: Callable[[SyncDiffEntry], None],
        counter: str,
        listener: Optional[ProgressListener],
    ) -> SyncResult:
        """Shared executor for pull and push.

        Every successful item is written to the baseline immediately, so a
        crash mid-run leaves completed transfers recorded. A quota error
        stops the remaining queue.

        Args:
            sync_config: Sync pair being executed
            diff: The diff being executed (for totals)
            transfers: Entries to transfer in this direction
            transfer: Performs one transfer, returns (local, remote) baselines
            delete: Performs one delete
            counter: ``"uploaded"`` or ``"downloaded"``
            listener: Optional progress listener

        Returns:
            SyncResult with counts and per-path errors
        """
        result = SyncResult()
        tracker = SyncProgressTracker(listener)
        queue = [*transfers, *diff.deletes]
        total = len(queue)
        sync_id = sync_config.id

        for index, entry in enumerate(queue, start=1):
            tracker.emit(
                SyncProgress(
                    phase=SyncPhase.TRANSFERRING,
                    current=index,
                    total=total,
                    current_file=entry.path,
                    bytes_transferred=result.bytes_transferred,
                    total_bytes=diff.total_bytes,
                )
            )
            is_delete = index > len(transfers)
            try:
                if is_delete:
                    delete(entry)
                    self.state_manager.update(sync_id, lambda s: s.forget(entry.path))
                    result.files_deleted += 1
                    logger.debug(f"Deleted {entry.path} ({entry.reason})")
                else:
                    local_state, remote_state = transfer(entry)
                    self.state_manager.update(
                        sync_id,
                        lambda s: s.record(entry.path, local_state, remote_state),
                    )
                    if counter == "uploaded":
                        result.files_uploaded += 1
                    else:
                        result.files_downloaded += 1
                    result.bytes_transferred += entry.size_bytes
                    logger.debug(f"{counter.capitalize()} {entry.path}: {entry.reason}")
            except Exception as e:
                logger.warning(f"Failed to sync {entry.path}: {e}")
                result.errors.append(SyncError(path=entry.path, error=str(e)))
                if not is_delete and is_quota_error(e):
                    logger.error("Storage quota exceeded, stopping remaining transfers")
                    break

        try:
            self.config_store.update_last_sync(sync_id)
        except SyncConfigError as e:
            logger.debug(f"Not recording last sync time: {e}")

        tracker.emit(
            SyncProgress(
                phase=SyncPhase.COMPLETE,
                current=total,
                total=total,
                bytes_transferred=result.bytes_transferred,
                total_bytes=diff.total_bytes,
            )
        )
        return result
