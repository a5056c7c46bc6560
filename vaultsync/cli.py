"""CLI interface for vaultsync."""

import logging
import signal
import threading
from pathlib import Path
from typing import Any, Optional

import click

from .api import VaultClient
from .cli_progress import SyncProgressDisplay
from .config import config
from .exceptions import DaemonError, SyncConfigError, VaultAPIError
from .output import OutputFormatter
from .sync.config import SyncConfig, SyncConfigStore
from .sync.conflict import ConflictResolution, force_resolution
from .sync.daemon import get_daemon_status, start_daemon, stop_daemon
from .sync.daemon_worker import run_worker
from .sync.diff import SyncDiff, compute_pull_diff, compute_push_diff, format_diff
from .sync.engine import SyncEngine, SyncResult
from .sync.ignore import resolve_ignore_patterns
from .sync.modes import ConflictStrategy, SyncMode
from .sync.operations import SyncOperations
from .sync.poller import RemotePoller
from .sync.watcher import LocalWatcher
from .utils import EPOCH_ISO, parse_sync_interval

logger = logging.getLogger(__name__)

MODE_CHOICES = click.Choice([m.value for m in SyncMode])
CONFLICT_CHOICES = click.Choice([s.value for s in ConflictStrategy])


def _find_config(store: SyncConfigStore, sync_id: str) -> Optional[SyncConfig]:
    """Look up a sync config by full id or unique id prefix."""
    found = store.get_sync_config(sync_id)
    if found is not None:
        return found
    matches = [c for c in store.load_sync_configs() if c.id.startswith(sync_id)]
    return matches[0] if len(matches) == 1 else None


def _require_config(ctx: Any, sync_id: str) -> SyncConfig:
    out: OutputFormatter = ctx.obj["out"]
    found = _find_config(SyncConfigStore(), sync_id)
    if found is not None:
        return found
    out.error(f"Sync configuration not found: {sync_id}")
    ctx.exit(1)


def _get_client(ctx: Any) -> VaultClient:
    out: OutputFormatter = ctx.obj["out"]
    try:
        return VaultClient(api_key=ctx.obj.get("api_key"))
    except VaultAPIError as e:
        out.error(str(e))
        ctx.exit(1)
        raise


def _report_result(ctx: Any, label: str, result: SyncResult) -> None:
    out: OutputFormatter = ctx.obj["out"]
    if out.json_output:
        out.output_json(
            {
                "uploaded": result.files_uploaded,
                "downloaded": result.files_downloaded,
                "deleted": result.files_deleted,
                "bytes_transferred": result.bytes_transferred,
                "conflicts": result.conflicts,
                "errors": [{"path": e.path, "error": e.error} for e in result.errors],
            }
        )
    elif result.errors:
        out.error(f"{label} completed with {len(result.errors)} error(s)")
        for error in result.errors:
            out.error(f"  {error.path}: {error.error}")
    else:
        out.success(f"✓ {label} complete")

    if not out.json_output:
        out.print_summary(
            f"{label} Summary",
            [
                ("Uploaded", str(result.files_uploaded)),
                ("Downloaded", str(result.files_downloaded)),
                ("Deleted", str(result.files_deleted)),
                ("Transferred", out.format_size(result.bytes_transferred)),
                ("Conflicts", str(len(result.conflicts))),
            ],
        )
    if result.errors:
        ctx.exit(1)


@click.group()
@click.option("--api-key", "-k", envvar="VAULTSYNC_API_KEY", help="Vault API key")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="vaultsync")
@click.pass_context
def main(
    ctx: Any, api_key: Optional[str], quiet: bool, json: bool, verbose: bool
) -> None:
    """vaultsync - Keep a local Markdown directory in sync with a vault."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("vaultsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("vault_id")
@click.argument("local_path", type=click.Path(file_okay=False, path_type=Path))
@click.option("--mode", type=MODE_CHOICES, default="sync", help="Sync direction")
@click.option(
    "--on-conflict",
    type=CONFLICT_CHOICES,
    default="newer",
    help="Conflict strategy",
)
@click.option("--ignore", multiple=True, help="Glob pattern to ignore (repeatable)")
@click.option("--interval", help="Poll interval for the daemon (e.g. 30s, 5m, 1h)")
@click.option("--auto-sync", is_flag=True, help="Sync continuously in the daemon")
@click.option("--save-key", is_flag=True, help="Store --api-key in the config file")
@click.pass_context
def init(
    ctx: Any,
    vault_id: str,
    local_path: Path,
    mode: str,
    on_conflict: str,
    ignore: tuple[str, ...],
    interval: Optional[str],
    auto_sync: bool,
    save_key: bool,
) -> None:
    """Create a sync configuration between VAULT_ID and LOCAL_PATH."""
    out: OutputFormatter = ctx.obj["out"]

    if interval and parse_sync_interval(interval) is None:
        out.error(f"Invalid interval: {interval} (use e.g. 30s, 5m, 1h)")
        ctx.exit(1)

    if save_key:
        if not ctx.obj.get("api_key"):
            out.error("--save-key needs an API key (--api-key or VAULTSYNC_API_KEY)")
            ctx.exit(1)
        config.save_api_key(ctx.obj["api_key"])
        out.info(f"API key saved to {config.config_file}")

    local_path.mkdir(parents=True, exist_ok=True)
    try:
        sync_config = SyncConfigStore().create_sync_config(
            vault_id,
            local_path,
            mode=mode,
            on_conflict=on_conflict,
            ignore=list(ignore) if ignore else None,
            sync_interval=interval,
            auto_sync=auto_sync,
        )
    except SyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(sync_config.to_dict())
        return
    out.success(f"✓ Sync configuration created: {sync_config.id}")
    out.print_summary(
        "Sync Configuration",
        [
            ("Vault", sync_config.vault_id),
            ("Path", str(sync_config.local_path)),
            ("Mode", sync_config.mode.value),
            ("On conflict", sync_config.on_conflict.value),
            ("Auto sync", "yes" if sync_config.auto_sync else "no"),
        ],
    )


@main.command(name="list")
@click.pass_context
def list_configs(ctx: Any) -> None:
    """List sync configurations."""
    out: OutputFormatter = ctx.obj["out"]
    configs = SyncConfigStore().load_sync_configs()

    if out.json_output:
        out.output_json([c.to_dict() for c in configs])
        return
    if not configs:
        out.info("No sync configurations. Create one with 'vaultsync init'.")
        return

    rows = []
    for c in configs:
        last_sync = "never" if c.last_sync_at == EPOCH_ISO else c.last_sync_at
        rows.append(
            [
                c.short_id,
                c.vault_id,
                str(c.local_path),
                c.mode.value,
                c.on_conflict.value,
                "yes" if c.auto_sync else "no",
                last_sync,
            ]
        )
    out.output_table(
        ["ID", "Vault", "Path", "Mode", "Conflict", "Auto", "Last sync"], rows
    )


@main.command()
@click.argument("sync_id")
@click.pass_context
def remove(ctx: Any, sync_id: str) -> None:
    """Delete a sync configuration and its sync state."""
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    SyncConfigStore().delete_sync_config(sync_config.id)
    out.success(f"✓ Sync configuration deleted: {sync_config.id}")


@main.command()
@click.argument("sync_id")
@click.pass_context
def diff(ctx: Any, sync_id: str) -> None:
    """Show pending push and pull changes for a sync configuration."""
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    with _get_client(ctx) as client:
        push_diff, pull_diff = SyncEngine(client).compute_diffs(sync_config)

    if out.json_output:
        out.output_json(
            {
                "sync_id": sync_config.id,
                "pending_push": push_diff.operation_count,
                "pending_pull": pull_diff.operation_count,
                "last_sync_at": sync_config.last_sync_at,
            }
        )
        return

    out.print(f"Sync:  {sync_config.id}")
    out.print(f"Vault: {sync_config.vault_id}")
    out.print(f"Path:  {sync_config.local_path}")
    out.print(f"Mode:  {sync_config.mode.value}")
    out.print("")
    if sync_config.mode.allows_download:
        out.print(f"Pull ({pull_diff.operation_count} pending):")
        out.print(format_diff(pull_diff))
    if sync_config.mode.allows_upload:
        out.print(f"Push ({push_diff.operation_count} pending):")
        out.print(format_diff(push_diff))
    if sync_config.last_sync_at != EPOCH_ISO:
        out.print(f"\nLast sync: {sync_config.last_sync_at}")


def _run_direction(ctx: Any, sync_id: str, dry_run: bool, direction: str) -> None:
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    label = direction.capitalize()

    with _get_client(ctx) as client:
        engine = SyncEngine(client)
        local_files, remote_files, last_state = engine.scan(sync_config)
        if direction == "pull":
            pending = compute_pull_diff(local_files, remote_files, last_state)
        else:
            pending = compute_push_diff(local_files, remote_files, last_state)

        if pending.is_empty:
            out.success("✓ Everything is up to date")
            return
        if dry_run:
            out.warning("Dry run - no changes will be made:")
            out.print(format_diff(pending))
            return
        if ctx.obj["verbose"]:
            out.print(format_diff(pending))

        if out.quiet or out.json_output:
            display = None
        else:
            display = SyncProgressDisplay(label=f"{label}ing")
        if display is None:
            result = _execute(engine, sync_config, pending, direction, None)
        else:
            with display:
                result = _execute(engine, sync_config, pending, direction, display)

    _report_result(ctx, label, result)


def _execute(
    engine: SyncEngine,
    sync_config: SyncConfig,
    pending: SyncDiff,
    direction: str,
    listener: Optional[SyncProgressDisplay],
) -> SyncResult:
    if direction == "pull":
        return engine.execute_pull(sync_config, pending, listener)
    return engine.execute_push(sync_config, pending, listener)


@main.command()
@click.argument("sync_id")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def pull(ctx: Any, sync_id: str, dry_run: bool) -> None:
    """Pull remote changes into the local directory."""
    _run_direction(ctx, sync_id, dry_run, "pull")


@main.command()
@click.argument("sync_id")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def push(ctx: Any, sync_id: str, dry_run: bool) -> None:
    """Push local changes to the vault."""
    _run_direction(ctx, sync_id, dry_run, "push")


@main.command()
@click.argument("sync_id")
@click.pass_context
def sync(ctx: Any, sync_id: str) -> None:
    """Run one full reconciliation in the configured direction(s)."""
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    with _get_client(ctx) as client:
        engine = SyncEngine(client)
        if out.quiet or out.json_output:
            result = engine.reconcile(sync_config)
        else:
            with SyncProgressDisplay() as display:
                result = engine.reconcile(sync_config, display)
    _report_result(ctx, "Sync", result)


@main.command()
@click.argument("sync_id")
@click.option(
    "--poll-interval",
    default="30s",
    show_default=True,
    help="Remote poll interval (e.g. 30s, 5m)",
)
@click.pass_context
def watch(ctx: Any, sync_id: str, poll_interval: str) -> None:
    """Watch for changes and sync continuously in the foreground."""
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    if sync_config.mode == SyncMode.PULL:
        out.error("Watch is not supported for pull-only configurations")
        ctx.exit(1)
    interval = parse_sync_interval(poll_interval)
    if interval is None:
        out.error(f"Invalid poll interval: {poll_interval}")
        ctx.exit(1)
        return

    client = _get_client(ctx)
    ignore_patterns = resolve_ignore_patterns(
        sync_config.ignore, sync_config.local_path
    )
    watcher = LocalWatcher(client, sync_config, ignore_patterns)
    poller = None
    if sync_config.mode.is_bidirectional:
        poller = RemotePoller(
            client,
            sync_config,
            ignore_patterns,
            interval=interval,
            on_local_write=watcher.notify_local_write,
        )

    out.info(f"Watching sync {sync_config.short_id} ({sync_config.local_path})")
    out.info("Press Ctrl+C to stop.")

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())
    watcher.start()
    if poller is not None:
        poller.start()
    try:
        stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        out.info("Stopping...")
        if poller is not None:
            poller.stop()
        watcher.stop()
        client.close()
    out.info("Sync watch stopped.")


@main.command()
@click.argument("sync_id")
@click.argument("doc_path")
@click.option(
    "--use",
    "use",
    type=click.Choice([r.value for r in ConflictResolution]),
    required=True,
    help="Which version to keep",
)
@click.pass_context
def resolve(ctx: Any, sync_id: str, doc_path: str, use: str) -> None:
    """Manually resolve a conflict by keeping the local or remote version."""
    out: OutputFormatter = ctx.obj["out"]
    sync_config = _require_config(ctx, sync_id)
    with _get_client(ctx) as client:
        operations = SyncOperations(
            client, sync_config.vault_id, sync_config.local_path
        )
        try:
            local_state, remote_state = force_resolution(operations, doc_path, use)
        except FileNotFoundError:
            out.error(f"Local file not found: {operations.local_file(doc_path)}")
            ctx.exit(1)
            return
        except VaultAPIError as e:
            out.error(f"Failed to resolve conflict: {e}")
            ctx.exit(1)
            return

    SyncConfigStore().state_manager.update(
        sync_config.id, lambda s: s.record(doc_path, local_state, remote_state)
    )
    out.success(f"✓ Conflict resolved: {doc_path} - using {use}")


@main.group()
def daemon() -> None:
    """Manage the background sync daemon."""


@daemon.command(name="start")
@click.pass_context
def daemon_start(ctx: Any) -> None:
    """Start the background sync daemon."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        pid = start_daemon()
    except DaemonError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    out.success(f"✓ Daemon started (PID: {pid})")
    out.info(f"Logs: {config.log_file}")


@daemon.command(name="stop")
@click.pass_context
def daemon_stop(ctx: Any) -> None:
    """Stop the background sync daemon."""
    out: OutputFormatter = ctx.obj["out"]
    if stop_daemon():
        out.success("✓ Daemon stopped")
    else:
        out.info("Daemon is not running")


@daemon.command(name="status")
@click.pass_context
def daemon_status(ctx: Any) -> None:
    """Show whether the daemon is running."""
    out: OutputFormatter = ctx.obj["out"]
    status = get_daemon_status()
    if out.json_output:
        out.output_json(status.to_dict())
        return
    if not status.running:
        out.print("Daemon is not running")
        return
    items = [("PID", str(status.pid)), ("Log file", str(status.log_file))]
    if status.uptime is not None:
        hours, rest = divmod(status.uptime, 3600)
        minutes, seconds = divmod(rest, 60)
        items.append(("Uptime", f"{hours}h {minutes}m {seconds}s"))
    if status.started_at:
        items.append(("Started", status.started_at))
    out.print_summary("Daemon running", items)


@daemon.command(name="run")
@click.pass_context
def daemon_run(ctx: Any) -> None:
    """Run the daemon worker in the foreground."""
    ctx.exit(run_worker(verbose=ctx.obj["verbose"]))


if __name__ == "__main__":
    main()
