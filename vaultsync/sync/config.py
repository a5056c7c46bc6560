"""Sync configuration persistence.

All configured sync pairs live in one JSON list (``syncs.json`` in the
vaultsync home directory).
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from ..config import config
from ..exceptions import SyncConfigError
from ..utils import EPOCH_ISO, utc_now_iso
from .modes import ConflictStrategy, SyncMode
from .state import SyncStateManager

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_IGNORE = [".git", ".DS_Store", "node_modules"]


@dataclass
class SyncConfig:
    """One configured association between a vault and a local directory."""

    id: str
    vault_id: str
    local_path: Path
    mode: SyncMode = SyncMode.SYNC
    on_conflict: ConflictStrategy = ConflictStrategy.NEWER
    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_CONFIG_IGNORE))
    last_sync_at: str = EPOCH_ISO
    sync_interval: Optional[str] = None
    auto_sync: bool = False

    def __post_init__(self):
        """Normalize field types."""
        if not isinstance(self.local_path, Path):
            self.local_path = Path(self.local_path)
        if not isinstance(self.mode, SyncMode):
            self.mode = SyncMode(self.mode)
        if not isinstance(self.on_conflict, ConflictStrategy):
            self.on_conflict = ConflictStrategy(self.on_conflict)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "vaultId": self.vault_id,
            "localPath": str(self.local_path),
            "mode": self.mode.value,
            "onConflict": self.on_conflict.value,
            "ignore": list(self.ignore),
            "lastSyncAt": self.last_sync_at,
            "autoSync": self.auto_sync,
        }
        if self.sync_interval is not None:
            data["syncInterval"] = self.sync_interval
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """Create a SyncConfig from its persisted camelCase form."""
        return cls(
            id=data["id"],
            vault_id=data["vaultId"],
            local_path=Path(data["localPath"]),
            mode=data.get("mode", SyncMode.SYNC.value),
            on_conflict=data.get("onConflict", ConflictStrategy.NEWER.value),
            ignore=list(data.get("ignore", DEFAULT_CONFIG_IGNORE)),
            last_sync_at=data.get("lastSyncAt", EPOCH_ISO),
            sync_interval=data.get("syncInterval"),
            auto_sync=bool(data.get("autoSync", False)),
        )


class SyncConfigStore:
    """Reads and writes the list of configured sync pairs."""

    _EDITABLE_FIELDS = {"mode", "on_conflict", "ignore", "sync_interval", "auto_sync"}

    def __init__(
        self,
        syncs_file: Optional[Path] = None,
        state_manager: Optional[SyncStateManager] = None,
    ):
        """Initialize the config store.

        Args:
            syncs_file: JSON file holding the config list. Defaults to
                ``<vaultsync home>/syncs.json``
            state_manager: State manager used to remove baselines on delete
        """
        self.syncs_file = Path(syncs_file) if syncs_file else config.syncs_file
        self.state_manager = state_manager or SyncStateManager()
        self._lock = threading.RLock()

    def load_sync_configs(self) -> list[SyncConfig]:
        """Read all sync configurations. Never raises on missing/corrupt data."""
        if not self.syncs_file.exists():
            return []
        try:
            with open(self.syncs_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read sync configs from {self.syncs_file}: {e}")
            return []
        if not isinstance(data, list):
            return []

        configs = []
        for item in data:
            try:
                configs.append(SyncConfig.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid sync config entry: {e}")
        return configs

    def save_sync_configs(self, configs: list[SyncConfig]) -> None:
        """Write all sync configurations, creating the directory if needed."""
        self.syncs_file.parent.mkdir(parents=True, exist_ok=True)
        suffix = f"{os.getpid()}.{threading.get_ident()}.tmp"
        tmp_file = self.syncs_file.with_name(f"{self.syncs_file.name}.{suffix}")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump([c.to_dict() for c in configs], f, indent=2)
            f.write("\n")
        os.replace(tmp_file, self.syncs_file)

    def get_sync_config(self, sync_id: str) -> Optional[SyncConfig]:
        """Find a sync config by its id."""
        return next((c for c in self.load_sync_configs() if c.id == sync_id), None)

    def get_sync_config_by_vault_id(self, vault_id: str) -> Optional[SyncConfig]:
        """Find the first sync config for a vault."""
        return next(
            (c for c in self.load_sync_configs() if c.vault_id == vault_id), None
        )

    def create_sync_config(
        self,
        vault_id: str,
        local_path: Union[str, Path],
        mode: Union[str, SyncMode] = SyncMode.SYNC,
        on_conflict: Union[str, ConflictStrategy] = ConflictStrategy.NEWER,
        ignore: Optional[list[str]] = None,
        sync_interval: Optional[str] = None,
        auto_sync: bool = False,
    ) -> SyncConfig:
        """Create and persist a new sync configuration.

        Args:
            vault_id: Remote vault id
            local_path: Local directory (made absolute)
            mode: Sync direction
            on_conflict: Conflict resolution strategy
            ignore: Glob patterns to ignore (defaults to common VCS/OS entries)
            sync_interval: Poll interval string for auto-sync ("30s", "5m")
            auto_sync: Whether the daemon should keep this pair in sync

        Returns:
            The created config with a generated id

        Raises:
            SyncConfigError: If a config for the same vault and path exists
        """
        local_path = Path(local_path).expanduser().absolute()
        with self._lock:
            configs = self.load_sync_configs()
            for existing in configs:
                if existing.vault_id == vault_id and existing.local_path == local_path:
                    raise SyncConfigError(
                        f"Sync already exists for vault {vault_id} at {local_path} "
                        f"(id: {existing.id})"
                    )

            sync_config = SyncConfig(
                id=str(uuid.uuid4()),
                vault_id=vault_id,
                local_path=local_path,
                mode=mode,
                on_conflict=on_conflict,
                ignore=list(DEFAULT_CONFIG_IGNORE if ignore is None else ignore),
                sync_interval=sync_interval,
                auto_sync=auto_sync,
            )
            configs.append(sync_config)
            self.save_sync_configs(configs)
        logger.info(f"Created sync {sync_config.id} ({vault_id} <-> {local_path})")
        return sync_config

    def update_sync_config(self, sync_id: str, **changes: Any) -> SyncConfig:
        """Apply explicit edits to a sync configuration.

        Raises:
            SyncConfigError: If the id is unknown or a field is not editable
        """
        unknown = set(changes) - self._EDITABLE_FIELDS
        if unknown:
            raise SyncConfigError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            configs = self.load_sync_configs()
            target = next((c for c in configs if c.id == sync_id), None)
            if target is None:
                raise SyncConfigError(f"Sync config not found: {sync_id}")
            for name, value in changes.items():
                setattr(target, name, value)
            target.__post_init__()
            self.save_sync_configs(configs)
        return target

    def delete_sync_config(self, sync_id: str) -> bool:
        """Delete a sync configuration and its baseline state.

        Returns:
            True if the config was found and deleted
        """
        with self._lock:
            configs = self.load_sync_configs()
            remaining = [c for c in configs if c.id != sync_id]
            if len(remaining) == len(configs):
                return False
            self.save_sync_configs(remaining)
        self.state_manager.delete_state(sync_id)
        return True

    def update_last_sync(self, sync_id: str, timestamp: Optional[str] = None) -> None:
        """Update the lastSyncAt timestamp for a sync config.

        Raises:
            SyncConfigError: If the id is unknown
        """
        with self._lock:
            configs = self.load_sync_configs()
            target = next((c for c in configs if c.id == sync_id), None)
            if target is None:
                raise SyncConfigError(f"Sync config not found: {sync_id}")
            target.last_sync_at = timestamp or utc_now_iso()
            self.save_sync_configs(configs)
