"""Configuration management for vaultsync.

Credentials are resolved from the environment first and then from
``config.json`` in the vaultsync home directory (``~/.vaultsync`` unless
``VAULTSYNC_HOME`` is set).
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.lifestreamvault.com/api/v1"
CONFIG_FILE_NAME = "config.json"


class Config:
    """Resolved vaultsync settings and on-disk locations."""

    def __init__(self, home: Optional[Path] = None):
        """Initialize configuration.

        Args:
            home: Home directory for vaultsync data. Defaults to
                ``$VAULTSYNC_HOME`` or ``~/.vaultsync``.
        """
        if home is None:
            env_home = os.environ.get("VAULTSYNC_HOME")
            home = Path(env_home) if env_home else Path.home() / ".vaultsync"
        self.home = Path(home).expanduser()

    @property
    def config_file(self) -> Path:
        return self.home / CONFIG_FILE_NAME

    @property
    def syncs_file(self) -> Path:
        """JSON list of configured sync pairs."""
        return self.home / "syncs.json"

    @property
    def state_dir(self) -> Path:
        """Directory holding one baseline state file per sync pair."""
        return self.home / "sync-state"

    @property
    def daemon_dir(self) -> Path:
        return self.home / "daemon"

    @property
    def pid_file(self) -> Path:
        return self.daemon_dir / "daemon.pid"

    @property
    def log_file(self) -> Path:
        return self.daemon_dir / "daemon.log"

    def _load_file(self) -> dict:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    @property
    def api_key(self) -> Optional[str]:
        """API key from ``VAULTSYNC_API_KEY`` or the config file."""
        return os.environ.get("VAULTSYNC_API_KEY") or self._load_file().get("apiKey")

    @property
    def api_url(self) -> str:
        """API base URL from ``VAULTSYNC_API_URL``, the config file or default."""
        return (
            os.environ.get("VAULTSYNC_API_URL")
            or self._load_file().get("apiUrl")
            or DEFAULT_API_URL
        )

    def save_api_key(self, api_key: str, api_url: Optional[str] = None) -> None:
        """Persist credentials to the config file.

        Args:
            api_key: API key to store
            api_url: Optional API URL override to store alongside the key
        """
        data = self._load_file()
        data["apiKey"] = api_key
        if api_url:
            data["apiUrl"] = api_url
        self.home.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        try:
            self.config_file.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.config_file)


config = Config()
