"""vaultsync - keep a local directory of Markdown documents in sync with a vault."""

from .api import VaultClient
from .exceptions import (
    DaemonError,
    SyncConfigError,
    VaultAPIError,
    VaultAuthenticationError,
    VaultConfigError,
    VaultInvalidResponseError,
    VaultNetworkError,
    VaultNotFoundError,
    VaultPermissionError,
    VaultQuotaError,
    VaultRateLimitError,
)
from .models import DocumentContent, RemoteDocument

__version__ = "0.1.0"

__all__ = [
    "VaultClient",
    "DocumentContent",
    "RemoteDocument",
    "DaemonError",
    "SyncConfigError",
    "VaultAPIError",
    "VaultAuthenticationError",
    "VaultConfigError",
    "VaultInvalidResponseError",
    "VaultNetworkError",
    "VaultNotFoundError",
    "VaultPermissionError",
    "VaultQuotaError",
    "VaultRateLimitError",
]
