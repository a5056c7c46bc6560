"""Exceptions raised by vaultsync."""


class VaultAPIError(Exception):
    """Base exception for all remote vault API errors."""


class VaultConfigError(VaultAPIError):
    """Raised when the client is missing configuration (e.g. no API key)."""


class VaultAuthenticationError(VaultAPIError):
    """Raised when the API key is invalid or the request is unauthorized."""


class VaultPermissionError(VaultAPIError):
    """Raised when access to a vault or document is forbidden."""


class VaultNotFoundError(VaultAPIError):
    """Raised when a vault or document does not exist."""


class VaultQuotaError(VaultAPIError):
    """Raised when the account's storage quota or plan limit is exceeded."""


class VaultRateLimitError(VaultAPIError):
    """Raised when the server rejects a request because of rate limiting."""


class VaultNetworkError(VaultAPIError):
    """Raised on transport level failures (DNS, connection reset, timeout)."""


class VaultInvalidResponseError(VaultAPIError):
    """Raised when the server returns a response that cannot be parsed."""


class SyncConfigError(Exception):
    """Raised for invalid sync configuration operations."""


class DaemonError(Exception):
    """Raised when the background daemon cannot be started."""
