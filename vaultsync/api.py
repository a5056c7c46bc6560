"""API client for the remote document vault."""

from __future__ import annotations

import random
import time
from typing import Any
from urllib.parse import quote

import httpx

from .config import config
from .exceptions import (
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

QUOTA_STATUS_CODES = (402, 413, 507)


class VaultClient:
    """Client for listing, reading, writing and deleting vault documents."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
    ):
        """Initialize the vault API client.

        Args:
            api_key: Vault token; falls back to the stored config
            api_url: Optional API URL (uses config if not provided)
            max_retries: Maximum number of retry attempts for transient errors
            retry_delay: Initial delay between retries in seconds
            timeout: Request timeout in seconds
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        if not self.api_key:
            raise VaultConfigError(
                "API key not configured. Run `vaultsync init` or set "
                "VAULTSYNC_API_KEY."
            )

        self._client: httpx.Client | None = None

    def __enter__(self) -> VaultClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _get_client(self) -> httpx.Client:
        """Lazily build the shared httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Backoff delay for the given attempt, doubled each retry.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Spread retries by up to 25% either way
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _error_message(self, response: httpx.Response, default: str) -> str:
        """Extract a server-provided error message if there is one."""
        try:
            if response.content:
                data = response.json()
                if isinstance(data, dict):
                    msg = data.get("message") or data.get("error") or data.get("detail")
                    if msg:
                        return f"{default}: {msg}"
        except ValueError:
            pass
        return default

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Map an HTTP error to a vault exception and decide whether to retry.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        response = e.response
        status_code = response.status_code

        if status_code == 401:
            return (VaultAuthenticationError("Invalid API key or unauthorized"), False)
        elif status_code == 403:
            message = self._error_message(response, "Access forbidden")
            return (VaultPermissionError(message), False)
        elif status_code == 404:
            return (VaultNotFoundError("Resource not found"), False)
        elif status_code in QUOTA_STATUS_CODES:
            message = self._error_message(response, "Storage quota exceeded")
            return (VaultQuotaError(message), False)
        elif status_code == 429:
            error = VaultRateLimitError("Rate limit exceeded - please try again later")
            return (error, attempt < self.max_retries)

        message = self._error_message(
            response, f"API request failed with status {status_code}"
        )
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (VaultAPIError(message), should_retry)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data (empty dict for empty bodies)

        Raises:
            VaultAPIError: If the request fails after all retries
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                if not should_retry:
                    raise error from e
                delay = self._calculate_retry_delay(attempt)
                if isinstance(error, VaultRateLimitError):
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                time.sleep(delay)
                continue
            except httpx.RequestError as e:
                if attempt >= self.max_retries:
                    raise VaultNetworkError(f"Network error: {e}") from e
                time.sleep(self._calculate_retry_delay(attempt))
                continue

            if not response.content:
                return {}
            content_type = response.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                if "text/html" in content_type:
                    raise VaultAuthenticationError(
                        "Invalid API key - server returned HTML instead of JSON"
                    )
                raise VaultInvalidResponseError(
                    f"Unexpected response type: {content_type}"
                )
            try:
                return response.json()
            except ValueError as e:
                raise VaultInvalidResponseError("Invalid JSON response") from e

        raise VaultAPIError("Request failed after all retry attempts")

    @staticmethod
    def _document_endpoint(vault_id: str, path: str) -> str:
        return f"vaults/{quote(vault_id, safe='')}/documents/{quote(path, safe='/')}"

    # =========================
    # Document Operations
    # =========================

    def list_documents(self, vault_id: str) -> list[RemoteDocument]:
        """List all documents in a vault.

        Args:
            vault_id: Remote vault identifier

        Returns:
            List of RemoteDocument entries
        """
        data = self._request("GET", f"vaults/{quote(vault_id, safe='')}/documents")
        if isinstance(data, dict):
            items = data.get("documents") or data.get("data") or []
        else:
            items = data
        return [RemoteDocument.from_dict(item) for item in items]

    def get_document(self, vault_id: str, path: str) -> DocumentContent:
        """Fetch a document's content.

        Args:
            vault_id: Remote vault identifier
            path: Document path relative to the vault root

        Returns:
            DocumentContent with text and server timestamp
        """
        data = self._request("GET", self._document_endpoint(vault_id, path))
        return DocumentContent.from_dict(data)

    def put_document(self, vault_id: str, path: str, content: str) -> None:
        """Create or replace a document.

        Args:
            vault_id: Remote vault identifier
            path: Document path relative to the vault root
            content: Full document text
        """
        self._request(
            "PUT",
            self._document_endpoint(vault_id, path),
            json={"content": content},
        )

    def delete_document(self, vault_id: str, path: str) -> None:
        """Delete a document."""
        self._request("DELETE", self._document_endpoint(vault_id, path))
