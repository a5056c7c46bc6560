"""Tests for the vault API client."""

from unittest.mock import patch

import httpx
import pytest

from vaultsync.api import VaultClient
from vaultsync.exceptions import (
    VaultAPIError,
    VaultAuthenticationError,
    VaultConfigError,
    VaultInvalidResponseError,
    VaultNetworkError,
    VaultNotFoundError,
    VaultPermissionError,
    VaultQuotaError,
)
from vaultsync.models import DocumentContent, RemoteDocument

API_URL = "https://vault.test/api/v1"


def make_response(status_code=200, json_data=None, content=b"", headers=None):
    request = httpx.Request("GET", API_URL)
    if json_data is not None:
        return httpx.Response(
            status_code, json=json_data, headers=headers, request=request
        )
    return httpx.Response(
        status_code, content=content, headers=headers, request=request
    )


@pytest.fixture
def client():
    vault_client = VaultClient(api_key="test-key", api_url=API_URL + "/")
    yield vault_client
    vault_client.close()


@pytest.fixture
def no_sleep():
    with patch("vaultsync.api.time.sleep") as sleep:
        yield sleep


class TestClientInit:
    """Tests for VaultClient construction."""

    def test_requires_api_key(self, monkeypatch, tmp_path):
        from vaultsync.config import config

        monkeypatch.delenv("VAULTSYNC_API_KEY", raising=False)
        monkeypatch.setattr(config, "home", tmp_path)
        with pytest.raises(VaultConfigError):
            VaultClient()

    def test_uses_config_key(self, monkeypatch):
        monkeypatch.setenv("VAULTSYNC_API_KEY", "env-key")
        assert VaultClient().api_key == "env-key"

    def test_trailing_slash_stripped(self, client):
        assert client.api_url == API_URL

    def test_auth_header(self, client):
        assert client._get_client().headers["Authorization"] == "Bearer test-key"

    def test_context_manager_closes(self):
        with VaultClient(api_key="k", api_url=API_URL) as vault_client:
            http = vault_client._get_client()
        assert http.is_closed


class TestDocumentOperations:
    """Tests for document endpoints."""

    def test_list_documents(self, client):
        payload = {
            "documents": [
                {
                    "path": "notes/a.md",
                    "sizeBytes": 12,
                    "fileModifiedAt": "2025-01-15T10:00:00.000Z",
                },
                {"path": "b.md", "sizeBytes": 0, "updatedAt": "2025-01-16T00:00:00Z"},
            ]
        }
        with patch.object(
            httpx.Client, "request", return_value=make_response(json_data=payload)
        ) as request:
            docs = client.list_documents("vault 1")

        assert docs[0] == RemoteDocument("notes/a.md", 12, "2025-01-15T10:00:00.000Z")
        assert docs[1].file_modified_at == "2025-01-16T00:00:00Z"
        method, url = request.call_args[0]
        assert method == "GET"
        assert url == f"{API_URL}/vaults/vault%201/documents"

    def test_list_documents_bare_list(self, client):
        payload = [{"path": "a.md", "sizeBytes": 1, "fileModifiedAt": "t"}]
        with patch.object(
            httpx.Client, "request", return_value=make_response(json_data=payload)
        ):
            assert [d.path for d in client.list_documents("v")] == ["a.md"]

    def test_get_document(self, client):
        payload = {
            "content": "# Title\n",
            "document": {"updatedAt": "2025-01-15T10:00:00.000Z"},
        }
        with patch.object(
            httpx.Client, "request", return_value=make_response(json_data=payload)
        ) as request:
            doc = client.get_document("v", "dir/a b.md")

        assert doc == DocumentContent("# Title\n", "2025-01-15T10:00:00.000Z")
        assert request.call_args[0][1] == f"{API_URL}/vaults/v/documents/dir/a%20b.md"

    def test_put_document(self, client):
        with patch.object(
            httpx.Client, "request", return_value=make_response(json_data={})
        ) as request:
            client.put_document("v", "a.md", "hello")

        assert request.call_args[0][0] == "PUT"
        assert request.call_args[1]["json"] == {"content": "hello"}

    def test_delete_document_empty_body(self, client):
        with patch.object(
            httpx.Client, "request", return_value=make_response(204)
        ) as request:
            client.delete_document("v", "a.md")
        assert request.call_args[0][0] == "DELETE"


class TestErrorHandling:
    """Tests for status mapping and retries."""

    @pytest.mark.parametrize(
        "status,error",
        [
            (401, VaultAuthenticationError),
            (403, VaultPermissionError),
            (404, VaultNotFoundError),
            (402, VaultQuotaError),
            (413, VaultQuotaError),
            (507, VaultQuotaError),
            (400, VaultAPIError),
        ],
    )
    def test_status_mapping(self, client, no_sleep, status, error):
        with patch.object(
            httpx.Client, "request", return_value=make_response(status)
        ) as request:
            with pytest.raises(error):
                client.get_document("v", "a.md")
        assert request.call_count == 1
        no_sleep.assert_not_called()

    def test_server_message_included(self, client):
        response = make_response(403, json_data={"message": "read-only vault"})
        with patch.object(httpx.Client, "request", return_value=response):
            with pytest.raises(VaultPermissionError, match="read-only vault"):
                client.put_document("v", "a.md", "x")

    def test_server_error_retried(self, client, no_sleep):
        responses = [make_response(503), make_response(json_data={"content": "ok"})]
        with patch.object(httpx.Client, "request", side_effect=responses):
            assert client.get_document("v", "a.md").content == "ok"
        assert no_sleep.call_count == 1

    def test_server_error_gives_up(self, client, no_sleep):
        with patch.object(
            httpx.Client, "request", return_value=make_response(500)
        ) as request:
            with pytest.raises(VaultAPIError, match="status 500"):
                client.get_document("v", "a.md")
        assert request.call_count == client.max_retries + 1

    def test_rate_limit_honors_retry_after(self, client, no_sleep):
        responses = [
            make_response(429, headers={"Retry-After": "7"}),
            make_response(json_data=[]),
        ]
        with patch.object(httpx.Client, "request", side_effect=responses):
            assert client.list_documents("v") == []
        no_sleep.assert_called_once_with(7.0)

    def test_network_error(self, client, no_sleep):
        with patch.object(
            httpx.Client, "request", side_effect=httpx.ConnectError("refused")
        ):
            with pytest.raises(VaultNetworkError, match="refused"):
                client.list_documents("v")
        assert no_sleep.call_count == client.max_retries

    def test_html_response_means_bad_key(self, client):
        response = make_response(
            content=b"<html>login</html>", headers={"Content-Type": "text/html"}
        )
        with patch.object(httpx.Client, "request", return_value=response):
            with pytest.raises(VaultAuthenticationError):
                client.list_documents("v")

    def test_unexpected_content_type(self, client):
        response = make_response(
            content=b"plain", headers={"Content-Type": "text/plain"}
        )
        with patch.object(httpx.Client, "request", return_value=response):
            with pytest.raises(VaultInvalidResponseError):
                client.list_documents("v")

    def test_retry_delay_grows(self, client):
        delays = [client._calculate_retry_delay(a) for a in range(3)]
        assert 0.75 <= delays[0] <= 1.25
        assert 1.5 <= delays[1] <= 2.5
        assert 3.0 <= delays[2] <= 5.0
