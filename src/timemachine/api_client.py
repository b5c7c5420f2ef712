"""
HTTP client for the remote history and command service.

All endpoints live under ``<api_url>/api/v1`` and authenticate with a
bearer token.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Connected
from .exceptions import RemoteAPIError, RemoteAuthError, RemoteNotFoundError
from .models import CommandStatus, RemoteCommand, SyncResult

logger = logging.getLogger(__name__)


class RemoteClient:
    """Thin wrapper over ``httpx.Client`` with typed errors."""

    def __init__(
        self,
        connectivity: Connected,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            connectivity: Remote credentials and base URL
            timeout: Request timeout in seconds
            transport: Optional transport (tests pass ``httpx.MockTransport``)
        """
        self.connectivity = connectivity
        self._client = httpx.Client(
            base_url=connectivity.base_url,
            headers={"Authorization": f"Bearer {connectivity.api_key}"},
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"Request to {path} failed: {e}") from e

        if response.is_success:
            return response

        status = response.status_code
        try:
            detail = response.json().get("error", response.text)
        except Exception:
            detail = response.text

        message = f"API error: {status} {detail}".strip()
        if status in (401, 403):
            raise RemoteAuthError(message, status_code=status)
        if status == 404:
            raise RemoteNotFoundError(message, status_code=status)
        raise RemoteAPIError(message, status_code=status)

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteAPIError(f"Invalid JSON from {response.request.url}: {e}") from e
        if not isinstance(data, dict):
            raise RemoteAPIError(f"Unexpected response from {response.request.url}")
        return data

    def sync_history(
        self,
        events: List[Dict[str, Any]],
        blobs: Dict[str, str],
        project_id: Optional[str],
    ) -> SyncResult:
        """
        Upload a batch of events plus base64 compressed blobs.

        Returns:
            The server's sync result
        """
        response = self._request(
            "POST",
            "/history/sync",
            json={"events": events, "blobs": blobs, "projectId": project_id},
        )
        return SyncResult.from_dict(self._json(response))

    def poll_command(self) -> Optional[RemoteCommand]:
        """Fetch the next pending command, if any."""
        data = self._json(self._request("GET", "/commands/poll"))
        command = data.get("command")
        if not command:
            return None
        try:
            return RemoteCommand.from_dict(command)
        except (KeyError, TypeError) as e:
            raise RemoteAPIError(f"Malformed command in poll response: {e}") from e

    def fetch_blob(self, blob_hash: str) -> bytes:
        """
        Download a blob's compressed bytes.

        Raises:
            RemoteNotFoundError: If the remote store has no such blob
        """
        data = self._json(self._request("GET", f"/blobs/{blob_hash}"))
        try:
            return base64.b64decode(data["content"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise RemoteAPIError(f"Malformed blob response for {blob_hash[:12]}: {e}") from e

    def update_command_status(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Report a command's terminal status."""
        body: Dict[str, Any] = {"status": status.value}
        if error_message is not None:
            body["errorMessage"] = error_message
        self._request("POST", f"/commands/{command_id}/status", json=body)

    def get_subscription_status(self) -> Dict[str, Any]:
        """Fetch the account's subscription status."""
        return self._json(self._request("GET", "/subscriptions/status"))

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
