"""HTTP client for the legacy client-records API.

This module provides:
- LegacyApiClient: httpx client for /clients CRUD, the getAll change feed
  and health checks
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from syncbridge.clients.http import HttpApiClient
from syncbridge.core.config import EndpointConfig
from syncbridge.core.models import LegacyRecord

logger = logging.getLogger(__name__)


class LegacyApiClient(HttpApiClient):
    """HTTP client for the legacy records API.

    Authenticates with a bearer token when one is configured, otherwise
    with basic credentials.
    """

    service_name = "Legacy API"
    not_found_message = "Client not found"

    def __init__(
        self,
        config: EndpointConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Endpoint settings.
            transport: Optional httpx transport (used for testing).
        """
        auth: tuple[str, str] | None = None
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        elif config.username and config.password:
            auth = (config.username, config.password)

        super().__init__(config, headers, transport=transport, auth=auth)

    def health_check(self) -> bool:
        """Check if the legacy API is reachable.

        Returns:
            True if the health endpoint answers 200.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    def get_client(self, client_id: str) -> LegacyRecord:
        """Fetch a client record.

        Raises:
            NotFoundError: If no record exists for the id.
        """
        response = self._handle_response(self._client.get(f"/clients/{client_id}"))
        return LegacyRecord.from_dict(response.json())

    def create_client(self, record: LegacyRecord) -> LegacyRecord:
        """Create a client record."""
        logger.info("Creating client in legacy system: opensrp_id=%s", record.client_id)
        response = self._handle_response(
            self._client.post("/clients", json=record.to_dict())
        )
        return LegacyRecord.from_dict(response.json())

    def update_client(self, client_id: str, record: LegacyRecord) -> LegacyRecord:
        """Replace a client record."""
        logger.info("Updating client in legacy system: opensrp_id=%s", client_id)
        response = self._handle_response(
            self._client.put(f"/clients/{client_id}", json=record.to_dict())
        )
        return LegacyRecord.from_dict(response.json())


    def get_all(self, server_version: int) -> list[dict[str, Any]]:
        """Fetch client summaries changed after a server version.

        Args:
            server_version: Watermark from the previous run (0 for everything).

        Returns:
            The "clients" entries of the response, each carrying its own
            serverVersion.
        """
        response = self._handle_response(
            self._client.get("/rest/client/getAll", params={"serverVersion": server_version})
        )
        body = response.json()
        clients: list[dict[str, Any]] = body.get("clients") or []
        logger.debug("Fetched %d clients after serverVersion=%d", len(clients), server_version)
        return clients
