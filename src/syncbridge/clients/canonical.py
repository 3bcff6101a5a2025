"""HTTP client for the canonical FHIR resource store.

This module provides:
- CanonicalStoreClient: httpx client for resource CRUD, incremental search
  and Subscription management over the FHIR REST API
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from syncbridge.clients.http import HttpApiClient
from syncbridge.core.config import EndpointConfig
from syncbridge.core.models import CanonicalResource, format_timestamp

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

# Safety bound when following Bundle "next" links
MAX_SEARCH_PAGES = 100


class CanonicalStoreClient(HttpApiClient):
    """HTTP client for a FHIR R4 REST server."""

    service_name = "Canonical store"
    not_found_message = "Resource not found"
    not_found_codes = (404, 410)

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
        headers = {"Accept": FHIR_JSON, "Content-Type": FHIR_JSON}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        super().__init__(config, headers, transport=transport)

    def health_check(self) -> bool:
        """Check if the server answers its capability statement."""
        try:
            response = self._client.get("/metadata")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Resources ===

    def create(self, resource: CanonicalResource) -> CanonicalResource:
        """Create a resource and return the server's version of it."""
        response = self._handle_response(
            self._client.post(f"/{resource.resource_type}", json=resource.body)
        )
        stored = CanonicalResource.from_body(response.json())
        logger.info("Created %s/%s", stored.resource_type, stored.id)
        return _carry_wrapper(resource, stored)

    def update(self, resource: CanonicalResource) -> CanonicalResource:
        """Update a resource by id."""
        if not resource.id:
            raise ValueError("Cannot update a resource without an id")
        response = self._handle_response(
            self._client.put(f"/{resource.resource_type}/{resource.id}", json=resource.body)
        )
        return _carry_wrapper(resource, CanonicalResource.from_body(response.json()))

    def get(self, resource_type: str, resource_id: str) -> CanonicalResource:
        """Read a resource."""
        response = self._handle_response(self._client.get(f"/{resource_type}/{resource_id}"))
        return CanonicalResource.from_body(response.json())

    def search_updated_after(
        self,
        resource_type: str,
        since: datetime,
        params: dict[str, str] | None = None,
    ) -> list[CanonicalResource]:
        """Search resources updated after a timestamp, following paging links.

        Args:
            resource_type: FHIR resource type to search.
            since: Exclusive lower bound on meta.lastUpdated.
            params: Extra search parameters (e.g., {"subject": "Patient/1"}).

        Returns:
            Matching resources, in server order.
        """
        query = {"_lastUpdated": f"gt{format_timestamp(since)}", "_sort": "_lastUpdated"}
        if params:
            query.update(params)

        resources: list[CanonicalResource] = []
        response = self._handle_response(self._client.get(f"/{resource_type}", params=query))
        for _ in range(MAX_SEARCH_PAGES):
            bundle = response.json()
            for entry in bundle.get("entry") or []:
                body = entry.get("resource")
                if body:
                    resources.append(CanonicalResource.from_body(body))

            next_url = _next_link(bundle)
            if next_url is None:
                break
            response = self._handle_response(self._client.get(next_url))

        logger.debug(
            "Search %s since %s returned %d resources", resource_type, since, len(resources)
        )
        return resources

    # === Subscriptions ===

    def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        response = self._handle_response(self._client.post("/Subscription", json=subscription))
        result: dict[str, Any] = response.json()
        return result

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        response = self._handle_response(self._client.get(f"/Subscription/{subscription_id}"))
        result: dict[str, Any] = response.json()
        return result

    def update_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        response = self._handle_response(
            self._client.put(f"/Subscription/{subscription['id']}", json=subscription)
        )
        result: dict[str, Any] = response.json()
        return result

    def delete_subscription(self, subscription_id: str) -> None:
        self._handle_response(self._client.delete(f"/Subscription/{subscription_id}"))


def _next_link(bundle: dict[str, Any]) -> str | None:
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return str(link["url"])
    return None


def _carry_wrapper(source: CanonicalResource, stored: CanonicalResource) -> CanonicalResource:
    """Copy wrapper metadata from the submitted resource onto the stored one."""
    stored.source_system = source.source_system
    stored.original_id = source.original_id
    stored.transformed_at = source.transformed_at
    return stored
