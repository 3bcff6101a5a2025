"""Shared httpx plumbing for the outbound API clients.

This module provides:
- HttpApiClient: httpx.Client ownership, context management and mapping of
  error responses to ClientError subclasses
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

import httpx

from syncbridge.clients.base import (
    AuthenticationError,
    ClientError,
    NotFoundError,
    error_detail,
)

if TYPE_CHECKING:
    from syncbridge.core.config import EndpointConfig


class HttpApiClient:
    """Base class for clients of one HTTP API.

    Subclasses name the service for error messages and may widen the set
    of status codes that mean "not found".
    """

    service_name = "API"
    not_found_message = "Not found"
    not_found_codes: tuple[int, ...] = (404,)

    def __init__(
        self,
        config: EndpointConfig,
        headers: dict[str, str],
        transport: httpx.BaseTransport | None = None,
        auth: tuple[str, str] | None = None,
    ) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=headers,
            auth=auth,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"{self.service_name} rejected credentials", status)
        if status in self.not_found_codes:
            raise NotFoundError(self.not_found_message, status)
        if status >= 400:
            raise ClientError(f"{self.service_name} error: {error_detail(response)}", status)
        return response
