"""Tests for the legacy API and canonical store HTTP clients."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from syncbridge.clients.base import AuthenticationError, ClientError, NotFoundError
from syncbridge.clients.canonical import CanonicalStoreClient
from syncbridge.clients.legacy import LegacyApiClient
from syncbridge.core.config import EndpointConfig
from syncbridge.core.models import CanonicalResource, LegacyRecord

Handler = Callable[[httpx.Request], httpx.Response]


def legacy_client(handler: Handler, **config: str) -> LegacyApiClient:
    return LegacyApiClient(
        EndpointConfig(base_url="http://ucs.test/api", **config),
        transport=httpx.MockTransport(handler),
    )


def canonical_client(handler: Handler) -> CanonicalStoreClient:
    return CanonicalStoreClient(
        EndpointConfig(base_url="http://fhir.test/fhir", token="fhir-token"),
        transport=httpx.MockTransport(handler),
    )


class TestLegacyApiClient:
    """Tests for LegacyApiClient."""

    def test_get_client(self, make_record: Callable[..., LegacyRecord]) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=make_record().to_dict())

        with legacy_client(handler, token="abc") as client:
            record = client.get_client("OSR-1")

        assert record.client_id == "OSR-1"
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/api/clients/OSR-1"
        assert seen[0].headers["Authorization"] == "Bearer abc"

    def test_basic_auth_without_token(self, make_record: Callable[..., LegacyRecord]) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=make_record().to_dict())

        with legacy_client(handler, username="user", password="pass") as client:
            client.get_client("OSR-1")

        assert seen[0].headers["Authorization"].startswith("Basic ")

    def test_create_and_update(self, make_record: Callable[..., LegacyRecord]) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=json.loads(request.content))

        record = make_record()
        with legacy_client(handler) as client:
            created = client.create_client(record)
            updated = client.update_client("OSR-1", record)

        assert (seen[0].method, seen[0].url.path) == ("POST", "/api/clients")
        assert (seen[1].method, seen[1].url.path) == ("PUT", "/api/clients/OSR-1")
        assert json.loads(seen[0].content)["demographics"]["firstName"] == "John"
        assert created.client_id == updated.client_id == "OSR-1"

    def test_get_all_passes_server_version(self) -> None:
        seen: list[httpx.Request] = []
        clients = [
            {"baseEntityId": "OSR-7", "firstName": "Amina", "serverVersion": 12},
            {"baseEntityId": "OSR-8", "firstName": "Juma", "serverVersion": 15},
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"clients": clients, "total": 2})

        with legacy_client(handler) as client:
            result = client.get_all(10)

        assert result == clients
        assert seen[0].url.path == "/api/rest/client/getAll"
        assert parse_qs(urlparse(str(seen[0].url)).query) == {"serverVersion": ["10"]}

    def test_get_all_without_clients(self) -> None:
        with legacy_client(lambda request: httpx.Response(200, json={})) as client:
            assert client.get_all(0) == []

    def test_not_found(self) -> None:
        with legacy_client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(NotFoundError):
                client.get_client("missing")

    @pytest.mark.parametrize("status", [401, 403])
    def test_authentication_error(self, status: int) -> None:
        with legacy_client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(AuthenticationError) as exc_info:
                client.get_client("OSR-1")
        assert exc_info.value.status_code == status

    def test_server_error_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "database down"})

        with legacy_client(handler) as client:
            with pytest.raises(ClientError) as exc_info:
                client.get_client("OSR-1")

        assert exc_info.value.status_code == 500
        assert "database down" in str(exc_info.value)

    def test_health_check(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200 if request.url.path == "/api/health" else 404)

        with legacy_client(handler) as client:
            assert client.health_check()

    def test_health_check_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with legacy_client(handler) as client:
            assert not client.health_check()


class TestCanonicalStoreClient:
    """Tests for CanonicalStoreClient."""

    def test_create_posts_to_type_and_keeps_wrapper(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            body["id"] = "patient-1"
            return httpx.Response(201, json=body)

        resource = CanonicalResource(
            body={"resourceType": "Patient"}, source_system="UCS", original_id="OSR-1"
        )
        with canonical_client(handler) as client:
            stored = client.create(resource)

        assert (seen[0].method, seen[0].url.path) == ("POST", "/fhir/Patient")
        assert seen[0].headers["Content-Type"] == "application/fhir+json"
        assert seen[0].headers["Authorization"] == "Bearer fhir-token"
        assert stored.id == "patient-1"
        assert stored.source_system == "UCS"
        assert stored.original_id == "OSR-1"

    def test_update_requires_id(self) -> None:
        with canonical_client(lambda request: httpx.Response(200)) as client:
            with pytest.raises(ValueError):
                client.update(CanonicalResource(body={"resourceType": "Patient"}))

    def test_update_puts_by_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=json.loads(request.content))

        with canonical_client(handler) as client:
            client.update(CanonicalResource(body={"resourceType": "Patient", "id": "p1"}))

        assert (seen[0].method, seen[0].url.path) == ("PUT", "/fhir/Patient/p1")

    @pytest.mark.parametrize("status", [404, 410])
    def test_get_missing(self, status: int) -> None:
        with canonical_client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(NotFoundError):
                client.get("Patient", "gone")

    def test_search_updated_after_follows_next_links(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "page" not in request.url.params:
                return httpx.Response(
                    200,
                    json={
                        "resourceType": "Bundle",
                        "entry": [{"resource": {"resourceType": "Patient", "id": "p1"}}],
                        "link": [
                            {"relation": "self", "url": str(request.url)},
                            {"relation": "next", "url": "http://fhir.test/fhir/Patient?page=2"},
                        ],
                    },
                )
            return httpx.Response(
                200,
                json={
                    "resourceType": "Bundle",
                    "entry": [{"resource": {"resourceType": "Patient", "id": "p2"}}],
                },
            )

        since = datetime(2024, 1, 1, tzinfo=UTC)
        with canonical_client(handler) as client:
            resources = client.search_updated_after("Patient", since)

        assert [r.id for r in resources] == ["p1", "p2"]
        query = parse_qs(urlparse(str(seen[0].url)).query)
        assert query["_lastUpdated"] == ["gt2024-01-01T00:00:00+00:00"]
        assert query["_sort"] == ["_lastUpdated"]
        assert len(seen) == 2

    def test_search_passes_extra_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"resourceType": "Bundle"})

        with canonical_client(handler) as client:
            resources = client.search_updated_after(
                "Observation", datetime(2024, 1, 1, tzinfo=UTC), {"subject": "Patient/p1"}
            )

        assert resources == []
        assert seen[0].url.path == "/fhir/Observation"
        assert seen[0].url.params["subject"] == "Patient/p1"

    def test_subscription_crud(self) -> None:
        seen: list[tuple[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            if request.method == "DELETE":
                return httpx.Response(204)
            if request.method == "GET":
                return httpx.Response(200, json={"resourceType": "Subscription", "id": "s1"})
            body = json.loads(request.content)
            body.setdefault("id", "s1")
            return httpx.Response(200, json=body)

        with canonical_client(handler) as client:
            created = client.create_subscription({"resourceType": "Subscription"})
            fetched = client.get_subscription("s1")
            client.update_subscription({"resourceType": "Subscription", "id": "s1"})
            client.delete_subscription("s1")

        assert created["id"] == fetched["id"] == "s1"
        assert seen == [
            ("POST", "/fhir/Subscription"),
            ("GET", "/fhir/Subscription/s1"),
            ("PUT", "/fhir/Subscription/s1"),
            ("DELETE", "/fhir/Subscription/s1"),
        ]

    def test_health_check_uses_metadata(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200 if request.url.path == "/fhir/metadata" else 404)

        with canonical_client(handler) as client:
            assert client.health_check()
