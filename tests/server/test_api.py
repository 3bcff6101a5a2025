"""Tests for the webhook, health, audit and sync API routes."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, PropertyMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from syncbridge.bridge import SyncBridge
from syncbridge.clients.transform import OPENSRP_ID_SYSTEM
from syncbridge.core.config import BridgeConfig, EndpointConfig, ResilienceSettings
from syncbridge.resilience.retry import RetriesExhaustedError
from syncbridge.server.app import create_app, setup_logging
from syncbridge.sync.bulk import BulkSyncService


class Upstreams:
    """Records legacy writes and serves the getAll feed.

    The canonical store accepts creates and can be switched off.
    """

    def __init__(self) -> None:
        self.legacy_writes: list[dict[str, Any]] = []
        self.legacy_clients: list[dict[str, Any]] = []
        self.get_all_versions: list[int] = []
        self.legacy_down = False
        self.canonical_down = False
        self.canonical_creates: list[dict[str, Any]] = []

    def legacy(self, request: httpx.Request) -> httpx.Response:
        if self.legacy_down:
            return httpx.Response(500, json={"message": "database down"})
        if request.url.path == "/api/rest/client/getAll":
            since = int(request.url.params["serverVersion"])
            self.get_all_versions.append(since)
            changed = [c for c in self.legacy_clients if c["serverVersion"] > since]
            return httpx.Response(200, json={"clients": changed})
        if request.method == "GET":
            return httpx.Response(404)
        body = json.loads(request.content)
        self.legacy_writes.append(body)
        return httpx.Response(201, json=body)

    def canonical(self, request: httpx.Request) -> httpx.Response:
        if self.canonical_down:
            return httpx.Response(503, json={"message": "maintenance"})
        if request.method == "POST" and request.url.path == "/fhir/Patient":
            body = json.loads(request.content)
            self.canonical_creates.append(body)
            body["id"] = f"patient-{len(self.canonical_creates)}"
            body["meta"] = {"versionId": "1", "lastUpdated": "2024-03-01T09:00:00+00:00"}
            return httpx.Response(201, json=body)
        return httpx.Response(404, json={"message": "not found"})


PATIENT = {
    "resourceType": "Patient",
    "id": "patient-5",
    "meta": {"lastUpdated": "2024-03-01T08:00:00+00:00"},
    "identifier": [{"system": OPENSRP_ID_SYSTEM, "value": "OSR-5"}],
    "name": [{"family": "Mwangi", "given": ["Amina"]}],
    "gender": "female",
}


@pytest.fixture
def upstreams() -> Upstreams:
    return Upstreams()


@pytest.fixture
def bridge(upstreams: Upstreams) -> Generator[SyncBridge, None, None]:
    config = BridgeConfig(
        legacy=EndpointConfig("http://ucs.test/api"),
        canonical=EndpointConfig("http://fhir.test/fhir"),
        resilience=ResilienceSettings(max_attempts=1, failure_threshold=1),
    )
    bridge = SyncBridge.from_config(
        config,
        legacy_transport=httpx.MockTransport(upstreams.legacy),
        canonical_transport=httpx.MockTransport(upstreams.canonical),
    )
    bridge.orchestrator.initialize_reverse_sync()
    yield bridge
    bridge.stop(timeout=5)


@pytest.fixture
def client(bridge: SyncBridge) -> Generator[TestClient, None, None]:
    with TestClient(create_app(bridge, manage_lifecycle=False)) as test_client:
        yield test_client


class TestWebhookApi:
    """Tests for /fhir/webhook routes."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/fhir/webhook/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "message": "Webhook endpoint is healthy"}

    def test_bundle_notification_reaches_legacy(
        self, client: TestClient, bridge: SyncBridge, upstreams: Upstreams
    ) -> None:
        bundle = {"resourceType": "Bundle", "entry": [{"resource": PATIENT}]}

        response = client.post("/fhir/webhook/notification", json=bundle)

        assert response.status_code == 200
        assert response.json() == {
            "message": "Notification processed successfully",
            "processed": 1,
        }
        bridge.orchestrator.shutdown(timeout=5)
        [written] = upstreams.legacy_writes
        assert written["identifiers"]["opensrp_id"] == "OSR-5"
        assert written["demographics"]["firstName"] == "Amina"

    def test_resource_notification(self, client: TestClient, bridge: SyncBridge) -> None:
        response = client.post("/fhir/webhook/resource/Patient", json=PATIENT)

        assert response.status_code == 200
        assert response.json()["message"] == "Resource notification processed successfully"
        assert response.json()["processed"] == 1

    def test_resource_type_mismatch(self, client: TestClient) -> None:
        response = client.post("/fhir/webhook/resource/Observation", json=PATIENT)

        assert response.status_code == 400
        assert response.json()["detail"] == (
            "Resource type mismatch: expected Observation, got Patient"
        )

    def test_detector_error_is_500(self, bridge: SyncBridge) -> None:
        broken = MagicMock()
        broken.config = bridge.config
        broken.detector.handle_webhook.side_effect = RuntimeError("listener registry broken")
        with TestClient(create_app(broken, manage_lifecycle=False)) as client:
            response = client.post("/fhir/webhook/notification", json={"resourceType": "Bundle"})

        assert response.status_code == 500
        assert response.json()["detail"] == (
            "Error processing notification: listener registry broken"
        )


class TestHealthApi:
    """Tests for /health."""

    def test_ok(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert [b["name"] for b in body["circuit_breakers"]] == ["UCS", "FHIR"]
        assert {b["state"] for b in body["circuit_breakers"]} == {"CLOSED"}
        assert body["queue"] == {"primary": 0, "retry": 0, "dead_letter": 0}
        assert body["in_flight_ingestions"] == 0
        assert body["polling_enabled"] is False
        assert body["audit_sequence"] == 0

    def test_degraded_when_breaker_open(
        self, client: TestClient, bridge: SyncBridge, upstreams: Upstreams
    ) -> None:
        upstreams.canonical_down = True
        with pytest.raises(RetriesExhaustedError):
            bridge.canonical_client.get("Patient", "p1")

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        fhir = next(b for b in body["circuit_breakers"] if b["name"] == "FHIR")
        assert fhir["state"] == "OPEN"
        assert fhir["consecutive_failures"] == 0


class TestAuditApi:
    """Tests for /audit/verify."""

    def test_empty_chain(self, client: TestClient) -> None:
        response = client.get("/audit/verify")

        assert response.status_code == 200
        assert response.json() == {"start": 1, "end": 0, "valid": True}

    def test_verify_whole_chain(self, client: TestClient, bridge: SyncBridge) -> None:
        for n in range(3):
            bridge.audit_chain.record("DATA_ACCESS", resource_id=f"p{n}")

        response = client.get("/audit/verify")

        assert response.json() == {"start": 1, "end": 3, "valid": True}

    def test_range_beyond_chain_is_invalid(self, client: TestClient, bridge: SyncBridge) -> None:
        bridge.audit_chain.record("DATA_ACCESS", resource_id="p1")

        response = client.get("/audit/verify", params={"start": 1, "end": 5})

        assert response.status_code == 200
        assert response.json()["valid"] is False

    def test_start_after_end(self, client: TestClient, bridge: SyncBridge) -> None:
        bridge.audit_chain.record("DATA_ACCESS", resource_id="p1")

        response = client.get("/audit/verify", params={"start": 3, "end": 2})

        assert response.status_code == 400

    def test_start_must_be_positive(self, client: TestClient) -> None:
        assert client.get("/audit/verify", params={"start": 0}).status_code == 422


class TestSyncApi:
    """Tests for /api/sync routes."""

    CLIENTS = [
        {
            "baseEntityId": "OSR-21",
            "firstName": "Amina",
            "lastName": "Mwangi",
            "gender": "Female",
            "serverVersion": 5,
        },
        {
            "baseEntityId": "OSR-22",
            "firstName": "Juma",
            "lastName": "Otieno",
            "gender": "Male",
            "serverVersion": 9,
        },
    ]

    def test_bulk_ingests_every_client(
        self, client: TestClient, bridge: SyncBridge, upstreams: Upstreams
    ) -> None:
        upstreams.legacy_clients = list(self.CLIENTS)

        response = client.post("/api/sync/bulk")

        assert response.status_code == 202
        assert response.json() == {
            "message": "Bulk sync started",
            "mode": "bulk",
            "server_version": 0,
        }
        assert upstreams.get_all_versions == [0]
        assert len(upstreams.canonical_creates) == 2
        assert bridge.bulk_sync.server_version == 9

    def test_incremental_starts_from_watermark(
        self, client: TestClient, bridge: SyncBridge, upstreams: Upstreams
    ) -> None:
        upstreams.legacy_clients = list(self.CLIENTS)
        client.post("/api/sync/bulk")
        upstreams.legacy_clients.append(
            {
                "baseEntityId": "OSR-23",
                "firstName": "Neema",
                "lastName": "Kariuki",
                "gender": "F",
                "serverVersion": 12,
            }
        )

        response = client.post("/api/sync/incremental")

        assert response.status_code == 202
        assert response.json()["message"] == "Incremental sync started"
        assert response.json()["server_version"] == 9
        assert upstreams.get_all_versions == [0, 9]
        assert len(upstreams.canonical_creates) == 3
        assert bridge.bulk_sync.server_version == 12

    def test_rejected_while_running(self, client: TestClient, upstreams: Upstreams) -> None:
        with patch.object(
            BulkSyncService, "is_running", new_callable=PropertyMock, return_value=True
        ):
            bulk = client.post("/api/sync/bulk")
            incremental = client.post("/api/sync/incremental")

        assert bulk.status_code == incremental.status_code == 409
        assert bulk.json()["detail"] == "A sync run is already in progress"
        assert upstreams.get_all_versions == []

    def test_legacy_failure_keeps_watermark(
        self, client: TestClient, bridge: SyncBridge, upstreams: Upstreams
    ) -> None:
        upstreams.legacy_clients = [{"serverVersion": 4}]
        client.post("/api/sync/bulk")

        upstreams.legacy_down = True
        response = client.post("/api/sync/incremental")

        assert response.status_code == 202
        assert bridge.bulk_sync.server_version == 4


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture
    def package_logger(self) -> Generator[logging.Logger, None, None]:
        names = ("syncbridge", "uvicorn", "uvicorn.error", "uvicorn.access")
        saved = {name: list(logging.getLogger(name).handlers) for name in names}
        level = logging.getLogger("syncbridge").level
        yield logging.getLogger("syncbridge")
        for name, handlers in saved.items():
            current = logging.getLogger(name)
            for handler in current.handlers:
                if handler not in handlers:
                    handler.close()
            current.handlers = handlers
        logging.getLogger("syncbridge").setLevel(level)

    def test_writes_to_log_file(self, tmp_path: Path, package_logger: logging.Logger) -> None:
        log_path = tmp_path / "bridge.log"

        setup_logging(log_path)
        logging.getLogger("syncbridge.sync.ingestion").info("Ingestion completed: %s", "txn-1")

        assert " - syncbridge.sync.ingestion - INFO - Ingestion completed: txn-1" in (
            log_path.read_text(encoding="utf-8")
        )

    def test_second_call_adds_no_handlers(
        self, tmp_path: Path, package_logger: logging.Logger
    ) -> None:
        setup_logging(tmp_path / "bridge.log")
        count = len(package_logger.handlers)

        setup_logging(tmp_path / "bridge.log")

        assert len(package_logger.handlers) == count
