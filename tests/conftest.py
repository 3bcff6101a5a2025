"""Shared pytest fixtures.

Provides in-memory stand-ins for the legacy API and the canonical store so
the sync flows can be exercised end to end without HTTP.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Generator
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from syncbridge.audit.chain import AuditChain
from syncbridge.audit.service import AuditService
from syncbridge.clients.base import NotFoundError
from syncbridge.clients.transform import PatientTransformer
from syncbridge.clients.validation import LegacyRecordValidator
from syncbridge.core.models import (
    CanonicalResource,
    Demographics,
    LegacyIdentifiers,
    LegacyRecord,
    format_timestamp,
)
from syncbridge.queue.reliable_queue import ReliableQueue
from syncbridge.sync.conflicts import ProcessedTracker
from syncbridge.sync.ingestion import IngestionFlow
from syncbridge.sync.reverse_sync import ReverseSyncFlow

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class InMemoryCanonicalStore:
    """CanonicalClient keeping resources in a dict.

    Every write assigns a new meta.lastUpdated one second after the last.
    """

    def __init__(self) -> None:
        self.resources: dict[tuple[str, str], dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.search_calls: list[tuple[str, datetime, dict[str, str] | None]] = []
        self.create_calls = 0
        self.fail_creates = 0
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    def _stamp(self, body: dict[str, Any]) -> None:
        meta = dict(body.get("meta") or {})
        meta["lastUpdated"] = format_timestamp(BASE_TIME + timedelta(seconds=next(self._ticks)))
        body["meta"] = meta

    def create(self, resource: CanonicalResource) -> CanonicalResource:
        self.create_calls += 1
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise ConnectionError("canonical store unavailable")
        body = dict(resource.body)
        body["id"] = f"{resource.resource_type.lower()}-{next(self._ids)}"
        self._stamp(body)
        self.resources[(resource.resource_type, body["id"])] = body
        return CanonicalResource.from_body(body)

    def update(self, resource: CanonicalResource) -> CanonicalResource:
        body = dict(resource.body)
        self._stamp(body)
        self.resources[(resource.resource_type, body["id"])] = body
        return CanonicalResource.from_body(body)

    def touch(self, resource_type: str, resource_id: str, **changes: Any) -> CanonicalResource:
        """Simulate an external edit in the store."""
        body = dict(self.resources[(resource_type, resource_id)])
        body.update(changes)
        self._stamp(body)
        self.resources[(resource_type, resource_id)] = body
        return CanonicalResource.from_body(body)

    def get(self, resource_type: str, resource_id: str) -> CanonicalResource:
        try:
            return CanonicalResource.from_body(self.resources[(resource_type, resource_id)])
        except KeyError:
            raise NotFoundError("Resource not found", 404) from None

    def search_updated_after(
        self,
        resource_type: str,
        since: datetime,
        params: dict[str, str] | None = None,
    ) -> list[CanonicalResource]:
        self.search_calls.append((resource_type, since, params))
        matches = [
            CanonicalResource.from_body(body)
            for (rtype, _), body in self.resources.items()
            if rtype == resource_type
        ]
        return [r for r in matches if r.last_updated and r.last_updated > since]

    def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        created = dict(subscription, id=f"sub-{next(self._ids)}")
        self.subscriptions[created["id"]] = created
        return created

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        try:
            return dict(self.subscriptions[subscription_id])
        except KeyError:
            raise NotFoundError("Resource not found", 404) from None

    def update_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        self.subscriptions[subscription["id"]] = dict(subscription)
        return subscription

    def delete_subscription(self, subscription_id: str) -> None:
        self.subscriptions.pop(subscription_id, None)

    def close(self) -> None:
        pass


class InMemoryLegacySystem:
    """LegacyClient keeping client records in a dict and recording calls.

    feed holds getAll client summaries; get_all returns those with a
    serverVersion above the one asked for.
    """

    def __init__(self) -> None:
        self.records: dict[str, LegacyRecord] = {}
        self.feed: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False

    def get_client(self, client_id: str) -> LegacyRecord:
        self.calls.append(("get_client", client_id))
        try:
            return self.records[client_id]
        except KeyError:
            raise NotFoundError("Client not found", 404) from None

    def create_client(self, record: LegacyRecord) -> LegacyRecord:
        self.calls.append(("create_client", record.client_id))
        self.records[record.client_id] = record
        return record

    def update_client(self, client_id: str, record: LegacyRecord) -> LegacyRecord:
        self.calls.append(("update_client", client_id))
        self.records[client_id] = record
        return record

    def get_all(self, server_version: int) -> list[dict[str, Any]]:
        self.calls.append(("get_all", str(server_version)))
        return [entry for entry in self.feed if entry["serverVersion"] > server_version]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_record() -> Callable[..., LegacyRecord]:
    """Factory for valid legacy records."""

    def _make(
        opensrp_id: str | None = "OSR-1",
        first_name: str | None = "John",
        last_name: str | None = "Smith",
        gender: str | None = "M",
        birth_date: date | None = date(1990, 5, 15),
    ) -> LegacyRecord:
        return LegacyRecord(
            identifiers=LegacyIdentifiers(opensrp_id=opensrp_id),
            demographics=Demographics(
                first_name=first_name,
                last_name=last_name,
                gender=gender,
                birth_date=birth_date,
            ),
        )

    return _make


@pytest.fixture
def canonical_store() -> InMemoryCanonicalStore:
    return InMemoryCanonicalStore()


@pytest.fixture
def legacy_system() -> InMemoryLegacySystem:
    return InMemoryLegacySystem()


@pytest.fixture
def audit_chain() -> AuditChain:
    return AuditChain()


@pytest.fixture
def audit_service(audit_chain: AuditChain) -> AuditService:
    return AuditService(audit_chain)


@pytest.fixture
def reliable_queue() -> Generator[ReliableQueue, None, None]:
    queue = ReliableQueue()
    yield queue
    queue.close()


@pytest.fixture
def tracker() -> ProcessedTracker:
    return ProcessedTracker()


@pytest.fixture
def ingestion_flow(
    canonical_store: InMemoryCanonicalStore,
    audit_service: AuditService,
    reliable_queue: ReliableQueue,
    tracker: ProcessedTracker,
) -> IngestionFlow:
    return IngestionFlow(
        LegacyRecordValidator(),
        PatientTransformer(),
        canonical_store,
        audit_service,
        reliable_queue,
        tracker,
    )


@pytest.fixture
def reverse_sync_flow(
    legacy_system: InMemoryLegacySystem,
    audit_service: AuditService,
    tracker: ProcessedTracker,
) -> ReverseSyncFlow:
    return ReverseSyncFlow(PatientTransformer(), legacy_system, audit_service, tracker)
