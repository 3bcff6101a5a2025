"""Tests for the audit hash chain and its SQLite store."""

from __future__ import annotations

import threading
from collections.abc import Generator
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from syncbridge.audit.chain import (
    GENESIS_HASH,
    AuditChain,
    AuditContext,
    AuditIntegrityError,
    compute_entry_hash,
)
from syncbridge.audit.store import AuditStore


@pytest.fixture
def store(tmp_path: Path) -> Generator[AuditStore, None, None]:
    audit_store = AuditStore(tmp_path / "audit.db")
    yield audit_store
    audit_store.close()


def fill(chain: AuditChain, count: int) -> None:
    for n in range(count):
        chain.record("TRANSFORMATION", resource_id=f"OSR-{n}", operation="INGESTION")


class TestAuditChain:
    """Tests for AuditChain."""

    def test_sequence_numbers_are_gapless(self) -> None:
        chain = AuditChain()
        entries = [chain.record("A"), chain.record("B"), chain.record("C")]

        assert [e.sequence_number for e in entries] == [1, 2, 3]
        assert chain.current_sequence == 3

    def test_first_entry_links_to_genesis(self) -> None:
        chain = AuditChain()
        first = chain.record("A")
        second = chain.record("B")

        assert first.previous_hash == GENESIS_HASH
        assert second.previous_hash == first.hash
        assert first.hash == compute_entry_hash(1, first.serialize(), GENESIS_HASH)

    def test_records_context(self) -> None:
        chain = AuditChain()
        context = AuditContext(user_id="u-7", user_name="Nurse Amina", source_ip="10.0.0.5")

        entry = chain.record("DATA_ACCESS", context=context, resource_id="patient-1")

        assert entry.user_id == "u-7"
        assert entry.source_ip == "10.0.0.5"
        assert "UserName=Nurse Amina" in entry.serialize()

    def test_serialize_uses_placeholders(self) -> None:
        fixed = datetime(2024, 1, 1, tzinfo=UTC)
        entry = AuditChain(clock=lambda: fixed).record("A")

        assert entry.serialize() == (
            "EventType=A|UserId=SYSTEM|UserName=System|ResourceId=N/A|DataType=N/A"
            "|Operation=N/A|Source=N/A|SourceIP=localhost"
            "|Timestamp=2024-01-01T00:00:00+00:00|Details="
        )

    def test_verify_intact_range(self) -> None:
        chain = AuditChain()
        fill(chain, 5)

        assert chain.verify_range(1, 5)
        assert chain.verify_range(2, 4)

    @pytest.mark.parametrize(("start", "end"), [(0, 3), (1, 6), (4, 2)])
    def test_verify_invalid_range(self, start: int, end: int) -> None:
        chain = AuditChain()
        fill(chain, 5)
        assert not chain.verify_range(start, end)

    def test_verify_empty_chain(self) -> None:
        assert not AuditChain().verify_range(1, 1)

    def test_missing_hash_fails_verification(self) -> None:
        chain = AuditChain()
        fill(chain, 5)

        chain._hashes[2] = None

        assert not chain.verify_range(1, 5)
        assert not chain.verify_range(3, 3)
        assert chain.verify_range(1, 2)

    def test_tampered_entry_fails_verification(self) -> None:
        chain = AuditChain()
        fill(chain, 5)

        chain._entries[1] = replace(chain._entries[1], details="altered")

        assert not chain.verify_range(1, 5)
        assert chain.verify_range(3, 5)

    def test_replaced_hash_breaks_successor(self) -> None:
        """Rewriting an entry and its hash must break the next link."""
        chain = AuditChain()
        fill(chain, 3)

        forged = replace(chain._entries[1], details="altered")
        chain._entries[1] = replace(
            forged, hash=compute_entry_hash(2, forged.serialize(), forged.previous_hash)
        )
        chain._hashes[1] = chain._entries[1].hash

        assert chain.verify_range(1, 2)
        assert not chain.verify_range(1, 3)

    def test_concurrent_records_stay_linked(self) -> None:
        chain = AuditChain()

        def worker() -> None:
            fill(chain, 50)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert chain.current_sequence == 400
        assert chain.verify_range(1, 400)

    def test_get_entry_and_hash(self) -> None:
        chain = AuditChain()
        entry = chain.record("A")

        assert chain.get_entry(1) == entry
        assert chain.get_hash(1) == entry.hash
        assert chain.get_entry(2) is None
        assert chain.get_hash(0) is None

    def test_export(self) -> None:
        chain = AuditChain()
        fill(chain, 3)

        exported = chain.export(2)

        assert [e["sequenceNumber"] for e in exported] == [2, 3]
        assert exported[0]["operation"] == "INGESTION"
        assert exported[0]["previousHash"] == chain.get_hash(1)


class TestAuditStore:
    """Tests for AuditStore."""

    def test_chain_writes_through(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        fill(chain, 3)

        assert store.count() == 3
        stored = store.get_range(1, 3)
        assert [e.hash for e in stored] == [chain.get_hash(n) for n in (1, 2, 3)]

    def test_round_trip_preserves_hash_input(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        original = chain.record("TRANSFORMATION", resource_id="OSR-1", details="ok")

        [loaded] = store.get_range(1, 1)

        assert loaded.serialize() == original.serialize()
        assert loaded.timestamp.tzinfo is not None

    def test_verify_stored_range(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        fill(chain, 4)

        assert store.verify_stored_range(1, 4)
        assert store.verify_stored_range(3, 4)
        assert not store.verify_stored_range(1, 5)
        assert not store.verify_stored_range(3, 2)

    def test_verify_detects_tampering(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        fill(chain, 3)

        with store._engine.connect() as conn:
            conn.exec_driver_sql(
                "UPDATE audit_entries SET details = 'altered' WHERE sequence_number = 2"
            )
            conn.commit()

        assert not store.verify_stored_range(1, 3)
        assert not store.verify_stored_range(2, 2)
        assert store.verify_stored_range(1, 1)

    def test_verify_detects_deleted_row(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        fill(chain, 3)

        with store._engine.connect() as conn:
            conn.exec_driver_sql("DELETE FROM audit_entries WHERE sequence_number = 2")
            conn.commit()

        assert not store.verify_stored_range(1, 3)
        assert store.count() == 2


class TestChainRestart:
    """A chain reopened on an existing store continues where it left off."""

    def test_continues_sequence_and_hash(self, tmp_path: Path) -> None:
        db_path = tmp_path / "audit.db"
        first_store = AuditStore(db_path)
        fill(AuditChain(store=first_store), 2)
        first_store.close()

        store = AuditStore(db_path)
        try:
            chain = AuditChain(store=store)
            assert chain.current_sequence == 2

            entry = chain.record("DATA_ACCESS", resource_id="patient-1", operation="READ")

            assert entry.sequence_number == 3
            assert entry.previous_hash == chain.get_hash(2)
            assert store.count() == 3
            assert store.verify_stored_range(1, 3)
            assert chain.verify_range(1, 3)
        finally:
            store.close()

    def test_empty_store_starts_at_genesis(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)

        assert chain.current_sequence == 0
        assert chain.record("A").previous_hash == GENESIS_HASH

    def test_gap_in_store_is_rejected(self, store: AuditStore) -> None:
        fill(AuditChain(store=store), 3)
        with store._engine.connect() as conn:
            conn.exec_driver_sql("DELETE FROM audit_entries WHERE sequence_number = 2")
            conn.commit()

        with pytest.raises(AuditIntegrityError, match="missing sequence 2"):
            AuditChain(store=store)

    def test_failed_write_leaves_chain_unchanged(self, store: AuditStore) -> None:
        chain = AuditChain(store=store)
        fill(chain, 2)

        with (
            patch.object(store, "append", side_effect=RuntimeError("disk full")),
            pytest.raises(RuntimeError, match="disk full"),
        ):
            chain.record("TRANSFORMATION", resource_id="OSR-9")

        assert chain.current_sequence == 2
        entry = chain.record("TRANSFORMATION", resource_id="OSR-9")
        assert entry.sequence_number == 3
        assert store.verify_stored_range(1, 3)
        assert chain.verify_range(1, 3)
