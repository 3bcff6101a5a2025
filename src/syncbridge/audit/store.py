"""Persistent audit entry store using SQLAlchemy with SQLite.

This module provides:
- AuditRecord: ORM model of the audit_entries table
- AuditStore: Append-only persistence and range reads for compliance export
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Integer, String, Text, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from syncbridge.audit.chain import GENESIS_HASH, AuditEntry, compute_entry_hash

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for audit ORM models."""


class AuditRecord(Base):
    """A persisted audit entry."""

    __tablename__ = "audit_entries"

    sequence_number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    operation: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_system: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def to_entry(self) -> AuditEntry:
        """Convert back to an AuditEntry."""
        timestamp = self.timestamp
        # SQLite drops tzinfo; stored values are always UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return AuditEntry(
            sequence_number=self.sequence_number,
            timestamp=timestamp,
            event_type=self.event_type,
            user_id=self.user_id,
            user_name=self.user_name,
            resource_id=self.resource_id,
            data_type=self.data_type,
            operation=self.operation,
            source_system=self.source_system,
            source_ip=self.source_ip,
            success=self.success,
            details=self.details,
            hash=self.hash,
            previous_hash=self.previous_hash,
        )


class AuditStore:
    """SQLite-backed append-only store of audit entries."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        return Session(self._engine)

    def append(self, entry: AuditEntry) -> None:
        """Persist one entry."""
        with self._session() as session:
            session.add(
                AuditRecord(
                    sequence_number=entry.sequence_number,
                    timestamp=entry.timestamp,
                    event_type=entry.event_type,
                    user_id=entry.user_id,
                    user_name=entry.user_name,
                    resource_id=entry.resource_id,
                    data_type=entry.data_type,
                    operation=entry.operation,
                    source_system=entry.source_system,
                    source_ip=entry.source_ip,
                    success=entry.success,
                    details=entry.details,
                    hash=entry.hash,
                    previous_hash=entry.previous_hash,
                )
            )
            session.commit()

    def last_sequence(self) -> int:
        """Get the highest stored sequence number (0 when empty)."""
        with self._session() as session:
            return session.scalar(select(func.max(AuditRecord.sequence_number))) or 0

    def count(self) -> int:
        """Get number of stored entries."""
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(AuditRecord)) or 0

    def get_range(self, start: int, end: int) -> list[AuditEntry]:
        """Get stored entries with start <= sequence_number <= end, in order."""
        with self._session() as session:
            records = session.scalars(
                select(AuditRecord)
                .where(AuditRecord.sequence_number >= start)
                .where(AuditRecord.sequence_number <= end)
                .order_by(AuditRecord.sequence_number)
            ).all()
            return [record.to_entry() for record in records]

    def verify_stored_range(self, start: int, end: int) -> bool:
        """Recompute and check the chain over a stored range.

        Returns:
            True if every sequence number in the range is present, linked to
            its predecessor and carries a hash matching its content.
        """
        if start < 1 or start > end:
            return False

        entries = self.get_range(max(start - 1, 1), end)
        by_sequence = {entry.sequence_number: entry for entry in entries}
        for sequence_number in range(start, end + 1):
            entry = by_sequence.get(sequence_number)
            if entry is None:
                logger.error("Stored audit chain is missing sequence %d", sequence_number)
                return False

            if sequence_number == 1:
                expected_previous = GENESIS_HASH
            else:
                predecessor = by_sequence.get(sequence_number - 1)
                expected_previous = predecessor.hash if predecessor else None
            if entry.previous_hash != expected_previous:
                logger.error("Stored audit chain broken at sequence %d", sequence_number)
                return False

            recomputed = compute_entry_hash(sequence_number, entry.serialize(), entry.previous_hash)
            if recomputed != entry.hash:
                logger.error("Stored audit hash mismatch at sequence %d", sequence_number)
                return False
        return True
