"""Bulk and incremental ingestion from the legacy getAll feed.

This module provides:
- ServerVersionStore: The serverVersion watermark, optionally kept in a file
- BulkSyncSummary: Counts of one run
- BulkSyncService: Pulls changed legacy clients and ingests each one
- record_from_summary: Maps a getAll entry to a LegacyRecord

A bulk run starts from serverVersion 0. An incremental run starts from the
stored watermark. Both advance the watermark to the highest serverVersion
seen, whether or not every client in the page was ingested. Ingestion
queues its own retryable failures, so they are not fetched again.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

from syncbridge.core.models import Demographics, LegacyIdentifiers, LegacyRecord

if TYPE_CHECKING:
    from syncbridge.clients.base import LegacyClient
    from syncbridge.sync.ingestion import IngestionFlow

logger = logging.getLogger(__name__)

BULK = "bulk"
INCREMENTAL = "incremental"

_GENDERS = {"m": "M", "male": "M", "f": "F", "female": "F"}


def record_from_summary(data: dict[str, Any]) -> LegacyRecord:
    """Map one getAll client entry to a LegacyRecord.

    Raises:
        ValueError: If the entry has no baseEntityId or a malformed birthdate.
    """
    base_entity_id = data.get("baseEntityId")
    if not base_entity_id:
        raise ValueError("Client entry has no baseEntityId")

    gender = data.get("gender")
    if gender:
        gender = _GENDERS.get(str(gender).lower(), "O")

    birth_date = None
    birthdate = data.get("birthdate")
    if birthdate:
        # Timestamps are accepted, only the date part is kept
        birth_date = date.fromisoformat(str(birthdate)[:10])

    return LegacyRecord(
        identifiers=LegacyIdentifiers(opensrp_id=base_entity_id),
        demographics=Demographics(
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            gender=gender,
            birth_date=birth_date,
        ),
    )


class ServerVersionStore:
    """The serverVersion watermark of the last completed run.

    A missing or unreadable file reads as 0, which makes the next
    incremental run a full one.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._version = 0
        self._lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> int:
        """Get the stored watermark."""
        with self._lock:
            if self._path is None:
                return self._version
            try:
                text = self._path.read_text().strip()
            except FileNotFoundError:
                return 0
            try:
                return int(text)
            except ValueError:
                logger.warning("Ignoring malformed server version file %s", self._path)
                return 0

    def save(self, version: int) -> None:
        """Store a new watermark."""
        with self._lock:
            self._version = version
            if self._path is None:
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(str(version))
            tmp.replace(self._path)


@dataclass
class BulkSyncSummary:
    """Counts of one bulk or incremental run.

    Attributes:
        mode: "bulk" or "incremental".
        start_version: Watermark the run started from.
        server_version: Highest serverVersion seen (the new watermark).
        success: Clients ingested.
        errors: Clients that could not be mapped or ingested.
    """

    mode: str
    start_version: int
    server_version: int
    success: int = 0
    errors: int = 0

    @property
    def fetched(self) -> int:
        return self.success + self.errors


class BulkSyncService:
    """Pulls changed clients from the legacy system and ingests them.

    Only one run is active at a time; a run requested while another is
    in progress is skipped.
    """

    def __init__(
        self,
        legacy_client: LegacyClient,
        ingestion: IngestionFlow,
        versions: ServerVersionStore | None = None,
    ) -> None:
        self._legacy = legacy_client
        self._ingestion = ingestion
        self._versions = versions or ServerVersionStore()
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def server_version(self) -> int:
        return self._versions.load()

    def bulk_sync(self) -> BulkSyncSummary | None:
        """Ingest every legacy client.

        Returns:
            The run summary, or None if another run was in progress.
        """
        return self._run(BULK, lambda: 0)

    def incremental_sync(self) -> BulkSyncSummary | None:
        """Ingest legacy clients changed since the stored watermark.

        Returns:
            The run summary, or None if another run was in progress.
        """
        return self._run(INCREMENTAL, self._versions.load)

    def _run(self, mode: str, start: Callable[[], int]) -> BulkSyncSummary | None:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Skipping %s sync: another sync run is in progress", mode)
            return None
        try:
            return self._sync_from(mode, start())
        finally:
            self._run_lock.release()

    def _sync_from(self, mode: str, since: int) -> BulkSyncSummary:
        logger.info("Starting %s sync from serverVersion=%d", mode, since)
        clients = self._legacy.get_all(since)
        summary = BulkSyncSummary(mode=mode, start_version=since, server_version=since)
        if not clients:
            logger.info("No new clients to sync")
            return summary

        for entry in clients:
            version = entry.get("serverVersion")
            if isinstance(version, int) and version > summary.server_version:
                summary.server_version = version

            try:
                record = record_from_summary(entry)
            except ValueError as e:
                summary.errors += 1
                logger.warning("Skipping unmappable client entry: %s", e)
                continue

            result = self._ingestion.process(record)
            if result.success:
                summary.success += 1
            else:
                summary.errors += 1
                logger.warning(
                    "Failed to ingest client %s: %s", record.client_id, result.error_message
                )

        self._versions.save(summary.server_version)
        logger.info(
            "Sync complete: %d success, %d errors, serverVersion=%d",
            summary.success,
            summary.errors,
            summary.server_version,
        )
        return summary
