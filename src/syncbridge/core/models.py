"""Record and resource models shared by the clients and the sync flows.

This module provides:
- LegacyRecord: Client record in the legacy system's format
- CanonicalResource: FHIR-style resource body plus wrapper metadata
- parse_timestamp / format_timestamp: ISO 8601 helpers (UTC)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from syncbridge.core.types import INGESTION_ORIGIN_CODES, ResourceKind

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 (UTC), or None."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


# =============================================================================
# Legacy records
# =============================================================================


@dataclass
class Address:
    """Postal address of a legacy client."""

    district: str | None = None
    ward: str | None = None
    village: str | None = None


@dataclass
class LegacyIdentifiers:
    """Identifiers of a legacy client.

    Attributes:
        opensrp_id: Primary external id, used as the legacy record key.
        national_id: Optional secondary id.
    """

    opensrp_id: str | None
    national_id: str | None = None


@dataclass
class Demographics:
    """Demographic data of a legacy client."""

    first_name: str | None = None
    last_name: str | None = None
    gender: str | None = None  # M, F, O
    birth_date: date | None = None
    address: Address | None = None


@dataclass
class ClinicalData:
    """Clinical sub-records, carried through unchanged."""

    observations: list[Any] = field(default_factory=list)
    medications: list[Any] = field(default_factory=list)
    procedures: list[Any] = field(default_factory=list)


@dataclass
class RecordMetadata:
    """Bookkeeping data of a legacy client."""

    created_at: datetime | None = None
    updated_at: datetime | None = None
    source: str | None = None
    fhir_id: str | None = None


@dataclass
class LegacyRecord:
    """Client record in the legacy system's format.

    The wire form (to_dict/from_dict) uses the legacy API's field names.
    """

    identifiers: LegacyIdentifiers
    demographics: Demographics = field(default_factory=Demographics)
    clinical_data: ClinicalData = field(default_factory=ClinicalData)
    metadata: RecordMetadata = field(default_factory=RecordMetadata)

    @property
    def client_id(self) -> str | None:
        """Get the primary external id."""
        return self.identifiers.opensrp_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to the legacy API's JSON form."""
        demographics = self.demographics
        address = demographics.address
        return {
            "identifiers": {
                "opensrp_id": self.identifiers.opensrp_id,
                "national_id": self.identifiers.national_id,
            },
            "demographics": {
                "firstName": demographics.first_name,
                "lastName": demographics.last_name,
                "gender": demographics.gender,
                "birthDate": demographics.birth_date.isoformat()
                if demographics.birth_date
                else None,
                "address": {
                    "district": address.district,
                    "ward": address.ward,
                    "village": address.village,
                }
                if address
                else None,
            },
            "clinicalData": {
                "observations": list(self.clinical_data.observations),
                "medications": list(self.clinical_data.medications),
                "procedures": list(self.clinical_data.procedures),
            },
            "metadata": {
                "createdAt": format_timestamp(self.metadata.created_at),
                "updatedAt": format_timestamp(self.metadata.updated_at),
                "source": self.metadata.source,
                "fhir_id": self.metadata.fhir_id,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LegacyRecord:
        """Create from the legacy API's JSON form."""
        identifiers = data.get("identifiers") or {}
        demographics = data.get("demographics") or {}
        clinical = data.get("clinicalData") or {}
        metadata = data.get("metadata") or {}
        address = demographics.get("address")
        birth_date = demographics.get("birthDate")
        return cls(
            identifiers=LegacyIdentifiers(
                opensrp_id=identifiers.get("opensrp_id"),
                national_id=identifiers.get("national_id"),
            ),
            demographics=Demographics(
                first_name=demographics.get("firstName"),
                last_name=demographics.get("lastName"),
                gender=demographics.get("gender"),
                birth_date=date.fromisoformat(birth_date) if birth_date else None,
                address=Address(
                    district=address.get("district"),
                    ward=address.get("ward"),
                    village=address.get("village"),
                )
                if address
                else None,
            ),
            clinical_data=ClinicalData(
                observations=list(clinical.get("observations") or []),
                medications=list(clinical.get("medications") or []),
                procedures=list(clinical.get("procedures") or []),
            ),
            metadata=RecordMetadata(
                created_at=parse_timestamp(metadata.get("createdAt")),
                updated_at=parse_timestamp(metadata.get("updatedAt")),
                source=metadata.get("source"),
                fhir_id=metadata.get("fhir_id"),
            ),
        )


# =============================================================================
# Canonical resources
# =============================================================================


@dataclass
class CanonicalResource:
    """A canonical (FHIR JSON) resource plus wrapper metadata.

    Attributes:
        body: Resource JSON as a dict; must contain "resourceType".
        source_system: System the resource was produced from, if known.
        original_id: Id of the record the resource was produced from.
        transformed_at: When the resource was produced by a transformer.
    """

    body: dict[str, Any]
    source_system: str | None = None
    original_id: str | None = None
    transformed_at: datetime | None = None

    @property
    def resource_type(self) -> str:
        """Get the FHIR resourceType."""
        return str(self.body.get("resourceType", ""))

    @property
    def kind(self) -> ResourceKind:
        """Get the resource kind used for dispatch."""
        return ResourceKind.from_resource_type(self.body.get("resourceType"))

    @property
    def id(self) -> str | None:
        """Get the server-assigned resource id."""
        return self.body.get("id")

    @property
    def last_updated(self) -> datetime | None:
        """Get meta.lastUpdated as a datetime."""
        meta = self.body.get("meta") or {}
        return parse_timestamp(meta.get("lastUpdated"))

    @property
    def tag_codes(self) -> list[str]:
        """Get the codes of all meta tags."""
        meta = self.body.get("meta") or {}
        return [tag.get("code") for tag in meta.get("tag") or [] if tag.get("code")]

    @property
    def is_ingestion_origin(self) -> bool:
        """Check if the resource carries the ingestion provenance tag."""
        return any(code in INGESTION_ORIGIN_CODES for code in self.tag_codes)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CanonicalResource:
        """Wrap a resource body received from the canonical store."""
        return cls(body=dict(body))
