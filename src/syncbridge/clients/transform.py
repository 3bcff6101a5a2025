"""Patient transformation between legacy records and FHIR resources.

This module provides:
- PatientTransformer: legacy client record <-> FHIR Patient mapping

Mapping:
    opensrp_id  <-> identifier[system=OPENSRP_ID_SYSTEM]
    national_id <-> identifier[system=NATIONAL_ID_SYSTEM]
    firstName / lastName <-> name[0].given[0] / name[0].family
    gender M/F/O <-> male/female/other (anything else: unknown)
    address district/ward/village <-> address[0].district/city/text

Resources produced from legacy records carry the ingestion provenance tag.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any

from syncbridge.clients.base import TransformationError
from syncbridge.core.models import (
    Address,
    CanonicalResource,
    Demographics,
    LegacyIdentifiers,
    LegacyRecord,
    RecordMetadata,
)
from syncbridge.core.types import (
    CANONICAL_SYSTEM,
    INGESTION_TAG_CODE,
    LEGACY_SYSTEM,
    PROVENANCE_TAG_SYSTEM,
    ResourceKind,
)

logger = logging.getLogger(__name__)

OPENSRP_ID_SYSTEM = "http://moh.go.tz/identifier/opensrp-id"
NATIONAL_ID_SYSTEM = "http://moh.go.tz/identifier/national-id"

GENDER_TO_FHIR = {"M": "male", "F": "female", "O": "other"}
GENDER_FROM_FHIR = {v: k for k, v in GENDER_TO_FHIR.items()}


class PatientTransformer:
    """Maps legacy client records to FHIR Patients and back."""

    def legacy_to_canonical(self, record: LegacyRecord) -> CanonicalResource:
        """Transform a legacy record into a tagged FHIR Patient.

        Raises:
            TransformationError: If required fields are missing.
        """
        opensrp_id = record.identifiers.opensrp_id
        if not opensrp_id:
            raise self._to_canonical_error(
                "Legacy record must have an opensrp_id", "MISSING_OPENSRP_ID"
            )

        demographics = record.demographics
        if not demographics.gender:
            raise self._to_canonical_error("Gender is required", "MISSING_GENDER")

        identifiers = [{"system": OPENSRP_ID_SYSTEM, "value": opensrp_id}]
        if record.identifiers.national_id:
            identifiers.append(
                {"system": NATIONAL_ID_SYSTEM, "value": record.identifiers.national_id}
            )

        body: dict[str, Any] = {
            "resourceType": ResourceKind.PATIENT.value,
            "meta": {"tag": [{"system": PROVENANCE_TAG_SYSTEM, "code": INGESTION_TAG_CODE}]},
            "identifier": identifiers,
            "name": [
                {
                    "use": "official",
                    "family": demographics.last_name,
                    "given": [demographics.first_name] if demographics.first_name else [],
                }
            ],
            "gender": _normalize_gender(demographics.gender),
        }
        if demographics.birth_date:
            body["birthDate"] = demographics.birth_date.isoformat()
        if demographics.address:
            address = demographics.address
            body["address"] = [
                {
                    key: value
                    for key, value in (
                        ("district", address.district),
                        ("city", address.ward),
                        ("text", address.village),
                    )
                    if value
                }
            ]
        if record.metadata.fhir_id:
            body["id"] = record.metadata.fhir_id

        logger.debug("Transformed legacy client %s to Patient", opensrp_id)
        return CanonicalResource(
            body=body,
            source_system=LEGACY_SYSTEM,
            original_id=opensrp_id,
            transformed_at=datetime.now(UTC),
        )

    def canonical_to_legacy(self, resource: CanonicalResource) -> LegacyRecord:
        """Transform a FHIR Patient into a legacy record.

        Raises:
            TransformationError: If the resource is not a Patient or lacks
                the identifier, name or gender.
        """
        if resource.kind is not ResourceKind.PATIENT:
            raise self._to_legacy_error(
                f"Unsupported resource type: {resource.resource_type}", "UNSUPPORTED_RESOURCE_TYPE"
            )
        body = resource.body

        opensrp_id = None
        national_id = None
        for identifier in body.get("identifier") or []:
            if identifier.get("system") == OPENSRP_ID_SYSTEM:
                opensrp_id = identifier.get("value")
            elif identifier.get("system") == NATIONAL_ID_SYSTEM:
                national_id = identifier.get("value")
        if not opensrp_id:
            raise self._to_legacy_error(
                f"Patient must have an identifier with system: {OPENSRP_ID_SYSTEM}",
                "MISSING_OPENSRP_ID",
            )

        names = body.get("name") or []
        if not names:
            raise self._to_legacy_error("Patient must have at least one name", "MISSING_NAME")
        given = names[0].get("given") or []
        first_name = given[0] if given else None
        last_name = names[0].get("family")
        if not first_name:
            raise self._to_legacy_error("Patient name must have a given name", "MISSING_GIVEN_NAME")
        if not last_name:
            raise self._to_legacy_error(
                "Patient name must have a family name", "MISSING_FAMILY_NAME"
            )
        if not body.get("gender"):
            raise self._to_legacy_error("Patient must have a gender", "MISSING_GENDER")

        address = None
        addresses = body.get("address") or []
        if addresses:
            address = Address(
                district=addresses[0].get("district"),
                ward=addresses[0].get("city"),
                village=addresses[0].get("text"),
            )

        birth_date = body.get("birthDate")
        return LegacyRecord(
            identifiers=LegacyIdentifiers(opensrp_id=opensrp_id, national_id=national_id),
            demographics=Demographics(
                first_name=first_name,
                last_name=last_name,
                gender=GENDER_FROM_FHIR.get(body["gender"]),
                birth_date=date.fromisoformat(birth_date) if birth_date else None,
                address=address,
            ),
            metadata=RecordMetadata(
                updated_at=resource.last_updated,
                source=CANONICAL_SYSTEM,
                fhir_id=resource.id,
            ),
        )

    @staticmethod
    def _to_canonical_error(message: str, code: str) -> TransformationError:
        return TransformationError(message, LEGACY_SYSTEM, CANONICAL_SYSTEM, code)

    @staticmethod
    def _to_legacy_error(message: str, code: str) -> TransformationError:
        return TransformationError(message, CANONICAL_SYSTEM, LEGACY_SYSTEM, code)


def _normalize_gender(code: str) -> str:
    gender = GENDER_TO_FHIR.get(code.upper())
    if gender is None:
        logger.warning("Unknown gender code: %s, defaulting to unknown", code)
        return "unknown"
    return gender
