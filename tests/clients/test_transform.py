"""Tests for the patient transformer."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Any

import pytest

from syncbridge.clients.base import TransformationError
from syncbridge.clients.transform import (
    NATIONAL_ID_SYSTEM,
    OPENSRP_ID_SYSTEM,
    PatientTransformer,
)
from syncbridge.core.models import Address, CanonicalResource, LegacyRecord
from syncbridge.core.types import INGESTION_TAG_CODE, PROVENANCE_TAG_SYSTEM


@pytest.fixture
def transformer() -> PatientTransformer:
    return PatientTransformer()


def patient_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "resourceType": "Patient",
        "id": "patient-1",
        "meta": {"lastUpdated": "2024-01-01T12:00:00Z"},
        "identifier": [{"system": OPENSRP_ID_SYSTEM, "value": "OSR-1"}],
        "name": [{"family": "Smith", "given": ["John"]}],
        "gender": "male",
        "birthDate": "1990-05-15",
    }
    body.update(overrides)
    return body


class TestLegacyToCanonical:
    """Tests for legacy record -> FHIR Patient."""

    def test_maps_demographics(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        resource = transformer.legacy_to_canonical(make_record())

        body = resource.body
        assert body["resourceType"] == "Patient"
        assert body["identifier"] == [{"system": OPENSRP_ID_SYSTEM, "value": "OSR-1"}]
        assert body["name"][0]["family"] == "Smith"
        assert body["name"][0]["given"] == ["John"]
        assert body["gender"] == "male"
        assert body["birthDate"] == "1990-05-15"
        assert "id" not in body

    def test_adds_provenance_tag(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        resource = transformer.legacy_to_canonical(make_record())

        assert {"system": PROVENANCE_TAG_SYSTEM, "code": INGESTION_TAG_CODE} in resource.body[
            "meta"
        ]["tag"]
        assert resource.is_ingestion_origin

    def test_sets_wrapper_metadata(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        resource = transformer.legacy_to_canonical(make_record())

        assert resource.source_system == "UCS"
        assert resource.original_id == "OSR-1"
        assert resource.transformed_at is not None

    def test_includes_national_id_and_address(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        record = make_record()
        record.identifiers.national_id = "NID-9"
        record.demographics.address = Address(district="Ilala", village="Mchikichini")

        body = transformer.legacy_to_canonical(record).body

        assert {"system": NATIONAL_ID_SYSTEM, "value": "NID-9"} in body["identifier"]
        assert body["address"] == [{"district": "Ilala", "text": "Mchikichini"}]

    @pytest.mark.parametrize(

        ("code", "expected"), [("F", "female"), ("o", "other"), ("X", "unknown")]

    )
    def test_gender_mapping(
        self,
        transformer: PatientTransformer,
        make_record: Callable[..., LegacyRecord],
        code: str,
        expected: str,
    ) -> None:
        body = transformer.legacy_to_canonical(make_record(gender=code)).body
        assert body["gender"] == expected

    def test_missing_opensrp_id(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        with pytest.raises(TransformationError) as exc_info:
            transformer.legacy_to_canonical(make_record(opensrp_id=None))
        assert exc_info.value.error_code == "MISSING_OPENSRP_ID"
        assert exc_info.value.source_system == "UCS"
        assert exc_info.value.target_system == "FHIR"

    def test_missing_gender(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        with pytest.raises(TransformationError) as exc_info:
            transformer.legacy_to_canonical(make_record(gender=None))
        assert exc_info.value.error_code == "MISSING_GENDER"


class TestCanonicalToLegacy:
    """Tests for FHIR Patient -> legacy record."""

    def test_maps_patient(self, transformer: PatientTransformer) -> None:
        record = transformer.canonical_to_legacy(CanonicalResource.from_body(patient_body()))

        assert record.client_id == "OSR-1"
        assert record.demographics.first_name == "John"
        assert record.demographics.last_name == "Smith"
        assert record.demographics.gender == "M"
        assert record.demographics.birth_date == date(1990, 5, 15)
        assert record.metadata.fhir_id == "patient-1"
        assert record.metadata.source == "FHIR"

    def test_maps_national_id_and_address(self, transformer: PatientTransformer) -> None:
        body = patient_body(
            identifier=[
                {"system": OPENSRP_ID_SYSTEM, "value": "OSR-1"},
                {"system": NATIONAL_ID_SYSTEM, "value": "NID-9"},
            ],
            address=[{"district": "Ilala", "city": "Kariakoo", "text": "Mtaa 4"}],
        )

        record = transformer.canonical_to_legacy(CanonicalResource.from_body(body))

        assert record.identifiers.national_id == "NID-9"
        assert record.demographics.address == Address(
            district="Ilala", ward="Kariakoo", village="Mtaa 4"
        )

    @pytest.mark.parametrize(
        ("overrides", "code"),
        [
            ({"identifier": [{"system": "urn:other", "value": "x"}]}, "MISSING_OPENSRP_ID"),
            ({"name": []}, "MISSING_NAME"),
            ({"name": [{"family": "Smith", "given": []}]}, "MISSING_GIVEN_NAME"),
            ({"name": [{"given": ["John"]}]}, "MISSING_FAMILY_NAME"),
            ({"gender": None}, "MISSING_GENDER"),
        ],
    )
    def test_required_fields(
        self, transformer: PatientTransformer, overrides: dict[str, Any], code: str
    ) -> None:
        resource = CanonicalResource.from_body(patient_body(**overrides))

        with pytest.raises(TransformationError) as exc_info:
            transformer.canonical_to_legacy(resource)

        assert exc_info.value.error_code == code
        assert exc_info.value.source_system == "FHIR"
        assert f"(Error Code: {code})" in str(exc_info.value)

    def test_unsupported_resource_type(self, transformer: PatientTransformer) -> None:
        resource = CanonicalResource.from_body({"resourceType": "Observation", "id": "obs-1"})

        with pytest.raises(TransformationError) as exc_info:
            transformer.canonical_to_legacy(resource)

        assert exc_info.value.error_code == "UNSUPPORTED_RESOURCE_TYPE"

    def test_mapping_back_keeps_demographics(
        self, transformer: PatientTransformer, make_record: Callable[..., LegacyRecord]
    ) -> None:
        """A record sent through both directions keeps its demographics."""
        record = make_record()
        resource = transformer.legacy_to_canonical(record)

        back = transformer.canonical_to_legacy(resource)

        assert back.client_id == record.client_id
        assert back.demographics == record.demographics
