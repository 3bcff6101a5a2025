"""Schema validation of legacy client records.

The legacy API's JSON shape is described with pydantic models; a record is
valid when its wire form parses against them.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from syncbridge.clients.base import ValidationResult
from syncbridge.core.models import LegacyRecord

logger = logging.getLogger(__name__)


class _IdentifiersSchema(BaseModel):
    opensrp_id: str = Field(min_length=1)
    national_id: str | None = None


class _AddressSchema(BaseModel):
    district: str | None = None
    ward: str | None = None
    village: str | None = None


class _DemographicsSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName", min_length=1)
    last_name: str = Field(alias="lastName", min_length=1)
    gender: Literal["M", "F", "O"]
    birth_date: date | None = Field(default=None, alias="birthDate")
    address: _AddressSchema | None = None


class _ClinicalDataSchema(BaseModel):
    observations: list[Any] = []
    medications: list[Any] = []
    procedures: list[Any] = []


class LegacyClientSchema(BaseModel):
    """Wire schema of a legacy client record."""

    identifiers: _IdentifiersSchema
    demographics: _DemographicsSchema
    clinicalData: _ClinicalDataSchema | None = None  # noqa: N815
    metadata: dict[str, Any] | None = None


class LegacyRecordValidator:
    """Validates legacy records against LegacyClientSchema."""

    def validate(self, record: LegacyRecord) -> ValidationResult:
        """Validate a record.

        Returns:
            ValidationResult with the joined error messages when invalid.
        """
        try:
            LegacyClientSchema.model_validate(record.to_dict())
        except ValidationError as e:
            message = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            logger.warning("Legacy client validation failed: %s", message)
            return ValidationResult(valid=False, error_message=message)
        return ValidationResult(valid=True)
