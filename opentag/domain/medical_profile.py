"""Medical Profile Schema Definitions.

This module defines the models a tag carries: the MedicalProfile a person
maintains, the StoredTag shape exchanged with the record store, the preview
shown before a PIN is entered, and the IssuedTag returned at issuance.

Security Impact:
    - Only full name and blood group are ever kept outside an envelope
    - Schema validation keeps values inside the widths the record format allows
    - Models are immutable once validated

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Validated at runtime via Pydantic V2
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from opentag.domain.catalogs import (
    ALLERGIES,
    MEDICAL_CONDITIONS,
    MEDICATIONS,
    in_catalog_order,
)
from opentag.domain.enums import (
    Allergy,
    BloodGroup,
    CipherMethod,
    DeliveryMode,
    MedicalCondition,
    Medication,
    SubstanceUse,
)

MIN_BIRTH_YEAR = 1000
MAX_BIRTH_YEAR = 2999
MAX_MEASUREMENT = 999


class MedicalProfile(BaseModel):
    """Medical profile a person carries on their tag.

    Parameters:
        full_name: Free-text full name
        date_of_birth: Calendar date of birth (years 1000-2999)
        height_cm: Height in whole centimetres (0-999)
        weight_kg: Weight in whole kilograms (0-999)
        blood_group: Blood group
        substance_use: Substance-use category
        pregnant: Pregnancy status
        organ_donor: Organ-donor status
        allergies: Subset of the allergy catalog
        medications: Subset of the medication catalog
        medical_conditions: Subset of the medical-condition catalog
        emergency_contact: Emergency contact phone number, digits only
    """

    model_config = ConfigDict(frozen=True)

    full_name: str = Field(..., min_length=1, description="Full name")
    date_of_birth: date = Field(..., description="Date of birth")
    height_cm: int = Field(..., ge=0, le=MAX_MEASUREMENT, description="Height in cm")
    weight_kg: int = Field(..., ge=0, le=MAX_MEASUREMENT, description="Weight in kg")
    blood_group: BloodGroup = Field(..., description="Blood group")
    substance_use: SubstanceUse = Field(SubstanceUse.NONE, description="Substance-use category")
    pregnant: bool = Field(False, description="Pregnancy status")
    organ_donor: bool = Field(False, description="Organ-donor status")
    allergies: frozenset[Allergy] = Field(default_factory=frozenset)
    medications: frozenset[Medication] = Field(default_factory=frozenset)
    medical_conditions: frozenset[MedicalCondition] = Field(default_factory=frozenset)
    emergency_contact: str = Field(
        ...,
        pattern=r"^\d+$",
        description="Emergency contact phone number (digits only)"
    )

    @field_validator("date_of_birth")
    @classmethod
    def validate_birth_year(cls, v: date) -> date:
        """Keep the year within what the 8-digit DOB field can represent."""
        if not MIN_BIRTH_YEAR <= v.year <= MAX_BIRTH_YEAR:
            raise ValueError(
                f"Birth year must be between {MIN_BIRTH_YEAR} and {MAX_BIRTH_YEAR}, got {v.year}"
            )
        return v

    @field_serializer("allergies")
    def serialize_allergies(self, value: frozenset[Allergy]) -> list[Allergy]:
        return in_catalog_order(ALLERGIES, value)

    @field_serializer("medications")
    def serialize_medications(self, value: frozenset[Medication]) -> list[Medication]:
        return in_catalog_order(MEDICATIONS, value)

    @field_serializer("medical_conditions")
    def serialize_conditions(self, value: frozenset[MedicalCondition]) -> list[MedicalCondition]:
        return in_catalog_order(MEDICAL_CONDITIONS, value)


class StoredTag(BaseModel):
    """Record-store document for an online tag.

    Field aliases follow the store's document shape (``fullName``,
    ``bloodGroup``, ``encryptedBlob``, ``isEncrypted``, ``encryptionMethod``).
    When ``is_encrypted`` is False the blob holds the plaintext JSON profile.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    full_name: str = Field(..., alias="fullName")
    blood_group: BloodGroup = Field(..., alias="bloodGroup")
    blob: str = Field(..., alias="encryptedBlob")
    is_encrypted: bool = Field(True, alias="isEncrypted")
    encryption_method: Optional[CipherMethod] = Field(None, alias="encryptionMethod")

    @property
    def cipher_method(self) -> CipherMethod:
        """Cipher generation of the blob; legacy XOR when no marker is stored."""
        return self.encryption_method or CipherMethod.XOR


class TagPreview(BaseModel):
    """Placeholder shown while an online tag awaits its PIN."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    blood_group: BloodGroup


class IssuedTag(BaseModel):
    """Outcome of issuing a tag.

    Parameters:
        mode: Delivery mode of the tag
        payload: Tag ID (online) or query payload (serverless)
        url: URL to encode in the QR code
        cipher_method: Cipher generation used to seal the tag, if any
    """

    model_config = ConfigDict(frozen=True)

    mode: DeliveryMode
    payload: str
    url: str
    cipher_method: Optional[CipherMethod] = None
