"""Compact record codec.

Maps a MedicalProfile to and from the dash-delimited record string embedded
(encrypted) in serverless tags.

Security Impact:
    - Decoding never substitutes defaults for unreadable components
    - Out-of-table indices and impossible dates raise MalformedRecordError

Architecture:
    - Pure domain service composed of the base62, field and flag packers
    - Decoding stops at DecodedRecord so callers can inspect raw fields
      (e.g. the DOB plausibility check) before building a validated profile
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError

from opentag.domain.catalogs import BLOOD_GROUPS, SUBSTANCE_USE, index_of
from opentag.domain.medical_profile import MedicalProfile
from opentag.domain.ports import MalformedRecordError, ProfileValidationError
from opentag.domain.services import field_packer, flag_packer
from opentag.domain.services.field_packer import NumericFields
from opentag.domain.services.flag_packer import FlagSet
from opentag.domain.services.record_assembler import RECORD_DELIMITER, assemble, disassemble

logger = logging.getLogger(__name__)

DOB_FORMAT = "%Y%m%d"


@dataclass(frozen=True)
class DecodedRecord:
    """Raw components of a decoded record string."""
    fields: NumericFields
    flags: FlagSet
    name: str
    emergency_contact: str

    def to_profile(self) -> MedicalProfile:
        """Build a validated MedicalProfile from the raw components.

        Raises:
            MalformedRecordError: For out-of-table indices, impossible dates or
                values the profile schema rejects
        """
        fields = self.fields
        if fields.blood_group_index >= len(BLOOD_GROUPS):
            raise MalformedRecordError(
                f"Unknown blood group index {fields.blood_group_index}", component="numeric"
            )
        if fields.substance_use_index >= len(SUBSTANCE_USE):
            raise MalformedRecordError(
                f"Unknown substance-use index {fields.substance_use_index}", component="numeric"
            )
        try:
            date_of_birth = datetime.strptime(fields.date_of_birth, DOB_FORMAT).date()
        except ValueError as e:
            raise MalformedRecordError("Date of birth is not a calendar date", component="numeric") from e

        try:
            return MedicalProfile(
                full_name=self.name,
                date_of_birth=date_of_birth,
                height_cm=fields.height_cm,
                weight_kg=fields.weight_kg,
                blood_group=BLOOD_GROUPS[fields.blood_group_index],
                substance_use=SUBSTANCE_USE[fields.substance_use_index],
                pregnant=self.flags.pregnant,
                organ_donor=self.flags.organ_donor,
                allergies=self.flags.allergies,
                medications=self.flags.medications,
                medical_conditions=self.flags.medical_conditions,
                emergency_contact=self.emergency_contact,
            )
        except PydanticValidationError as e:
            raise MalformedRecordError(
                f"Decoded record is not a valid profile ({e.error_count()} errors)",
                component="record",
            ) from e


def profile_to_fields(profile: MedicalProfile) -> NumericFields:
    return NumericFields(
        date_of_birth=profile.date_of_birth.strftime(DOB_FORMAT),
        height_cm=profile.height_cm,
        weight_kg=profile.weight_kg,
        blood_group_index=index_of(BLOOD_GROUPS, profile.blood_group),
        substance_use_index=index_of(SUBSTANCE_USE, profile.substance_use),
    )


def profile_to_flags(profile: MedicalProfile) -> FlagSet:
    return FlagSet(
        pregnant=profile.pregnant,
        organ_donor=profile.organ_donor,
        allergies=profile.allergies,
        medications=profile.medications,
        medical_conditions=profile.medical_conditions,
    )


def encode_profile(profile: MedicalProfile) -> str:
    """Encode a profile as a record string.

    Raises:
        ProfileValidationError: If the name contains the record delimiter or a
            non-ASCII character, or a field does not fit its fixed width
    """
    if RECORD_DELIMITER in profile.full_name:
        raise ProfileValidationError(
            f"Full name must not contain '{RECORD_DELIMITER}' in a compact record",
            field="full_name",
        )
    if not profile.full_name.isascii():
        raise ProfileValidationError(
            "Full name must be ASCII in a compact record",
            field="full_name",
        )
    record = assemble(
        field_packer.encode_numeric_part(profile_to_fields(profile)),
        flag_packer.encode_binary_part(profile_to_flags(profile)),
        profile.full_name,
        field_packer.encode_contact(profile.emergency_contact),
    )
    logger.debug(f"Encoded compact record of {len(record)} characters")
    return record


def decode_record(record: str) -> DecodedRecord:
    """Decode a record string into its raw components.

    Raises:
        MalformedRecordError: If the record does not split into four parts or
            a component cannot be decoded
    """
    parts = disassemble(record)
    return DecodedRecord(
        fields=field_packer.decode_numeric_part(parts.numeric_part),
        flags=flag_packer.decode_binary_part(parts.binary_part),
        name=parts.name,
        emergency_contact=field_packer.decode_contact(parts.contact_part),
    )
