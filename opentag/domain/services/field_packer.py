"""Fixed-width field packer.

Packs the scalar profile fields into a 16-digit decimal string and carries it
as base62:

    DOB (8, YYYYMMDD) | height (3) | weight (3) | blood group (1) | substance use (1)

The emergency contact is carried separately as the base62 form of the phone
number read as a decimal integer. Leading zeros of the phone number do not
survive the round trip.
"""

from dataclasses import dataclass

from opentag.domain.ports import ProfileValidationError
from opentag.domain.services import base62

DOB_WIDTH = 8
HEIGHT_WIDTH = 3
WEIGHT_WIDTH = 3
INDEX_WIDTH = 1
NUMERIC_WIDTH = DOB_WIDTH + HEIGHT_WIDTH + WEIGHT_WIDTH + 2 * INDEX_WIDTH

_DOB_SLICE = slice(0, 8)
_HEIGHT_SLICE = slice(8, 11)
_WEIGHT_SLICE = slice(11, 14)
_BLOOD_GROUP_POSITION = 14
_SUBSTANCE_USE_POSITION = 15


@dataclass(frozen=True)
class NumericFields:
    """Scalar fields as carried in the numeric part of a record.

    Attributes:
        date_of_birth: Eight digits, YYYYMMDD
        height_cm: Height in cm (fits 3 digits)
        weight_kg: Weight in kg (fits 3 digits)
        blood_group_index: Index into the blood-group catalog
        substance_use_index: Index into the substance-use catalog
    """
    date_of_birth: str
    height_cm: int
    weight_kg: int
    blood_group_index: int
    substance_use_index: int


def _fixed_width(value: int, width: int, field: str) -> str:
    text = str(value)
    if value < 0 or len(text) > width:
        raise ProfileValidationError(f"{field} value {value} does not fit in {width} digits", field=field)
    return text.zfill(width)


def to_digits(fields: NumericFields) -> str:
    """Build the 16-digit decimal string for ``fields``.

    Raises:
        ProfileValidationError: If a component does not fit its width
    """
    dob = fields.date_of_birth
    if len(dob) != DOB_WIDTH or not dob.isdigit():
        raise ProfileValidationError(f"date_of_birth must be {DOB_WIDTH} digits (YYYYMMDD)", field="date_of_birth")

    return (
        dob
        + _fixed_width(fields.height_cm, HEIGHT_WIDTH, "height_cm")
        + _fixed_width(fields.weight_kg, WEIGHT_WIDTH, "weight_kg")
        + _fixed_width(fields.blood_group_index, INDEX_WIDTH, "blood_group")
        + _fixed_width(fields.substance_use_index, INDEX_WIDTH, "substance_use")
    )


def from_digits(digits: str) -> NumericFields:
    """Slice a 16-digit decimal string back into its fields."""
    if len(digits) != NUMERIC_WIDTH or not digits.isdigit():
        raise ValueError(f"Expected {NUMERIC_WIDTH} decimal digits, got {len(digits)} characters")

    return NumericFields(
        date_of_birth=digits[_DOB_SLICE],
        height_cm=int(digits[_HEIGHT_SLICE]),
        weight_kg=int(digits[_WEIGHT_SLICE]),
        blood_group_index=int(digits[_BLOOD_GROUP_POSITION]),
        substance_use_index=int(digits[_SUBSTANCE_USE_POSITION]),
    )


def encode_numeric_part(fields: NumericFields) -> str:
    """Pack ``fields`` into the base62 numeric part of a record."""
    return base62.encode(int(to_digits(fields)))


def decode_numeric_part(numeric_part: str) -> NumericFields:
    """Unpack the base62 numeric part of a record.

    The decoded value is re-padded to 16 digits before slicing, since base62
    drops leading zeros.

    Raises:
        MalformedRecordError: If the part is not base62 or overflows 16 digits
    """
    digits = base62.decode_to_digits(numeric_part, NUMERIC_WIDTH, component="numeric")
    return from_digits(digits)


def encode_contact(phone_digits: str) -> str:
    """Pack a phone number (digits only) into the contact part of a record."""
    if not phone_digits or not phone_digits.isdigit():
        raise ProfileValidationError("Emergency contact must contain digits only", field="emergency_contact")
    return base62.encode(int(phone_digits))


def decode_contact(contact_part: str) -> str:
    """Unpack the contact part; leading zeros of the original number are lost."""
    return str(base62.decode(contact_part, component="contact"))
