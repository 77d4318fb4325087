"""Bit-flag packer.

Seventeen flags travel as one base62 integer. Bit 0 is the leftmost
character of the zero-padded binary string:

    bit 0       pregnant
    bit 1       organ donor
    bits 2-6    allergies, catalog order
    bits 7-11   medications, catalog order
    bits 12-16  medical conditions, catalog order

A vector with no flag set travels as the literal sentinel ``"0"``, which is a
different string from ``base62.encode(0) == "A"``.
"""

from dataclasses import dataclass, field

from opentag.domain.catalogs import ALLERGIES, MEDICAL_CONDITIONS, MEDICATIONS
from opentag.domain.enums import Allergy, MedicalCondition, Medication
from opentag.domain.ports import MalformedRecordError
from opentag.domain.services import base62

NO_FLAGS_SENTINEL = "0"

PREGNANT_BIT = 0
ORGAN_DONOR_BIT = 1
ALLERGY_OFFSET = 2
MEDICATION_OFFSET = ALLERGY_OFFSET + len(ALLERGIES)
CONDITION_OFFSET = MEDICATION_OFFSET + len(MEDICATIONS)
FLAG_WIDTH = CONDITION_OFFSET + len(MEDICAL_CONDITIONS)


@dataclass(frozen=True)
class FlagSet:
    """Boolean and checklist flags of a profile."""
    pregnant: bool = False
    organ_donor: bool = False
    allergies: frozenset[Allergy] = field(default_factory=frozenset)
    medications: frozenset[Medication] = field(default_factory=frozenset)
    medical_conditions: frozenset[MedicalCondition] = field(default_factory=frozenset)

    def is_empty(self) -> bool:
        return not (
            self.pregnant
            or self.organ_donor
            or self.allergies
            or self.medications
            or self.medical_conditions
        )


def _bit(flag: bool) -> str:
    return "1" if flag else "0"


def to_bits(flags: FlagSet) -> str:
    """Build the 17-character ``'0'``/``'1'`` string for ``flags``."""
    bits = [_bit(flags.pregnant), _bit(flags.organ_donor)]
    bits.extend(_bit(item in flags.allergies) for item in ALLERGIES)
    bits.extend(_bit(item in flags.medications) for item in MEDICATIONS)
    bits.extend(_bit(item in flags.medical_conditions) for item in MEDICAL_CONDITIONS)
    return "".join(bits)


def from_bits(bits: str) -> FlagSet:
    """Read a 17-character bit string back into a FlagSet."""
    if len(bits) != FLAG_WIDTH or set(bits) - {"0", "1"}:
        raise ValueError(f"Expected {FLAG_WIDTH} binary digits")

    def selected(catalog, offset):
        return frozenset(item for i, item in enumerate(catalog) if bits[offset + i] == "1")

    return FlagSet(
        pregnant=bits[PREGNANT_BIT] == "1",
        organ_donor=bits[ORGAN_DONOR_BIT] == "1",
        allergies=selected(ALLERGIES, ALLERGY_OFFSET),
        medications=selected(MEDICATIONS, MEDICATION_OFFSET),
        medical_conditions=selected(MEDICAL_CONDITIONS, CONDITION_OFFSET),
    )


def encode_binary_part(flags: FlagSet) -> str:
    """Pack ``flags`` into the binary part of a record.

    An empty flag set yields the sentinel. A value whose base62 form is the
    sentinel character itself gets a leading zero digit (``"A0"``) so it is
    never read back as "no flags".
    """
    if flags.is_empty():
        return NO_FLAGS_SENTINEL

    encoded = base62.encode(int(to_bits(flags), 2))
    if encoded == NO_FLAGS_SENTINEL:
        encoded = base62.BASE62_ALPHABET[0] + encoded
    return encoded


def decode_binary_part(binary_part: str) -> FlagSet:
    """Unpack the binary part of a record.

    Raises:
        MalformedRecordError: If the part is not base62 or overflows 17 bits
    """
    if binary_part == NO_FLAGS_SENTINEL:
        return FlagSet()
    bits = base62.decode_to_bits(binary_part, FLAG_WIDTH, component="binary")
    try:
        return from_bits(bits)
    except ValueError as e:
        raise MalformedRecordError(str(e), component="binary") from e
