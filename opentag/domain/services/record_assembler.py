"""Record assembler: joins and splits the four record components.

Wire grammar (ASCII, case-sensitive)::

    <base62>-<base62 or "0">-<name>-<base62>

The name is carried verbatim, so a name containing the delimiter cannot be
split back; producers must reject such names before assembling.
"""

from dataclasses import dataclass

from opentag.domain.ports import MalformedRecordError

RECORD_DELIMITER = "-"
RECORD_FIELD_COUNT = 4


@dataclass(frozen=True)
class EncodedRecord:
    """The four textual components of a record string."""
    numeric_part: str
    binary_part: str
    name: str
    contact_part: str

    def __str__(self) -> str:
        return assemble(self.numeric_part, self.binary_part, self.name, self.contact_part)


def assemble(numeric_part: str, binary_part: str, name: str, contact_part: str) -> str:
    return RECORD_DELIMITER.join((numeric_part, binary_part, name, contact_part))


def disassemble(record: str) -> EncodedRecord:
    """Split a record string into its components.

    Raises:
        MalformedRecordError: Unless splitting yields exactly four parts
    """
    parts = record.split(RECORD_DELIMITER)
    if len(parts) != RECORD_FIELD_COUNT:
        raise MalformedRecordError(
            f"Record must have {RECORD_FIELD_COUNT} '{RECORD_DELIMITER}'-separated parts, got {len(parts)}",
            component="record",
            details={"part_count": len(parts)},
        )
    return EncodedRecord(*parts)
