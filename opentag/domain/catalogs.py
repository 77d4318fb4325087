"""Fixed catalogs shared by the record encoder and decoder.

Index and bit positions in these tuples ARE the wire format of the compact
record string. Append-only changes still break older decoders, so any edit
requires bumping ``CATALOG_VERSION`` and issuing new tags.
"""

from typing import Sequence, TypeVar

from opentag.domain.enums import (
    Allergy,
    BloodGroup,
    MedicalCondition,
    Medication,
    SubstanceUse,
)

T = TypeVar("T")

CATALOG_VERSION = 1

BLOOD_GROUPS: tuple[BloodGroup, ...] = (
    BloodGroup.A_POSITIVE,
    BloodGroup.A_NEGATIVE,
    BloodGroup.B_POSITIVE,
    BloodGroup.B_NEGATIVE,
    BloodGroup.O_POSITIVE,
    BloodGroup.O_NEGATIVE,
    BloodGroup.AB_POSITIVE,
    BloodGroup.AB_NEGATIVE,
)

SUBSTANCE_USE: tuple[SubstanceUse, ...] = (
    SubstanceUse.NONE,
    SubstanceUse.ALCOHOL_ONLY,
    SubstanceUse.TOBACCO_ONLY,
    SubstanceUse.BOTH,
)

ALLERGIES: tuple[Allergy, ...] = (
    Allergy.POLLEN,
    Allergy.DUST,
    Allergy.PET_DANDER,
    Allergy.PEANUTS,
    Allergy.SHELLFISH,
)

MEDICATIONS: tuple[Medication, ...] = (
    Medication.ASPIRIN,
    Medication.IBUPROFEN,
    Medication.PENICILLIN,
    Medication.INSULIN,
    Medication.METFORMIN,
)

MEDICAL_CONDITIONS: tuple[MedicalCondition, ...] = (
    MedicalCondition.ASTHMA,
    MedicalCondition.DIABETES,
    MedicalCondition.HYPERTENSION,
    MedicalCondition.ARTHRITIS,
    MedicalCondition.MIGRAINE,
)


def index_of(catalog: Sequence[T], item: T) -> int:
    """Return the wire index of ``item`` within ``catalog``.

    Raises:
        ValueError: If the item is not part of the catalog
    """
    try:
        return catalog.index(item)
    except ValueError:
        raise ValueError(f"{item!r} is not part of catalog version {CATALOG_VERSION}") from None


def in_catalog_order(catalog: Sequence[T], items) -> list[T]:
    """Return ``items`` sorted by their position in ``catalog``."""
    return [item for item in catalog if item in items]
