"""Domain enumerations for OpenTag.

The string values double as display labels. Wire positions are NOT derived
from enum definition order; see :mod:`opentag.domain.catalogs` for the
ordered tables the codec uses.
"""

from enum import Enum
from typing import Optional


class BloodGroup(str, Enum):
    """ABO/Rh blood group."""
    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"


class SubstanceUse(str, Enum):
    """Substance-use category."""
    NONE = "None"
    ALCOHOL_ONLY = "Alcohol only"
    TOBACCO_ONLY = "Tobacco only"
    BOTH = "Both"


class Allergy(str, Enum):
    POLLEN = "Pollen"
    DUST = "Dust"
    PET_DANDER = "Pet Dander"
    PEANUTS = "Peanuts"
    SHELLFISH = "Shellfish"


class Medication(str, Enum):
    ASPIRIN = "Aspirin"
    IBUPROFEN = "Ibuprofen"
    PENICILLIN = "Penicillin"
    INSULIN = "Insulin"
    METFORMIN = "Metformin"


class MedicalCondition(str, Enum):
    ASTHMA = "Asthma"
    DIABETES = "Diabetes"
    HYPERTENSION = "Hypertension"
    ARTHRITIS = "Arthritis"
    MIGRAINE = "Migraine"


class BmiCategory(str, Enum):
    UNDERWEIGHT = "Underweight"
    NORMAL = "Normal"
    OVERWEIGHT = "Overweight"
    OBESE = "Obese"


class DeliveryMode(str, Enum):
    """How a tag carries its profile."""
    ONLINE = "online"
    SERVERLESS = "serverless"


class CipherMethod(str, Enum):
    """Cipher generation used to seal an envelope.

    ``XOR`` is the legacy, unauthenticated stream cipher and is implied when
    an envelope carries no method marker. ``AES_GCM`` is the current,
    authenticated generation.
    """
    XOR = "XOR"
    AES_GCM = "AES-GCM"

    @classmethod
    def from_marker(cls, marker: Optional[str]) -> "CipherMethod":
        """Resolve an explicit or absent method marker.

        Parameters:
            marker: Marker value as stored or transported, or None

        Returns:
            CipherMethod: ``XOR`` when the marker is absent or empty

        Raises:
            ValueError: If the marker names an unknown method
        """
        if not marker:
            return cls.XOR
        return cls(marker)

    @property
    def is_authenticated(self) -> bool:
        """Whether a successful open proves the PIN was correct."""
        return self is CipherMethod.AES_GCM
