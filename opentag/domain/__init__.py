"""Domain layer for OpenTag.

This module contains the medical profile schema, the fixed catalogs that
define the compact record format, the error taxonomy and the record store port.
All domain models are pure Python with no external dependencies beyond Pydantic.
"""

from .medical_profile import (
    IssuedTag,
    MedicalProfile,
    StoredTag,
    TagPreview,
)

__all__ = [
    "IssuedTag",
    "MedicalProfile",
    "StoredTag",
    "TagPreview",
]
