"""Adapters layer for OpenTag.

Adapters implement Port interfaces defined in the domain layer and handle
data transformation between external systems and domain models.
"""
