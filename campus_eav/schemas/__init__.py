"""Pydantic schemas for EAV definitions, values and workflow results."""

from campus_eav.schemas.attribute import (
    AttributeDefinitionRead,
    AttributeDetail,
    AttributeSpec,
    AttributeUpdate,
    MigrationStats,
    SetResult,
    ValidationRules,
)

__all__ = [
    # Definitions
    "AttributeSpec",
    "AttributeUpdate",
    "AttributeDefinitionRead",
    "ValidationRules",
    # Values
    "AttributeDetail",
    "SetResult",
    # Workflows
    "MigrationStats",
]
