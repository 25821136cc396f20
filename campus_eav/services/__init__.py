"""Service layer modules."""

from campus_eav.services.eav_errors import (
    AttributeNotFoundError,
    EavConflictError,
    EavNotFoundError,
    EavServiceError,
    EavValidationError,
    EntityNotFoundError,
    EntityTypeNotFoundError,
    MigrationFailure,
    RuleViolationError,
    TypeCoercionError,
    UnsupportedStorageError,
    ValueTypeChangeError,
)
from campus_eav.services.entity_type_service import EntityRef

__all__ = [
    "EntityRef",
    # Errors
    "EavServiceError",
    "EavNotFoundError",
    "EntityTypeNotFoundError",
    "AttributeNotFoundError",
    "EntityNotFoundError",
    "EavValidationError",
    "TypeCoercionError",
    "RuleViolationError",
    "ValueTypeChangeError",
    "EavConflictError",
    "UnsupportedStorageError",
    "MigrationFailure",
]
