"""Attribute definition catalog, per entity type.

The catalog declares rules; the value store enforces them at write time.
Functions here flush but never commit; the caller owns the transaction.
"""

import logging
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.models import AttributeDefinition, EntityType
from campus_eav.db.types import utcnow
from campus_eav.schemas.attribute import AttributeSpec, AttributeUpdate
from campus_eav.services import attribute_value_service
from campus_eav.services.eav_errors import (
    AttributeNotFoundError,
    EavConflictError,
    RuleViolationError,
    UnsupportedStorageError,
    ValueTypeChangeError,
)

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = ("is_required", "sort_order", "is_active")


# =============================================================================
# Lookup
# =============================================================================


def get_attribute(
    db: Session,
    entity_type_id: UUID,
    name: str,
    *,
    include_inactive: bool = False,
) -> AttributeDefinition | None:
    """Get a non-deleted definition by name."""
    query = select(AttributeDefinition).where(
        AttributeDefinition.entity_type_id == entity_type_id,
        AttributeDefinition.name == name,
        AttributeDefinition.deleted_at.is_(None),
    )
    if not include_inactive:
        query = query.where(AttributeDefinition.is_active.is_(True))
    return db.execute(query).scalar_one_or_none()


def require_attribute(db: Session, entity_type: EntityType, name: str) -> AttributeDefinition:
    definition = get_attribute(db, entity_type.id, name)
    if definition is None:
        raise AttributeNotFoundError(
            f"Attribute '{name}' not found for entity type '{entity_type.name}'"
        )
    return definition


def list_attributes(
    db: Session,
    entity_type_id: UUID,
    *,
    active_only: bool = True,
    name_prefix: str | None = None,
    names: list[str] | None = None,
) -> list[AttributeDefinition]:
    """
    Non-deleted definitions of an entity type, by sort_order then name.

    Args:
        active_only: Skip definitions with is_active=False
        name_prefix: Only names starting with this prefix (e.g. "student_")
        names: Only these names
    """
    query = select(AttributeDefinition).where(
        AttributeDefinition.entity_type_id == entity_type_id,
        AttributeDefinition.deleted_at.is_(None),
    )
    if active_only:
        query = query.where(AttributeDefinition.is_active.is_(True))
    if name_prefix:
        query = query.where(AttributeDefinition.name.startswith(name_prefix, autoescape=True))
    if names is not None:
        query = query.where(AttributeDefinition.name.in_(names))

    query = query.order_by(AttributeDefinition.sort_order, AttributeDefinition.name)
    return list(db.execute(query).scalars())


# =============================================================================
# Definition
# =============================================================================


def _insert_definition(db: Session, entity_type: EntityType, spec: AttributeSpec) -> AttributeDefinition:
    definition = AttributeDefinition(
        entity_type_id=entity_type.id,
        name=spec.name,
        display_name=spec.display_name,
        description=spec.description,
        value_type=spec.value_type.value,
        is_required=spec.is_required,
        is_multi_valued=spec.is_multi_valued,
        default_value=spec.default_value,
        validation_rules=spec.validation_rules.to_storage() if spec.validation_rules else None,
        sort_order=spec.sort_order,
        is_active=spec.is_active,
    )
    try:
        with db.begin_nested():
            db.add(definition)
    except IntegrityError as exc:
        raise EavConflictError(f"Attribute '{spec.name}' already exists") from exc
    return definition


def _check_default(
    name: str,
    value_type: str,
    rules: dict | None,
    default_value: str | None,
) -> None:
    # Reject defaults that would fail on read
    if default_value is None:
        return
    candidate = AttributeDefinition(
        name=name, value_type=value_type, validation_rules=rules, is_required=False
    )
    attribute_value_service.prepare_value(candidate, default_value)


def define_attribute(
    db: Session,
    entity_type: EntityType,
    spec: AttributeSpec,
) -> tuple[AttributeDefinition, bool]:
    """
    Create a definition unless one with the same name already exists.

    Existing definitions are returned untouched, so setup can be re-run.

    Returns:
        (definition, created)
    """
    existing = get_attribute(db, entity_type.id, spec.name, include_inactive=True)
    if existing:
        return existing, False

    if spec.is_multi_valued and entity_type.use_entity_specific_table:
        raise UnsupportedStorageError(
            f"'{entity_type.name}' uses an entity-specific table; "
            f"multi-valued attribute '{spec.name}' is not supported"
        )

    _check_default(
        spec.name,
        spec.value_type.value,
        spec.validation_rules.to_storage() if spec.validation_rules else None,
        spec.default_value,
    )

    try:
        definition = _insert_definition(db, entity_type, spec)
    except EavConflictError:
        # Race condition: another transaction created it
        existing = get_attribute(db, entity_type.id, spec.name, include_inactive=True)
        if existing:
            return existing, False
        raise

    logger.debug(
        "Defined attribute",
        extra=build_log_context(
            entity_type=entity_type.name,
            attribute=spec.name,
            operation="define_attribute",
        ),
    )
    return definition, True


def update_attribute(
    db: Session,
    definition: AttributeDefinition,
    update: AttributeUpdate,
) -> AttributeDefinition:
    """
    Apply an admin update to a definition.

    The resulting type, rules and default are checked together before
    anything is assigned, so a rejected update leaves the definition as it was.

    Raises:
        ValueTypeChangeError: value_type changes while values are stored
        RuleViolationError: rules don't fit the value type
        TypeCoercionError: default no longer coerces to the value type
    """
    fields = {
        field: value
        for field, value in update.model_dump(exclude_unset=True).items()
        if value is not None or field not in NON_NULLABLE_FIELDS
    }

    value_type = definition.value_type
    new_type = fields.pop("value_type", None)
    if new_type is not None and new_type.value != definition.value_type:
        stored = attribute_value_service.count_values(db, definition)
        if stored:
            raise ValueTypeChangeError(
                definition.name,
                f"{stored} stored value(s) would be orphaned; migrate them first",
            )
        value_type = new_type.value

    rules = definition.validation_rules
    if "validation_rules" in fields:
        fields.pop("validation_rules")
        rules = update.validation_rules.to_storage() if update.validation_rules else None

    if rules:
        try:
            AttributeSpec(name=definition.name, value_type=value_type, validation_rules=rules)
        except ValidationError as exc:
            raise RuleViolationError(
                definition.name, "validation_rules", exc.errors()[0]["msg"]
            ) from exc

    _check_default(
        definition.name,
        value_type,
        rules,
        fields.get("default_value", definition.default_value),
    )

    definition.value_type = value_type
    definition.validation_rules = rules
    for field, value in fields.items():
        setattr(definition, field, value)

    db.flush()
    return definition


def retire_attribute(db: Session, definition: AttributeDefinition) -> None:
    """Soft-delete a definition. Stored values are left alone."""
    definition.deleted_at = utcnow()
    definition.is_active = False
    db.flush()
    logger.info(
        "Retired attribute",
        extra=build_log_context(attribute=definition.name, operation="retire_attribute"),
    )
