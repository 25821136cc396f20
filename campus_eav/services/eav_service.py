"""EAV service facade - the interface domain code uses for dynamic attributes.

Resolves entity type and attribute names, delegates to the catalog and the
value store, and owns the transaction boundary (commits on success).
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.base import Base
from campus_eav.db.enums import AuditAction, SearchOperator
from campus_eav.db.models import AttributeDefinition, AttributeValue
from campus_eav.db.types import utcnow
from campus_eav.schemas.attribute import AttributeDetail, AttributeSpec, AttributeUpdate, SetResult
from campus_eav.services import (
    attribute_catalog_service,
    attribute_value_service,
    eav_audit_service,
    entity_type_service,
)
from campus_eav.services.eav_errors import (
    AttributeNotFoundError,
    EavNotFoundError,
    EavValidationError,
    MigrationFailure,
    RuleViolationError,
    UnsupportedStorageError,
)
from campus_eav.services.entity_type_service import EntityRef

logger = logging.getLogger(__name__)


def _log_context(ref: EntityRef, operation: str, attribute: str | None = None) -> dict:
    return build_log_context(
        entity_type=ref.entity_type,
        entity_id=str(ref.entity_id),
        attribute=attribute,
        operation=operation,
    )


# =============================================================================
# Reads
# =============================================================================


def _load(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    *,
    attribute_prefix: str | None,
    attribute_names: list[str] | None,
    include_inactive: bool,
):
    ref = EntityRef.of(entity_type, entity_id)
    et = entity_type_service.require_entity_type(db, entity_type)
    definitions = attribute_catalog_service.list_attributes(
        db,
        et.id,
        active_only=not include_inactive,
        name_prefix=attribute_prefix,
        names=attribute_names,
    )
    rows = attribute_value_service.get_active_rows(db, et, ref, [d.id for d in definitions])

    grouped: dict[UUID, list] = {}
    for row in rows:
        grouped.setdefault(row.attribute_id, []).append(row)
    return definitions, grouped


def get_attributes_for(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    *,
    attribute_prefix: str | None = None,
    attribute_names: list[str] | None = None,
    include_inactive: bool = False,
) -> dict[str, Any]:
    """
    All attribute values of an entity, keyed by attribute name.

    Multi-valued attributes come back as lists in sort_order. Attributes
    with no stored value fall back to their default; without a default
    they are absent from the result.
    """
    definitions, grouped = _load(
        db, entity_type, entity_id,
        attribute_prefix=attribute_prefix,
        attribute_names=attribute_names,
        include_inactive=include_inactive,
    )

    result: dict[str, Any] = {}
    for definition in definitions:
        rows = grouped.get(definition.id)
        if rows:
            values = [attribute_value_service.read_typed(r, definition.value_type) for r in rows]
            result[definition.name] = values if definition.is_multi_valued else values[0]
            continue

        default = attribute_value_service.coerce_default(definition)
        if default is not None:
            result[definition.name] = [default] if definition.is_multi_valued else default
    return result


def get_attributes_with_details(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    *,
    attribute_prefix: str | None = None,
    attribute_names: list[str] | None = None,
    include_inactive: bool = False,
) -> list[AttributeDetail]:
    """Every definition of the entity type with its value and display metadata."""
    definitions, grouped = _load(
        db, entity_type, entity_id,
        attribute_prefix=attribute_prefix,
        attribute_names=attribute_names,
        include_inactive=include_inactive,
    )

    details = []
    for definition in definitions:
        rows = grouped.get(definition.id)
        is_default = False
        if rows:
            values = [attribute_value_service.read_typed(r, definition.value_type) for r in rows]
            value = values if definition.is_multi_valued else values[0]
        else:
            value = attribute_value_service.coerce_default(definition)
            is_default = value is not None
            if is_default and definition.is_multi_valued:
                value = [value]

        details.append(
            AttributeDetail(
                name=definition.name,
                display_name=definition.display_name,
                description=definition.description,
                value_type=definition.value_type,
                is_required=definition.is_required,
                is_multi_valued=definition.is_multi_valued,
                sort_order=definition.sort_order,
                value=value,
                is_default=is_default,
            )
        )
    return details


def list_available_attributes(
    db: Session,
    entity_type: str,
    *,
    include_inactive: bool = False,
    attribute_prefix: str | None = None,
) -> list[AttributeDefinition]:
    """Definitions of an entity type, for building admin forms."""
    et = entity_type_service.require_entity_type(db, entity_type)
    return attribute_catalog_service.list_attributes(
        db, et.id, active_only=not include_inactive, name_prefix=attribute_prefix
    )


def find_entities_by_attribute(
    db: Session,
    entity_type: str,
    attribute_name: str,
    value: Any,
    operator: SearchOperator | str = SearchOperator.EQ,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[UUID]:
    """Ids of entities whose stored value of an attribute matches."""
    et = entity_type_service.require_entity_type(db, entity_type)
    definition = attribute_catalog_service.require_attribute(db, et, attribute_name)
    return attribute_value_service.find_entity_ids(
        db, et, definition, value, operator, limit=limit, offset=offset
    )


# =============================================================================
# Writes
# =============================================================================


def _set_one(
    db: Session,
    et,
    ref: EntityRef,
    attribute_name: str,
    value: Any,
    *,
    changed_by_id: UUID | None,
    change_reason: str | None,
) -> Any:
    definition = attribute_catalog_service.require_attribute(db, et, attribute_name)
    audit = {"changed_by_id": changed_by_id, "change_reason": change_reason}

    if definition.is_multi_valued:
        if value is None:
            if definition.is_required:
                raise RuleViolationError(attribute_name, "required", "A value is required")
            attribute_value_service.delete_values(db, et, ref, definition, **audit)
            return None
        items = value if isinstance(value, (list, tuple)) else [value]
        return attribute_value_service.replace_values(db, et, ref, definition, list(items), **audit)

    return attribute_value_service.write_value(db, et, ref, definition, value, **audit)


def set_attribute(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    attribute_name: str,
    value: Any,
    *,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> Any:
    """
    Set one attribute and commit.

    A list on a multi-valued attribute replaces its full ordered set.
    None clears the value (rejected for required attributes).

    Returns:
        The stored native value (list for multi-valued attributes).
    """
    ref = EntityRef.of(entity_type, entity_id)
    et = entity_type_service.require_entity_type(db, entity_type)
    entity_type_service.validate_entity_reference(db, et, ref.entity_id)

    stored = _set_one(
        db, et, ref, attribute_name, value,
        changed_by_id=changed_by_id, change_reason=change_reason,
    )
    db.commit()
    logger.info("Attribute set", extra=_log_context(ref, "set_attribute", attribute_name))
    return stored


def bulk_set_attributes(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    values: dict[str, Any],
    *,
    atomic: bool = False,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> dict[str, SetResult]:
    """
    Set several attributes of one entity.

    Each key is written in its own savepoint: a key that fails validation
    or names an unknown attribute is reported in the result and does not
    abort the others. With atomic=True the first failure rolls back the
    whole call and raises MigrationFailure instead.
    """
    ref = EntityRef.of(entity_type, entity_id)
    et = entity_type_service.require_entity_type(db, entity_type)
    entity_type_service.validate_entity_reference(db, et, ref.entity_id)

    results: dict[str, SetResult] = {}
    for name, value in values.items():
        try:
            with db.begin_nested():
                _set_one(
                    db, et, ref, name, value,
                    changed_by_id=changed_by_id, change_reason=change_reason,
                )
        except EavValidationError as exc:
            if atomic:
                db.rollback()
                raise MigrationFailure(f"bulk_set:{name}", str(exc)) from exc
            results[name] = SetResult(status="error", error=exc.message, rule=exc.rule)
        except (EavNotFoundError, UnsupportedStorageError) as exc:
            if atomic:
                db.rollback()
                raise MigrationFailure(f"bulk_set:{name}", str(exc)) from exc
            rule = "not_found" if isinstance(exc, EavNotFoundError) else "storage"
            results[name] = SetResult(status="error", error=str(exc), rule=rule)
        else:
            results[name] = SetResult(status="ok")

    db.commit()

    failed = sum(1 for r in results.values() if r.status == "error")
    logger.info(
        "Bulk set %d attribute(s), %d failed",
        len(results) - failed,
        failed,
        extra=_log_context(ref, "bulk_set_attributes"),
    )
    return results


def append_attribute_value(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    attribute_name: str,
    value: Any,
    *,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> Any:
    """Append one element to a multi-valued attribute and commit."""
    ref = EntityRef.of(entity_type, entity_id)
    et = entity_type_service.require_entity_type(db, entity_type)
    entity_type_service.validate_entity_reference(db, et, ref.entity_id)
    definition = attribute_catalog_service.require_attribute(db, et, attribute_name)

    stored = attribute_value_service.append_value(
        db, et, ref, definition, value,
        changed_by_id=changed_by_id, change_reason=change_reason,
    )
    db.commit()
    return stored


def delete_attribute(
    db: Session,
    entity_type: str,
    entity_id: UUID | str,
    attribute_name: str,
    *,
    value_id: UUID | None = None,
    hard_delete: bool = False,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> bool:
    """
    Delete an attribute's value(s) for one entity and commit.

    Returns:
        True if any row existed
    """
    ref = EntityRef.of(entity_type, entity_id)
    et = entity_type_service.require_entity_type(db, entity_type)
    definition = attribute_catalog_service.require_attribute(db, et, attribute_name)

    deleted = attribute_value_service.delete_values(
        db, et, ref, definition,
        value_id=value_id,
        hard_delete=hard_delete,
        changed_by_id=changed_by_id,
        change_reason=change_reason,
    )
    db.commit()
    if deleted:
        logger.info("Attribute deleted", extra=_log_context(ref, "delete_attribute", attribute_name))
    return deleted > 0


# =============================================================================
# Catalog Administration
# =============================================================================


def define_attribute(
    db: Session,
    entity_type: str,
    spec: AttributeSpec,
) -> tuple[AttributeDefinition, bool]:
    """Idempotently define an attribute and commit."""
    et = entity_type_service.require_entity_type(db, entity_type)
    definition, created = attribute_catalog_service.define_attribute(db, et, spec)
    db.commit()
    return definition, created


def update_attribute(
    db: Session,
    entity_type: str,
    attribute_name: str,
    update: AttributeUpdate,
) -> AttributeDefinition:
    et = entity_type_service.require_entity_type(db, entity_type)
    definition = attribute_catalog_service.get_attribute(
        db, et.id, attribute_name, include_inactive=True
    )
    if definition is None:
        raise AttributeNotFoundError(
            f"Attribute '{attribute_name}' not found for entity type '{entity_type}'"
        )
    attribute_catalog_service.update_attribute(db, definition, update)
    db.commit()
    db.refresh(definition)
    return definition


def retire_attribute(db: Session, entity_type: str, attribute_name: str) -> None:
    et = entity_type_service.require_entity_type(db, entity_type)
    definition = attribute_catalog_service.get_attribute(
        db, et.id, attribute_name, include_inactive=True
    )
    if definition is None:
        raise AttributeNotFoundError(
            f"Attribute '{attribute_name}' not found for entity type '{entity_type}'"
        )
    attribute_catalog_service.retire_attribute(db, definition)
    db.commit()


# =============================================================================
# Maintenance
# =============================================================================


def purge_orphaned_values(db: Session, entity_type: str, *, dry_run: bool = False) -> int:
    """
    Soft-delete generic-table values whose owning row no longer exists.

    The generic table has no foreign key to its owners, so deleting a
    domain row leaves its values behind until this runs.

    Returns:
        Number of orphaned rows found (and deleted, unless dry_run)
    """
    et = entity_type_service.require_entity_type(db, entity_type)
    if et.use_entity_specific_table:
        logger.info(
            "Entity-specific table cascades deletes; nothing to purge",
            extra=build_log_context(entity_type=entity_type, operation="purge_orphans"),
        )
        return 0

    owner = Base.metadata.tables.get(et.table_name) if et.table_name else None
    if owner is None:
        raise UnsupportedStorageError(
            f"Owner table for '{entity_type}' is unknown; cannot detect orphans"
        )

    orphans = db.execute(
        select(AttributeValue, AttributeDefinition)
        .join(AttributeDefinition, AttributeDefinition.id == AttributeValue.attribute_id)
        .where(
            AttributeValue.entity_type == entity_type,
            AttributeValue.deleted_at.is_(None),
            ~exists().where(owner.c.id == AttributeValue.entity_id),
        )
    ).all()

    if dry_run or not orphans:
        logger.info(
            "Found %d orphaned value(s)%s",
            len(orphans),
            " (dry run)" if dry_run else "",
            extra=build_log_context(entity_type=entity_type, operation="purge_orphans"),
        )
        return len(orphans)

    now = utcnow()
    for value_row, definition in orphans:
        value_row.deleted_at = now
        eav_audit_service.record_change(
            db,
            EntityRef(entity_type, value_row.entity_id),
            definition.name,
            AuditAction.DELETE,
            old_value=attribute_value_service.read_typed(value_row, definition.value_type),
            change_reason="orphan purge",
        )
    db.commit()

    logger.info(
        "Purged %d orphaned value(s)",
        len(orphans),
        extra=build_log_context(entity_type=entity_type, operation="purge_orphans"),
    )
    return len(orphans)
