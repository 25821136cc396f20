"""Attribute value store with typed-column dispatch.

Every value lives in exactly one typed column, chosen by the definition's
value_type. All reads and writes go through read_typed/write_typed so
callers never branch on the type themselves.

Coercion accepts:
- string/text: str, or numbers (stringified)
- integer: int, integral float/Decimal, numeric strings ("30", "30.0")
- decimal: int, float, Decimal, numeric strings; quantized to 6 places
- boolean: bool, 0/1, true/false/yes/no/on/off/1/0 strings
- date: date, datetime (date part), ISO strings
- datetime: datetime, date (midnight), ISO strings incl. "Z"; stored as UTC
- json: any JSON-serializable value; strings are parsed as JSON
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_eav.core.config import settings
from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.enums import AuditAction, SearchOperator, ValueType
from campus_eav.db.models import (
    ENTITY_SPECIFIC_VALUE_MODELS,
    AttributeDefinition,
    AttributeValue,
    EntityType,
    TypedValueColumns,
)
from campus_eav.db.types import utcnow
from campus_eav.services import eav_audit_service
from campus_eav.services.eav_errors import (
    EavConflictError,
    EavValidationError,
    RuleViolationError,
    TypeCoercionError,
    UnsupportedStorageError,
)
from campus_eav.services.entity_type_service import EntityRef

logger = logging.getLogger(__name__)


# =============================================================================
# Typed Column Dispatch
# =============================================================================

VALUE_TYPE_COLUMNS: dict[ValueType, str] = {
    ValueType.STRING: "value_string",
    ValueType.INTEGER: "value_integer",
    ValueType.DECIMAL: "value_decimal",
    ValueType.BOOLEAN: "value_boolean",
    ValueType.DATE: "value_date",
    ValueType.DATETIME: "value_datetime",
    ValueType.TEXT: "value_text",
    ValueType.JSON: "value_json",
}

DECIMAL_QUANTUM = Decimal("0.000001")
DECIMAL_LIMIT = Decimal(10) ** 12  # Numeric(18, 6) leaves 12 integer digits
INTEGER_LIMIT = 2**63  # BigInteger

BOOLEAN_TRUE = {"true", "t", "yes", "y", "1", "on"}
BOOLEAN_FALSE = {"false", "f", "no", "n", "0", "off"}

SEARCHABLE_LIKE_TYPES = (ValueType.STRING, ValueType.TEXT)


def column_for(value_type: ValueType | str) -> str:
    return VALUE_TYPE_COLUMNS[ValueType(value_type)]


def read_typed(row: TypedValueColumns, value_type: ValueType | str) -> Any:
    """Native value of a row, read from the column the definition selects."""
    return getattr(row, column_for(value_type))


def write_typed(row: TypedValueColumns, value_type: ValueType | str, value: Any) -> None:
    """Put a coerced value in its typed column and clear all others."""
    target = column_for(value_type)
    for column in VALUE_TYPE_COLUMNS.values():
        setattr(row, column, value if column == target else None)


# =============================================================================
# Coercion
# =============================================================================


def _coerce_string(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bool) or not isinstance(raw, (int, float, Decimal)):
        raise ValueError("expected a string")
    return str(raw)


def _coerce_integer(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("expected an integer, got a boolean")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, (float, Decimal)):
        if raw != int(raw):
            raise ValueError("expected a whole number")
        value = int(raw)
    elif isinstance(raw, str):
        try:
            parsed = Decimal(raw.strip())
        except InvalidOperation as exc:
            raise ValueError("expected an integer") from exc
        if not parsed.is_finite() or parsed != parsed.to_integral_value():
            raise ValueError("expected a whole number")
        value = int(parsed)
    else:
        raise ValueError("expected an integer")

    if not -INTEGER_LIMIT <= value < INTEGER_LIMIT:
        raise ValueError("integer out of range")
    return value


def _coerce_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise ValueError("expected a number, got a boolean")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation as exc:
            raise ValueError("expected a decimal number") from exc
    else:
        raise ValueError("expected a decimal number")

    if not value.is_finite():
        raise ValueError("expected a finite number")
    value = value.quantize(DECIMAL_QUANTUM, rounding=ROUND_HALF_UP)
    if abs(value) >= DECIMAL_LIMIT:
        raise ValueError("decimal out of range for 18,6 precision")
    return value


def _coerce_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in BOOLEAN_TRUE:
            return True
        if normalized in BOOLEAN_FALSE:
            return False
    raise ValueError("expected a boolean")


def _parse_iso_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def _coerce_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        value = raw.strip()
        if "T" in value:
            return _parse_iso_datetime(value).date()
        return date.fromisoformat(value)
    raise ValueError("expected an ISO date")


def _coerce_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        value = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str):
        value = _parse_iso_datetime(raw)
    else:
        raise ValueError("expected an ISO datetime")

    # Naive values are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_json(raw: Any) -> Any:
    if isinstance(raw, str):
        parsed = json.loads(raw)
        # A stored NULL is indistinguishable from "no value"
        if parsed is None:
            raise ValueError("JSON null is not a value; delete the attribute instead")
        return parsed
    json.dumps(raw)
    return raw


COERCERS: dict[ValueType, Callable[[Any], Any]] = {
    ValueType.STRING: _coerce_string,
    ValueType.INTEGER: _coerce_integer,
    ValueType.DECIMAL: _coerce_decimal,
    ValueType.BOOLEAN: _coerce_boolean,
    ValueType.DATE: _coerce_date,
    ValueType.DATETIME: _coerce_datetime,
    ValueType.TEXT: _coerce_string,
    ValueType.JSON: _coerce_json,
}


def coerce_value(attribute: str, value_type: ValueType | str, raw: Any) -> Any:
    """
    Coerce a raw value to the declared type.

    Raises:
        TypeCoercionError: if the value cannot be represented as that type
    """
    value_type = ValueType(value_type)
    try:
        return COERCERS[value_type](raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise TypeCoercionError(
            attribute, f"Cannot store value as {value_type.value}: {exc}"
        ) from exc


def check_rules(definition: AttributeDefinition, value: Any) -> None:
    """Enforce the definition's validation rules on a coerced value."""
    name = definition.name
    value_type = ValueType(definition.value_type)
    rules = definition.validation_rules or {}

    if value_type == ValueType.STRING and len(value) > settings.EAV_STRING_MAX_LENGTH:
        raise RuleViolationError(
            name,
            "max_length",
            f"Value exceeds {settings.EAV_STRING_MAX_LENGTH} characters; use a text attribute",
        )

    if value_type in (ValueType.INTEGER, ValueType.DECIMAL):
        if rules.get("min") is not None and Decimal(value) < Decimal(str(rules["min"])):
            raise RuleViolationError(name, "min", f"Value must be at least {rules['min']}")
        if rules.get("max") is not None and Decimal(value) > Decimal(str(rules["max"])):
            raise RuleViolationError(name, "max", f"Value must be at most {rules['max']}")

    if value_type in (ValueType.STRING, ValueType.TEXT):
        allowed = rules.get("enum")
        if allowed is not None and value not in allowed:
            raise RuleViolationError(
                name, "enum", f"Value must be one of: {', '.join(allowed)}"
            )
        pattern = rules.get("pattern")
        if pattern is not None and re.fullmatch(pattern, value) is None:
            raise RuleViolationError(name, "pattern", f"Value must match {pattern}")


def prepare_value(definition: AttributeDefinition, raw: Any) -> Any:
    """Coerce and validate one raw value for a definition."""
    if raw is None:
        if definition.is_required:
            raise RuleViolationError(definition.name, "required", "A value is required")
        return None
    value = coerce_value(definition.name, definition.value_type, raw)
    check_rules(definition, value)
    return value


def coerce_default(definition: AttributeDefinition) -> Any:
    """Typed default value of a definition, or None."""
    if definition.default_value is None:
        return None
    return coerce_value(definition.name, definition.value_type, definition.default_value)


# =============================================================================
# Storage Strategy
# =============================================================================


def value_model_for(entity_type: EntityType) -> type[TypedValueColumns]:
    """Value table for an entity type: generic or its dedicated table."""
    if not entity_type.use_entity_specific_table:
        return AttributeValue
    model = ENTITY_SPECIFIC_VALUE_MODELS.get(entity_type.name)
    if model is None:
        raise UnsupportedStorageError(
            f"No entity-specific value table is registered for '{entity_type.name}'"
        )
    return model


def _owner_clauses(model: type[TypedValueColumns], ref: EntityRef) -> list:
    clauses = [model.entity_id == ref.entity_id]
    if model is AttributeValue:
        clauses.append(AttributeValue.entity_type == ref.entity_type)
    return clauses


def get_active_rows(
    db: Session,
    entity_type: EntityType,
    ref: EntityRef,
    attribute_ids: list[UUID] | None = None,
) -> list[TypedValueColumns]:
    """Non-deleted value rows for an entity, in sort_order."""
    model = value_model_for(entity_type)
    query = select(model).where(*_owner_clauses(model, ref), model.deleted_at.is_(None))
    if attribute_ids is not None:
        if not attribute_ids:
            return []
        query = query.where(model.attribute_id.in_(attribute_ids))
    query = query.order_by(model.sort_order, model.created_at)
    return list(db.execute(query).scalars())


def count_values(db: Session, definition: AttributeDefinition) -> int:
    """Number of non-deleted values stored for a definition."""
    model = value_model_for(definition.entity_type)
    return db.execute(
        select(func.count())
        .select_from(model)
        .where(model.attribute_id == definition.id, model.deleted_at.is_(None))
    ).scalar_one()


def _find_row_any_state(
    db: Session,
    model: type[TypedValueColumns],
    ref: EntityRef,
    definition: AttributeDefinition,
) -> TypedValueColumns | None:
    # Entity-specific tables keep one row per (entity, attribute), deleted or not
    return db.execute(
        select(model).where(
            model.entity_id == ref.entity_id,
            model.attribute_id == definition.id,
        )
    ).scalar_one_or_none()


def _current_row(
    db: Session,
    entity_type: EntityType,
    model: type[TypedValueColumns],
    ref: EntityRef,
    definition: AttributeDefinition,
) -> TypedValueColumns | None:
    """Row a single-valued write lands on, if one exists."""
    if model is AttributeValue:
        rows = get_active_rows(db, entity_type, ref, [definition.id])
        return rows[0] if rows else None
    return _find_row_any_state(db, model, ref, definition)


def _insert_row(
    db: Session,
    model: type[TypedValueColumns],
    ref: EntityRef,
    definition: AttributeDefinition,
    value: Any,
) -> TypedValueColumns:
    row = model(entity_id=ref.entity_id, attribute_id=definition.id, sort_order=0)
    if model is AttributeValue:
        row.entity_type = ref.entity_type
    write_typed(row, definition.value_type, value)
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError as exc:
        raise EavConflictError(
            f"Value of '{definition.name}' for {ref.entity_type} {ref.entity_id} already exists"
        ) from exc
    return row


def _require_multi_valued(definition: AttributeDefinition) -> None:
    if not definition.is_multi_valued:
        raise EavValidationError(
            definition.name, "multi_valued", "Attribute holds a single value"
        )


# =============================================================================
# Writes
# =============================================================================


def write_value(
    db: Session,
    entity_type: EntityType,
    ref: EntityRef,
    definition: AttributeDefinition,
    raw: Any,
    *,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> Any:
    """
    Coerce, validate and store one value.

    Single-valued attributes are upserted on (entity, attribute); when a
    concurrent writer inserts the first value, this write overwrites it.
    Multi-valued attributes get a new element appended.

    Returns:
        The stored native value.
    """
    if definition.is_multi_valued:
        return append_value(
            db, entity_type, ref, definition, raw,
            changed_by_id=changed_by_id, change_reason=change_reason,
        )

    value = prepare_value(definition, raw)
    if value is None:
        delete_values(
            db, entity_type, ref, definition,
            changed_by_id=changed_by_id, change_reason=change_reason,
        )
        return None

    model = value_model_for(entity_type)
    old_value = None
    action = AuditAction.CREATE

    row = _current_row(db, entity_type, model, ref, definition)
    inserted = False
    if row is None:
        try:
            row = _insert_row(db, model, ref, definition, value)
            inserted = True
        except EavConflictError:
            # Race condition: a concurrent writer stored the first value; last write wins
            row = _current_row(db, entity_type, model, ref, definition)
            if row is None:
                raise
            logger.info(
                "Concurrent first write, overwriting",
                extra=build_log_context(
                    entity_type=ref.entity_type,
                    entity_id=str(ref.entity_id),
                    attribute=definition.name,
                    operation="write_value",
                ),
            )

    if not inserted:
        if row.deleted_at is not None:
            # Soft-deleted row is overwritten in place
            row.deleted_at = None
        else:
            old_value = read_typed(row, definition.value_type)
            action = AuditAction.UPDATE
        write_typed(row, definition.value_type, value)
        db.flush()

    eav_audit_service.record_change(
        db, ref, definition.name, action,
        old_value=old_value, new_value=value,
        changed_by_id=changed_by_id, change_reason=change_reason,
    )
    logger.debug(
        "Stored attribute value",
        extra=build_log_context(
            entity_type=ref.entity_type,
            entity_id=str(ref.entity_id),
            attribute=definition.name,
            operation=action.value,
        ),
    )
    return read_typed(row, definition.value_type)


def append_value(
    db: Session,
    entity_type: EntityType,
    ref: EntityRef,
    definition: AttributeDefinition,
    raw: Any,
    *,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> Any:
    """Append one element to a multi-valued attribute (next sort_order)."""
    _require_multi_valued(definition)
    value = prepare_value(definition, raw)
    if value is None:
        raise RuleViolationError(definition.name, "required", "Cannot append an empty value")

    model = value_model_for(entity_type)
    if model is not AttributeValue:
        raise UnsupportedStorageError(
            f"Multi-valued attribute '{definition.name}' needs the generic value table"
        )

    next_sort = db.execute(
        select(func.max(AttributeValue.sort_order)).where(
            *_owner_clauses(AttributeValue, ref),
            AttributeValue.attribute_id == definition.id,
            AttributeValue.deleted_at.is_(None),
        )
    ).scalar()
    row = AttributeValue(
        attribute_id=definition.id,
        entity_type=ref.entity_type,
        entity_id=ref.entity_id,
        sort_order=0 if next_sort is None else next_sort + 1,
    )
    write_typed(row, definition.value_type, value)
    db.add(row)
    db.flush()

    eav_audit_service.record_change(
        db, ref, definition.name, AuditAction.CREATE,
        new_value=value, changed_by_id=changed_by_id, change_reason=change_reason,
    )
    return read_typed(row, definition.value_type)


def replace_values(
    db: Session,
    entity_type: EntityType,
    ref: EntityRef,
    definition: AttributeDefinition,
    raws: list[Any],
    *,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> list[Any]:
    """Replace the full ordered set of a multi-valued attribute."""
    _require_multi_valued(definition)
    model = value_model_for(entity_type)
    if model is not AttributeValue:
        raise UnsupportedStorageError(
            f"Multi-valued attribute '{definition.name}' needs the generic value table"
        )

    # Validate everything before touching storage
    values = []
    for raw in raws:
        value = prepare_value(definition, raw)
        if value is None:
            raise RuleViolationError(definition.name, "required", "List elements cannot be empty")
        values.append(value)
    if not values and definition.is_required:
        raise RuleViolationError(definition.name, "required", "A value is required")

    existing = get_active_rows(db, entity_type, ref, [definition.id])
    old_values = [read_typed(row, definition.value_type) for row in existing]
    now = utcnow()
    for row in existing:
        row.deleted_at = now
    db.flush()

    for position, value in enumerate(values):
        row = AttributeValue(
            attribute_id=definition.id,
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            sort_order=position,
        )
        write_typed(row, definition.value_type, value)
        db.add(row)
    db.flush()

    eav_audit_service.record_change(
        db, ref, definition.name,
        AuditAction.UPDATE if existing else AuditAction.CREATE,
        old_value=old_values or None, new_value=values,
        changed_by_id=changed_by_id, change_reason=change_reason,
    )
    return values


def delete_values(
    db: Session,
    entity_type: EntityType,
    ref: EntityRef,
    definition: AttributeDefinition,
    *,
    value_id: UUID | None = None,
    hard_delete: bool = False,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> int:
    """
    Remove stored values for one attribute of one entity.

    Soft-deletes by default (sets deleted_at). `value_id` narrows the delete
    to one element of a multi-valued attribute (generic table only).

    Returns:
        Number of rows affected
    """
    model = value_model_for(entity_type)
    if value_id is not None and model is not AttributeValue:
        raise UnsupportedStorageError("Entity-specific value rows have no individual id")

    rows = get_active_rows(db, entity_type, ref, [definition.id])
    if value_id is not None:
        rows = [row for row in rows if row.id == value_id]
    if not rows:
        return 0

    old_values = [read_typed(row, definition.value_type) for row in rows]
    now = utcnow()
    for row in rows:
        if hard_delete:
            db.delete(row)
        else:
            row.deleted_at = now
    db.flush()

    eav_audit_service.record_change(
        db, ref, definition.name, AuditAction.DELETE,
        old_value=old_values if definition.is_multi_valued else old_values[0],
        changed_by_id=changed_by_id, change_reason=change_reason,
    )
    return len(rows)


# =============================================================================
# Search
# =============================================================================


def find_entity_ids(
    db: Session,
    entity_type: EntityType,
    definition: AttributeDefinition,
    value: Any,
    operator: SearchOperator | str = SearchOperator.EQ,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[UUID]:
    """Distinct ids of entities whose stored value matches."""
    operator = SearchOperator(operator)
    value_type = ValueType(definition.value_type)
    if value_type == ValueType.JSON:
        raise EavValidationError(definition.name, "operator", "JSON attributes are not searchable")

    model = value_model_for(entity_type)
    column = getattr(model, column_for(value_type))

    if operator == SearchOperator.LIKE:
        if value_type not in SEARCHABLE_LIKE_TYPES:
            raise EavValidationError(
                definition.name, "operator", "like applies to string and text attributes only"
            )
        condition = column.like(f"%{coerce_value(definition.name, value_type, value)}%")
    elif operator == SearchOperator.IN:
        candidates = value if isinstance(value, (list, tuple, set)) else [value]
        condition = column.in_(
            [coerce_value(definition.name, value_type, item) for item in candidates]
        )
    else:
        target = coerce_value(definition.name, value_type, value)
        condition = {
            SearchOperator.EQ: column == target,
            SearchOperator.NE: column != target,
            SearchOperator.GT: column > target,
            SearchOperator.LT: column < target,
            SearchOperator.GTE: column >= target,
            SearchOperator.LTE: column <= target,
        }[operator]

    query = (
        select(distinct(model.entity_id))
        .where(
            model.attribute_id == definition.id,
            model.deleted_at.is_(None),
            condition,
        )
        .order_by(model.entity_id)
        .limit(limit)
        .offset(offset)
    )
    if model is AttributeValue:
        query = query.where(AttributeValue.entity_type == entity_type.name)
    return list(db.execute(query).scalars())
