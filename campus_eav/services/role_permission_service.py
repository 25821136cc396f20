"""Role permissions on top of the EAV facade.

Each role carries its permissions as Role attributes in the dedicated
role_attribute_values table. A user may hold several roles; their
permissions are combined per value type:

- boolean: granted if any role grants it
- integer/decimal: the largest value
- json: lists are unioned in order, objects are merged
- anything else: the first non-empty value
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.enums import ValueType
from campus_eav.db.models import AttributeDefinition, Role, UserRole
from campus_eav.schemas.attribute import SetResult
from campus_eav.services import attribute_catalog_service, eav_service, entity_type_service
from campus_eav.services.eav_errors import EavNotFoundError, EntityNotFoundError
from campus_eav.services.eav_manifests import ROLE_PERMISSION_DEFAULTS

logger = logging.getLogger(__name__)

PERMISSION_ENTITY_TYPE = "Role"


# =============================================================================
# Single Role
# =============================================================================


def list_available_permissions(db: Session) -> list[AttributeDefinition]:
    return eav_service.list_available_attributes(db, PERMISSION_ENTITY_TYPE)


def get_role_permissions(db: Session, role_id: UUID) -> dict[str, Any]:
    """Every permission of a role; unset ones fall back to their default."""
    return eav_service.get_attributes_for(db, PERMISSION_ENTITY_TYPE, role_id)


def get_role_permission(db: Session, role_id: UUID, permission_name: str) -> Any:
    """
    One permission value of a role.

    Raises:
        AttributeNotFoundError: no such permission is defined
    """
    entity_type = entity_type_service.require_entity_type(db, PERMISSION_ENTITY_TYPE)
    attribute_catalog_service.require_attribute(db, entity_type, permission_name)
    values = eav_service.get_attributes_for(
        db, PERMISSION_ENTITY_TYPE, role_id, attribute_names=[permission_name]
    )
    return values.get(permission_name)


def set_role_permission(
    db: Session,
    role_id: UUID,
    permission_name: str,
    value: Any,
    *,
    changed_by_id: UUID | None = None,
) -> Any:
    return eav_service.set_attribute(
        db, PERMISSION_ENTITY_TYPE, role_id, permission_name, value,
        changed_by_id=changed_by_id,
    )


def bulk_set_role_permissions(
    db: Session,
    role_id: UUID,
    permissions: dict[str, Any],
    *,
    changed_by_id: UUID | None = None,
) -> dict[str, SetResult]:
    return eav_service.bulk_set_attributes(
        db, PERMISSION_ENTITY_TYPE, role_id, permissions, changed_by_id=changed_by_id
    )


def delete_role_permission(db: Session, role_id: UUID, permission_name: str) -> bool:
    """Drop a role's stored value; the permission reverts to its default."""
    return eav_service.delete_attribute(db, PERMISSION_ENTITY_TYPE, role_id, permission_name)


def has_permission(db: Session, role_id: UUID, permission_name: str) -> bool:
    """Whether a boolean permission is granted. Undefined permissions are not."""
    try:
        return get_role_permission(db, role_id, permission_name) is True
    except EavNotFoundError:
        logger.debug(
            "Permission %s is not defined",
            permission_name,
            extra=build_log_context(
                entity_type=PERMISSION_ENTITY_TYPE,
                entity_id=str(role_id),
                operation="has_permission",
            ),
        )
        return False


def any_role_has_permission(db: Session, role_ids: list[UUID], permission_name: str) -> bool:
    return any(has_permission(db, role_id, permission_name) for role_id in role_ids)


# =============================================================================
# Aggregation
# =============================================================================


def _combine(value_type: ValueType, current: Any, value: Any) -> Any:
    if value_type == ValueType.BOOLEAN:
        return bool(current) or bool(value)
    if value_type in (ValueType.INTEGER, ValueType.DECIMAL):
        return max(current, value)
    if value_type == ValueType.JSON:
        if isinstance(current, list) and isinstance(value, list):
            return current + [item for item in value if item not in current]
        if isinstance(current, dict) and isinstance(value, dict):
            return {**current, **value}
        return current
    return current if current else value


def aggregate_permissions(db: Session, role_ids: list[UUID]) -> dict[str, Any]:
    """Permissions of several roles combined into one mapping (empty for no roles)."""
    if not role_ids:
        return {}

    value_types = {
        definition.name: ValueType(definition.value_type)
        for definition in list_available_permissions(db)
    }
    aggregated: dict[str, Any] = {}
    for role_id in role_ids:
        for name, value in get_role_permissions(db, role_id).items():
            if name not in aggregated:
                aggregated[name] = value
            else:
                aggregated[name] = _combine(value_types[name], aggregated[name], value)
    return aggregated


# =============================================================================
# Users and Roles
# =============================================================================


def _get_role(db: Session, role_id: UUID) -> Role:
    role = db.execute(select(Role).where(Role.id == role_id)).scalar_one_or_none()
    if role is None:
        raise EntityNotFoundError(f"Role {role_id} does not exist")
    return role


def assign_role(db: Session, user_id: UUID, role_id: UUID) -> bool:
    """
    Give a user a role.

    Returns:
        False if the user already held it
    """
    _get_role(db, role_id)
    existing = db.get(UserRole, (user_id, role_id))
    if existing is not None:
        return False
    db.add(UserRole(user_id=user_id, role_id=role_id))
    db.commit()
    return True


def get_user_role_ids(db: Session, user_id: UUID) -> list[UUID]:
    return list(
        db.execute(
            select(UserRole.role_id)
            .where(UserRole.user_id == user_id)
            .order_by(UserRole.created_at, UserRole.role_id)
        ).scalars()
    )


def get_user_permissions(db: Session, user_id: UUID) -> dict[str, Any]:
    return aggregate_permissions(db, get_user_role_ids(db, user_id))


def user_has_permission(db: Session, user_id: UUID, permission_name: str) -> bool:
    return any_role_has_permission(db, get_user_role_ids(db, user_id), permission_name)


def seed_default_permissions(db: Session, role_id: UUID) -> dict[str, SetResult]:
    """
    Store the standard permission set for a well-known role name.

    Returns:
        Bulk-set results keyed by permission (empty for other role names)

    Raises:
        EntityNotFoundError: the role does not exist
    """
    role = _get_role(db, role_id)
    defaults = ROLE_PERMISSION_DEFAULTS.get(role.name.strip().lower())
    context = build_log_context(
        entity_type=PERMISSION_ENTITY_TYPE,
        entity_id=str(role_id),
        operation="seed_permissions",
    )
    if defaults is None:
        logger.info("No default permissions for role %s", role.name, extra=context)
        return {}

    logger.info("Seeding %d permission(s) for role %s", len(defaults), role.name, extra=context)
    return eav_service.bulk_set_attributes(
        db, PERMISSION_ENTITY_TYPE, role_id, defaults,
        change_reason=f"{role.name} default permissions",
    )


# =============================================================================
# permission_eav_enabled flag
# =============================================================================


def enable_permission_eav(db: Session, role_id: UUID) -> None:
    _get_role(db, role_id).permission_eav_enabled = True
    db.commit()


def disable_permission_eav(db: Session, role_id: UUID) -> None:
    _get_role(db, role_id).permission_eav_enabled = False
    db.commit()


def is_permission_eav_enabled(db: Session, role_id: UUID) -> bool:
    return _get_role(db, role_id).permission_eav_enabled
