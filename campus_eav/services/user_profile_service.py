"""User profile helpers on top of the EAV facade.

Profile attributes are grouped into categories by name prefix
(common_*, student_*, instructor_*, parent_*, staff_*). A role sees the
common attributes plus its own category.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.models import AttributeDefinition, User
from campus_eav.schemas.attribute import SetResult
from campus_eav.services import attribute_value_service, eav_service, entity_type_service
from campus_eav.services.eav_errors import EntityNotFoundError
from campus_eav.services.entity_type_service import EntityRef

logger = logging.getLogger(__name__)

PROFILE_ENTITY_TYPE = "User"
COMMON_CATEGORY = "common"
PROFILE_CATEGORIES = (COMMON_CATEGORY, "student", "instructor", "parent", "staff")
ROLE_CATEGORIES = PROFILE_CATEGORIES[1:]


def attribute_category(name: str) -> str | None:
    """Category of a profile attribute, from its name prefix."""
    prefix = name.split("_", 1)[0]
    return prefix if prefix in PROFILE_CATEGORIES else None


def _check_role_category(category: str) -> str:
    normalized = category.strip().lower()
    if normalized not in ROLE_CATEGORIES:
        raise ValueError(
            f"Unknown role category '{category}'. Choose from: {', '.join(ROLE_CATEGORIES)}"
        )
    return normalized


def list_profile_attributes(db: Session, category: str | None = None) -> list[AttributeDefinition]:
    """Available profile attributes; with a role category, common plus that category."""
    definitions = eav_service.list_available_attributes(db, PROFILE_ENTITY_TYPE)
    if category is None:
        return definitions

    category = _check_role_category(category)
    return [
        d for d in definitions
        if attribute_category(d.name) in (COMMON_CATEGORY, category)
    ]


def get_profile(db: Session, user_id: UUID, category: str | None = None) -> dict[str, Any]:
    prefix = f"{category}_" if category else None
    return eav_service.get_attributes_for(db, PROFILE_ENTITY_TYPE, user_id, attribute_prefix=prefix)


def get_profile_grouped_by_category(db: Session, user_id: UUID) -> dict[str, dict[str, Any]]:
    """Profile values split by category; every category key is present."""
    grouped: dict[str, dict[str, Any]] = {category: {} for category in PROFILE_CATEGORIES}
    for name, value in get_profile(db, user_id).items():
        category = attribute_category(name)
        if category:
            grouped[category][name] = value
    return grouped


def has_profile(db: Session, user_id: UUID) -> bool:
    """Whether the user has any stored (non-default) profile value."""
    entity_type = entity_type_service.require_entity_type(db, PROFILE_ENTITY_TYPE)
    ref = EntityRef.of(PROFILE_ENTITY_TYPE, user_id)
    return bool(attribute_value_service.get_active_rows(db, entity_type, ref))


def initialize_profile_for_role(db: Session, user_id: UUID, category: str) -> dict[str, SetResult]:
    """
    Write the definition defaults for a role's attributes.

    Returns:
        Bulk-set results keyed by attribute name (empty if no defaults)
    """
    defaults = {
        d.name: d.default_value
        for d in list_profile_attributes(db, category)
        if d.default_value is not None
    }
    if not defaults:
        return {}

    logger.info(
        "Initializing %d default profile value(s)",
        len(defaults),
        extra=build_log_context(
            entity_type=PROFILE_ENTITY_TYPE,
            entity_id=str(user_id),
            operation="initialize_profile",
        ),
    )
    return eav_service.bulk_set_attributes(
        db, PROFILE_ENTITY_TYPE, user_id, defaults, change_reason=f"{category} profile defaults"
    )


# =============================================================================
# profile_eav_enabled flag
# =============================================================================


def _get_user(db: Session, user_id: UUID) -> User:
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if user is None:
        raise EntityNotFoundError(f"User {user_id} does not exist")
    return user


def enable_profile_eav(db: Session, user_id: UUID) -> None:
    _get_user(db, user_id).profile_eav_enabled = True
    db.commit()


def disable_profile_eav(db: Session, user_id: UUID) -> None:
    _get_user(db, user_id).profile_eav_enabled = False
    db.commit()


def is_profile_eav_enabled(db: Session, user_id: UUID) -> bool:
    return _get_user(db, user_id).profile_eav_enabled
