"""Entity type registry: which entities may carry EAV attributes."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_eav.core.config import settings
from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.base import Base
from campus_eav.db.models import ENTITY_SPECIFIC_VALUE_MODELS, EntityType
from campus_eav.services.eav_errors import (
    EavConflictError,
    EntityNotFoundError,
    EntityTypeNotFoundError,
    UnsupportedStorageError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityRef:
    """Typed pointer to one domain row: entity type name plus its id."""

    entity_type: str
    entity_id: UUID

    @classmethod
    def of(cls, entity_type: str, entity_id: UUID | str) -> "EntityRef":
        if not isinstance(entity_id, UUID):
            entity_id = UUID(str(entity_id))
        return cls(entity_type=entity_type, entity_id=entity_id)

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


# =============================================================================
# Lookup
# =============================================================================


def get_entity_type(db: Session, name: str) -> EntityType | None:
    """Get the non-deleted entity type with this name."""
    return db.execute(
        select(EntityType).where(
            EntityType.name == name,
            EntityType.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


def require_entity_type(db: Session, name: str) -> EntityType:
    """Get an active entity type or raise EntityTypeNotFoundError."""
    entity_type = get_entity_type(db, name)
    if entity_type is None or not entity_type.is_active:
        raise EntityTypeNotFoundError(f"Entity type '{name}' is not registered")
    return entity_type


def list_entity_types(db: Session) -> list[EntityType]:
    return list(
        db.execute(
            select(EntityType)
            .where(EntityType.deleted_at.is_(None))
            .order_by(EntityType.name)
        ).scalars()
    )


# =============================================================================
# Registration
# =============================================================================


def _insert_entity_type(
    db: Session,
    name: str,
    *,
    table_name: str | None,
    description: str | None,
    use_entity_specific_table: bool,
) -> EntityType:
    entity_type = EntityType(
        name=name,
        table_name=table_name,
        description=description,
        is_active=True,
        use_entity_specific_table=use_entity_specific_table,
    )
    try:
        with db.begin_nested():
            db.add(entity_type)
    except IntegrityError as exc:
        raise EavConflictError(f"Entity type '{name}' already exists") from exc
    return entity_type


def register_or_get_entity_type(
    db: Session,
    name: str,
    *,
    table_name: str | None = None,
    description: str | None = None,
    use_entity_specific_table: bool = False,
) -> tuple[EntityType, bool]:
    """
    Get the entity type with this name, creating it if missing.

    Concurrent callers converge on one row: the partial unique index on
    name rejects the loser's insert, which then re-reads the winner's row.

    Returns:
        (entity_type, created)
    """
    existing = get_entity_type(db, name)
    if existing:
        return existing, False

    if use_entity_specific_table and name not in ENTITY_SPECIFIC_VALUE_MODELS:
        raise UnsupportedStorageError(
            f"No entity-specific value table is registered for '{name}'"
        )

    try:
        entity_type = _insert_entity_type(
            db,
            name,
            table_name=table_name,
            description=description,
            use_entity_specific_table=use_entity_specific_table,
        )
    except EavConflictError:
        # Race condition: another transaction created it
        existing = get_entity_type(db, name)
        if existing:
            logger.info(
                "Entity type registered concurrently; reusing existing row",
                extra=build_log_context(entity_type=name, operation="register_entity_type"),
            )
            return existing, False
        raise

    logger.info(
        "Registered entity type",
        extra=build_log_context(entity_type=name, operation="register_entity_type"),
    )
    return entity_type, True


# =============================================================================
# Entity Reference Validation
# =============================================================================


def validate_entity_reference(db: Session, entity_type: EntityType, entity_id: UUID) -> None:
    """
    Verify the owning domain row exists.

    The generic value table has no foreign key to the owner, so the check
    happens here. Tables unknown to the ORM metadata are skipped.
    """
    if not settings.EAV_VALIDATE_ENTITY_REFERENCES or not entity_type.table_name:
        return

    table = Base.metadata.tables.get(entity_type.table_name)
    if table is None or "id" not in table.c:
        logger.warning(
            "Owner table %s is not mapped; skipping reference check",
            entity_type.table_name,
            extra=build_log_context(entity_type=entity_type.name, operation="validate_reference"),
        )
        return

    found = db.execute(select(table.c.id).where(table.c.id == entity_id)).first()
    if found is None:
        raise EntityNotFoundError(
            f"{entity_type.name} {entity_id} does not exist in {entity_type.table_name}"
        )
