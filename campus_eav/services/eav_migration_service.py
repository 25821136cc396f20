"""
EAV setup and rollback workflows.

Setup registers a manifest's entity type and creates any missing attribute
definitions (skip-if-exists), so it is safe to re-run. Rollback soft-deletes
values, then definitions, then the entity type, and resets the domain
"EAV enabled" flag. Rows are kept for audit; a later setup creates fresh
definitions and does not bring old values back.

Both run in one transaction. Any failure rolls everything back and is
raised as MigrationFailure naming the step. Dry runs do lookups only.
"""

import logging

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_eav.core.structured_logging import build_log_context
from campus_eav.db.models import AttributeDefinition, EntityType
from campus_eav.db.types import utcnow
from campus_eav.schemas.attribute import MigrationStats
from campus_eav.services import (
    attribute_catalog_service,
    attribute_value_service,
    entity_type_service,
)
from campus_eav.services.eav_errors import EavServiceError, MigrationFailure
from campus_eav.services.eav_manifests import SetupManifest

logger = logging.getLogger(__name__)


def _context(manifest: SetupManifest, operation: str, attribute: str | None = None) -> dict:
    return build_log_context(
        entity_type=manifest.entity_type,
        attribute=attribute,
        operation=operation,
        manifest=manifest.key,
    )


# =============================================================================
# Setup
# =============================================================================


def run_setup(db: Session, manifest: SetupManifest, *, dry_run: bool = False) -> MigrationStats:
    """
    Register the entity type and create missing attribute definitions.

    Returns:
        Per-category created/existing counts
    """
    stats = MigrationStats(
        manifest=manifest.key,
        version=manifest.version,
        entity_type=manifest.entity_type,
        dry_run=dry_run,
    )
    logger.info(
        "Starting EAV setup v%s%s",
        manifest.version,
        " (dry run)" if dry_run else "",
        extra=_context(manifest, "setup"),
    )

    step = "register_entity_type"
    try:
        if dry_run:
            entity_type = entity_type_service.get_entity_type(db, manifest.entity_type)
            stats.entity_type_created = entity_type is None
        else:
            entity_type, stats.entity_type_created = entity_type_service.register_or_get_entity_type(
                db,
                manifest.entity_type,
                table_name=manifest.table_name,
                description=manifest.description,
                use_entity_specific_table=manifest.use_entity_specific_table,
            )

        for category, spec in manifest.iter_specs():
            step = f"define_attribute:{spec.name}"
            stats.created.setdefault(category, 0)
            stats.existing.setdefault(category, 0)

            if dry_run:
                created = entity_type is None or attribute_catalog_service.get_attribute(
                    db, entity_type.id, spec.name, include_inactive=True
                ) is None
            else:
                _, created = attribute_catalog_service.define_attribute(db, entity_type, spec)

            if created:
                stats.created[category] += 1
            else:
                stats.existing[category] += 1
            logger.debug(
                "%s %s",
                "Would create" if dry_run and created else ("Created" if created else "Exists"),
                spec.name,
                extra=_context(manifest, "setup", spec.name),
            )

        step = "commit"
        if dry_run:
            db.rollback()
        else:
            db.commit()
    except (EavServiceError, SQLAlchemyError, ValidationError) as exc:
        db.rollback()
        logger.error("EAV setup failed at %s", step, extra=_context(manifest, "setup"))
        raise MigrationFailure(step, str(exc)) from exc

    logger.info(
        "EAV setup complete: %d created, %d existing",
        stats.total_created,
        stats.total_existing,
        extra=_context(manifest, "setup"),
    )
    return stats


# =============================================================================
# Rollback
# =============================================================================


def run_rollback(db: Session, manifest: SetupManifest, *, dry_run: bool = False) -> MigrationStats:
    """
    Soft-delete the manifest's values, definitions and entity type.

    A second rollback finds no active entity type and is a no-op.
    """
    stats = MigrationStats(
        manifest=manifest.key,
        version=manifest.version,
        entity_type=manifest.entity_type,
        dry_run=dry_run,
    )

    step = "lookup_entity_type"
    try:
        entity_type = entity_type_service.get_entity_type(db, manifest.entity_type)
        if entity_type is None:
            logger.warning(
                "Entity type not found; nothing to roll back",
                extra=_context(manifest, "rollback"),
            )
            return stats

        definition_ids = list(
            db.execute(
                select(AttributeDefinition.id).where(
                    AttributeDefinition.entity_type_id == entity_type.id,
                    AttributeDefinition.deleted_at.is_(None),
                )
            ).scalars()
        )
        model = attribute_value_service.value_model_for(entity_type)
        flag = getattr(manifest.flag_model, manifest.flag_attribute)

        if dry_run:
            stats.values_deleted = _count_active_values(db, model, definition_ids)
            stats.definitions_deleted = len(definition_ids)
            stats.flags_reset = db.execute(
                select(func.count()).select_from(manifest.flag_model).where(flag.is_(True))
            ).scalar_one()
            db.rollback()
            return stats

        now = utcnow()

        step = "delete_values"
        if definition_ids:
            result = db.execute(
                update(model)
                .where(model.attribute_id.in_(definition_ids), model.deleted_at.is_(None))
                .values(deleted_at=now)
            )
            stats.values_deleted = result.rowcount

        step = "delete_definitions"
        result = db.execute(
            update(AttributeDefinition)
            .where(
                AttributeDefinition.entity_type_id == entity_type.id,
                AttributeDefinition.deleted_at.is_(None),
            )
            .values(deleted_at=now, is_active=False)
        )
        stats.definitions_deleted = result.rowcount

        step = "delete_entity_type"
        db.execute(
            update(EntityType)
            .where(EntityType.id == entity_type.id)
            .values(deleted_at=now, is_active=False)
        )

        step = "reset_flag"
        result = db.execute(
            update(manifest.flag_model).where(flag.is_(True)).values({flag: False})
        )
        stats.flags_reset = result.rowcount

        step = "commit"
        db.commit()
    except (EavServiceError, SQLAlchemyError) as exc:
        db.rollback()
        logger.error("EAV rollback failed at %s", step, extra=_context(manifest, "rollback"))
        raise MigrationFailure(step, str(exc)) from exc

    logger.info(
        "EAV rollback complete: %d value(s), %d definition(s), %d flag(s) reset",
        stats.values_deleted,
        stats.definitions_deleted,
        stats.flags_reset,
        extra=_context(manifest, "rollback"),
    )
    return stats


def _count_active_values(db: Session, model, definition_ids: list) -> int:
    if not definition_ids:
        return 0
    return db.execute(
        select(func.count())
        .select_from(model)
        .where(model.attribute_id.in_(definition_ids), model.deleted_at.is_(None))
    ).scalar_one()
