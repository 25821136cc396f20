"""Tests for the manifest-driven setup and rollback workflows."""

import pytest
from sqlalchemy import func, select

from campus_eav.db.models import Assessment, AttributeDefinition, EntityType, User
from campus_eav.schemas.attribute import AttributeSpec
from campus_eav.services import eav_migration_service, eav_service, entity_type_service
from campus_eav.services.eav_errors import EntityTypeNotFoundError, MigrationFailure
from campus_eav.services.eav_manifests import (
    ASSESSMENT_METADATA_MANIFEST,
    USER_PROFILE_MANIFEST,
    SetupManifest,
    get_manifest,
)


def _active_definition_count(db, entity_type_name: str) -> int:
    return db.execute(
        select(func.count())
        .select_from(AttributeDefinition)
        .join(EntityType, EntityType.id == AttributeDefinition.entity_type_id)
        .where(
            EntityType.name == entity_type_name,
            EntityType.deleted_at.is_(None),
            AttributeDefinition.deleted_at.is_(None),
        )
    ).scalar_one()


def test_user_profile_manifest_shape():
    assert USER_PROFILE_MANIFEST.attribute_count == 71
    assert list(USER_PROFILE_MANIFEST.categories) == [
        "common", "student", "instructor", "parent", "staff",
    ]
    assert ASSESSMENT_METADATA_MANIFEST.attribute_count == 17
    assert get_manifest("assessment-metadata") is ASSESSMENT_METADATA_MANIFEST
    with pytest.raises(ValueError):
        get_manifest("course-catalog")


# =============================================================================
# Setup
# =============================================================================

def test_setup_is_idempotent(db):
    first = eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)

    assert first.entity_type_created is True
    assert first.total_created == 71
    assert first.created == {"common": 14, "student": 15, "instructor": 14, "parent": 13, "staff": 15}

    second = eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)

    assert second.entity_type_created is False
    assert second.total_created == 0
    assert second.total_existing == 71
    assert _active_definition_count(db, "User") == 71


def test_setup_dry_run_writes_nothing(db):
    stats = eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST, dry_run=True)

    assert stats.dry_run is True
    assert stats.entity_type_created is True
    assert stats.total_created == 71
    assert entity_type_service.get_entity_type(db, "User") is None


def test_setup_dry_run_after_setup_reports_existing(db):
    eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)

    stats = eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST, dry_run=True)

    assert stats.entity_type_created is False
    assert stats.total_created == 0
    assert stats.total_existing == 71


def test_assessment_setup_uses_dedicated_table(db):
    stats = eav_migration_service.run_setup(db, ASSESSMENT_METADATA_MANIFEST)

    assert stats.total_created == 17
    entity_type = entity_type_service.require_entity_type(db, "Assessment")
    assert entity_type.use_entity_specific_table is True
    assert entity_type.table_name == "assessments"


def test_setup_failure_rolls_back_everything(db):
    broken = SetupManifest(
        key="broken",
        version="0.0.1",
        entity_type="Assessment",
        table_name="assessments",
        description="Multi-valued attributes cannot live in a dedicated table",
        use_entity_specific_table=True,
        flag_model=Assessment,
        flag_attribute="metadata_eav_enabled",
        categories={
            "assessment": [
                AttributeSpec(name="difficulty_level"),
                AttributeSpec(name="topics", is_multi_valued=True),
            ]
        },
    )

    with pytest.raises(MigrationFailure) as exc_info:
        eav_migration_service.run_setup(db, broken)

    assert exc_info.value.step == "define_attribute:topics"
    assert entity_type_service.get_entity_type(db, "Assessment") is None


# =============================================================================
# Rollback
# =============================================================================

def test_rollback_soft_deletes_and_resets_flag(db, test_user):
    eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)
    test_user.profile_eav_enabled = True
    db.commit()
    eav_service.set_attribute(db, "User", test_user.id, "student_gpa", "3.5")
    eav_service.set_attribute(db, "User", test_user.id, "common_pronouns", "they/them")

    stats = eav_migration_service.run_rollback(db, USER_PROFILE_MANIFEST)

    assert stats.values_deleted == 2
    assert stats.definitions_deleted == 71
    assert stats.flags_reset == 1
    with pytest.raises(EntityTypeNotFoundError):
        entity_type_service.require_entity_type(db, "User")

    user = db.execute(select(User).where(User.id == test_user.id)).scalar_one()
    assert user.profile_eav_enabled is False
    # Rows are kept for audit
    assert db.execute(select(func.count()).select_from(AttributeDefinition)).scalar_one() == 71


def test_rollback_twice_is_a_noop(db, caplog):
    eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)
    eav_migration_service.run_rollback(db, USER_PROFILE_MANIFEST)

    with caplog.at_level("WARNING"):
        stats = eav_migration_service.run_rollback(db, USER_PROFILE_MANIFEST)

    assert stats.values_deleted == 0
    assert stats.definitions_deleted == 0
    assert stats.flags_reset == 0
    assert "nothing to roll back" in caplog.text


def test_setup_after_rollback_starts_fresh(db, test_user):
    eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)
    eav_service.set_attribute(db, "User", test_user.id, "student_major", "History")
    eav_migration_service.run_rollback(db, USER_PROFILE_MANIFEST)

    stats = eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)

    assert stats.entity_type_created is True
    assert stats.total_created == 71
    assert _active_definition_count(db, "User") == 71
    # Old values belong to the retired definitions and do not come back
    assert "student_major" not in eav_service.get_attributes_for(db, "User", test_user.id)


def test_rollback_dry_run_counts_without_changes(db, test_user):
    eav_migration_service.run_setup(db, USER_PROFILE_MANIFEST)
    eav_service.set_attribute(db, "User", test_user.id, "student_major", "History")

    stats = eav_migration_service.run_rollback(db, USER_PROFILE_MANIFEST, dry_run=True)

    assert stats.values_deleted == 1
    assert stats.definitions_deleted == 71
    assert entity_type_service.require_entity_type(db, "User") is not None
    assert eav_service.get_attributes_for(db, "User", test_user.id)["student_major"] == "History"


def test_rollback_of_dedicated_table_values(db, test_assessment):
    eav_migration_service.run_setup(db, ASSESSMENT_METADATA_MANIFEST)
    eav_service.set_attribute(db, "Assessment", test_assessment.id, "estimated_duration", 50)

    stats = eav_migration_service.run_rollback(db, ASSESSMENT_METADATA_MANIFEST)

    assert stats.values_deleted == 1
    assert stats.definitions_deleted == 17
