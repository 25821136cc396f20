"""Role permissions: per-role values, multi-role aggregation and seeding."""

import uuid

import pytest
from click.testing import CliRunner
from sqlalchemy import func, select

from campus_eav.cli import cli
from campus_eav.db.models import AttributeValue, RoleAttributeValue
from campus_eav.services import eav_migration_service, role_permission_service
from campus_eav.services.eav_errors import (
    AttributeNotFoundError,
    EntityNotFoundError,
    RuleViolationError,
)
from campus_eav.services.eav_manifests import (
    ROLE_PERMISSION_DEFAULTS,
    ROLE_PERMISSIONS_MANIFEST,
    get_manifest,
)

DEFAULT_PERMISSIONS = {
    "can_create_users": False,
    "can_manage_courses": False,
    "can_view_grades": False,
    "can_edit_grades": False,
    "can_manage_enrollments": False,
    "can_view_reports": False,
    "can_manage_facilities": False,
    "can_manage_hr": False,
    "can_view_announcements": True,
    "can_create_announcements": False,
    "max_course_load": 5,
    "dashboard_widgets": [],
    "feature_flags": {},
    "access_level": 1,
    "permission_scope": "department",
}


@pytest.fixture
def permission_schema(db):
    eav_migration_service.run_setup(db, ROLE_PERMISSIONS_MANIFEST)


def _stored_rows(db, role_id) -> int:
    return db.execute(
        select(func.count())
        .select_from(RoleAttributeValue)
        .where(RoleAttributeValue.entity_id == role_id)
    ).scalar_one()


# =============================================================================
# Manifest
# =============================================================================


def test_role_permissions_manifest_shape():
    assert get_manifest("role-permissions") is ROLE_PERMISSIONS_MANIFEST
    assert ROLE_PERMISSIONS_MANIFEST.attribute_count == 15
    assert ROLE_PERMISSIONS_MANIFEST.use_entity_specific_table is True
    specs = [spec for _, spec in ROLE_PERMISSIONS_MANIFEST.iter_specs()]
    assert [spec.sort_order for spec in specs] == list(range(15))
    assert all(spec.default_value is not None for spec in specs)
    # Seed tables only name defined permissions
    names = {spec.name for spec in specs}
    for permissions in ROLE_PERMISSION_DEFAULTS.values():
        assert set(permissions) <= names


def test_setup_via_cli(db, cli_session):
    result = CliRunner().invoke(cli, ["setup-eav", "--manifest", "role-permissions"])

    assert result.exit_code == 0, result.output
    assert "EAV setup: Role (role-permissions v1.0.0)" in result.output
    assert "  permissions: 15 created, 0 existing" in result.output


# =============================================================================
# Single Role
# =============================================================================


def test_new_role_reads_defaults(db, permission_schema, make_role):
    role = make_role("librarian")

    assert role_permission_service.get_role_permissions(db, role.id) == DEFAULT_PERMISSIONS
    assert _stored_rows(db, role.id) == 0


def test_set_permission_uses_role_table(db, permission_schema, make_role):
    role = make_role("registrar")

    stored = role_permission_service.set_role_permission(db, role.id, "can_view_reports", "yes")

    assert stored is True
    assert role_permission_service.get_role_permission(db, role.id, "can_view_reports") is True
    assert role_permission_service.has_permission(db, role.id, "can_view_reports") is True
    assert _stored_rows(db, role.id) == 1
    assert db.execute(select(func.count()).select_from(AttributeValue)).scalar_one() == 0


def test_unknown_permission(db, permission_schema, make_role):
    role = make_role("registrar")

    assert role_permission_service.has_permission(db, role.id, "can_fly") is False
    with pytest.raises(AttributeNotFoundError):
        role_permission_service.get_role_permission(db, role.id, "can_fly")


def test_has_permission_before_setup(db, make_role):
    role = make_role("registrar")
    assert role_permission_service.has_permission(db, role.id, "can_view_grades") is False


def test_non_boolean_permission_is_not_granted(db, permission_schema, make_role):
    role = make_role("registrar")
    assert role_permission_service.has_permission(db, role.id, "access_level") is False


def test_delete_reverts_to_default(db, permission_schema, make_role):
    role = make_role("registrar")
    role_permission_service.set_role_permission(db, role.id, "can_view_announcements", False)

    assert role_permission_service.delete_role_permission(
        db, role.id, "can_view_announcements"
    ) is True
    assert role_permission_service.has_permission(db, role.id, "can_view_announcements") is True


def test_rules_are_enforced(db, permission_schema, make_role):
    role = make_role("registrar")

    with pytest.raises(RuleViolationError) as exc_info:
        role_permission_service.set_role_permission(db, role.id, "permission_scope", "galaxy")
    assert exc_info.value.rule == "enum"

    results = role_permission_service.bulk_set_role_permissions(
        db, role.id, {"access_level": 11, "can_manage_hr": True}
    )
    assert results["access_level"].rule == "max"
    assert results["can_manage_hr"].status == "ok"


def test_unknown_role_is_rejected(db, permission_schema):
    with pytest.raises(EntityNotFoundError):
        role_permission_service.set_role_permission(db, uuid.uuid4(), "can_manage_hr", True)


def test_permission_values_cascade_with_role(db, permission_schema, make_role):
    role = make_role("temporary")
    role_permission_service.set_role_permission(db, role.id, "can_manage_hr", True)
    role_id = role.id

    db.delete(role)
    db.commit()

    assert _stored_rows(db, role_id) == 0


# =============================================================================
# Aggregation
# =============================================================================


def test_aggregate_combines_by_value_type(db, permission_schema, make_role):
    student = make_role("student")
    ta = make_role("ta")
    role_permission_service.seed_default_permissions(db, student.id)
    role_permission_service.seed_default_permissions(db, ta.id)
    role_permission_service.bulk_set_role_permissions(
        db, student.id,
        {
            "dashboard_widgets": ["grades", "calendar"],
            "feature_flags": {"beta": True, "theme": "light"},
        },
    )
    role_permission_service.bulk_set_role_permissions(
        db, ta.id,
        {"dashboard_widgets": ["calendar", "roster"], "feature_flags": {"theme": "dark"}},
    )

    combined = role_permission_service.aggregate_permissions(db, [student.id, ta.id])

    assert combined["can_edit_grades"] is True  # ta only
    assert combined["can_manage_hr"] is False
    assert combined["max_course_load"] == 6
    assert combined["access_level"] == 3
    assert combined["dashboard_widgets"] == ["grades", "calendar", "roster"]
    assert combined["feature_flags"] == {"beta": True, "theme": "dark"}
    assert combined["permission_scope"] == "department"


def test_aggregate_of_no_roles(db, permission_schema):
    assert role_permission_service.aggregate_permissions(db, []) == {}


def test_any_role_has_permission(db, permission_schema, make_role):
    parent = make_role("parent")
    hr = make_role("hr")
    role_permission_service.seed_default_permissions(db, parent.id)
    role_permission_service.seed_default_permissions(db, hr.id)

    assert role_permission_service.any_role_has_permission(db, [parent.id], "can_manage_hr") is False
    assert role_permission_service.any_role_has_permission(
        db, [parent.id, hr.id], "can_manage_hr"
    ) is True
    assert role_permission_service.any_role_has_permission(db, [], "can_manage_hr") is False


def test_user_permissions_follow_assigned_roles(db, permission_schema, make_role, test_user):
    instructor = make_role("instructor")
    advisor = make_role("advisor")
    role_permission_service.seed_default_permissions(db, instructor.id)
    role_permission_service.seed_default_permissions(db, advisor.id)

    assert role_permission_service.get_user_permissions(db, test_user.id) == {}
    assert role_permission_service.user_has_permission(db, test_user.id, "can_view_grades") is False

    assert role_permission_service.assign_role(db, test_user.id, instructor.id) is True
    assert role_permission_service.assign_role(db, test_user.id, advisor.id) is True
    assert role_permission_service.assign_role(db, test_user.id, advisor.id) is False

    permissions = role_permission_service.get_user_permissions(db, test_user.id)
    assert permissions["can_manage_courses"] is True  # instructor
    assert permissions["can_manage_enrollments"] is True  # advisor
    assert permissions["access_level"] == 5
    assert role_permission_service.user_has_permission(db, test_user.id, "can_manage_hr") is False
    assert set(role_permission_service.get_user_role_ids(db, test_user.id)) == {
        instructor.id,
        advisor.id,
    }


def test_assign_unknown_role(db, test_user):
    with pytest.raises(EntityNotFoundError):
        role_permission_service.assign_role(db, test_user.id, uuid.uuid4())


# =============================================================================
# Seeding
# =============================================================================


def test_seed_writes_role_defaults(db, permission_schema, make_role):
    admin = make_role("Admin")

    results = role_permission_service.seed_default_permissions(db, admin.id)

    assert set(results) == set(ROLE_PERMISSION_DEFAULTS["admin"])
    assert all(r.status == "ok" for r in results.values())
    permissions = role_permission_service.get_role_permissions(db, admin.id)
    assert permissions["can_manage_facilities"] is True
    assert permissions["access_level"] == 10
    assert permissions["permission_scope"] == "university"
    # Not part of the seed table
    assert permissions["dashboard_widgets"] == []


def test_seed_skips_unknown_role_names(db, permission_schema, make_role):
    role = make_role("alumni")
    assert role_permission_service.seed_default_permissions(db, role.id) == {}
    assert _stored_rows(db, role.id) == 0


def test_seed_missing_role(db, permission_schema):
    with pytest.raises(EntityNotFoundError):
        role_permission_service.seed_default_permissions(db, uuid.uuid4())


def test_permission_eav_flag(db, make_role):
    role = make_role("registrar")
    assert role_permission_service.is_permission_eav_enabled(db, role.id) is False

    role_permission_service.enable_permission_eav(db, role.id)
    assert role_permission_service.is_permission_eav_enabled(db, role.id) is True

    role_permission_service.disable_permission_eav(db, role.id)
    assert role_permission_service.is_permission_eav_enabled(db, role.id) is False
