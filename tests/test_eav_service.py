"""Tests for the EAV facade: reads, writes, bulk updates and search."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from campus_eav.db.models import AttributeValue
from campus_eav.db.session import SessionLocal
from campus_eav.services import attribute_value_service, eav_audit_service, eav_service
from campus_eav.services.eav_errors import (
    AttributeNotFoundError,
    EavValidationError,
    EntityNotFoundError,
    EntityTypeNotFoundError,
    MigrationFailure,
    RuleViolationError,
    TypeCoercionError,
)
from campus_eav.services.entity_type_service import EntityRef


def _value_rows(db, entity_id, *, include_deleted=False):
    query = select(AttributeValue).where(AttributeValue.entity_id == entity_id)
    if not include_deleted:
        query = query.where(AttributeValue.deleted_at.is_(None))
    return list(db.execute(query.order_by(AttributeValue.sort_order)).scalars())


# =============================================================================
# Set / Get
# =============================================================================

def test_decimal_round_trip_and_rule_failure(db, profile_type, test_user):
    stored = eav_service.set_attribute(db, "User", test_user.id, "student_gpa", 3.875)
    assert stored == Decimal("3.875")

    with pytest.raises(RuleViolationError) as exc_info:
        eav_service.set_attribute(db, "User", test_user.id, "student_gpa", 5.0)
    assert exc_info.value.rule == "max"

    values = eav_service.get_attributes_for(db, "User", test_user.id)
    assert values["student_gpa"] == Decimal("3.875")


def test_round_trip_per_value_type(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", "30")
    eav_service.set_attribute(db, "User", test_user.id, "primary_contact", "yes")
    eav_service.set_attribute(db, "User", test_user.id, "bio", "Likes compilers")
    eav_service.set_attribute(db, "User", test_user.id, "birthday", "2001-04-17")
    eav_service.set_attribute(
        db, "User", test_user.id, "last_login", "2024-09-01T10:30:00-05:00"
    )
    eav_service.set_attribute(
        db, "User", test_user.id, "preferences", {"theme": "dark", "digest": ["weekly"]}
    )

    values = eav_service.get_attributes_for(db, "User", test_user.id)

    assert values["age"] == 30
    assert values["primary_contact"] is True
    assert values["bio"] == "Likes compilers"
    assert values["birthday"] == date(2001, 4, 17)
    assert values["last_login"] == datetime(2024, 9, 1, 15, 30, tzinfo=timezone.utc)
    assert values["preferences"] == {"theme": "dark", "digest": ["weekly"]}


def test_overwrite_keeps_single_row(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "nickname", "Al")
    eav_service.set_attribute(db, "User", test_user.id, "nickname", "Alex")

    rows = _value_rows(db, test_user.id)
    assert len(rows) == 1
    assert rows[0].value_string == "Alex"
    assert eav_service.get_attributes_for(db, "User", test_user.id)["nickname"] == "Alex"


def test_type_error_leaves_storage_untouched(db, profile_type, test_user):
    with pytest.raises(TypeCoercionError):
        eav_service.set_attribute(db, "User", test_user.id, "age", "thirty")
    assert _value_rows(db, test_user.id) == []


def test_unset_attributes_use_default_or_are_absent(db, profile_type, test_user):
    values = eav_service.get_attributes_for(db, "User", test_user.id)
    assert values == {"primary_contact": False}


def test_read_filters(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", 30)
    eav_service.set_attribute(db, "User", test_user.id, "student_gpa", "3.2")

    by_prefix = eav_service.get_attributes_for(
        db, "User", test_user.id, attribute_prefix="student_"
    )
    assert by_prefix == {"student_gpa": Decimal("3.2")}

    by_name = eav_service.get_attributes_for(db, "User", test_user.id, attribute_names=["age"])
    assert by_name == {"age": 30}


def test_details_include_metadata_and_default_flag(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", 30)

    details = {
        d.name: d for d in eav_service.get_attributes_with_details(db, "User", test_user.id)
    }

    assert list(details)[:2] == ["age", "status"]
    assert details["age"].value == 30
    assert details["age"].is_default is False
    assert details["primary_contact"].value is False
    assert details["primary_contact"].is_default is True
    assert details["tags"].value is None
    assert details["tags"].is_multi_valued is True


def test_values_are_isolated_per_entity(db, profile_type, test_user, other_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", 30)
    eav_service.set_attribute(db, "User", other_user.id, "age", 41)

    assert eav_service.get_attributes_for(db, "User", test_user.id)["age"] == 30
    assert eav_service.get_attributes_for(db, "User", other_user.id)["age"] == 41


# =============================================================================
# Errors
# =============================================================================

def test_unknown_entity_raises(db, profile_type):
    with pytest.raises(EntityNotFoundError):
        eav_service.set_attribute(db, "User", uuid.uuid4(), "age", 30)


def test_unknown_attribute_raises(db, profile_type, test_user):
    with pytest.raises(AttributeNotFoundError):
        eav_service.set_attribute(db, "User", test_user.id, "shoe_size", 42)


def test_unknown_entity_type_raises(db, test_user):
    with pytest.raises(EntityTypeNotFoundError):
        eav_service.get_attributes_for(db, "Spaceship", test_user.id)


def test_inactive_attribute_cannot_be_written(db, profile_type, test_user):
    eav_service.retire_attribute(db, "User", "nickname")
    with pytest.raises(AttributeNotFoundError):
        eav_service.set_attribute(db, "User", test_user.id, "nickname", "Al")


# =============================================================================
# Multi-valued Attributes
# =============================================================================

def test_append_preserves_insertion_order(db, profile_type, test_user):
    for tag in ("A", "B", "C"):
        eav_service.append_attribute_value(db, "User", test_user.id, "tags", tag)

    assert eav_service.get_attributes_for(db, "User", test_user.id)["tags"] == ["A", "B", "C"]
    assert [row.sort_order for row in _value_rows(db, test_user.id)] == [0, 1, 2]


def test_set_list_replaces_full_set(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "tags", ["A", "B", "C"])
    eav_service.set_attribute(db, "User", test_user.id, "tags", ["Z", "A"])

    assert eav_service.get_attributes_for(db, "User", test_user.id)["tags"] == ["Z", "A"]
    assert len(_value_rows(db, test_user.id, include_deleted=True)) == 5


def test_replace_validates_every_element_first(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "tags", ["A"])

    with pytest.raises(RuleViolationError):
        eav_service.set_attribute(db, "User", test_user.id, "tags", ["B", "x" * 501])

    assert eav_service.get_attributes_for(db, "User", test_user.id)["tags"] == ["A"]


def test_append_to_single_valued_attribute_fails(db, profile_type, test_user):
    with pytest.raises(EavValidationError) as exc_info:
        eav_service.append_attribute_value(db, "User", test_user.id, "nickname", "Al")
    assert exc_info.value.rule == "multi_valued"


def test_delete_single_element_by_value_id(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "tags", ["A", "B", "C"])
    middle = _value_rows(db, test_user.id)[1]

    assert eav_service.delete_attribute(
        db, "User", test_user.id, "tags", value_id=middle.id
    ) is True
    assert eav_service.get_attributes_for(db, "User", test_user.id)["tags"] == ["A", "C"]

    # Appends continue after the highest remaining position
    eav_service.append_attribute_value(db, "User", test_user.id, "tags", "D")
    assert eav_service.get_attributes_for(db, "User", test_user.id)["tags"] == ["A", "C", "D"]


# =============================================================================
# Deletes
# =============================================================================

def test_soft_delete_hides_value_and_falls_back_to_default(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "primary_contact", True)

    assert eav_service.delete_attribute(db, "User", test_user.id, "primary_contact") is True

    rows = _value_rows(db, test_user.id, include_deleted=True)
    assert len(rows) == 1
    assert rows[0].deleted_at is not None
    assert eav_service.get_attributes_for(db, "User", test_user.id) == {"primary_contact": False}


def test_hard_delete_removes_row(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "nickname", "Al")

    eav_service.delete_attribute(db, "User", test_user.id, "nickname", hard_delete=True)

    assert _value_rows(db, test_user.id, include_deleted=True) == []


def test_delete_without_value_returns_false(db, profile_type, test_user):
    assert eav_service.delete_attribute(db, "User", test_user.id, "nickname") is False


def test_setting_none_clears_value(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "nickname", "Al")
    assert eav_service.set_attribute(db, "User", test_user.id, "nickname", None) is None
    assert "nickname" not in eav_service.get_attributes_for(db, "User", test_user.id)


def test_rewrite_after_soft_delete_creates_new_row(db, profile_type, test_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", 30)
    eav_service.delete_attribute(db, "User", test_user.id, "age")
    eav_service.set_attribute(db, "User", test_user.id, "age", 31)

    assert eav_service.get_attributes_for(db, "User", test_user.id)["age"] == 31
    assert len(_value_rows(db, test_user.id, include_deleted=True)) == 2


# =============================================================================
# Bulk Set
# =============================================================================

def test_bulk_set_reports_per_key_results(db, profile_type, test_user):
    results = eav_service.bulk_set_attributes(
        db,
        "User",
        test_user.id,
        {"age": 30, "status": "Deleted", "shoe_size": 42},
    )

    assert results["age"].status == "ok"
    assert results["status"].status == "error"
    assert results["status"].rule == "enum"
    assert results["shoe_size"].rule == "not_found"

    values = eav_service.get_attributes_for(db, "User", test_user.id)
    assert values["age"] == 30
    assert "status" not in values


def test_bulk_set_atomic_rolls_back_everything(db, profile_type, test_user):
    user_id = test_user.id
    db.commit()

    with pytest.raises(MigrationFailure) as exc_info:
        eav_service.bulk_set_attributes(
            db, "User", user_id, {"age": 30, "status": "Deleted"}, atomic=True
        )
    assert exc_info.value.step == "bulk_set:status"

    assert "age" not in eav_service.get_attributes_for(db, "User", user_id)


# =============================================================================
# Search
# =============================================================================

@pytest.fixture
def two_students(db, profile_type, test_user, other_user):
    eav_service.bulk_set_attributes(
        db, "User", test_user.id, {"age": 30, "nickname": "Alice", "status": "Active"}
    )
    eav_service.bulk_set_attributes(
        db, "User", other_user.id, {"age": 41, "nickname": "Malik", "status": "Inactive"}
    )
    return test_user.id, other_user.id


def test_find_by_equality(db, two_students):
    first, second = two_students
    assert eav_service.find_entities_by_attribute(db, "User", "status", "Active") == [first]
    assert eav_service.find_entities_by_attribute(db, "User", "age", 41) == [second]


def test_find_by_comparison(db, two_students):
    first, second = two_students
    assert eav_service.find_entities_by_attribute(db, "User", "age", 35, "gt") == [second]
    assert eav_service.find_entities_by_attribute(db, "User", "age", 30, "lte") == [first]
    assert eav_service.find_entities_by_attribute(db, "User", "age", 30, "ne") == [second]


def test_find_by_like_and_in(db, two_students):
    first, second = two_students
    assert set(eav_service.find_entities_by_attribute(db, "User", "nickname", "li", "like")) == {
        first,
        second,
    }
    assert set(
        eav_service.find_entities_by_attribute(db, "User", "age", [30, 41, 99], "in")
    ) == {first, second}


def test_find_ignores_soft_deleted_values(db, two_students):
    first, _ = two_students
    eav_service.delete_attribute(db, "User", first, "status")
    assert eav_service.find_entities_by_attribute(db, "User", "status", "Active") == []


def test_find_rejects_unsupported_searches(db, profile_type):
    with pytest.raises(EavValidationError):
        eav_service.find_entities_by_attribute(db, "User", "preferences", {"a": 1})
    with pytest.raises(EavValidationError):
        eav_service.find_entities_by_attribute(db, "User", "age", 3, "like")
    with pytest.raises(ValueError):
        eav_service.find_entities_by_attribute(db, "User", "age", 3, "between")


# =============================================================================
# Orphan Purge
# =============================================================================

def test_purge_orphaned_values(db, profile_type, test_user, other_user):
    eav_service.set_attribute(db, "User", test_user.id, "age", 30)
    eav_service.set_attribute(db, "User", other_user.id, "age", 41)
    db.delete(other_user)
    db.commit()

    assert eav_service.purge_orphaned_values(db, "User", dry_run=True) == 1
    assert eav_service.purge_orphaned_values(db, "User") == 1
    assert eav_service.purge_orphaned_values(db, "User") == 0
    assert eav_service.find_entities_by_attribute(db, "User", "age", 0, "gt") == [test_user.id]


# =============================================================================
# Concurrent First Writes
# =============================================================================


def _lose_first_lookup(monkeypatch):
    """Make the next write miss the current row, as if another writer got there first."""
    original = attribute_value_service._current_row
    calls = []

    def stale_then_fresh(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return original(*args, **kwargs)

    monkeypatch.setattr(attribute_value_service, "_current_row", stale_then_fresh)
    return calls


def test_concurrent_first_write_last_write_wins(
    db, connection, profile_type, test_user, monkeypatch
):
    winner = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")
    eav_service.set_attribute(winner, "User", test_user.id, "age", 30)
    winner.close()

    calls = _lose_first_lookup(monkeypatch)
    stored = eav_service.set_attribute(db, "User", test_user.id, "age", 31)

    assert stored == 31
    assert len(calls) == 2
    [row] = _value_rows(db, test_user.id)
    assert row.value_integer == 31
    logs = eav_audit_service.get_audit_logs(
        db, EntityRef("User", test_user.id), attribute_name="age"
    )
    assert {(log.action, log.old_value, log.new_value) for log in logs} == {
        ("update", "30", "31"),
        ("create", None, "30"),
    }
