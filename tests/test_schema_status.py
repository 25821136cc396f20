"""Alembic revision checks used by the db-status command."""

import pytest
from sqlalchemy import inspect

from campus_eav.core import migrations
from campus_eav.core.config import Settings
from campus_eav.core.migrations import SchemaStatus, SchemaUpgradeError
from campus_eav.db.session import create_engine_with_settings


@pytest.fixture
def empty_engine(tmp_path):
    engine = create_engine_with_settings(Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'fresh.db'}"))
    yield engine
    engine.dispose()


def test_status_flags():
    assert SchemaStatus(current=("a",), head=("a",)).is_current is True
    behind = SchemaStatus(current=("a",), head=("b",))
    assert behind.is_current is False
    assert behind.is_unversioned is False
    assert SchemaStatus(current=(), head=("b",)).is_unversioned is True


def test_fresh_database_is_unversioned(empty_engine):
    status = migrations.schema_status(empty_engine)

    assert status.current == ()
    assert status.head == ("0002_role_permissions",)
    assert status.is_unversioned is True


def test_upgrade_builds_schema_and_stamps_head(empty_engine):
    status = migrations.upgrade_schema(empty_engine)

    assert status.is_current is True
    assert status.current == ("0002_role_permissions",)
    tables = set(inspect(empty_engine).get_table_names())
    assert {
        "entity_types",
        "attribute_definitions",
        "attribute_values",
        "role_attribute_values",
        "user_roles",
        "eav_audit_logs",
    } <= tables

    # Already at head: a second upgrade is a no-op
    assert migrations.upgrade_schema(empty_engine).is_current is True


def test_upgrade_reports_when_head_is_not_reached(empty_engine, monkeypatch):
    monkeypatch.setattr(migrations.command, "upgrade", lambda config, revision: None)

    with pytest.raises(SchemaUpgradeError):
        migrations.upgrade_schema(empty_engine)
