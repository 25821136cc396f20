"""
Test configuration and fixtures.

Provides:
- Database session with savepoint (rollback after each test)
- Collaborator rows (users, assessments)
- A registered entity type with a small attribute set

Uses DATABASE_URL when set (e.g. a PostgreSQL test database); otherwise a
temporary SQLite file.
"""
import os
import tempfile
import uuid
from typing import Generator

# Must be set before campus_eav settings are imported
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='campus_eav_'), 'test.db')}",
)

import pytest
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from campus_eav.db.base import Base
from campus_eav.db.models import Assessment, EntityType, Role, User
from campus_eav.db.session import SessionLocal, engine
from campus_eav.schemas.attribute import AttributeSpec
from campus_eav.services import attribute_catalog_service, entity_type_service


# =============================================================================
# Schema
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def schema() -> Generator[None, None, None]:
    """Create all tables once per test session."""
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="function")
def connection() -> Generator[Connection, None, None]:
    """Connection with an outer transaction that is rolled back after the test."""
    connection = engine.connect()
    transaction = connection.begin()
    yield connection
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def db(connection: Connection) -> Generator[Session, None, None]:
    """
    Creates a database session with savepoint for test isolation.

    Service code may call commit()/rollback(); those act on a savepoint
    inside the outer transaction.
    """
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")
    yield session
    session.close()


@pytest.fixture(scope="function")
def cli_session(connection: Connection, monkeypatch):
    """Point the CLI's SessionLocal at the test connection."""
    from campus_eav import cli

    def factory() -> Session:
        return SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    monkeypatch.setattr(cli, "SessionLocal", factory)
    return factory


# =============================================================================
# Collaborator Rows
# =============================================================================

@pytest.fixture(scope="function")
def test_user(db: Session) -> User:
    """Create a test user."""
    user = User(
        id=uuid.uuid4(),
        email=f"student-{uuid.uuid4().hex[:8]}@campus.test",
        display_name="Test Student",
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture(scope="function")
def other_user(db: Session) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"student-{uuid.uuid4().hex[:8]}@campus.test",
        display_name="Other Student",
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture(scope="function")
def test_assessment(db: Session) -> Assessment:
    """Create a test assessment."""
    assessment = Assessment(id=uuid.uuid4(), title="Midterm Exam")
    db.add(assessment)
    db.flush()
    return assessment


@pytest.fixture(scope="function")
def make_role(db: Session):
    """Factory for role rows, by name."""
    def factory(name: str) -> Role:
        role = Role(id=uuid.uuid4(), name=name)
        db.add(role)
        db.flush()
        return role

    return factory


# =============================================================================
# EAV Fixtures
# =============================================================================

PROFILE_SPECS = [
    {"name": "age", "value_type": "integer", "sort_order": 1},
    {"name": "status", "value_type": "string", "sort_order": 2,
     "validation_rules": {"enum": ["Active", "Inactive"]}},
    {"name": "student_gpa", "value_type": "decimal", "sort_order": 3,
     "validation_rules": {"min": 0, "max": 4.0}},
    {"name": "nickname", "value_type": "string", "sort_order": 4},
    {"name": "tags", "value_type": "string", "sort_order": 5, "is_multi_valued": True},
    {"name": "primary_contact", "value_type": "boolean", "sort_order": 6,
     "default_value": "false"},
    {"name": "bio", "value_type": "text", "sort_order": 7},
    {"name": "birthday", "value_type": "date", "sort_order": 8},
    {"name": "last_login", "value_type": "datetime", "sort_order": 9},
    {"name": "preferences", "value_type": "json", "sort_order": 10},
]


@pytest.fixture(scope="function")
def profile_type(db: Session) -> EntityType:
    """User entity type (generic table) with a small attribute set."""
    entity_type, _ = entity_type_service.register_or_get_entity_type(
        db, "User", table_name="users", description="Test profiles"
    )
    for row in PROFILE_SPECS:
        attribute_catalog_service.define_attribute(db, entity_type, AttributeSpec(**row))
    db.commit()
    return entity_type


@pytest.fixture(scope="function")
def assessment_type(db: Session) -> EntityType:
    """Assessment entity type using its dedicated value table."""
    entity_type, _ = entity_type_service.register_or_get_entity_type(
        db,
        "Assessment",
        table_name="assessments",
        use_entity_specific_table=True,
    )
    specs = [
        {"name": "difficulty_level", "sort_order": 1,
         "validation_rules": {"enum": ["Easy", "Medium", "Hard", "Expert"]}},
        {"name": "estimated_duration", "value_type": "integer", "sort_order": 2,
         "validation_rules": {"min": 1, "max": 600}},
        {"name": "shuffle_questions", "value_type": "boolean", "sort_order": 3,
         "default_value": "false"},
    ]
    for row in specs:
        attribute_catalog_service.define_attribute(db, entity_type, AttributeSpec(**row))
    db.commit()
    return entity_type
