"""SQLAlchemy ORM models for the EAV engine and its collaborator tables."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Date, ForeignKey, Index, Integer,
    Numeric, String, Text, Uuid, func, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_eav.db.base import Base
from campus_eav.db.enums import DEFAULT_VALUE_TYPE, VALUE_TYPES
from campus_eav.db.types import JSONType, UTCDateTime, utcnow


NOT_DELETED = text("deleted_at IS NULL")

VALUE_TYPE_CHECK = "value_type IN ({})".format(
    ", ".join(f"'{value_type}'" for value_type in VALUE_TYPES)
)


# =============================================================================
# Collaborator Tables
# =============================================================================

class User(Base):
    """
    University user (student, instructor, parent, staff).

    Only the columns the EAV engine touches live here; the full user
    schema belongs to the domain application.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Hint for other code paths; not enforced by the EAV engine
    profile_eav_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Assessment(Base):
    """Course assessment (quiz, exam, assignment)."""
    __tablename__ = "assessments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    metadata_eav_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Role(Base):
    """University role (admin, instructor, student, ...); permissions live in EAV."""
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    permission_eav_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class UserRole(Base):
    """Many-to-many link; a user may hold several roles."""
    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# EAV Catalog
# =============================================================================

class EntityType(Base):
    """
    A logical entity class that may carry EAV attributes.

    `use_entity_specific_table` selects the storage strategy: the shared
    polymorphic attribute_values table, or a dedicated
    <entity>_attribute_values table with a real foreign key.
    """
    __tablename__ = "entity_types"
    __table_args__ = (
        Index(
            "uq_entity_types_name_active",
            "name",
            unique=True,
            postgresql_where=NOT_DELETED,
            sqlite_where=NOT_DELETED,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g., "User"
    table_name: Mapped[str | None] = mapped_column(String(100), nullable=True)  # e.g., "users"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    use_entity_specific_table: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    attributes: Mapped[list["AttributeDefinition"]] = relationship(
        back_populates="entity_type",
        order_by="AttributeDefinition.sort_order",
    )


class AttributeDefinition(Base):
    """
    Schema for one named, typed attribute of an entity type.

    `default_value` is stored as a string and coerced on read.
    `validation_rules` holds min/max/enum/pattern; enforcement happens in
    the value store at write time.
    """
    __tablename__ = "attribute_definitions"
    __table_args__ = (
        Index(
            "uq_attribute_definitions_name_active",
            "entity_type_id",
            "name",
            unique=True,
            postgresql_where=NOT_DELETED,
            sqlite_where=NOT_DELETED,
        ),
        Index("idx_attribute_definitions_entity_type", "entity_type_id"),
        Index("idx_attribute_definitions_active", "entity_type_id", "is_active"),
        CheckConstraint(VALUE_TYPE_CHECK, name="ck_attribute_definitions_value_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("entity_types.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g., "student_gpa"
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_type: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_VALUE_TYPE, nullable=False
    )
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_multi_valued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    entity_type: Mapped["EntityType"] = relationship(back_populates="attributes")


# =============================================================================
# EAV Values
# =============================================================================

class TypedValueColumns:
    """One nullable column per value type ("wide sparse row")."""

    value_string: Mapped[str | None] = mapped_column(String(500), nullable=True)
    value_integer: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    value_decimal: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    value_boolean: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    value_datetime: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    value_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_json: Mapped[object | None] = mapped_column(JSONType, nullable=True)

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class AttributeValue(TypedValueColumns, Base):
    """
    Generic polymorphic value table shared by all entity types.

    Uses the entity_type + entity_id pattern; there is no database foreign
    key to the owning row, so deleting the owner leaves orphans behind.
    """
    __tablename__ = "attribute_values"
    __table_args__ = (
        Index("idx_attribute_values_entity", "entity_type", "entity_id"),
        Index("idx_attribute_values_attribute", "attribute_id"),
        Index(
            "uq_attribute_values_entity_attribute_active",
            "entity_type",
            "entity_id",
            "attribute_id",
            "sort_order",
            unique=True,
            postgresql_where=NOT_DELETED,
            sqlite_where=NOT_DELETED,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    attribute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attribute_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Polymorphic reference
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)  # "User"
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)


class UserAttributeValue(TypedValueColumns, Base):
    """Entity-specific value table for User profile attributes."""
    __tablename__ = "user_attribute_values"
    __table_args__ = (
        Index("idx_user_attribute_values_attribute", "attribute_id"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    attribute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attribute_definitions.id", ondelete="CASCADE"),
        primary_key=True,
    )


class AssessmentAttributeValue(TypedValueColumns, Base):
    """Entity-specific value table for Assessment metadata attributes."""
    __tablename__ = "assessment_attribute_values"
    __table_args__ = (
        Index("idx_assessment_attribute_values_attribute", "attribute_id"),
        Index("idx_assessment_attribute_values_value_string", "value_string"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        "assessment_id",
        Uuid,
        ForeignKey("assessments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    attribute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attribute_definitions.id", ondelete="CASCADE"),
        primary_key=True,
    )


class RoleAttributeValue(TypedValueColumns, Base):
    """Entity-specific value table for Role permission attributes."""
    __tablename__ = "role_attribute_values"
    __table_args__ = (
        Index("idx_role_attribute_values_attribute", "attribute_id"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        "role_id",
        Uuid,
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    attribute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attribute_definitions.id", ondelete="CASCADE"),
        primary_key=True,
    )


# Entity type name -> dedicated value table
ENTITY_SPECIFIC_VALUE_MODELS: dict[str, type[TypedValueColumns]] = {
    "User": UserAttributeValue,
    "Assessment": AssessmentAttributeValue,
    "Role": RoleAttributeValue,
}


# =============================================================================
# Audit
# =============================================================================

class EavAuditLog(Base):
    """
    Append-only change log for attribute values.

    Old/new values are JSON text; written in the same transaction as the
    change they describe.
    """
    __tablename__ = "eav_audit_logs"
    __table_args__ = (
        Index("idx_eav_audit_entity", "entity_type", "entity_id"),
        Index("idx_eav_audit_attribute", "attribute_name"),
        Index("idx_eav_audit_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    attribute_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # create/update/delete
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
