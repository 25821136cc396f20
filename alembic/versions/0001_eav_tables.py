"""EAV tables - entity types, attribute catalog, value stores, audit log

Revision ID: 0001_eav_tables
Revises:
Create Date: 2025-07-01

Creates the generic (polymorphic) value table, the entity-specific
user/assessment value tables, and the minimal collaborator tables they
reference.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_eav_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")
NOT_DELETED = sa.text("deleted_at IS NULL")
VALUE_TYPES = ("string", "integer", "decimal", "boolean", "date", "datetime", "text", "json")


def _timestamps(soft_delete: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if soft_delete:
        columns.append(sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def _typed_value_columns() -> list[sa.Column]:
    return [
        sa.Column("value_string", sa.String(500), nullable=True),
        sa.Column("value_integer", sa.BigInteger(), nullable=True),
        sa.Column("value_decimal", sa.Numeric(18, 6), nullable=True),
        sa.Column("value_boolean", sa.Boolean(), nullable=True),
        sa.Column("value_date", sa.Date(), nullable=True),
        sa.Column("value_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("value_text", sa.Text(), nullable=True),
        sa.Column("value_json", JSON_TYPE, nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    """Create EAV and collaborator tables."""

    # ==========================================================================
    # Collaborator tables
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("profile_eav_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "assessments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("metadata_eav_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ==========================================================================
    # Catalog
    # ==========================================================================
    op.create_table(
        "entity_types",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("table_name", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("use_entity_specific_table", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index(
        "uq_entity_types_name_active", "entity_types", ["name"],
        unique=True, postgresql_where=NOT_DELETED, sqlite_where=NOT_DELETED,
    )

    op.create_table(
        "attribute_definitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_type_id", sa.Uuid(), sa.ForeignKey("entity_types.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value_type", sa.String(20), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False),
        sa.Column("is_multi_valued", sa.Boolean(), nullable=False),
        sa.Column("default_value", sa.Text(), nullable=True),
        sa.Column("validation_rules", JSON_TYPE, nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "value_type IN ({})".format(", ".join(f"'{v}'" for v in VALUE_TYPES)),
            name="ck_attribute_definitions_value_type",
        ),
    )
    op.create_index(
        "uq_attribute_definitions_name_active", "attribute_definitions", ["entity_type_id", "name"],
        unique=True, postgresql_where=NOT_DELETED, sqlite_where=NOT_DELETED,
    )
    op.create_index("idx_attribute_definitions_entity_type", "attribute_definitions", ["entity_type_id"])
    op.create_index("idx_attribute_definitions_active", "attribute_definitions", ["entity_type_id", "is_active"])

    # ==========================================================================
    # Generic value table
    # ==========================================================================
    op.create_table(
        "attribute_values",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("attribute_id", sa.Uuid(), sa.ForeignKey("attribute_definitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        *_typed_value_columns(),
        *_timestamps(),
    )
    op.create_index("idx_attribute_values_entity", "attribute_values", ["entity_type", "entity_id"])
    op.create_index("idx_attribute_values_attribute", "attribute_values", ["attribute_id"])
    op.create_index(
        "uq_attribute_values_entity_attribute_active", "attribute_values",
        ["entity_type", "entity_id", "attribute_id", "sort_order"],
        unique=True, postgresql_where=NOT_DELETED, sqlite_where=NOT_DELETED,
    )

    # ==========================================================================
    # Entity-specific value tables
    # ==========================================================================
    op.create_table(
        "user_attribute_values",
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("attribute_id", sa.Uuid(), sa.ForeignKey("attribute_definitions.id", ondelete="CASCADE"), primary_key=True),
        *_typed_value_columns(),
        *_timestamps(),
    )
    op.create_index("idx_user_attribute_values_attribute", "user_attribute_values", ["attribute_id"])

    op.create_table(
        "assessment_attribute_values",
        sa.Column("assessment_id", sa.Uuid(), sa.ForeignKey("assessments.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("attribute_id", sa.Uuid(), sa.ForeignKey("attribute_definitions.id", ondelete="CASCADE"), primary_key=True),
        *_typed_value_columns(),
        *_timestamps(),
    )
    op.create_index("idx_assessment_attribute_values_attribute", "assessment_attribute_values", ["attribute_id"])
    op.create_index("idx_assessment_attribute_values_value_string", "assessment_attribute_values", ["value_string"])

    # ==========================================================================
    # Audit
    # ==========================================================================
    op.create_table(
        "eav_audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("attribute_name", sa.String(100), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("changed_by_id", sa.Uuid(), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_eav_audit_entity", "eav_audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_eav_audit_attribute", "eav_audit_logs", ["attribute_name"])
    op.create_index("idx_eav_audit_created", "eav_audit_logs", ["created_at"])


def downgrade() -> None:
    """Drop EAV and collaborator tables."""
    op.drop_table("eav_audit_logs")
    op.drop_table("assessment_attribute_values")
    op.drop_table("user_attribute_values")
    op.drop_table("attribute_values")
    op.drop_table("attribute_definitions")
    op.drop_table("entity_types")
    op.drop_table("assessments")
    op.drop_table("users")
