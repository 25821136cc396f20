"""Pydantic schemas for EAV attribute definitions and values."""

import re
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from campus_eav.db.enums import ValueType

NUMERIC_VALUE_TYPES = (ValueType.INTEGER, ValueType.DECIMAL)
TEXTUAL_VALUE_TYPES = (ValueType.STRING, ValueType.TEXT)


# =============================================================================
# Validation Rules
# =============================================================================


class ValidationRules(BaseModel):
    """Declared constraints enforced by the value store on write."""

    model_config = ConfigDict(extra="forbid")

    min: float | None = None
    max: float | None = None
    enum: list[str] | None = Field(default=None, min_length=1)
    pattern: str | None = None

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"Invalid regular expression: {exc}") from exc
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> "ValidationRules":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not be greater than max")
        return self

    def to_storage(self) -> dict[str, Any] | None:
        """Compact dict for the validation_rules JSON column (None if empty)."""
        data = self.model_dump(exclude_none=True)
        return data or None


# =============================================================================
# Attribute Definition Schemas
# =============================================================================


class AttributeSpec(BaseModel):
    """Declaration of one attribute, as used by setup manifests and admins."""

    name: str = Field(
        min_length=1,
        max_length=100,
        description="Machine key (lowercase, underscores)",
    )
    display_name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    value_type: ValueType = ValueType.STRING
    is_required: bool = False
    is_multi_valued: bool = False
    default_value: str | None = None
    validation_rules: ValidationRules | None = None
    sort_order: int = 0
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Normalize name to lowercase with underscores."""
        normalized = v.lower().strip().replace(" ", "_").replace("-", "_")
        if not normalized.replace("_", "").isalnum():
            raise ValueError("Name must contain only letters, numbers, and underscores")
        return normalized

    @model_validator(mode="after")
    def check_rules_match_type(self) -> "AttributeSpec":
        rules = self.validation_rules
        if rules is None:
            return self
        if (rules.min is not None or rules.max is not None) and (
            self.value_type not in NUMERIC_VALUE_TYPES
        ):
            raise ValueError("min/max rules apply to integer and decimal attributes only")
        if (rules.enum is not None or rules.pattern is not None) and (
            self.value_type not in TEXTUAL_VALUE_TYPES
        ):
            raise ValueError("enum/pattern rules apply to string and text attributes only")
        return self


class AttributeUpdate(BaseModel):
    """Partial update of an attribute definition. Unset fields are left alone."""

    display_name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    value_type: ValueType | None = None
    is_required: bool | None = None
    default_value: str | None = None
    validation_rules: ValidationRules | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class AttributeDefinitionRead(BaseModel):
    """Schema for reading an attribute definition."""

    id: UUID
    entity_type_id: UUID
    name: str
    display_name: str | None
    description: str | None
    value_type: ValueType
    is_required: bool
    is_multi_valued: bool
    default_value: str | None
    validation_rules: dict[str, Any] | None
    sort_order: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# Value Schemas
# =============================================================================


class AttributeDetail(BaseModel):
    """An attribute value together with its definition metadata."""

    name: str
    display_name: str | None
    description: str | None
    value_type: ValueType
    is_required: bool
    is_multi_valued: bool
    sort_order: int
    value: Any = None
    is_default: bool = False


class SetResult(BaseModel):
    """Per-key outcome of a bulk set."""

    status: Literal["ok", "error"]
    error: str | None = None
    rule: str | None = None


class MigrationStats(BaseModel):
    """Summary returned by the setup and rollback workflows."""

    manifest: str
    version: str
    entity_type: str
    dry_run: bool = False
    entity_type_created: bool = False
    created: dict[str, int] = Field(default_factory=dict)
    existing: dict[str, int] = Field(default_factory=dict)
    values_deleted: int = 0
    definitions_deleted: int = 0
    flags_reset: int = 0

    @property
    def total_created(self) -> int:
        return sum(self.created.values())

    @property
    def total_existing(self) -> int:
        return sum(self.existing.values())
