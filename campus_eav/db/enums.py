"""Enum definitions for EAV constants."""

from enum import Enum


class ValueType(str, Enum):
    """Declared type of an attribute; selects the typed value column."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TEXT = "text"
    JSON = "json"


class AuditAction(str, Enum):
    """Change kinds recorded in eav_audit_logs."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SearchOperator(str, Enum):
    """Comparison operators for attribute value search."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    LIKE = "like"
    IN = "in"


VALUE_TYPES = tuple(v.value for v in ValueType)
DEFAULT_VALUE_TYPE = ValueType.STRING.value
