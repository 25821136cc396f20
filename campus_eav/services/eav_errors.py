"""Exception hierarchy shared by the EAV service layers."""


class EavServiceError(Exception):
    """Base exception for EAV service errors."""

    pass


# =============================================================================
# Not Found
# =============================================================================


class EavNotFoundError(EavServiceError):
    """Referenced EAV object does not exist or is soft-deleted."""

    pass


class EntityTypeNotFoundError(EavNotFoundError):
    """Entity type not registered (or rolled back)."""

    pass


class AttributeNotFoundError(EavNotFoundError):
    """No active attribute definition with that name for the entity type."""

    pass


class EntityNotFoundError(EavNotFoundError):
    """The domain row an attribute value would belong to does not exist."""

    pass


# =============================================================================
# Validation
# =============================================================================


class EavValidationError(EavServiceError):
    """
    A raw value was rejected for an attribute.

    `rule` names what failed: "type" for coercion, or one of the declared
    rules (min, max, enum, pattern, max_length, required, value_type).
    """

    def __init__(self, attribute: str, rule: str, message: str):
        super().__init__(f"{attribute}: {message}")
        self.attribute = attribute
        self.rule = rule
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"attribute": self.attribute, "rule": self.rule, "message": self.message}


class TypeCoercionError(EavValidationError):
    """Raw value is incompatible with the declared value type."""

    def __init__(self, attribute: str, message: str):
        super().__init__(attribute, "type", message)


class RuleViolationError(EavValidationError):
    """Coerced value violates a declared validation rule."""

    pass


class ValueTypeChangeError(EavValidationError):
    """Definition value_type change refused because values are stored."""

    def __init__(self, attribute: str, message: str):
        super().__init__(attribute, "value_type", message)


# =============================================================================
# Conflicts and Workflow Failures
# =============================================================================


class EavConflictError(EavServiceError):
    """Idempotent create lost a race to a concurrent creator."""

    pass


class UnsupportedStorageError(EavServiceError):
    """Entity-specific storage cannot hold the requested data."""

    pass


class MigrationFailure(EavServiceError):
    """A transactional workflow failed and was rolled back."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message
