"""
Shared error types for core services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class EntityNotFound(LookupError):
    """Raised when a referenced company, facility, or application does not exist."""

    def __init__(self, entity_type: str, entity_id, message: str | None = None):
        super().__init__(message or f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class AllocatorExhausted(RuntimeError):
    """Raised when a (facility, activity) bucket has no free sequence number left."""

    def __init__(self, prefix: str, max_sequence: int):
        super().__init__(
            f"no free application identifier for {prefix}XX "
            f"(limit is {max_sequence} per facility and activity type)"
        )
        self.prefix = prefix
        self.max_sequence = max_sequence


class ConstraintViolation(RuntimeError):
    def __init__(self, message: str, ref: str | None = None, reason: str = "constraint"):
        super().__init__(message)
        self.ref = ref
        self.reason = reason


class PersistenceFailure(RuntimeError):
    """Raised when the underlying store rejects or fails a write."""
