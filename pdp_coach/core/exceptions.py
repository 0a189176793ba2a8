class DomainError(Exception):
    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(DomainError):
    def __init__(self, entity: str, message: str | None = None, details: dict | None = None):
        code = f"NF_{entity.upper()}_001"
        msg = message or f"{entity} not found"
        super().__init__(code, msg, details)


class ValidationError(DomainError):
    def __init__(self, field: str, message: str, details: dict | None = None):
        code = f"VAL_{field.upper()}_001"
        msg = f"Validation failed for {field}: {message}"
        super().__init__(code, msg, details or {"field": field})


class BusinessRuleError(DomainError):
    def __init__(self, message: str, code: str = "BR_001", details: dict | None = None):
        super().__init__(code, message, details)


class ConflictError(DomainError):
    def __init__(self, message: str, code: str = "CF_001", details: dict | None = None):
        super().__init__(code, message, details)


class PersistenceError(DomainError):
    """A write to an external store failed; the caller may retry."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: dict | None = None,
        retryable: bool = True,
    ):
        code = f"PERSIST_{operation.upper()}_001"
        self.operation = operation
        self.retryable = retryable
        super().__init__(code, message, {"retryable": retryable, **(details or {})})
