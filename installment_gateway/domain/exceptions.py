"""Domain-specific exceptions"""

from typing import Any, Dict


class DomainException(Exception):
    """Base exception for domain layer"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class ValidationError(DomainException):
    """Input rejected before anything is persisted"""

    pass


class ConflictError(DomainException):
    """Reference code collided at commit time; the whole batch is rejected"""

    pass


class IntegrityWarning(DomainException):
    """Operation would discard schedule history and needs explicit confirmation"""

    pass


class ImportLineError(DomainException):
    """A single postal batch line could not be applied"""

    def __init__(self, message: str, line_number: int, raw: str, **details: Any):
        super().__init__(message, line_number=line_number, raw=raw, **details)
        self.line_number = line_number
        self.raw = raw


class NotFoundError(DomainException):
    """Requested entity does not exist"""

    pass


class StoreError(DomainException):
    """Persistent store failed or rejected an operation"""

    pass


class StoreUnavailableError(StoreError):
    """Persistent store is unreachable"""

    pass
