class DomainError(Exception):
    """Base domain error with a user-facing message."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AccessDenied(DomainError):
    """Raised when the actor may not act on the project or request."""


class NotFound(DomainError):
    """Raised when a required entity is missing."""


class InvalidState(DomainError):
    """Raised when the operation is illegal for the current status."""


class ValidationError(DomainError):
    """Raised when a command is malformed or misses required fields."""


class InvalidReference(DomainError):
    """Raised when an equipment id does not resolve within the business."""
