"""
Exception types for the Construction Cost Allocation System.

Missing prerequisites (no approved estimate, no accepted quote) are not
errors and never raise; data anomalies are reported as warnings on result
objects. Only malformed input and write conflicts raise.
"""


class CCASError(Exception):
    """Base class for errors raised by this package."""
    pass


class ValidationError(CCASError):
    """Raised for malformed input: the message is meant for the end user."""
    pass


class NotFoundError(ValidationError):
    """Raised when a referenced entity does not exist."""
    pass


class CorrelationConflictError(CCASError):
    """Raised when an expense is already correlated to a different target of the same type."""

    def __init__(self, message: str, existing_id: str = None):
        super().__init__(message)
        self.existing_id = existing_id
