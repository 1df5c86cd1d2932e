class FitnessError(Exception):
    """Base class for application errors."""


class ValidationError(FitnessError):
    """A required parameter is missing or malformed."""


class InvalidRangeError(ValidationError):
    """Start date lies after end date."""

    def __init__(self, message: str = "Start date cannot be after end date") -> None:
        super().__init__(message)


class NotFoundError(FitnessError):
    """A referenced record does not exist."""


class StoreError(FitnessError):
    """The underlying database failed to read or write."""


class AuthenticationError(FitnessError):
    """The OAuth provider rejected the login or is not configured."""
