class ObligationError(ValueError):
    """Base for every recoverable error raised by the obligation engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MonthFormatError(ObligationError):
    pass


class ValidationError(ObligationError):
    pass


class AllocationError(ValidationError):
    pass


class NotFoundError(ObligationError):
    pass


class DataIntegrityError(ObligationError):
    """Stored data contradicts an invariant the write path is supposed to enforce."""
