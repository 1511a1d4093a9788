class CirculationError(ValueError):
    """Business-rule rejection. The message is safe to show to the librarian as-is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BorrowingNotAllowedError(CirculationError):
    pass


class BookUnavailableError(CirculationError):
    pass


class AlreadyReturnedError(CirculationError):
    pass


class AvailabilityConflictError(CirculationError):
    """Another borrow took the last copy first; re-read availability and retry."""


class FineError(CirculationError):
    pass
