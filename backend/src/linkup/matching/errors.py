"""Domain errors raised by the matching, feedback and learning services.

Each error carries a stable ``code`` and the HTTP status the API maps it to.
"""


class MatchingError(Exception):
    """Base class for matching domain errors."""
    code = "matching_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyQueuedError(MatchingError):
    """User already has a waiting queue entry."""
    code = "already_queued"
    status_code = 409


class NotFoundError(MatchingError):
    """Referenced entry, match row or profile does not exist."""
    code = "not_found"
    status_code = 404


class OutOfRangeError(MatchingError):
    """A value is outside its allowed range (e.g. rating not in 1..5)."""
    code = "out_of_range"
    status_code = 422


class InvalidWindowError(MatchingError):
    """Availability window is malformed."""
    code = "invalid_window"
    status_code = 422


class InvalidOutcomeError(MatchingError):
    """Outcome is unknown or would overwrite a final resolution."""
    code = "invalid_outcome"
    status_code = 422


class InsufficientDataError(MatchingError):
    """Too few resolved samples to optimize weights."""
    code = "insufficient_data"
    status_code = 422

    def __init__(self, sample_size: int, min_samples: int):
        super().__init__(
            f"Need at least {min_samples} resolved matches, found {sample_size}"
        )
        self.sample_size = sample_size
        self.min_samples = min_samples


class UnavailableError(MatchingError):
    """A collaborator (user directory) did not answer in time."""
    code = "unavailable"
    status_code = 503


class InvalidStateError(MatchingError):
    """Operation is not allowed in the record's current state."""
    code = "invalid_state"
    status_code = 409
