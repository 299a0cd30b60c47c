"""Error taxonomy for recognition and review operations.

Each error carries the HTTP status the API layer maps it to.
"""


class RecognitionError(Exception):
    """Base class for recognition and review failures."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(RecognitionError):
    """Caller error: missing identifying field or malformed tenant id."""

    status_code = 400


class UnauthorizedError(RecognitionError):
    """Access validator denied the caller."""

    status_code = 403


class NotFoundError(RecognitionError):
    """Referenced profile, queue item or suggestion does not exist."""

    status_code = 404


class AlreadyProcessedError(RecognitionError):
    """Admin action on a queue item that is already completed."""

    status_code = 409


class DependencyUnavailableError(RecognitionError):
    """Identity store failed or timed out. Recoverable."""

    status_code = 503
