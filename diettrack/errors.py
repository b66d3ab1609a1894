"""
Request-level errors.

Each error carries the HTTP status and the short machine code returned to
clients. Services raise these; `main.py` maps them to JSON responses.
"""


class DietTrackError(Exception):
    """Base class for errors that end a single request."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    @property
    def expose(self) -> bool:
        """4xx messages are safe to show to clients."""
        return 400 <= self.status_code < 500


class BadInputError(DietTrackError):
    status_code = 400
    code = "BAD_INPUT"


class MissingInputError(BadInputError):
    code = "MISSING_INPUT"


class BadImageError(BadInputError):
    code = "BAD_IMAGE"


class NoValidItemsError(BadInputError):
    code = "NO_VALID_ITEMS"


class AnalysisNotFoundError(DietTrackError):
    status_code = 404
    code = "NOT_FOUND"


class DuplicateFeedbackError(DietTrackError):
    status_code = 409
    code = "DUPLICATE_FEEDBACK"


class PersistenceError(DietTrackError):
    """The computation succeeded but the final write did not."""

    status_code = 500
    code = "DATABASE_ERROR"


class RouteTimeoutError(DietTrackError):
    status_code = 504
    code = "TIMEOUT"
