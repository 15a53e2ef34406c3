"""
Error taxonomy shared by the server, the service and the client session.

Each error carries the HTTP status it maps to, so the Flask layer and the
HTTP client can translate in both directions.
"""


class BoardError(Exception):
    """Base class for all task board errors."""
    status_code = 500
    category = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.category)
        self.message = message or self.category


class Unauthorized(BoardError):
    """Actor lacks permission for this task or workspace."""
    status_code = 403
    category = "unauthorized"


class NotFound(BoardError):
    """Referenced task or workspace does not exist."""
    status_code = 404
    category = "not_found"


class ValidationError(BoardError):
    """Request payload failed validation; nothing was written."""
    status_code = 400
    category = "validation"


class PersistenceFailure(BoardError):
    """The task store could not be read or written."""
    status_code = 503
    category = "persistence"


class BroadcastFailure(BoardError):
    """Publishing to the pub/sub channel failed after a committed write."""
    status_code = 502
    category = "broadcast"


class ConfigError(BoardError):
    """Configuration is invalid or incomplete."""
    category = "config"


_BY_STATUS = {
    400: ValidationError,
    401: Unauthorized,
    403: Unauthorized,
    404: NotFound,
}


def error_for_status(status_code: int, message: str = "") -> BoardError:
    """Rebuild a BoardError from an HTTP status (used by the HTTP client)."""
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        cls = PersistenceFailure if status_code >= 500 else BoardError
    return cls(message)
