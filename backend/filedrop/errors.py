"""Error taxonomy shared by the pipeline, storage backends and routes.

Every error carries an HTTP status and a short machine-readable reason so the
API layer can render it without leaking internals.
"""


class FileDropError(Exception):
    """Base class for all service errors."""
    status_code = 500
    reason = "InternalError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class ValidationError(FileDropError):
    """Client-caused upload rejection."""
    status_code = 400
    reason = "ValidationError"


class TooLarge(ValidationError):
    reason = "TooLarge"


class TypeNotAllowed(ValidationError):
    reason = "TypeNotAllowed"


class NoPayload(ValidationError):
    reason = "NoPayload"


class NotFound(FileDropError):
    status_code = 404
    reason = "NotFound"


class RangeNotSatisfiable(FileDropError):
    status_code = 416
    reason = "RangeNotSatisfiable"

    def __init__(self, size: int, message: str = ""):
        super().__init__(message or f"Requested range not satisfiable for {size} byte(s)")
        self.size = size


class StorageConflict(FileDropError):
    """Target name already taken in storage or catalog."""
    reason = "StorageConflict"


class StorageIOError(FileDropError):
    reason = "StorageError"
