"""
Scout Pro error taxonomy.

Every error the API surfaces to a caller derives from ScoutError and carries
the HTTP status it maps to. main.py renders them with one exception handler.
"""

from typing import Optional


class ScoutError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(ScoutError):
    status_code = 400
    default_message = "Validation error"

    def __init__(self, message: Optional[str] = None, details: Optional[list] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.details:
            body["details"] = self.details
        return body


class DuplicateUser(ScoutError):
    status_code = 400
    default_message = "User already exists"


class InvalidRegistrationCode(ScoutError):
    status_code = 400
    default_message = "Invalid registration code"


class InvalidCredentials(ScoutError):
    status_code = 400
    default_message = "Invalid credentials"


class InvalidOrExpiredToken(ScoutError):
    status_code = 401
    default_message = "Invalid or expired token"


class Forbidden(ScoutError):
    status_code = 403
    default_message = "Not allowed"


class NotFound(ScoutError):
    status_code = 404
    default_message = "Not found"


class Timeout(ScoutError):
    status_code = 408
    default_message = "Request timeout"


class FileTooLarge(ScoutError):
    status_code = 413
    default_message = "File too large"


class UnsupportedFileType(ScoutError):
    status_code = 415
    default_message = "Only image files are allowed"


class RateLimited(ScoutError):
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: Optional[str] = None, retry_after: int = 1):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


class StorageError(ScoutError):
    status_code = 500
    default_message = "Storage error"
