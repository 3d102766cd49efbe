"""
API error types

Every error raised by a route handler is rendered as {"error": message}
with the status code carried by the exception class.
"""


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400


class NotFoundError(ApiError):
    status_code = 404


class AuthError(ApiError):
    """Bad credentials (401) or a rejected token / role (403)."""
    status_code = 401


class ConflictError(ApiError):
    status_code = 400
