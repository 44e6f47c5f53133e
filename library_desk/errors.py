"""Error taxonomy shared by every component.

Components raise these; the HTTP layer turns them into
``{"success": false, "error": ...}`` responses using ``status_code``.
"""


class LibraryError(Exception):
    """Base exception for library system errors."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class ValidationError(LibraryError):
    """Missing or invalid input."""

    status_code = 400


class AuthRequired(LibraryError):
    """Login required."""

    status_code = 401


class AuthError(LibraryError):
    """Invalid credentials."""

    status_code = 401


class Forbidden(LibraryError):
    """Forbidden: insufficient role."""

    status_code = 403


class NotFound(LibraryError):
    """Not found."""

    status_code = 404


class Conflict(LibraryError):
    """Conflict with the current state."""

    status_code = 409


class InternalError(LibraryError):
    """Internal server error."""

    status_code = 500
