"""Error taxonomy shared by the booking core and the HTTP layer."""

from __future__ import annotations


class BookingError(Exception):
    """Base for expected, client-facing failures."""

    code = "BookingError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(BookingError):
    code = "ValidationError"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class InvalidDate(BookingError):
    code = "InvalidDate"


class InvalidInterval(BookingError):
    """Malformed interval (end <= start)."""

    code = "InvalidInterval"


class InvalidWorkingHours(BookingError):
    code = "InvalidWorkingHours"


class NotFound(BookingError):
    code = "NotFound"
    status_code = 404


class PageNotFound(NotFound):
    code = "PageNotFound"


class PermissionDenied(BookingError):
    code = "PermissionDenied"
    status_code = 403


class PageUnavailable(BookingError):
    code = "PageUnavailable"
    status_code = 409


class SlotConflict(BookingError):
    code = "SlotConflict"
    status_code = 409


class BookingLimitReached(BookingError):
    code = "BookingLimitReached"
    status_code = 409


class ProviderUnavailable(BookingError):
    code = "ProviderUnavailable"
    status_code = 503


def status_for_code(code: str) -> int:
    """HTTP status of the error class carrying `code`."""
    pending = [BookingError]
    while pending:
        cls = pending.pop()
        if cls.code == code:
            return cls.status_code
        pending.extend(cls.__subclasses__())
    return BookingError.status_code
