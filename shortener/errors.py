"""Exception hierarchy shared by the service layer and the HTTP routes."""

__all__ = [
    "ShortenerError",
    "InvalidCodeError",
    "DuplicateError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthorizedError",
    "RateLimitedError",
]


class ShortenerError(Exception):
    """Base class for errors raised by the short-link service."""

    code = "SERVER_ERROR"


class InvalidCodeError(ShortenerError, ValueError):
    """A string could not be decoded by the code codec."""

    code = "INVALID_CODE"


class DuplicateError(ShortenerError):
    """A long URL or alias already exists."""

    code = "DUPLICATE_REQUEST"


class NotFoundError(ShortenerError):
    code = "NO_RECORD"


class ForbiddenError(ShortenerError):
    code = "FORBIDDEN"


class UnauthorizedError(ShortenerError):
    code = "UNAUTHORIZED"


class RateLimitedError(ShortenerError):
    code = "RATE_LIMIT_EXCEEDED"
