"""vinteg_shared.errors — Classified (operational) request failures.

An AppError carries its own HTTP status and a caller-facing message. Any
other exception reaching the router is unclassified and surfaces as a
generic 500, except ConfigurationError which is shown verbatim so operators
can diagnose a broken deployment.
"""

from __future__ import annotations

__all__ = [
    "AppError",
    "ConfigurationError",
    "Conflict",
    "Forbidden",
    "NotFound",
    "PayloadTooLarge",
    "RateLimited",
    "Unauthorized",
    "ValidationFailed",
    "_is_configuration_fault",
]


class AppError(Exception):
    """Expected, caller-facing failure with its own status code."""

    status_code: int = 500
    is_operational: bool = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code})"


class ValidationFailed(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 409


class PayloadTooLarge(AppError):
    status_code = 413


class RateLimited(AppError):
    status_code = 429

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class ConfigurationError(RuntimeError):
    """Deployment is missing or has invalid settings (e.g. DATABASE_URL)."""


_CONFIG_MARKERS = ("Configuration Error", "DATABASE_URL")


def _is_configuration_fault(exc: BaseException) -> bool:
    if isinstance(exc, ConfigurationError):
        return True
    message = str(exc)
    return any(marker in message for marker in _CONFIG_MARKERS)
