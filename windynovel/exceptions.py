"""Error types raised by the service layer.

Services raise these and never turn them into HTTP responses themselves;
``windynovel.main`` maps each class to a status code.
"""

from typing import Optional


class WindyNovelError(Exception):
    """Base exception for all WindyNovel service errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ValidationError(WindyNovelError):
    """Input is structurally valid but breaks a business rule."""

    status_code = 400


class AuthenticationError(WindyNovelError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class PermissionDeniedError(WindyNovelError):
    """Actor is neither the owner nor an administrator."""

    status_code = 403


class NotFoundError(WindyNovelError):
    """Referenced record is absent (or soft-deleted, for comments)."""

    status_code = 404

    def __init__(self, message: str = "Not found", resource: Optional[str] = None):
        super().__init__(message, {"resource": resource} if resource else None)
        self.resource = resource


class DuplicateError(WindyNovelError):
    """A uniqueness rule would be broken."""

    status_code = 409


class DuplicateReportError(DuplicateError):
    """User already reported this comment."""

    def __init__(self, message: str = "You have already reported this comment."):
        super().__init__(message)


class SlugAllocationError(WindyNovelError):
    """No free slug found within the configured number of attempts."""

    def __init__(self, base: str, attempts: int):
        super().__init__(
            f"Could not allocate a unique slug for '{base}'",
            {"base": base, "attempts": attempts},
        )
        self.base = base
        self.attempts = attempts
