"""
Domain errors raised by the link, click and analytics services.

Every error carries the HTTP status and a stable error code, so the web layer
translates them with a single exception handler (see main.py). Services never
raise HTTPException themselves.
"""

from typing import Optional


class SnapURLError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(SnapURLError):
    """Malformed URL, alias or parameter. Never retried."""

    status_code = 400
    error_code = "invalid_input"


class InvalidAliasError(InvalidInputError):
    error_code = "invalid_alias"


class ConflictError(SnapURLError):
    """Code or alias collision. Caller may retry with another alias."""

    status_code = 409
    error_code = "conflict"


class AliasTakenError(ConflictError):
    error_code = "alias_taken"

    def __init__(self, alias: str):
        super().__init__(f"Custom alias '{alias}' is already taken")
        self.alias = alias


class NotFoundOrForbiddenError(SnapURLError):
    """
    Missing resource and wrong-owner access share one response
    so that non-owners cannot probe for existence.
    """

    status_code = 404
    error_code = "not_found"

    def __init__(self, message: str = "Link not found or you don't have permission to access it"):
        super().__init__(message)


class QuotaExceededError(SnapURLError):
    status_code = 403
    error_code = "quota_exceeded"

    def __init__(self, limit: int):
        super().__init__(
            f"Link limit reached. You can keep up to {limit} active links; "
            f"deactivate or delete some to create new ones."
        )
        self.limit = limit


class AllocationExhaustedError(SnapURLError):
    """Short code generation ran out of attempts: code space is too small."""

    status_code = 503
    error_code = "allocation_exhausted"

    def __init__(self, attempts: int):
        super().__init__(f"Could not generate unique short code after {attempts} attempts")
        self.attempts = attempts


class LinkUnavailableError(SnapURLError):
    """Link is inactive, expired or missing. Treated as not-found by redirects."""

    status_code = 404
    error_code = "link_unavailable"

    def __init__(self, link_id: Optional[int] = None):
        super().__init__("Link not found or inactive")
        self.link_id = link_id
