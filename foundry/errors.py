"""Error taxonomy raised by engine operations.

Every error carries a boundary ``code`` and the HTTP ``status_code`` the thin
API layer maps it to. Nothing here is retried internally.
"""
from __future__ import annotations


class EngineError(Exception):
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Malformed or out-of-range input."""
    code = "VALIDATION"
    status_code = 400

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidPhase(ValidationError):
    def __init__(self, phase_number: object):
        super().__init__(f"Phase number must be between 1 and 5 (got {phase_number!r})")
        self.phase_number = phase_number


class InvalidState(EngineError):
    """Operation not valid for the current lifecycle state."""
    code = "VALIDATION"
    status_code = 400


class NotFound(EngineError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(EngineError):
    code = "FORBIDDEN"
    status_code = 403


class CapacityExceeded(EngineError):
    code = "CONFLICT"
    status_code = 409


class RateLimited(EngineError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, limit: int, remaining: int = 0):
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining


class LLMCallError(EngineError):
    """LLM call failed or returned unparseable output."""
    code = "LLM_UNAVAILABLE"
    status_code = 503


class Unauthorized(EngineError):
    """No authenticated caller identity was supplied."""
    code = "UNAUTHORIZED"
    status_code = 401
