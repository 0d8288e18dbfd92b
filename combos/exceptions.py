"""
Error taxonomy for the combo engine.

Only ``ValidationError`` aborts a whole request.  Everything else is
scoped to a single combo: upstream errors turn into null rankings,
persistence errors either fall back to ephemeral mode (referential) or
mark the combo as failed (anything else).
"""


class ComboEngineError(Exception):
    """Base error for the combo engine."""


class ValidationError(ComboEngineError):
    """Malformed request.  Raised before any processing starts."""

    def __init__(self, message: str, code: str = "INVALID_REQUEST"):
        super().__init__(message)
        self.code = code
        self.message = message


class UpstreamError(ComboEngineError):
    """The search endpoint could not produce a result."""


class UpstreamTransientError(UpstreamError):
    """Network failure or non-2xx response from the search endpoint."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamCircuitOpenError(UpstreamError):
    """Call short-circuited because the breaker is open."""


class RateLimitTimeoutError(UpstreamError):
    """No rate-limiter slot became available before the timeout."""


class PersistenceError(ComboEngineError):
    """Storing a computed result failed for a non-structural reason."""


class PersistenceReferentialError(PersistenceError):
    """The owning entity of a record is not registered (foreign key)."""
