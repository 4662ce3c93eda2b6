"""
Proxy Error Taxonomy

One exception class per failure kind the proxy can report. Each carries
its HTTP status, a stable machine-readable code and only the extra fields
relevant to that kind.
"""

from typing import Any, Dict, Optional


class PlaygroundError(Exception):
    """Base class for all errors surfaced to proxy callers."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra_fields(self) -> Dict[str, Any]:
        """Case-specific fields added to the error body."""
        return {}

    def headers(self) -> Optional[Dict[str, str]]:
        """Extra response headers for this error."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "detail": self.message}
        body.update(self.extra_fields())
        return body


class RateLimited(PlaygroundError):
    """Client exceeded its request budget for the current window."""

    status_code = 429
    error_code = "rate_limited"

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limit exceeded. Retry after {retry_after} seconds.")
        self.retry_after = retry_after

    def extra_fields(self) -> Dict[str, Any]:
        return {"retry_after": self.retry_after}

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class InvalidInput(PlaygroundError):
    """Missing field, wrong type or length violation."""

    status_code = 400
    error_code = "invalid_input"


class BlockedEndpoint(PlaygroundError):
    """Outbound URL rejected by the endpoint validator."""

    status_code = 400
    error_code = "blocked_endpoint"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def extra_fields(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class UpstreamUnavailable(PlaygroundError):
    """Discovery or JWKS fetch failed."""

    status_code = 502
    error_code = "upstream_unavailable"


class UpstreamTimeout(UpstreamUnavailable):
    """Upstream did not answer within the configured deadline."""

    error_code = "upstream_timeout"


class ResponseTooLarge(UpstreamUnavailable):
    """Upstream body exceeded the size ceiling."""

    error_code = "upstream_response_too_large"

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class AuthRequired(PlaygroundError):
    """Missing, empty or oversized bearer token."""

    status_code = 401
    error_code = "auth_required"


class TokenInvalid(PlaygroundError):
    """Token failed shape, signature, decryption or claim checks."""

    status_code = 401
    error_code = "token_invalid"

    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    CLAIMS_MISMATCH = "claims_mismatch"
    DECRYPTION_FAILED = "decryption_failed"
    KEY_NOT_FOUND = "key_not_found"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def extra_fields(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class MissingKeyMaterial(PlaygroundError):
    """The verification path needs a secret or key set the caller did not supply."""

    status_code = 400
    error_code = "missing_key_material"
