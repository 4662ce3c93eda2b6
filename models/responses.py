"""
Response Models

Pydantic models for outgoing responses.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TokenExchangeResponse(BaseModel):
    """
    Outcome of a token exchange.

    Provider-side failures are reported here with success=False rather than
    as an HTTP error, so the caller can inspect the raw provider response.
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = Field(None, alias="statusCode")
    raw_response: Optional[str] = Field(None, alias="rawResponse")
    exchange_method: str = Field("server", alias="exchangeMethod")
    debug_request: Optional[Dict[str, str]] = Field(None, alias="debugRequest")

    class Config:
        populate_by_name = True


class DiscoveryResponse(BaseModel):
    """Issuer and key set resolved from an OIDC discovery document."""

    issuer: str
    jwks_uri: str = Field(..., alias="jwksUri")
    keys: List[Dict[str, Any]]

    class Config:
        populate_by_name = True


class ResourceValidationResponse(BaseModel):
    """Verified bearer token contents."""

    status: str = "ok"
    message: str
    token_format: str = Field(..., alias="tokenFormat")
    header: Dict[str, Any]
    claims: Dict[str, Any]

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str
    checks: Dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: str
    reason: Optional[str] = None
    retry_after: Optional[int] = None
