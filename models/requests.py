"""
Request Models

Pydantic models for incoming proxy requests. Field names follow the
browser client's camelCase wire format. Every field is optional at the
model level; presence and length are checked by the handlers so callers
get a specific message instead of a generic schema error.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TokenExchangeRequest(BaseModel):
    """Authorization code exchange to run against a provider token endpoint."""

    token_endpoint: Optional[str] = Field(None, alias="tokenEndpoint", description="Provider token endpoint")
    grant_type: Optional[str] = Field(None, alias="grantType", description="OAuth grant type")
    code: Optional[str] = Field(None, description="Authorization code")
    redirect_uri: Optional[str] = Field(None, alias="redirectUri", description="Redirect URI used in the authorize step")
    client_id: Optional[str] = Field(None, alias="clientId", description="Client ID")
    client_secret: Optional[str] = Field(None, alias="clientSecret", description="Client secret (confidential clients)")
    code_verifier: Optional[str] = Field(None, alias="codeVerifier", description="PKCE code verifier")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "tokenEndpoint": "https://example.auth0.com/oauth/token",
                "grantType": "authorization_code",
                "code": "SplxlOBeZQQYbYS6WxSbIA",
                "redirectUri": "http://localhost:3000/callback",
                "clientId": "s6BhdRkqt3",
                "codeVerifier": "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk",
            }
        }


class DiscoveryRequest(BaseModel):
    """OIDC discovery request."""

    well_known_url: Optional[str] = Field(None, alias="wellKnownUrl", description="OIDC well-known URL")

    class Config:
        populate_by_name = True


class ResourceValidationRequest(BaseModel):
    """Key material and claim expectations for validating a bearer token."""

    jwks_uri: Optional[str] = Field(None, description="Remote JWKS URI")
    jwks: Optional[Dict[str, Any]] = Field(None, description="Inline JWKS (no network call)")
    secret: Optional[str] = Field(None, description="Shared secret for JWE decryption")
    issuer: Optional[str] = Field(None, description="Expected iss claim")
    audience: Optional[str] = Field(None, description="Expected aud claim")
