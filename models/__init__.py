"""
OAuth Playground Proxy - Models Package

Pydantic data models:
- Requests
- Responses
"""

from models.requests import DiscoveryRequest, ResourceValidationRequest, TokenExchangeRequest
from models.responses import (
    DiscoveryResponse,
    ErrorResponse,
    HealthResponse,
    ResourceValidationResponse,
    TokenExchangeResponse,
)

__all__ = [
    "TokenExchangeRequest",
    "DiscoveryRequest",
    "ResourceValidationRequest",
    "TokenExchangeResponse",
    "DiscoveryResponse",
    "ResourceValidationResponse",
    "HealthResponse",
    "ErrorResponse",
]
