"""
OAuth Playground - Token Proxy Module

This module contains the server side of the OAuth/OIDC playground:
- SSRF-safe endpoint validation
- Fixed window rate limiting
- JWS/JWE bearer token verification
- Token exchange, discovery and resource handlers
"""

from playground.config import PlaygroundConfig

__all__ = [
    "PlaygroundConfig",
]

# Lazy imports for components
# from playground.gateway import app
# from playground.handlers import ProxyHandlers
