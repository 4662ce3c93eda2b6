"""
Proxy Request Handlers

Orchestration for the three network-facing operations:
- Token exchange (authorization code -> tokens at a provider token endpoint)
- OIDC discovery (well-known document -> issuer + JWKS)
- Resource validation (bearer token -> verified header + claims)

Each handler validates every input before any further work, passes every
outbound URL through the endpoint validator, and performs at most one
bounded outbound call. Rate limiting is applied by the HTTP layer before a
handler runs.
"""

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlparse

from models.requests import DiscoveryRequest, ResourceValidationRequest, TokenExchangeRequest
from models.responses import DiscoveryResponse, ResourceValidationResponse, TokenExchangeResponse
from observability.logging_config import get_logger
from playground.config import PlaygroundConfig, get_playground_config
from playground.endpoint_validator import LOCAL_DEV_HOSTS, EndpointValidator
from playground.errors import (
    AuthRequired,
    BlockedEndpoint,
    InvalidInput,
    ResponseTooLarge,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from playground.sanitizer import mask_form_for_debug, sanitize_error_message
from playground.token_verifier import KeyMaterial, TokenFormat, TokenVerifier, VerificationOptions
from playground.upstream import UpstreamClient

logger = get_logger(__name__)

AUTHORIZATION_CODE = "authorization_code"
RAW_PREVIEW_LENGTH = 1000


# -----------------------------------------------------------------------------
# Input helpers
# -----------------------------------------------------------------------------


def check_length(value: Optional[str], name: str, max_length: int) -> None:
    """Raise InvalidInput if value is longer than max_length."""
    if value is not None and len(value) > max_length:
        raise InvalidInput(f"{name} exceeds maximum length of {max_length} characters")


def extract_bearer_token(authorization: Optional[str], max_length: int) -> str:
    """
    Pull the token out of an Authorization header.

    Raises:
        AuthRequired: Header missing, not Bearer, empty or oversized token
    """
    if not authorization:
        raise AuthRequired("Missing or invalid Authorization header. Expected: Bearer <token>")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise AuthRequired("Missing or invalid Authorization header. Expected: Bearer <token>")

    token = token.strip()
    if not token:
        raise AuthRequired("Bearer token is empty")
    if len(token) > max_length:
        raise AuthRequired("Token exceeds maximum length")
    return token


def validate_redirect_uri(redirect_uri: str) -> None:
    """Redirect URIs must be HTTPS unless they point at localhost."""
    try:
        parsed = urlparse(redirect_uri)
        hostname = parsed.hostname
    except ValueError as e:
        raise InvalidInput(f"Invalid redirect URI: {e}") from e

    if not parsed.scheme or not hostname:
        raise InvalidInput("Invalid redirect URI: not an absolute URL")
    if parsed.scheme.lower() != "https" and hostname not in LOCAL_DEV_HOSTS:
        raise InvalidInput("Invalid redirect URI: Redirect URI must use HTTPS (except localhost)")


def parse_provider_body(content_type: str, text: str) -> Dict[str, Any]:
    """
    Parse a token endpoint body.

    JSON first; non-JSON content types fall back to form-urlencoded. A JSON
    content type that does not parse is kept as a raw preview.
    """
    try:
        parsed = json.loads(text)
    except ValueError:
        if "application/json" in content_type:
            return {"raw": text[:RAW_PREVIEW_LENGTH]}
        return dict(parse_qsl(text, keep_blank_values=True))

    if not isinstance(parsed, dict):
        return {"raw": text[:RAW_PREVIEW_LENGTH]}
    return parsed


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------


class ProxyHandlers:
    """Composes the validator, upstream client and verifier per operation."""

    def __init__(
        self,
        validator: Optional[EndpointValidator] = None,
        upstream: Optional[UpstreamClient] = None,
        verifier: Optional[TokenVerifier] = None,
        config: Optional[PlaygroundConfig] = None,
    ):
        self.config = config or get_playground_config()
        self.validator = validator or EndpointValidator()
        self.upstream = upstream or UpstreamClient()
        self.verifier = verifier or TokenVerifier(self.validator, self.upstream)

    async def _require_safe(self, url: str, label: str) -> None:
        verdict = await self.validator.validate(url)
        if not verdict.valid:
            raise BlockedEndpoint(f"{label}: {verdict.reason}", verdict.reason)

    # -------------------------------------------------------------------------
    # Token exchange
    # -------------------------------------------------------------------------

    async def exchange_token(self, request: TokenExchangeRequest) -> TokenExchangeResponse:
        """
        Exchange an authorization code at the provider's token endpoint.

        Input problems raise; anything that happens at the provider (error
        bodies, timeouts, oversized responses) is reported in the response
        with success=False.
        """
        config = self.config

        required = {
            "tokenEndpoint": request.token_endpoint,
            "code": request.code,
            "redirectUri": request.redirect_uri,
            "clientId": request.client_id,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise InvalidInput(f"Missing required fields: {', '.join(missing)}")

        check_length(request.token_endpoint, "tokenEndpoint", config.max_url_length)
        check_length(request.code, "code", config.max_code_length)
        check_length(request.redirect_uri, "redirectUri", config.max_url_length)
        check_length(request.client_id, "clientId", config.max_client_id_length)
        check_length(request.client_secret, "clientSecret", config.max_secret_length)
        check_length(request.code_verifier, "codeVerifier", config.max_code_verifier_length)

        grant_type = request.grant_type or AUTHORIZATION_CODE
        if grant_type != AUTHORIZATION_CODE:
            raise InvalidInput(f"Unsupported grant_type: {sanitize_error_message(grant_type, 64)}")

        await self._require_safe(request.token_endpoint, "Blocked token endpoint")
        validate_redirect_uri(request.redirect_uri)

        form = {
            "grant_type": grant_type,
            "code": request.code,
            "redirect_uri": request.redirect_uri,
            "client_id": request.client_id,
        }
        if request.client_secret:
            form["client_secret"] = request.client_secret
        if request.code_verifier:
            form["code_verifier"] = request.code_verifier

        debug_request = mask_form_for_debug(form)

        try:
            response = await self.upstream.post_form(
                request.token_endpoint,
                form,
                target="token",
                timeout=config.fetch_timeout_seconds,
            )
        except ResponseTooLarge as e:
            return TokenExchangeResponse(
                success=False,
                error="Token endpoint response too large",
                status_code=e.upstream_status,
                debug_request=debug_request,
            )
        except UpstreamTimeout as e:
            return TokenExchangeResponse(
                success=False,
                error=e.message,
                status_code=0,
                debug_request=debug_request,
            )
        except UpstreamUnavailable as e:
            return TokenExchangeResponse(
                success=False,
                error=sanitize_error_message(
                    f"Network error during token exchange: {e.message}",
                    config.max_error_message_length,
                ),
                status_code=0,
                debug_request=debug_request,
            )

        data = parse_provider_body(response.content_type, response.text)
        raw_response = json.dumps(data, indent=2)

        if not response.ok:
            provider_error = data.get("error_description") or data.get("error") or "Token exchange failed"
            logger.info(
                "token_exchange_rejected",
                endpoint=request.token_endpoint,
                status_code=response.status_code,
            )
            return TokenExchangeResponse(
                success=False,
                error=sanitize_error_message(str(provider_error), config.max_error_message_length),
                status_code=response.status_code,
                raw_response=raw_response,
                debug_request=debug_request,
            )

        logger.info(
            "token_exchange_succeeded",
            endpoint=request.token_endpoint,
            status_code=response.status_code,
            pkce=bool(request.code_verifier),
        )
        return TokenExchangeResponse(
            success=True,
            data=data,
            status_code=response.status_code,
            raw_response=raw_response,
            debug_request=debug_request,
        )

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def discover(self, request: DiscoveryRequest) -> DiscoveryResponse:
        """Resolve issuer and key set from an OIDC discovery document."""
        well_known_url = (request.well_known_url or "").strip()
        if not well_known_url:
            raise InvalidInput("Missing required field: wellKnownUrl")
        check_length(well_known_url, "wellKnownUrl", self.config.max_url_length)

        await self._require_safe(well_known_url, "Blocked URL")

        try:
            document = await self.upstream.get_json(
                well_known_url,
                target="discovery",
                timeout=self.config.fetch_timeout_seconds,
            )
        except UpstreamUnavailable as e:
            raise e.__class__(f"Failed to fetch discovery document: {e.message}") from e

        if not isinstance(document, dict):
            raise UpstreamUnavailable("Failed to fetch discovery document: not a JSON object")

        issuer = document.get("issuer") if isinstance(document.get("issuer"), str) else ""
        jwks_uri = document.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise UpstreamUnavailable("Discovery document does not contain a jwks_uri field")
        if len(jwks_uri) > self.config.max_url_length:
            raise UpstreamUnavailable("Discovery document jwks_uri exceeds maximum length")

        keys = await self.verifier.fetch_jwks(jwks_uri)

        logger.info("discovery_resolved", issuer=issuer, jwks_uri=jwks_uri, keys=len(keys))
        return DiscoveryResponse(issuer=issuer, jwks_uri=jwks_uri, keys=keys)

    # -------------------------------------------------------------------------
    # Resource validation
    # -------------------------------------------------------------------------

    async def validate_resource(
        self,
        authorization: Optional[str],
        params: ResourceValidationRequest,
    ) -> ResourceValidationResponse:
        """Verify a bearer token with remote keys, inline keys or a secret."""
        config = self.config
        token = extract_bearer_token(authorization, config.max_token_length)

        if params.secret and len(params.secret) > config.max_secret_length:
            raise InvalidInput("secret exceeds maximum length")
        if params.jwks_uri and len(params.jwks_uri) > config.max_url_length:
            raise InvalidInput("jwks_uri exceeds maximum length")
        check_length(params.issuer, "issuer", config.max_url_length)
        check_length(params.audience, "audience", config.max_url_length)

        key_material = KeyMaterial(
            jwks_uri=params.jwks_uri or None,
            jwks=params.jwks,
            secret=params.secret or None,
        )
        options = VerificationOptions(
            issuer=params.issuer or None,
            audience=params.audience or None,
        )

        outcome = await self.verifier.verify(token, key_material, options)

        if outcome.token_format == TokenFormat.JWE:
            message = "Access token decrypted and validated (JWE)"
        elif outcome.offline:
            message = "Access token signature verified offline (JWS) — no network call made"
        else:
            message = "Access token signature verified (JWS)"

        return ResourceValidationResponse(
            status="ok",
            message=message,
            token_format=outcome.token_format.value,
            header=outcome.header,
            claims=outcome.claims,
        )
