"""
Token Verifier

Shape-dispatching verification for bearer tokens:
- 3 segments: JWS, verified against a JWKS (remote URI or inline set)
- 5 segments: JWE, decrypted with a caller-supplied shared secret
- anything else: rejected as not a JWT (usually an opaque token)

Remote key sets go through the endpoint validator before any fetch and are
cached per URI; a kid missing from a cached set triggers one refetch.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from jose import jwe, jwt
from jose.constants import ALGORITHMS
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError, JWTError

from observability.logging_config import get_logger
from observability.metrics import metrics
from playground.config import get_playground_config
from playground.endpoint_validator import EndpointValidator
from playground.errors import (
    BlockedEndpoint,
    MissingKeyMaterial,
    TokenInvalid,
    UpstreamUnavailable,
)
from playground.upstream import UpstreamClient

logger = get_logger(__name__)

JWS_ALGORITHMS = ALGORITHMS.HMAC | ALGORITHMS.RSA_DS | ALGORITHMS.EC_DS

# JWS alg prefix -> JWK key type able to verify it
KEY_TYPES = {"HS": "oct", "RS": "RSA", "ES": "EC"}


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------


class TokenFormat(str, Enum):
    """Structural token shape."""

    JWS = "JWS"
    JWE = "JWE"


@dataclass
class KeyMaterial:
    """Whatever the caller supplied to verify or decrypt a token."""

    jwks_uri: Optional[str] = None
    jwks: Optional[Dict[str, Any]] = None
    secret: Optional[str] = None


@dataclass
class VerificationOptions:
    """Optional claim expectations."""

    issuer: Optional[str] = None
    audience: Optional[str] = None


@dataclass
class VerificationOutcome:
    """Decoded header and claims of a verified token."""

    token_format: TokenFormat
    header: Dict[str, Any]
    claims: Dict[str, Any]
    offline: bool = True  # no network call was made


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------


def classify_token(token: str) -> TokenFormat:
    """
    Decide the verification path from the dot-segment count.

    Raises:
        TokenInvalid: Segment count is neither 3 nor 5
    """
    parts = token.split(".")
    if len(parts) == 3:
        return TokenFormat.JWS
    if len(parts) == 5:
        return TokenFormat.JWE
    raise TokenInvalid(
        "The access token is not a valid JWT. Expected 3 parts (JWS) or 5 parts (JWE), "
        f"got {len(parts)}. This is likely an opaque token; request a JWT access token "
        "from the provider (for example by setting an audience).",
        TokenInvalid.MALFORMED,
    )


def extract_keys(jwks: Any) -> List[Dict[str, Any]]:
    """Return the usable key dicts of a JWKS document (may be empty)."""
    if not isinstance(jwks, dict):
        return []
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return []
    return [key for key in keys if isinstance(key, dict)]


def select_keys(keys: List[Dict[str, Any]], header: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Candidate signing keys matching the token header's kid and alg."""
    alg = header.get("alg")
    kid = header.get("kid")
    key_type = KEY_TYPES.get(alg[:2]) if isinstance(alg, str) else None

    candidates = []
    for key in keys:
        if key.get("use", "sig") != "sig":
            continue
        if kid is not None and key.get("kid") != kid:
            continue
        if key.get("alg") not in (None, alg):
            continue
        if key_type and key.get("kty") != key_type:
            continue
        candidates.append(key)
    return candidates


def validate_claims(
    claims: Dict[str, Any],
    options: VerificationOptions,
    now: float,
) -> None:
    """
    Time and issuer/audience checks for decrypted JWE claims.

    Raises:
        ExpiredSignatureError: exp has passed
        JWTClaimsError: nbf in the future, wrong types, issuer or audience mismatch
    """
    for name in ("exp", "nbf"):
        if name in claims and not isinstance(claims[name], (int, float)):
            raise JWTClaimsError(f"Invalid {name} claim: must be a number")

    if "exp" in claims and now >= claims["exp"]:
        raise ExpiredSignatureError("Token has expired")
    if "nbf" in claims and now < claims["nbf"]:
        raise JWTClaimsError("The token is not yet valid (nbf)")

    if options.issuer is not None and claims.get("iss") != options.issuer:
        raise JWTClaimsError("Invalid issuer")

    if options.audience is not None:
        audience = claims.get("aud")
        audiences = [audience] if isinstance(audience, str) else audience
        if not isinstance(audiences, list) or options.audience not in audiences:
            raise JWTClaimsError("Invalid audience")


def _claims_failure(prefix: str, error: JWTError) -> TokenInvalid:
    if isinstance(error, ExpiredSignatureError):
        return TokenInvalid(f"{prefix}: {error}", TokenInvalid.EXPIRED)
    if isinstance(error, JWTClaimsError):
        reason = TokenInvalid.NOT_YET_VALID if "nbf" in str(error) else TokenInvalid.CLAIMS_MISMATCH
        return TokenInvalid(f"{prefix}: {error}", reason)
    return TokenInvalid(f"{prefix}: {error}", TokenInvalid.SIGNATURE_INVALID)


# -----------------------------------------------------------------------------
# JWKS Cache
# -----------------------------------------------------------------------------


class JWKSCache:
    """Per-URI TTL cache of remote key sets."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        config = get_playground_config()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.jwks_cache_ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[List[Dict[str, Any]], float]] = {}

    def get(self, uri: str) -> Optional[List[Dict[str, Any]]]:
        cached = self._entries.get(uri)
        if cached is None:
            return None
        keys, cached_at = cached
        if self.clock() - cached_at >= self.ttl_seconds:
            del self._entries[uri]
            return None
        return keys

    def put(self, uri: str, keys: List[Dict[str, Any]]) -> None:
        self._entries[uri] = (keys, self.clock())

    def __len__(self) -> int:
        return len(self._entries)


# -----------------------------------------------------------------------------
# Verifier
# -----------------------------------------------------------------------------


class TokenVerifier:
    """
    Verifies JWS tokens against a JWKS and decrypts JWE tokens with a secret.

    Failures are classified:
    - MissingKeyMaterial (400): the chosen path lacks its secret or key set
    - TokenInvalid (401): shape, signature, decryption or claim failure
    - BlockedEndpoint (400) / UpstreamUnavailable (502): remote JWKS problems
    """

    def __init__(
        self,
        validator: EndpointValidator,
        upstream: UpstreamClient,
        cache: Optional[JWKSCache] = None,
        jwks_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        config = get_playground_config()
        self.validator = validator
        self.upstream = upstream
        self.cache = cache if cache is not None else JWKSCache()
        self.jwks_timeout = jwks_timeout if jwks_timeout is not None else config.jwks_fetch_timeout_seconds
        self.clock = clock

    async def verify(
        self,
        token: str,
        key_material: KeyMaterial,
        options: Optional[VerificationOptions] = None,
    ) -> VerificationOutcome:
        """
        Classify and verify a bearer token.

        Args:
            token: Compact JWS or JWE
            key_material: Remote JWKS URI, inline JWKS and/or shared secret
            options: Expected issuer/audience

        Returns:
            VerificationOutcome with the header and claims as encoded
        """
        options = options or VerificationOptions()

        try:
            token_format = classify_token(token)
        except TokenInvalid as e:
            metrics.record_token_verification("opaque", e.reason)
            raise

        try:
            if token_format == TokenFormat.JWE:
                outcome = self._decrypt_jwe(token, key_material, options)
            else:
                outcome = await self._verify_jws(token, key_material, options)
        except TokenInvalid as e:
            metrics.record_token_verification(token_format.value, e.reason)
            logger.warning(
                "token_verification_failed",
                format=token_format.value,
                reason=e.reason,
                error=e.message,
            )
            raise
        except MissingKeyMaterial:
            metrics.record_token_verification(token_format.value, "missing_key_material")
            raise

        metrics.record_token_verification(token_format.value, "ok")
        logger.info(
            "token_verified",
            format=token_format.value,
            kid=outcome.header.get("kid"),
            alg=outcome.header.get("alg"),
            offline=outcome.offline,
        )
        return outcome

    # -------------------------------------------------------------------------
    # JWE
    # -------------------------------------------------------------------------

    def _decrypt_jwe(
        self,
        token: str,
        key_material: KeyMaterial,
        options: VerificationOptions,
    ) -> VerificationOutcome:
        if not key_material.secret:
            raise MissingKeyMaterial(
                "The access token is a JWE (encrypted JWT with 5 parts). "
                "A secret is required to decrypt it."
            )

        prefix = "JWE decryption/validation failed"
        try:
            header = jwe.get_unverified_header(token)
            plaintext = jwe.decrypt(token, key_material.secret.encode("utf-8"))
        except (JOSEError, ValueError, TypeError) as e:
            raise TokenInvalid(f"{prefix}: {e}", TokenInvalid.DECRYPTION_FAILED) from e

        if plaintext is None:
            raise TokenInvalid(f"{prefix}: decryption failed", TokenInvalid.DECRYPTION_FAILED)

        try:
            claims = json.loads(plaintext)
        except ValueError as e:
            raise TokenInvalid(f"{prefix}: payload is not JSON", TokenInvalid.MALFORMED) from e
        if not isinstance(claims, dict):
            raise TokenInvalid(f"{prefix}: payload is not a JSON object", TokenInvalid.MALFORMED)

        try:
            validate_claims(claims, options, self.clock())
        except JWTError as e:
            raise _claims_failure(prefix, e) from e

        return VerificationOutcome(
            token_format=TokenFormat.JWE,
            header=header,
            claims=claims,
            offline=True,
        )

    # -------------------------------------------------------------------------
    # JWS
    # -------------------------------------------------------------------------

    async def _verify_jws(
        self,
        token: str,
        key_material: KeyMaterial,
        options: VerificationOptions,
    ) -> VerificationOutcome:
        prefix = "JWS verification failed"
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise TokenInvalid(f"{prefix}: {e}", TokenInvalid.MALFORMED) from e

        alg = header.get("alg")
        if not isinstance(alg, str) or alg not in JWS_ALGORITHMS:
            raise TokenInvalid(
                f"{prefix}: unsupported algorithm {alg!r}", TokenInvalid.UNSUPPORTED_ALGORITHM
            )

        if key_material.jwks is not None:
            keys = extract_keys(key_material.jwks)
            if not keys:
                raise MissingKeyMaterial(
                    "Missing JWKS keys. Fetch and cache the provider's JWKS first."
                )
            candidates = select_keys(keys, header)
            offline = True
        elif key_material.jwks_uri:
            candidates = await self._remote_candidates(key_material.jwks_uri, header)
            offline = False
        else:
            raise MissingKeyMaterial(
                "Missing required parameter: jwks_uri (needed for JWS signature verification)"
            )

        if not candidates:
            raise TokenInvalid(
                f"{prefix}: no key in the JWKS matches kid={header.get('kid')!r} alg={alg!r}",
                TokenInvalid.KEY_NOT_FOUND,
            )

        try:
            claims = jwt.decode(
                token,
                {"keys": candidates},
                algorithms=[alg],
                audience=options.audience,
                issuer=options.issuer,
                options={
                    "verify_aud": options.audience is not None,
                    "verify_at_hash": False,
                },
            )
        except JWTError as e:
            raise _claims_failure(prefix, e) from e
        except (JOSEError, ValueError, TypeError) as e:
            # Raised when a candidate JWK itself cannot be constructed
            raise TokenInvalid(f"{prefix}: {e}", TokenInvalid.SIGNATURE_INVALID) from e

        return VerificationOutcome(
            token_format=TokenFormat.JWS,
            header=header,
            claims=claims,
            offline=offline,
        )

    async def _remote_candidates(self, jwks_uri: str, header: Dict[str, Any]) -> List[Dict[str, Any]]:
        cached = self.cache.get(jwks_uri)
        metrics.record_jwks_cache(hit=cached is not None)
        if cached is not None:
            candidates = select_keys(cached, header)
            if candidates:
                return candidates
            # Unknown kid: the provider may have rotated keys
            logger.info("jwks_refetch_on_key_miss", jwks_uri=jwks_uri, kid=header.get("kid"))

        keys = await self.fetch_jwks(jwks_uri)
        return select_keys(keys, header)

    async def fetch_jwks(self, jwks_uri: str) -> List[Dict[str, Any]]:
        """
        Validate, fetch and cache a remote key set.

        Raises:
            BlockedEndpoint: URI rejected by the endpoint validator
            UpstreamUnavailable: Fetch failed, timed out or held no keys
        """
        verdict = await self.validator.validate(jwks_uri)
        if not verdict.valid:
            raise BlockedEndpoint(f"Blocked JWKS URI: {verdict.reason}", verdict.reason)

        try:
            document = await self.upstream.get_json(jwks_uri, target="jwks", timeout=self.jwks_timeout)
        except UpstreamUnavailable as e:
            raise e.__class__(f"Failed to fetch JWKS: {e.message}") from e

        keys = extract_keys(document)
        if not keys:
            raise UpstreamUnavailable("JWKS does not contain any keys")

        self.cache.put(jwks_uri, keys)
        return keys
