"""
Pytest Configuration and Fixtures
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwe, jwk, jwt

from playground.config import get_playground_config

ISSUER = "https://idp.example.com/"
AUDIENCE = "https://api.example.com"
KID = "test-key-1"

# 32 bytes, usable directly as a dir/A256GCM key
JWE_SECRET = "0123456789abcdef0123456789abcdef"

PUBLIC_IP = "93.184.216.34"


@pytest.fixture(autouse=True)
def playground_env(monkeypatch):
    """Isolate every test from the host environment and the cached config."""
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("LOG_JSON", "true")
    get_playground_config.cache_clear()
    yield
    get_playground_config.cache_clear()


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


class FakeResolver:
    """Async resolver backed by a hostname -> addresses table."""

    def __init__(self, table: Optional[Dict[str, List[str]]] = None):
        self.table = dict(table or {})
        self.calls: List[str] = []

    async def __call__(self, hostname: str) -> List[str]:
        self.calls.append(hostname)
        if hostname not in self.table:
            raise OSError(f"Name or service not known: {hostname}")
        return list(self.table[hostname])


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockProvider:
    """
    Routes outbound requests to canned responses by URL.

    Unrouted URLs answer 404. Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def json(self, url: str, body: Any, status_code: int = 200) -> None:
        self.routes[url] = lambda request: httpx.Response(status_code, json=body)

    def text(self, url: str, body: str, status_code: int = 200, content_type: str = "text/plain") -> None:
        self.routes[url] = lambda request: httpx.Response(
            status_code, content=body.encode("utf-8"), headers={"Content-Type": content_type}
        )

    def raise_error(self, url: str, error: Exception) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        self.routes[url] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        return route(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def resolver():
    """Resolver where the usual test hosts map to a public address."""
    return FakeResolver(
        {
            "idp.example.com": [PUBLIC_IP],
            "login.example.com": [PUBLIC_IP],
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return MockProvider()


# -----------------------------------------------------------------------------
# Keys and tokens
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_pem() -> str:
    """RSA private key shared across the session (generation is slow)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(scope="session")
def other_rsa_private_pem() -> str:
    """A second, unrelated RSA key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_jwk(private_pem: str, kid: str = KID) -> Dict[str, Any]:
    key = jwk.construct(private_pem, "RS256").public_key().to_dict()
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return key


@pytest.fixture(scope="session")
def jwks(rsa_private_pem) -> Dict[str, Any]:
    """Public JWKS containing the session RSA key."""
    return {"keys": [public_jwk(rsa_private_pem)]}


def make_claims(**overrides: Any) -> Dict[str, Any]:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "sub": "user-123",
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + 3600,
        "scope": "openid profile",
    }
    claims.update(overrides)
    return {key: value for key, value in claims.items() if value is not None}


@pytest.fixture
def make_jws(rsa_private_pem) -> Callable[..., str]:
    """Factory for RS256 tokens signed with the session key."""

    def factory(kid: str = KID, private_pem: Optional[str] = None, **claims: Any) -> str:
        return jwt.encode(
            make_claims(**claims),
            private_pem or rsa_private_pem,
            algorithm="RS256",
            headers={"kid": kid},
        )

    return factory


@pytest.fixture
def make_jwe() -> Callable[..., str]:
    """Factory for dir/A256GCM tokens encrypted with JWE_SECRET."""

    def factory(secret: str = JWE_SECRET, **claims: Any) -> str:
        token = jwe.encrypt(
            json.dumps(make_claims(**claims)),
            secret.encode("utf-8"),
            algorithm="dir",
            encryption="A256GCM",
        )
        return token.decode("ascii") if isinstance(token, bytes) else token

    return factory
