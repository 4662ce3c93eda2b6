"""
Generate Test Tokens Script

Create a throwaway RSA key, its public JWKS, a signed JWS and an encrypted
JWE for exercising the /resource endpoint by hand.
"""

import argparse
import json
import secrets
import time
import uuid
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwe, jwk, jwt


def generate_rsa_pem() -> str:
    """Generate a 2048-bit RSA private key as PEM."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_jwk(private_pem: str, kid: str) -> Dict[str, Any]:
    """Public JWK for a PEM private key, tagged with kid and use=sig."""
    key = jwk.construct(private_pem, "RS256").public_key().to_dict()
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return key


def build_claims(
    issuer: str,
    audience: Optional[str],
    expires_in: int,
    subject: str = "playground-user",
) -> Dict[str, Any]:
    """Standard claim set valid from now for expires_in seconds."""
    now = int(time.time())
    claims = {
        "iss": issuer,
        "sub": subject,
        "iat": now,
        "nbf": now,
        "exp": now + expires_in,
        "scope": "openid profile",
    }
    if audience:
        claims["aud"] = audience
    return claims


def sign_token(claims: Dict[str, Any], private_pem: str, kid: str) -> str:
    """Sign claims as an RS256 JWS."""
    return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})


def encrypt_token(claims: Dict[str, Any], secret: str) -> str:
    """Encrypt claims as a dir/A256GCM JWE. The secret must be 32 bytes."""
    token = jwe.encrypt(
        json.dumps(claims),
        secret.encode("utf-8"),
        algorithm="dir",
        encryption="A256GCM",
        cty="JWT",
    )
    return token.decode("ascii") if isinstance(token, bytes) else token


def main():
    """Generate test tokens."""
    parser = argparse.ArgumentParser(description="Generate tokens for the playground proxy")
    parser.add_argument("--issuer", default="https://playground.example.com/")
    parser.add_argument("--audience", default="https://api.example.com")
    parser.add_argument("--expires-in", type=int, default=3600, help="Token lifetime in seconds")
    args = parser.parse_args()

    kid = uuid.uuid4().hex[:16]
    private_pem = generate_rsa_pem()
    secret = secrets.token_urlsafe(24)  # 32 ASCII characters

    claims = build_claims(args.issuer, args.audience, args.expires_in)
    jwks = {"keys": [public_jwk(private_pem, kid)]}

    print("JWKS (POST /resource body field \"jwks\"):\n")
    print(json.dumps(jwks, indent=2))

    print("\nJWS access token (RS256):\n")
    print(f"  {sign_token(claims, private_pem, kid)}\n")

    print("JWE access token (dir + A256GCM):\n")
    print(f"  {encrypt_token(claims, secret)}\n")
    print(f"JWE secret: {secret}\n")

    print("Use with: Authorization: Bearer <token>")


if __name__ == "__main__":
    main()
