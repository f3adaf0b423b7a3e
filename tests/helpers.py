"""Shared test helper functions for Neolease tests.

These are NOT fixtures - plain functions imported by test modules.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from contextlib import contextmanager
from unittest.mock import MagicMock

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

AUTH_HEADER = {"Authorization": "Bearer test-token"}

OIDC_ENV = {
    "OIDC_ISSUER": "https://auth.example.com",
    "OIDC_AUDIENCE": "neolease-api",
    "OIDC_JWKS_URL": "https://auth.example.com/.well-known/jwks.json",
}


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """Create JWKS from public key."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return (
            base64.urlsafe_b64encode(n.to_bytes(byte_length, "big"))
            .rstrip(b"=")
            .decode()
        )

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = "https://auth.example.com",
    aud: str = "neolease-api",
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    """Create signed JWT for testing."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def fake_txn(cur=None):
    """Build a txn() replacement that always yields the same mock cursor."""
    cursor = cur if cur is not None else MagicMock()

    @contextmanager
    def _txn(conn=None):
        yield cursor

    return _txn, cursor


def sign_webhook(body: dict, secret: str) -> tuple[bytes, str]:
    """Serialize a webhook body and compute its X-Razorpay-Signature."""
    raw = json.dumps(body).encode("utf-8")
    return raw, hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()


def payment_row(**overrides) -> dict:
    """A payment dict shaped like payments_repository returns."""
    payment = {
        "id": "22222222-2222-2222-2222-222222222222",
        "user_id": "11111111-1111-1111-1111-111111111111",
        "amount_cents": 150000,
        "currency": "INR",
        "provider": "razorpay",
        "provider_order_id": "order_TEST123456",
        "provider_payment_id": None,
        "status": "pending",
        "order_kind": "rental",
        "order_id": "33333333-3333-3333-3333-333333333333",
        "original_payment_id": None,
        "refund_type": None,
        "provider_refund_id": None,
    }
    payment.update(overrides)
    return payment
