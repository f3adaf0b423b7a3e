"""OIDC bearer-token authentication for API users.

Provides:
- verify_token(): Validates a JWT against the issuer's JWKS, returns `sub`
- get_current_user(): FastAPI dependency resolving the user and role
- CurrentUser.actor: the ActorContext domain calls expect
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import Depends, HTTPException, Request

from neolease.domain.orders import ActorContext
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

_JWKS_CACHE_TTL = 600  # 10 minutes
_JWKS_TIMEOUT_SECONDS = 10


class _JwksCache:
    """Process-wide JWKS cache, refreshed on TTL or on an unknown key id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[str, Any] | None = None
        self._fetched_at = 0.0

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0

    def get(self, jwks_url: str, *, force_refresh: bool = False) -> dict[str, Any]:
        with self._lock:
            now = time.time()
            fresh = self._keys is not None and (now - self._fetched_at) < _JWKS_CACHE_TTL
            if fresh and not force_refresh:
                return self._keys
            try:
                keys = _fetch_jwks(jwks_url)
            except requests.RequestException:
                logger.warning(
                    "jwks fetch failed",
                    extra={"extra_fields": safe_log_context(force_refresh=force_refresh)},
                )
                raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
            self._keys = keys
            self._fetched_at = now
            return self._keys


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=_JWKS_TIMEOUT_SECONDS)
    resp.raise_for_status()
    return resp.json()


jwks_cache = _JwksCache()


@dataclass
class CurrentUser:
    """Authenticated user context."""

    id: str
    external_subject: str
    email: str | None
    name: str | None
    role: str = "user"

    @property
    def actor(self) -> ActorContext:
        return ActorContext(source="user", user_id=self.id, role=self.role)

    @property
    def is_admin(self) -> bool:
        return self.actor.is_admin


def _oidc_settings() -> dict[str, Any]:
    raw_parties = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
    return {
        "issuer": os.environ.get("OIDC_ISSUER"),
        "audience": os.environ.get("OIDC_AUDIENCE"),
        "jwks_url": os.environ.get("OIDC_JWKS_URL"),
        "authorized_parties": [p.strip() for p in raw_parties.split(",") if p.strip()],
    }


def _key_for(jwks_url: str, kid: str, *, force_refresh: bool = False) -> dict[str, Any] | None:
    for key in jwks_cache.get(jwks_url, force_refresh=force_refresh).get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _decode(token: str, jwk_data: dict[str, Any], *, issuer: str, audience: str) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk_data)
    except (ValueError, TypeError, jwt.InvalidKeyError):
        raise HTTPException(status_code=401, detail="Invalid token")
    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=issuer,
        audience=audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str) -> str:
    """Verify a JWT and return its subject claim.

    An unknown kid or a bad signature triggers one JWKS refresh (keys rotate).

    Raises:
        HTTPException: 401 if the token is invalid, 503 if JWKS is unreachable.
    """
    settings = _oidc_settings()
    issuer, audience, jwks_url = settings["issuer"], settings["audience"], settings["jwks_url"]
    if not issuer or not audience or not jwks_url:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    key_data = _key_for(jwks_url, kid) or _key_for(jwks_url, kid, force_refresh=True)
    if key_data is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        try:
            claims = _decode(token, key_data, issuer=issuer, audience=audience)
        except jwt.InvalidSignatureError:
            key_data = _key_for(jwks_url, kid, force_refresh=True)
            if key_data is None:
                raise HTTPException(status_code=401, detail="Invalid token")
            claims = _decode(token, key_data, issuer=issuer, audience=audience)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    parties = settings["authorized_parties"]
    if parties and "azp" in claims and claims["azp"] not in parties:
        raise HTTPException(status_code=401, detail="Invalid token")

    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token:
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token


def _load_user(external_subject: str) -> CurrentUser | None:
    from neolease.infra.db import txn

    with txn() as cur:
        cur.execute(
            """
            SELECT id, external_subject, email, name, role
            FROM users
            WHERE external_subject = %s
            """,
            (external_subject,),
        )
        row = cur.fetchone()
    if row is None:
        return None
    return CurrentUser(
        id=str(row[0]),
        external_subject=row[1],
        email=row[2],
        name=row[3],
        role=row[4] or "user",
    )


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: authenticated user with role.

    Raises:
        HTTPException: 401 if token invalid/missing, 403 if user not found.
    """
    sub = verify_token(_bearer_token(request))
    user = _load_user(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user


CurrentUserDep = Depends(get_current_user)
