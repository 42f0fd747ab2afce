"""OIDC bearer authentication and caller resolution.

Provides:
- verify_token(): validates an RS256 JWT against the issuer's JWKS and
  returns its subject
- get_current_user(): FastAPI dependency resolving the subject to a users row
- get_caller(): FastAPI dependency producing the engine's Caller
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

from kosly.domain.authz import Caller, Role

_jwks_cache: dict[str, Any] | None = None
_jwks_cache_time: float = 0
_jwks_cache_lock = threading.Lock()
_JWKS_CACHE_TTL = 600  # seconds


@dataclass
class CurrentUser:
    """Authenticated user context."""

    id: str
    external_subject: str
    role: str
    operator_id: str | None
    email: str | None = None
    name: str | None = None


def _oidc_settings() -> dict[str, Any]:
    parties_raw = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
    parties = [p.strip() for p in parties_raw.split(",") if p.strip()]
    return {
        "issuer": os.environ.get("OIDC_ISSUER"),
        "audience": os.environ.get("OIDC_AUDIENCE"),
        "jwks_url": os.environ.get("OIDC_JWKS_URL"),
        "authorized_parties": parties or None,
    }


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def _get_jwks(jwks_url: str, force_refresh: bool = False) -> dict[str, Any]:
    """JWKS document, cached for _JWKS_CACHE_TTL seconds."""
    global _jwks_cache, _jwks_cache_time

    with _jwks_cache_lock:
        now = time.time()
        if not force_refresh and _jwks_cache is not None and (now - _jwks_cache_time) < _JWKS_CACHE_TTL:
            return _jwks_cache
        try:
            _jwks_cache = _fetch_jwks(jwks_url)
        except requests.RequestException:
            raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
        _jwks_cache_time = now
        return _jwks_cache


def reset_jwks_cache() -> None:
    global _jwks_cache, _jwks_cache_time
    with _jwks_cache_lock:
        _jwks_cache = None
        _jwks_cache_time = 0


def _find_key(jwks: dict[str, Any], kid: str) -> dict[str, Any] | None:
    return next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)


def _decode(token: str, jwk_data: dict[str, Any], settings: dict[str, Any]) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk_data)
    except (jwt.InvalidKeyError, ValueError, KeyError):
        raise HTTPException(status_code=401, detail="Invalid token")
    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=settings["issuer"],
        audience=settings["audience"],
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str) -> str:
    """Verify a JWT and return its sub claim.

    A kid missing from the cached JWKS, or a signature failure, triggers
    one forced JWKS refresh to follow key rotation.

    Raises:
        HTTPException: 401 for any invalid token, 503 if the JWKS is
            unreachable.
    """
    settings = _oidc_settings()
    jwks_url = settings["jwks_url"]
    if not settings["issuer"] or not settings["audience"] or not jwks_url:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    key_data = _find_key(_get_jwks(jwks_url), kid)
    if key_data is None:
        key_data = _find_key(_get_jwks(jwks_url, force_refresh=True), kid)
    if key_data is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        try:
            payload = _decode(token, key_data, settings)
        except jwt.InvalidSignatureError:
            key_data = _find_key(_get_jwks(jwks_url, force_refresh=True), kid)
            if key_data is None:
                raise HTTPException(status_code=401, detail="Invalid token")
            payload = _decode(token, key_data, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    parties = settings["authorized_parties"]
    if parties and "azp" in payload and payload["azp"] not in parties:
        raise HTTPException(status_code=401, detail="Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return parts[1]


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    from kosly.infra.db import txn

    with txn() as cur:
        cur.execute(
            """
            SELECT id, external_subject, role, operator_id, email, name
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
        role=row[2],
        operator_id=str(row[3]) if row[3] is not None else None,
        email=row[4],
        name=row[5],
    )


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: authenticated user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if no
            user is registered for its subject.
    """
    sub = verify_token(_extract_bearer_token(request))
    user = _get_user_from_db(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user


def get_caller(user: CurrentUser = Depends(get_current_user)) -> Caller:
    """FastAPI dependency: the engine's view of the authenticated user."""
    try:
        role = Role(user.role)
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown role")
    if role in (Role.OPERATOR, Role.STAFF) and not user.operator_id:
        raise HTTPException(status_code=403, detail="User is not attached to an operator")
    return Caller(id=user.id, role=role, operator_id=user.operator_id)


CallerDep = Depends(get_caller)
