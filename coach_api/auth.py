"""Session tokens: verification of inbound bearer credentials and issuing.

Access and refresh tokens are HS256 JWTs signed with JWT_SECRET. Sessions are
minted in exchange for a Google ID token restricted to ALLOWED_DOMAIN.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from coach_api import config
from coach_api.errors import Forbidden, Unauthenticated

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

logger = logging.getLogger("teacher_coach.auth")

_jwks_client: Optional[jwt.PyJWKClient] = None


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: Optional[str]
    expires_at: int


def _email_in_domain(email: str, domain: str) -> bool:
    return email.rsplit("@", 1)[-1].lower() == domain.lower()


def verify_session(
    authorization: Optional[str],
    *,
    secret: Optional[str] = None,
    domain: Optional[str] = None,
) -> Principal:
    """Validate a `Bearer <token>` header and return the authenticated principal.

    Raises Unauthenticated for a missing/malformed header, a bad signature, an
    expired token, a refresh token presented as an access token, or an email
    outside the allow-listed domain.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Missing or invalid Authorization header")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthenticated("Missing or invalid Authorization header")

    key = secret if secret is not None else config.jwt_secret()
    if not key:
        # Never accept tokens when the service is misconfigured
        logger.error(json.dumps({"event": "auth_secret_missing"}))
        raise Unauthenticated("Invalid or expired token")

    try:
        payload = jwt.decode(token, key, algorithms=["HS256"], options={"require": ["exp", "sub"]})
    except jwt.PyJWTError as e:
        logger.info(json.dumps({"event": "auth_token_rejected", "reason": type(e).__name__}))
        raise Unauthenticated("Invalid or expired token")

    if payload.get("typ", TOKEN_TYPE_ACCESS) != TOKEN_TYPE_ACCESS:
        raise Unauthenticated("Invalid or expired token")

    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise Unauthenticated("Invalid or expired token")

    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    email = user.get("email") or payload.get("email")
    allowed = domain if domain is not None else config.allowed_domain()
    if email and allowed and not _email_in_domain(str(email), allowed):
        logger.warning(json.dumps({"event": "auth_domain_rejected", "userId": user_id}))
        raise Unauthenticated("Invalid or expired token")

    return Principal(user_id=user_id, email=email, expires_at=int(payload["exp"]))


def _sign(claims: Dict[str, Any], subject: str, ttl_seconds: int, secret: str, now: Optional[float] = None) -> str:
    issued = int(now if now is not None else time.time())
    body = dict(claims)
    body.update({"sub": subject, "iat": issued, "exp": issued + ttl_seconds})
    return jwt.encode(body, secret, algorithm="HS256")


def issue_session(user: Dict[str, Any], *, secret: Optional[str] = None, now: Optional[float] = None) -> Dict[str, Any]:
    """Mint an access/refresh token pair for a verified user."""
    key = secret if secret is not None else config.jwt_secret()
    if not key:
        raise RuntimeError("JWT_SECRET is required to issue sessions")
    access = _sign({"typ": TOKEN_TYPE_ACCESS, "user": user}, user["id"], config.ACCESS_TOKEN_TTL_SECONDS, key, now)
    refresh = _sign(
        {"typ": TOKEN_TYPE_REFRESH, "userId": user["id"], "email": user.get("email")},
        user["id"],
        config.REFRESH_TOKEN_TTL_SECONDS,
        key,
        now,
    )
    return {
        "access_token": access,
        "refresh_token": refresh,
        "expires_in": config.ACCESS_TOKEN_TTL_SECONDS,
        "user": user,
    }


def refresh_session(refresh_token: str, *, secret: Optional[str] = None, now: Optional[float] = None) -> Dict[str, Any]:
    key = secret if secret is not None else config.jwt_secret()
    if not key:
        raise Unauthenticated("Invalid or expired refresh token")
    try:
        payload = jwt.decode(refresh_token, key, algorithms=["HS256"], options={"require": ["exp", "sub"]})
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired refresh token")
    if payload.get("typ") != TOKEN_TYPE_REFRESH:
        raise Unauthenticated("Invalid or expired refresh token")

    user_id = str(payload["sub"])
    claims: Dict[str, Any] = {"typ": TOKEN_TYPE_ACCESS, "userId": user_id}
    if payload.get("email"):
        claims["email"] = payload["email"]
    access = _sign(claims, user_id, config.ACCESS_TOKEN_TTL_SECONDS, key, now)
    return {
        "access_token": access,
        "refresh_token": refresh_token,
        "expires_in": config.ACCESS_TOKEN_TTL_SECONDS,
    }


def _get_jwks_client() -> jwt.PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(GOOGLE_CERTS_URL, timeout=10)
    return _jwks_client


def _decode_google_id_token(id_token: str, client_id: str) -> Dict[str, Any]:
    signing_key = _get_jwks_client().get_signing_key_from_jwt(id_token)
    payload = jwt.decode(id_token, signing_key.key, algorithms=["RS256"], audience=client_id)
    if payload.get("iss") not in GOOGLE_ISSUERS:
        raise jwt.InvalidIssuerError("unexpected issuer")
    return payload


async def verify_google_id_token(id_token: str) -> Dict[str, Any]:
    """Verify a Google ID token and map it to the session user.

    Raises Unauthenticated when the token does not verify and Forbidden when
    the account is outside the allowed hosted domain or unverified.
    """
    try:
        # JWKS fetch is blocking; keep it off the event loop
        payload = await asyncio.to_thread(_decode_google_id_token, id_token, config.google_client_id())
    except jwt.PyJWTError as e:
        logger.info(json.dumps({"event": "google_token_rejected", "reason": type(e).__name__}))
        raise Unauthenticated("Invalid token")

    allowed = config.allowed_domain()
    if not payload.get("hd") or payload.get("hd") != allowed:
        logger.warning(json.dumps({"event": "auth_domain_rejected", "hd": payload.get("hd")}))
        raise Forbidden("Access denied", f"Only @{allowed} accounts are allowed")
    if not payload.get("email_verified"):
        raise Forbidden("Email not verified")

    return {
        "id": payload["sub"],
        "email": payload.get("email"),
        "displayName": payload.get("name"),
        "photoURL": payload.get("picture"),
    }
