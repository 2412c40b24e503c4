from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, status
from jose import jwt
from jose.exceptions import JWSError, JWTError

from app.config import settings


logger = logging.getLogger("auth.clerk")


class _SigningKeys:
    """Clerk JWKS keyed by ``kid``, refetched after ``ttl_seconds`` or on an unknown kid."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl_seconds = ttl_seconds
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._fetched_at = 0.0

    def _expired(self) -> bool:
        return not self._keys or (time.time() - self._fetched_at) >= self.ttl_seconds

    def _refresh(self) -> None:
        try:
            resp = httpx.get(settings.CLERK_JWKS_URL, timeout=10)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("JWKS fetch failed", extra={"jwks_url": settings.CLERK_JWKS_URL})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to fetch Clerk JWKS",
            ) from exc
        self._keys = {key["kid"]: key for key in payload.get("keys", []) if key.get("kid")}
        self._fetched_at = time.time()

    def get(self, kid: str) -> Optional[Dict[str, Any]]:
        if self._expired():
            self._refresh()
        key = self._keys.get(kid)
        if key is None:
            # Clerk rotated its keys since the last fetch.
            self._refresh()
            key = self._keys.get(kid)
        return key

    def clear(self) -> None:
        self._keys = {}
        self._fetched_at = 0.0


_signing_keys = _SigningKeys()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _check_audience(claims: Dict[str, Any]) -> None:
    # Clerk session tokens omit ``aud`` unless a custom template adds it.
    aud = claims.get("aud")
    if aud is None:
        return
    token_audiences = [aud] if isinstance(aud, str) else list(aud)
    if not set(token_audiences) & set(settings.CLERK_AUDIENCE):
        logger.warning("Token audience rejected", extra={"aud": token_audiences, "sub": claims.get("sub")})
        raise _unauthorized("Invalid token audience")


def verify_clerk_token(token: str) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        logger.warning("Invalid token header", exc_info=exc)
        raise _unauthorized("Invalid token") from exc

    kid = header.get("kid")
    if not kid:
        raise _unauthorized("Missing kid in token")
    public_key = _signing_keys.get(kid)
    if public_key is None:
        logger.warning("Signing key not found", extra={"kid": kid})
        raise _unauthorized("Signing key not found")

    try:
        claims = jwt.decode(
            token,
            public_key,
            algorithms=[public_key.get("alg", "RS256")],
            issuer=settings.CLERK_JWT_ISSUER,
            options={"verify_aud": False},
        )
    except (JWTError, JWSError) as exc:
        logger.warning("Token verification failed", exc_info=exc)
        raise _unauthorized("Invalid token") from exc

    _check_audience(claims)
    logger.debug(
        "Verified Clerk token",
        extra={"kid": kid, "sub": claims.get("sub"), "role": claims.get(settings.ADMIN_ROLE_CLAIM)},
    )
    return claims
