from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from .config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"


class AuthError(HTTPException):
    def __init__(self, status_code: int = 401, detail: str = "Unauthorized") -> None:
        super().__init__(status_code=status_code, detail=detail)


class TokenVerifier:
    """Checks bearer tokens against the signing keys an OIDC issuer publishes.

    Keys are fetched on first use and kept on the instance. A token signed
    with a key id we have not seen triggers one refetch, rate limited by
    `min_refresh_interval`, so rotated keys are picked up without a restart.
    """

    def __init__(
        self,
        issuer: str,
        audience: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
        min_refresh_interval: float = 60.0,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self._transport = transport
        self._timeout = timeout
        self._min_refresh_interval = min_refresh_interval
        self._jwks_uri: Optional[str] = None
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._fetched_at: Optional[float] = None

    def _get_json(self, url: str, what: str) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.get(url)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch %s from %s: %s", what, url, e)
            raise AuthError(503, f"Could not fetch {what}") from e

    def _refresh_keys(self) -> None:
        if self._jwks_uri is None:
            discovery = self._get_json(
                self.issuer.rstrip("/") + "/.well-known/openid-configuration",
                "OIDC configuration",
            )
            if not discovery.get("jwks_uri"):
                raise AuthError(503, "Issuer does not publish a jwks_uri")
            self._jwks_uri = discovery["jwks_uri"]
        jwks = self._get_json(self._jwks_uri, "signing keys")
        self._keys = {key["kid"]: key for key in jwks.get("keys", []) if key.get("kid")}
        self._fetched_at = time.monotonic()
        logger.info("Loaded %d signing key(s) for %s", len(self._keys), self.issuer)

    def _may_refresh(self) -> bool:
        if self._fetched_at is None:
            return True
        return time.monotonic() - self._fetched_at >= self._min_refresh_interval

    def _key_for(self, kid: str) -> Dict[str, Any]:
        key = self._keys.get(kid)
        if key is None and self._may_refresh():
            self._refresh_keys()
            key = self._keys.get(kid)
        if key is None:
            raise AuthError(401, "Token signed with an unknown key")
        return key

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the token's claims, or raise AuthError."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise AuthError(401, "Malformed token") from e
        if header.get("alg") != ALGORITHM:
            raise AuthError(401, "Unsupported token algorithm")
        kid = header.get("kid")
        if not kid:
            raise AuthError(401, "Token header has no key id")

        key = self._key_for(kid)
        try:
            # exp, nbf, iat, aud and iss are all checked by jose
            return jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError as e:
            raise AuthError(401, "Token has expired") from e
        except JWTError as e:
            logger.info("Rejected token: %s", e)
            raise AuthError(401, "Invalid token") from e


@lru_cache(maxsize=4)
def get_verifier(issuer: str, audience: str) -> TokenVerifier:
    return TokenVerifier(issuer, audience)


_http_bearer = HTTPBearer(auto_error=False)


def authenticate(credentials: Optional[HTTPAuthorizationCredentials] = Depends(_http_bearer)) -> Dict[str, Any]:
    """
    FastAPI dependency that authenticates the incoming request using a Bearer JWT issued by Auth0.
    Returns the token claims on success. Raises HTTP 401 on failure.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError(401, "Missing or invalid Authorization header")

    settings = get_settings()
    verifier = get_verifier(settings.auth0_issuer, settings.auth0_audience)
    return verifier.verify(credentials.credentials)


def current_owner(claims: Dict[str, Any] = Depends(authenticate)) -> str:
    """The authenticated user's id (the token subject); chats are owned by it."""
    owner_id = claims.get("sub")
    if not owner_id:
        raise AuthError(401, "Token has no subject")
    return str(owner_id)


AuthDependency = Depends(authenticate)
