"""
Tests for bearer token verification against a stubbed issuer.
"""

import time

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwk, jwt

from chatdesk import auth
from chatdesk.auth import TokenVerifier, authenticate, current_owner

ISSUER = "https://tenant.example.com/"
AUDIENCE = "https://api.example.com"
JWKS_URL = "https://tenant.example.com/.well-known/jwks.json"


def _rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


class Issuer:
    """Serves discovery and JWKS documents and signs tokens with its keys."""

    def __init__(self):
        self.private = {}
        self.published = []
        self.jwks_fetches = 0

    def add_key(self, kid, publish=True):
        private_pem, public_pem = _rsa_key()
        self.private[kid] = private_pem
        if publish:
            self.publish(kid, public_pem)
        return public_pem

    def publish(self, kid, public_pem):
        public = jwk.construct(public_pem, "RS256").to_dict()
        public["kid"] = kid
        self.published.append(public)

    def token(self, kid="k1", **overrides):
        now = int(time.time())
        claims = {"sub": "user-1", "iss": ISSUER, "aud": AUDIENCE, "iat": now, "exp": now + 300}
        claims.update(overrides)
        return jwt.encode(claims, self.private[kid], algorithm="RS256", headers={"kid": kid})

    def handler(self, request):
        if request.url.path == "/.well-known/openid-configuration":
            return httpx.Response(200, json={"issuer": ISSUER, "jwks_uri": JWKS_URL})
        if request.url.path == "/.well-known/jwks.json":
            self.jwks_fetches += 1
            return httpx.Response(200, json={"keys": list(self.published)})
        return httpx.Response(404)


@pytest.fixture
def issuer():
    issuer = Issuer()
    issuer.add_key("k1")
    return issuer


def _verifier(issuer, **kwargs):
    return TokenVerifier(ISSUER, AUDIENCE, transport=httpx.MockTransport(issuer.handler), **kwargs)


class TestTokenVerifier:
    def test_valid_token(self, issuer):
        claims = _verifier(issuer).verify(issuer.token())

        assert claims["sub"] == "user-1"

    def test_keys_are_cached(self, issuer):
        verifier = _verifier(issuer)

        verifier.verify(issuer.token())
        verifier.verify(issuer.token())

        assert issuer.jwks_fetches == 1

    def test_wrong_audience(self, issuer):
        with pytest.raises(HTTPException) as exc:
            _verifier(issuer).verify(issuer.token(aud="https://other.example.com"))

        assert exc.value.status_code == 401

    def test_wrong_issuer(self, issuer):
        with pytest.raises(HTTPException) as exc:
            _verifier(issuer).verify(issuer.token(iss="https://evil.example.com/"))

        assert exc.value.status_code == 401

    def test_expired_token(self, issuer):
        now = int(time.time())
        with pytest.raises(HTTPException) as exc:
            _verifier(issuer).verify(issuer.token(iat=now - 600, exp=now - 60))

        assert exc.value.status_code == 401
        assert exc.value.detail == "Token has expired"

    def test_token_not_yet_valid(self, issuer):
        with pytest.raises(HTTPException) as exc:
            _verifier(issuer).verify(issuer.token(nbf=int(time.time()) + 600))

        assert exc.value.status_code == 401

    def test_malformed_token(self, issuer):
        with pytest.raises(HTTPException) as exc:
            _verifier(issuer).verify("not-a-jwt")

        assert exc.value.status_code == 401

    def test_unknown_key_refetches_once_then_rejects(self, issuer):
        issuer.add_key("stray", publish=False)
        verifier = _verifier(issuer, min_refresh_interval=0)
        verifier.verify(issuer.token())

        with pytest.raises(HTTPException) as exc:
            verifier.verify(issuer.token(kid="stray"))

        assert exc.value.status_code == 401
        assert issuer.jwks_fetches == 2

    def test_rotated_key_is_picked_up(self, issuer):
        verifier = _verifier(issuer, min_refresh_interval=0)
        verifier.verify(issuer.token())

        issuer.add_key("k2")

        assert verifier.verify(issuer.token(kid="k2"))["sub"] == "user-1"

    def test_refetch_is_rate_limited(self, issuer):
        issuer.add_key("stray", publish=False)
        verifier = _verifier(issuer)
        verifier.verify(issuer.token())

        with pytest.raises(HTTPException):
            verifier.verify(issuer.token(kid="stray"))

        assert issuer.jwks_fetches == 1

    def test_issuer_unreachable(self):
        def down(request):
            return httpx.Response(502)

        verifier = TokenVerifier(ISSUER, AUDIENCE, transport=httpx.MockTransport(down))
        issuer = Issuer()
        issuer.add_key("k1")

        with pytest.raises(HTTPException) as exc:
            verifier.verify(issuer.token())

        assert exc.value.status_code == 503


class TestDependencies:
    def test_authenticate_uses_configured_issuer(self, issuer, monkeypatch):
        monkeypatch.setenv("AUTH0_DOMAIN", "tenant.example.com")
        monkeypatch.setenv("AUTH0_AUDIENCE", AUDIENCE)
        monkeypatch.delenv("AUTH0_ISSUER", raising=False)
        monkeypatch.delenv("CHAT_GENERATOR", raising=False)
        monkeypatch.delenv("PAGE_ANALYZER", raising=False)
        verifier = _verifier(issuer)
        seen = []

        def fake_get_verifier(iss, aud):
            seen.append((iss, aud))
            return verifier

        monkeypatch.setattr(auth, "get_verifier", fake_get_verifier)
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=issuer.token())

        assert authenticate(credentials)["sub"] == "user-1"
        assert seen == [(ISSUER, AUDIENCE)]

    def test_authenticate_requires_credentials(self):
        with pytest.raises(HTTPException) as exc:
            authenticate(None)

        assert exc.value.status_code == 401

    def test_current_owner_is_token_subject(self):
        assert current_owner({"sub": "auth0|abc"}) == "auth0|abc"

    def test_current_owner_requires_subject(self):
        with pytest.raises(HTTPException) as exc:
            current_owner({"aud": AUDIENCE})

        assert exc.value.status_code == 401
