"""
Tests for the Clerk identity provider and JWT verifier.

The JWKS endpoint is replaced by a locally generated RSA key and the
Clerk Backend API by an httpx MockTransport.
"""

import time
from unittest.mock import MagicMock

import httpx
import jwt
from jwt import PyJWKClientError
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from salonmanager.auth.clerk_verifier import ClerkJWTVerifier, ClerkVerificationError
from salonmanager.auth.identity import (
    ANONYMOUS,
    ClerkIdentityProvider,
    Identity,
    SessionCredentials,
)
from salonmanager.config.settings import Settings
from salonmanager.platform.errors import TransientUpstreamError

ISSUER = "https://clerk.salon.test"


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def verifier(signing_key):
    verifier = ClerkJWTVerifier(issuer=ISSUER)
    jwks_client = MagicMock()
    jwks_client.get_signing_key_from_jwt.return_value = MagicMock(key=signing_key.public_key())
    verifier._get_jwks_client = lambda: jwks_client
    return verifier


def session_token(signing_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "sub": "user_2abc",
        "sid": "sess_1",
        "iss": ISSUER,
        "iat": now,
        "exp": now + 300,
    }
    claims.update(overrides)
    return jwt.encode(claims, signing_key, algorithm="RS256")


def clerk_settings(**overrides) -> Settings:
    values = {
        "env": "test",
        "clerk_issuer_url": ISSUER,
        "clerk_secret_key": "sk_clerk_test",
        "clerk_api_url": "https://api.clerk.test/v1",
    }
    values.update(overrides)
    return Settings(**values)


class TestClerkJWTVerifier:

    def test_valid_token(self, verifier, signing_key):
        claims = verifier.verify_token(session_token(signing_key))

        assert claims["sub"] == "user_2abc"
        assert claims["sid"] == "sess_1"

    def test_bearer_prefix_is_stripped(self, verifier, signing_key):
        claims = verifier.verify_token("Bearer " + session_token(signing_key))

        assert claims["sub"] == "user_2abc"

    def test_expired_token(self, verifier, signing_key):
        past = int(time.time()) - 3600
        token = session_token(signing_key, iat=past - 300, exp=past)

        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(token)
        assert exc_info.value.error_code == "token_expired"

    @pytest.mark.security
    def test_foreign_issuer(self, verifier, signing_key):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(session_token(signing_key, iss="https://evil.test"))
        assert exc_info.value.error_code == "invalid_issuer"

    @pytest.mark.security
    def test_token_signed_by_other_key(self, verifier):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(session_token(other))
        assert exc_info.value.error_code == "invalid_token"

    def test_missing_token(self, verifier):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token("")
        assert exc_info.value.error_code == "missing_token"

    @pytest.mark.security
    def test_token_without_subject(self, verifier, signing_key):
        now = int(time.time())
        token = jwt.encode(
            {"iss": ISSUER, "iat": now, "exp": now + 300}, signing_key, algorithm="RS256"
        )

        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(token)
        assert exc_info.value.error_code == "invalid_token"

    def test_unreachable_jwks(self, signing_key):
        verifier = ClerkJWTVerifier(issuer=ISSUER)
        jwks_client = MagicMock()
        jwks_client.get_signing_key_from_jwt.side_effect = PyJWKClientError("connection refused")
        verifier._get_jwks_client = lambda: jwks_client

        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(session_token(signing_key))
        assert exc_info.value.error_code == "jwks_error"

    def test_jwks_url_defaults_to_issuer(self):
        verifier = ClerkJWTVerifier(issuer=ISSUER + "/")

        assert verifier.jwks_url == "https://clerk.salon.test/.well-known/jwks.json"


class TestClerkIdentityProvider:

    def test_no_credentials_is_anonymous(self, verifier):
        provider = ClerkIdentityProvider(verifier=verifier, settings=clerk_settings())

        assert provider.verify_session(SessionCredentials()) is ANONYMOUS

    def test_session_cookie_is_verified(self, verifier, signing_key):
        provider = ClerkIdentityProvider(verifier=verifier, settings=clerk_settings())

        identity = provider.verify_session(
            SessionCredentials(session_cookie=session_token(signing_key, email="owner@luna.test"))
        )

        assert identity == Identity(id="user_2abc", session_id="sess_1", email="owner@luna.test")
        assert not identity.is_anonymous

    def test_bearer_wins_over_cookie(self, verifier, signing_key):
        provider = ClerkIdentityProvider(verifier=verifier, settings=clerk_settings())

        identity = provider.verify_session(SessionCredentials(
            bearer_token=session_token(signing_key, sub="user_bearer"),
            session_cookie=session_token(signing_key, sub="user_cookie"),
        ))

        assert identity.id == "user_bearer"

    @pytest.mark.security
    def test_invalid_token_is_anonymous(self, verifier):
        provider = ClerkIdentityProvider(verifier=verifier, settings=clerk_settings())

        assert provider.verify_session(SessionCredentials(bearer_token="garbage")) is ANONYMOUS

    def test_sign_out_revokes_session(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "sess_1", "status": "revoked"})

        provider = ClerkIdentityProvider(
            verifier=MagicMock(),
            settings=clerk_settings(),
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        provider.sign_out(Identity(id="user_2abc", session_id="sess_1"))

        assert len(requests) == 1
        assert str(requests[0].url) == "https://api.clerk.test/v1/sessions/sess_1/revoke"
        assert requests[0].headers["Authorization"] == "Bearer sk_clerk_test"

    def test_sign_out_anonymous_is_noop(self):
        client = MagicMock()
        provider = ClerkIdentityProvider(
            verifier=MagicMock(), settings=clerk_settings(), http_client=client
        )

        provider.sign_out(ANONYMOUS)

        client.post.assert_not_called()

    def test_sign_out_provider_error(self):
        provider = ClerkIdentityProvider(
            verifier=MagicMock(),
            settings=clerk_settings(),
            http_client=httpx.Client(
                transport=httpx.MockTransport(lambda request: httpx.Response(503))
            ),
        )

        with pytest.raises(TransientUpstreamError):
            provider.sign_out(Identity(id="user_2abc", session_id="sess_1"))

    def test_sign_out_without_secret_key(self):
        provider = ClerkIdentityProvider(
            verifier=MagicMock(), settings=clerk_settings(clerk_secret_key=None)
        )

        with pytest.raises(TransientUpstreamError):
            provider.sign_out(Identity(id="user_2abc", session_id="sess_1"))
