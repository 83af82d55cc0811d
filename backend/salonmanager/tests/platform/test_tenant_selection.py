"""
Tests for the tenant selection token and cookie.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Response

from salonmanager.platform.tenant_selection import (
    SELECTION_ALGORITHM,
    TenantSelectionCodec,
)


@pytest.fixture
def codec(test_settings):
    return TenantSelectionCodec(test_settings)


class TestSelectionToken:

    def test_round_trip(self, codec):
        assert codec.decode(codec.encode("tenant-1")) == "tenant-1"

    def test_missing_secret_is_a_configuration_error(self, test_settings):
        with pytest.raises(ValueError):
            TenantSelectionCodec(replace(test_settings, app_secret_key=None))

    def test_expired_token_is_no_selection(self, codec):
        issued = datetime.now(timezone.utc) - timedelta(days=31)

        assert codec.decode(codec.encode("tenant-1", now=issued)) is None

    def test_token_still_valid_before_thirty_days(self, codec):
        issued = datetime.now(timezone.utc) - timedelta(days=29)

        assert codec.decode(codec.encode("tenant-1", now=issued)) == "tenant-1"

    @pytest.mark.security
    def test_token_signed_with_other_secret_is_rejected(self, codec, test_settings):
        other = TenantSelectionCodec(replace(test_settings, app_secret_key="a-different-secret-value-0123456789"))

        assert codec.decode(other.encode("tenant-1")) is None

    @pytest.mark.security
    def test_tampered_token_is_rejected(self, codec):
        token = codec.encode("tenant-1")
        header, payload, signature = token.split(".")
        forged = ".".join([header, payload, signature[::-1]])

        assert codec.decode(forged) is None

    @pytest.mark.security
    def test_token_for_other_audience_is_rejected(self, codec, test_settings):
        foreign = jwt.encode(
            {"tid": "tenant-1", "aud": "something-else",
             "exp": datetime.now(timezone.utc) + timedelta(days=1)},
            test_settings.app_secret_key,
            algorithm=SELECTION_ALGORITHM,
        )

        assert codec.decode(foreign) is None

    def test_empty_and_garbage_tokens(self, codec):
        assert codec.decode(None) is None
        assert codec.decode("") is None
        assert codec.decode("not-a-jwt") is None


class TestSelectionCookie:

    def test_cookie_attributes(self, codec):
        response = Response()

        codec.set_cookie(response, codec.encode("tenant-1"))

        cookie = response.headers["set-cookie"]
        assert cookie.startswith("current-tenant=")
        assert "Max-Age=2592000" in cookie
        assert "Path=/" in cookie
        assert "HttpOnly" in cookie
        assert "SameSite=lax" in cookie
        assert "Secure" not in cookie

    def test_cookie_is_secure_in_production(self, test_settings):
        codec = TenantSelectionCodec(replace(test_settings, env="production"))
        response = Response()

        codec.set_cookie(response, codec.encode("tenant-1"))

        assert "Secure" in response.headers["set-cookie"]

    def test_clear_cookie(self, codec):
        response = Response()

        codec.clear_cookie(response)

        cookie = response.headers["set-cookie"]
        assert cookie.startswith('current-tenant=""')
        assert "Max-Age=0" in cookie
