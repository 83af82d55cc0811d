"""
Tests for the access gate.

Tests cover:
- Tenant resolution precedes every identity and role check
- Sign-in, onboarding and pricing redirects
- Role monotonicity across levels
- Trial expiry by clock alone (luna-hair scenario)
- Tenant isolation for identities that belong to several tenants
- Fail-closed behaviour on internal errors
"""

from datetime import datetime, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest

from salonmanager.auth.identity import SessionCredentials
from salonmanager.constants.permissions import AccessLevel, MemberRole
from salonmanager.models.subscription import SubscriptionStatus
from salonmanager.models.tenant import TenantStatus
from salonmanager.platform.access_gate import (
    REASON_ONBOARDING_REQUIRED,
    REASON_SIGN_IN_REQUIRED,
    AccessGate,
    AccessRequest,
    Allow,
    Deny,
    RedirectTo,
)
from salonmanager.platform.tenant_selection import TenantSelectionCodec

JAN_9 = datetime(2025, 1, 9, 12, 0, tzinfo=timezone.utc)
JAN_10 = datetime(2025, 1, 10, tzinfo=timezone.utc)
JAN_11 = datetime(2025, 1, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def codec(test_settings):
    return TenantSelectionCodec(test_settings)


@pytest.fixture
def make_gate(db_session, identity_provider, codec, test_settings):
    def _make(now: datetime = JAN_9) -> AccessGate:
        return AccessGate(
            db_session,
            identity_provider,
            selection_codec=codec,
            settings=test_settings,
            clock=lambda: now,
        )
    return _make


@pytest.fixture
def gate(make_gate):
    return make_gate()


@pytest.fixture
def luna(make_tenant):
    return make_tenant(slug="luna-hair", name="Luna Hair")


def request_for(path: str, token: str = None, slug: str = None, selection: str = None, query: str = ""):
    return AccessRequest(
        path=path,
        credentials=SessionCredentials(bearer_token=token),
        slug=slug,
        selection_token=selection,
        query_string=query,
    )


class TestTenantResolutionFirst:
    """A missing tenant is reported before anything about the caller."""

    @pytest.mark.parametrize("level", list(AccessLevel))
    def test_unknown_slug_is_not_found_at_every_level(self, gate, level):
        verdict = gate.decide(request_for("/no-such-salon/x", slug="no-such-salon"), level)

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 404

    def test_unknown_slug_with_valid_selection_does_not_fall_back(
        self, gate, luna, add_member, identity_provider, codec
    ):
        add_member(luna, "user_1", MemberRole.OWNER)
        token = identity_provider.login("user_1")

        verdict = gate.decide(
            request_for("/typo", token=token, slug="lunahair", selection=codec.encode(luna.id)),
            AccessLevel.MEMBER,
        )

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 404

    def test_suspended_tenant_is_not_found(self, gate, make_tenant):
        make_tenant(slug="closed-salon", status=TenantStatus.SUSPENDED)

        verdict = gate.decide(request_for("/closed-salon", slug="closed-salon"), AccessLevel.PUBLIC)

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 404

    def test_slug_lookup_is_case_insensitive(self, gate, luna):
        verdict = gate.decide(request_for("/LUNA-HAIR", slug="LUNA-HAIR"), AccessLevel.PUBLIC)

        assert isinstance(verdict, Allow)
        assert verdict.tenant.id == luna.id

    def test_public_without_tenant_is_allowed(self, gate):
        verdict = gate.decide(request_for("/"), AccessLevel.PUBLIC)

        assert isinstance(verdict, Allow)
        assert verdict.tenant is None
        assert verdict.identity.is_anonymous


class TestIdentity:
    """Anonymous callers are sent to sign-in with a way back."""

    def test_anonymous_member_route_redirects_to_sign_in(self, gate, luna):
        verdict = gate.decide(
            request_for("/luna-hair/dashboard", slug="luna-hair", query="view=week"),
            AccessLevel.MEMBER,
        )

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == REASON_SIGN_IN_REQUIRED
        target = urlparse(verdict.target)
        assert target.path == "/auth/sign-in"
        assert parse_qs(target.query)["redirect_to"] == ["/luna-hair/dashboard?view=week"]

    def test_invalid_session_is_anonymous(self, gate, luna):
        verdict = gate.decide(
            request_for("/luna-hair/dashboard", token="forged", slug="luna-hair"),
            AccessLevel.AUTHENTICATED,
        )

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == REASON_SIGN_IN_REQUIRED

    def test_authenticated_needs_no_tenant(self, gate, identity_provider):
        token = identity_provider.login("user_1")

        verdict = gate.decide(request_for("/onboarding", token=token), AccessLevel.AUTHENTICATED)

        assert isinstance(verdict, Allow)
        assert verdict.identity.id == "user_1"
        assert verdict.role is None


class TestMembership:
    """Membership and role checks."""

    def test_no_tenant_at_all_goes_to_onboarding(self, gate, identity_provider):
        token = identity_provider.login("user_1")

        verdict = gate.decide(request_for("/dashboard", token=token), AccessLevel.MEMBER)

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == REASON_ONBOARDING_REQUIRED
        assert verdict.target == "/onboarding"

    def test_invalid_selection_counts_as_no_selection(self, gate, identity_provider):
        token = identity_provider.login("user_1")

        verdict = gate.decide(
            request_for("/dashboard", token=token, selection="garbage"), AccessLevel.MEMBER
        )

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == REASON_ONBOARDING_REQUIRED

    @pytest.mark.security
    def test_non_member_is_denied(self, gate, luna, identity_provider):
        token = identity_provider.login("stranger")

        verdict = gate.decide(
            request_for("/luna-hair/dashboard", token=token, slug="luna-hair"), AccessLevel.MEMBER
        )

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 403

    @pytest.mark.security
    def test_selection_of_foreign_tenant_is_denied(self, gate, luna, identity_provider, codec):
        token = identity_provider.login("stranger")

        verdict = gate.decide(
            request_for("/dashboard", token=token, selection=codec.encode(luna.id)),
            AccessLevel.MEMBER,
        )

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 403

    def test_selection_resolves_tenant_for_member(self, gate, luna, add_member, identity_provider, codec):
        add_member(luna, "user_1", MemberRole.STAFF)
        token = identity_provider.login("user_1")

        verdict = gate.decide(
            request_for("/dashboard", token=token, selection=codec.encode(luna.id)),
            AccessLevel.MEMBER,
        )

        assert isinstance(verdict, Allow)
        assert verdict.tenant.slug == "luna-hair"
        assert verdict.role == MemberRole.STAFF


class TestRoleMonotonicity:
    """admin_or_owner denies staff; member allows every role."""

    @pytest.mark.parametrize("role", list(MemberRole))
    def test_member_level_allows_every_role(self, gate, luna, add_member, identity_provider, role):
        add_member(luna, "user_1", role)
        token = identity_provider.login("user_1")

        verdict = gate.decide(
            request_for("/luna-hair/x", token=token, slug="luna-hair"), AccessLevel.MEMBER
        )

        assert isinstance(verdict, Allow)
        assert verdict.role == role

    @pytest.mark.parametrize("role,allowed", [
        (MemberRole.OWNER, True),
        (MemberRole.ADMIN, True),
        (MemberRole.STAFF, False),
    ])
    def test_admin_or_owner_level(self, gate, luna, add_member, identity_provider, role, allowed):
        add_member(luna, "user_1", role)
        token = identity_provider.login("user_1")

        verdict = gate.decide(
            request_for("/luna-hair/settings", token=token, slug="luna-hair"),
            AccessLevel.ADMIN_OR_OWNER,
        )

        if allowed:
            assert isinstance(verdict, Allow)
        else:
            assert isinstance(verdict, Deny)
            assert verdict.status_code == 403

    def test_staff_denied_admin_even_with_active_subscription(
        self, gate, luna, add_member, identity_provider, make_subscription
    ):
        add_member(luna, "user_1", MemberRole.STAFF)
        make_subscription(luna, SubscriptionStatus.ACTIVE)
        token = identity_provider.login("user_1")

        assert isinstance(gate.decide(
            request_for("/luna-hair/x", token=token, slug="luna-hair"), AccessLevel.SUBSCRIPTION_ACTIVE
        ), Allow)
        assert isinstance(gate.decide(
            request_for("/luna-hair/x", token=token, slug="luna-hair"), AccessLevel.ADMIN_OR_OWNER
        ), Deny)


class TestSubscriptionLevel:
    """subscription_active requires an entitled subscription."""

    @pytest.fixture
    def owner_token(self, luna, add_member, identity_provider):
        add_member(luna, "owner_1", MemberRole.OWNER)
        return identity_provider.login("owner_1")

    def _decide(self, gate, token):
        return gate.decide(
            request_for("/luna-hair/calendar", token=token, slug="luna-hair"),
            AccessLevel.SUBSCRIPTION_ACTIVE,
        )

    def test_trial_scenario_before_and_after_trial_end(
        self, make_gate, luna, owner_token, make_subscription
    ):
        make_subscription(luna, SubscriptionStatus.TRIALING, trial_end=JAN_10)

        before = self._decide(make_gate(JAN_9), owner_token)
        after = self._decide(make_gate(JAN_11), owner_token)

        assert isinstance(before, Allow)
        assert isinstance(after, RedirectTo)
        assert after.reason == "trial_expired"
        assert after.target == "/pricing?reason=trial_expired"

    def test_no_subscription(self, gate, owner_token):
        verdict = self._decide(gate, owner_token)

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == "no_subscription"

    @pytest.mark.parametrize("status,reason", [
        (SubscriptionStatus.INCOMPLETE, "payment_issue"),
        (SubscriptionStatus.PAST_DUE, "payment_issue"),
        (SubscriptionStatus.CANCELED, "subscription_canceled"),
    ])
    def test_denied_states_carry_reason(self, gate, luna, owner_token, make_subscription, status, reason):
        make_subscription(luna, status)

        verdict = self._decide(gate, owner_token)

        assert isinstance(verdict, RedirectTo)
        assert verdict.reason == reason

    def test_active_subscription_is_allowed(self, gate, luna, owner_token, make_subscription):
        make_subscription(luna, SubscriptionStatus.ACTIVE)

        assert isinstance(self._decide(gate, owner_token), Allow)

    def test_member_level_ignores_subscription(self, gate, luna, owner_token, make_subscription):
        make_subscription(luna, SubscriptionStatus.CANCELED)

        verdict = gate.decide(
            request_for("/luna-hair/billing", token=owner_token, slug="luna-hair"), AccessLevel.MEMBER
        )

        assert isinstance(verdict, Allow)


class TestTenantIsolation:
    """A slug never yields another tenant's membership or entitlement."""

    @pytest.mark.security
    def test_slug_wins_over_selection_of_other_tenant(
        self, gate, make_tenant, add_member, identity_provider, make_subscription, codec
    ):
        salon_a = make_tenant(slug="salon-a")
        salon_b = make_tenant(slug="salon-b")
        add_member(salon_a, "user_1", MemberRole.STAFF)
        add_member(salon_b, "user_1", MemberRole.OWNER)
        make_subscription(salon_b, SubscriptionStatus.ACTIVE)
        token = identity_provider.login("user_1")

        request = request_for(
            "/salon-a/calendar", token=token, slug="salon-a", selection=codec.encode(salon_b.id)
        )
        member = gate.decide(request, AccessLevel.MEMBER)
        admin = gate.decide(request, AccessLevel.ADMIN_OR_OWNER)
        subscription = gate.decide(request, AccessLevel.SUBSCRIPTION_ACTIVE)

        assert isinstance(member, Allow)
        assert member.tenant.id == salon_a.id
        assert member.role == MemberRole.STAFF
        assert isinstance(admin, Deny)
        assert isinstance(subscription, RedirectTo)
        assert subscription.reason == "no_subscription"


class TestFailClosed:
    """Internal errors become a Deny, never an exception or an Allow."""

    def test_internal_error_is_denied(self, gate, luna, add_member, identity_provider):
        add_member(luna, "user_1", MemberRole.OWNER)
        token = identity_provider.login("user_1")

        with patch.object(gate.memberships, "role_of", side_effect=RuntimeError("db down")):
            verdict = gate.decide(
                request_for("/luna-hair/x", token=token, slug="luna-hair"), AccessLevel.MEMBER
            )

        assert isinstance(verdict, Deny)
        assert verdict.status_code == 503
