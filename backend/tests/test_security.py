"""Tests for bearer-token verification and the role permission matrix."""
from sipatrol.core.permissions import (
    PERM_SUBMIT_REPORTS,
    PERM_VIEW_ALL_REPORTS,
    PERM_VIEW_OWN_REPORTS,
    has_permission,
)
from sipatrol.core.security import create_access_token, decode_access_token
from sipatrol.models.profile import UserRole


class TestAccessTokens:
    def test_round_trip_subject(self):
        payload = decode_access_token(create_access_token("officer-9", extra={"unit": "north"}))
        assert payload["sub"] == "officer-9"
        assert payload["unit"] == "north"

    def test_expired_token_rejected(self):
        assert decode_access_token(create_access_token("officer-9", expires_minutes=-1)) is None

    def test_garbage_rejected(self):
        assert decode_access_token("not.a.jwt") is None


class TestPermissions:
    def test_security_officer(self):
        assert has_permission(UserRole.SECURITY, PERM_SUBMIT_REPORTS)
        assert has_permission(UserRole.SECURITY, PERM_VIEW_OWN_REPORTS)
        assert not has_permission(UserRole.SECURITY, PERM_VIEW_ALL_REPORTS)

    def test_admin(self):
        assert has_permission(UserRole.ADMIN, PERM_VIEW_ALL_REPORTS)
        assert not has_permission(UserRole.ADMIN, PERM_SUBMIT_REPORTS)

    def test_unknown_role_has_nothing(self):
        assert not has_permission("visitor", PERM_VIEW_OWN_REPORTS)
