"""Unit tests for core/roles.py -- role derivation from the allow-list."""

from core.models import Role
from core.roles import derive_role, is_superuser, privileges_for

ALLOWED = {
    "superuser@insightshield.com": "superuser",
    "normaluser@insightshield.com": "normaluser",
}


class TestDeriveRole:
    def test_superuser_email(self):
        assert derive_role("superuser@insightshield.com", ALLOWED) is Role.superuser

    def test_normaluser_email(self):
        assert derive_role("normaluser@insightshield.com", ALLOWED) is Role.normaluser

    def test_unlisted_email_has_no_role(self):
        assert derive_role("someone@example.com", ALLOWED) is None

    def test_matching_is_exact(self):
        """Case variants are different principals."""
        assert derive_role("SuperUser@InsightShield.com", ALLOWED) is None
        assert derive_role(" superuser@insightshield.com", ALLOWED) is None

    def test_missing_email(self):
        assert derive_role(None, ALLOWED) is None
        assert derive_role("", ALLOWED) is None


class TestPrivileges:
    def test_superuser_can_manage(self):
        privileges = privileges_for(Role.superuser)
        assert "Create Instances" in privileges
        assert "Upload Data" in privileges

    def test_normaluser_reads_only(self):
        assert privileges_for(Role.normaluser) == ["Read Instances"]

    def test_returns_a_copy(self):
        privileges_for(Role.normaluser).append("Upload Data")
        assert privileges_for(Role.normaluser) == ["Read Instances"]

    def test_is_superuser(self):
        assert is_superuser(Role.superuser)
        assert not is_superuser(Role.normaluser)
        assert not is_superuser(None)
