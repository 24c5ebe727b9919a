"""Tests for OAuth scope risk scoring."""

import pytest

from saasguard.core.analyzers.oauth_risk import (
    RiskLevel,
    assess_permissions,
    detect_permission_escalation,
    detect_provider,
    explain_risk,
    risk_level_for,
)


class TestAssessPermissions:
    """Tests for assess_permissions."""

    def test_mail_read_write(self):
        result = assess_permissions(["Mail.ReadWrite.All"])

        assert result.risk_score == 60
        assert result.risk_level == RiskLevel.HIGH
        assert "Email read/write access" in result.reasons
        assert result.critical_scopes == ("Mail.ReadWrite.All",)

    def test_admin_and_write_combination_is_capped(self):
        result = assess_permissions(["User.ReadWrite.All", "Directory.ReadWrite.All"])

        assert result.risk_score == 100
        assert result.risk_level == RiskLevel.CRITICAL
        assert "Combination of admin and write permissions" in result.reasons

    def test_generic_admin_and_delete(self):
        result = assess_permissions(["admin", "delete"])

        assert result.risk_score == 65
        assert "Combination of admin and delete permissions" in result.reasons

    def test_google_scope(self):
        result = assess_permissions(["https://www.googleapis.com/auth/gmail.readonly"])

        assert result.risk_score == 20
        assert result.risk_level == RiskLevel.LOW
        assert result.reasons == ("Gmail read access",)

    def test_empty(self):
        result = assess_permissions([])

        assert result.risk_score == 0
        assert result.risk_level == RiskLevel.LOW
        assert result.reasons == ()

    def test_excessive_scope_count(self):
        result = assess_permissions([f"scope{i}" for i in range(16)])

        assert result.risk_score == 10
        assert result.reasons == ("Excessive permissions (16 scopes)",)

    def test_order_and_duplicates_do_not_matter(self):
        first = assess_permissions(["Mail.Send", "Files.Read.All", "Mail.Send"])
        second = assess_permissions(["Files.Read.All", "Mail.Send"])

        assert first == second

    def test_to_dict(self):
        data = assess_permissions(["Mail.ReadWrite.All"]).to_dict()

        assert data["risk_level"] == "high"
        assert data["critical_scopes"] == ["Mail.ReadWrite.All"]


class TestHelpers:
    @pytest.mark.parametrize(
        "scopes,provider",
        [
            (["User.Read"], "microsoft"),
            (["https://graph.microsoft.com/.default"], "microsoft"),
            (["https://www.googleapis.com/auth/drive"], "google"),
            (["openid", "profile"], "generic"),
        ],
    )
    def test_detect_provider(self, scopes, provider):
        assert detect_provider(scopes) == provider

    @pytest.mark.parametrize(
        "score,level",
        [(0, RiskLevel.LOW), (25, RiskLevel.MEDIUM), (50, RiskLevel.HIGH), (75, RiskLevel.CRITICAL)],
    )
    def test_risk_level_bands(self, score, level):
        assert risk_level_for(score) == level

    def test_explain_risk(self):
        text = explain_risk(assess_permissions(["Mail.ReadWrite.All"]))

        assert text.startswith("Risk Level: HIGH (Score: 60/100)")
        assert "Risk Factors:" in text
        assert "Critical Scopes (1):" in text


class TestPermissionEscalation:
    def test_escalation_detected(self):
        result = detect_permission_escalation(["User.Read"], ["User.Read", "Mail.ReadWrite.All"])

        assert result.has_escalation is True
        assert result.added_scopes == ("Mail.ReadWrite.All",)
        assert result.removed_scopes == ()

    def test_small_increase_is_not_escalation(self):
        result = detect_permission_escalation(["Mail.Read"], ["Mail.Read", "User.Read"])

        assert result.has_escalation is False
        assert result.added_scopes == ("User.Read",)

    def test_removed_scopes(self):
        result = detect_permission_escalation(["Mail.Send", "User.Read"], ["User.Read"])

        assert result.has_escalation is False
        assert result.removed_scopes == ("Mail.Send",)
