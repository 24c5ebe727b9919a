"""Tests for Shadow IT detection and catalog processing."""

from types import MappingProxyType

import pytest

from saasguard.connectors.models import (
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    SyncResult,
)
from saasguard.core.analyzers.shadow_it import (
    RecommendedAction,
    ShadowITDetector,
    calculate_risk_score,
    find_matching_app,
    normalize_app_name,
    token_risk_level,
)
from saasguard.events import APP_DISCOVERED, OAUTH_RISKY_PERMISSION, EventBus
from saasguard.storage import APPS, OAUTH_TOKENS, USER_APP_ACCESS


@pytest.fixture
def detector(tenant_id, storage, events) -> ShadowITDetector:
    return ShadowITDetector(tenant_id, storage, events)


def sync_result(apps, user_access=(), tokens=()) -> SyncResult:
    return SyncResult(
        success=True,
        apps_discovered=len(apps),
        raw_metadata=MappingProxyType(
            {"apps": tuple(apps), "user_access": tuple(user_access), "tokens": tuple(tokens)}
        ),
    )


class TestMatching:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Slack, Inc.", "slack"),
            ("Acme Corp", "acme"),
            ("Google Drive", "googledrive"),
            ("  Zoom Video LLC ", "zoomvideo"),
            (None, ""),
        ],
    )
    def test_normalize_app_name(self, name, expected):
        assert normalize_app_name(name) == expected

    def test_match_by_name(self, apps):
        match = find_matching_app(DiscoveredApp(external_id="x", name="Slack, Inc."), list(apps.values()))
        assert match["id"] == apps["slack"]["id"]

    def test_match_by_vendor(self, apps):
        discovered = DiscoveredApp(external_id="x", name="SF CRM", vendor="Salesforce")
        assert find_matching_app(discovered, list(apps.values()))["id"] == apps["salesforce"]["id"]

    def test_match_by_substring(self, apps):
        discovered = DiscoveredApp(external_id="x", name="Dropbox Business")
        assert find_matching_app(discovered, list(apps.values()))["id"] == apps["dropbox"]["id"]

    def test_short_names_do_not_substring_match(self, apps):
        assert find_matching_app(DiscoveredApp(external_id="x", name="Box"), list(apps.values())) is None


class TestRiskScore:
    def test_hygiene_penalties(self):
        risk = calculate_risk_score(DiscoveredApp(external_id="x", name="Tool"))

        assert risk["score"] == 15
        assert risk["factors"] == ["Unknown vendor", "No website URL available"]

    def test_excessive_scopes(self):
        app = DiscoveredApp(external_id="x", name="Tool", permissions=[f"scope{i}" for i in range(11)])

        risk = calculate_risk_score(app)

        assert risk["score"] == 25
        assert "Excessive permissions (11 scopes)" in risk["factors"]

    @pytest.mark.parametrize(
        "scopes,level",
        [
            (["files.write"], "high"),
            (["a", "b", "c", "d", "e", "f"], "medium"),
            (["openid"], "low"),
        ],
    )
    def test_token_risk_level(self, scopes, level):
        assert token_risk_level(scopes) == level


class TestAnalyzeApp:
    """Tests for analyze_app."""

    def test_unknown_high_risk_app(self, detector, apps):
        result = detector.analyze_app(
            DiscoveredApp(
                external_id="x",
                name="Directory Sync Pro",
                permissions=["User.ReadWrite.All", "Directory.ReadWrite.All"],
            )
        )

        assert result.is_unapproved is True
        assert result.is_new_discovery is True
        assert result.risk_score == 100
        assert result.recommended_action == RecommendedAction.INVESTIGATE
        assert result.risk_factors[0] == "App not in approved catalog"

    def test_unknown_medium_risk_app(self, detector, apps):
        result = detector.analyze_app(
            DiscoveredApp(
                external_id="x",
                name="Mailer",
                vendor="Mailer Co",
                website_url="https://mailer.example",
                permissions=["Mail.ReadWrite.All"],
            )
        )

        assert result.risk_score == 60
        assert result.recommended_action == RecommendedAction.REVIEW

    def test_unknown_low_risk_app(self, detector, apps):
        result = detector.analyze_app(
            DiscoveredApp(external_id="x", name="Notion", vendor="Notion Labs", website_url="https://notion.so")
        )

        assert result.is_unapproved is True
        assert result.recommended_action == RecommendedAction.APPROVE

    def test_denied_app(self, detector, storage, tenant_id):
        denied = storage.create(APPS, {"tenant_id": tenant_id, "name": "TikTok", "approval_status": "denied"})

        result = detector.analyze_app(
            DiscoveredApp(external_id="x", name="TikTok", vendor="ByteDance", website_url="https://tiktok.com")
        )

        assert result.matched_app_id == denied["id"]
        assert result.risk_score == 30
        assert result.recommended_action == RecommendedAction.DENY

    def test_pending_app(self, detector, apps):
        result = detector.analyze_app(DiscoveredApp(external_id="x", name="Dropbox", vendor="Dropbox"))

        assert result.is_unapproved is True
        assert result.is_new_discovery is False
        assert result.matched_app_id == apps["dropbox"]["id"]
        assert result.recommended_action == RecommendedAction.REVIEW

    def test_approved_app(self, detector, apps):
        result = detector.analyze_app(
            DiscoveredApp(
                external_id="x",
                name="Slack",
                vendor="Slack Technologies",
                website_url="https://slack.com",
            )
        )

        assert result.is_unapproved is False
        assert result.recommended_action == RecommendedAction.APPROVE


class TestProcessApp:
    def test_new_risky_app_emits_events(self, detector, storage, recorder, apps):
        result = detector.process_app(
            DiscoveredApp(external_id="ext-mailer", name="Mailer", permissions=["Mail.ReadWrite.All"]),
            idp_id="idp-1",
        )

        assert result["created"] is True
        created = storage.get(APPS, result["app_id"])
        assert created["approval_status"] == "pending"
        assert created["external_id"] == "ext-mailer"
        assert created["metadata"]["discovered_from"] == "idp-1"

        discovered = recorder.named(APP_DISCOVERED)
        assert discovered[0]["app_name"] == "Mailer"
        assert discovered[0]["risk_score"] == 75
        assert discovered[0]["risk_level"] == "critical"
        assert recorder.named(OAUTH_RISKY_PERMISSION)[0]["scopes"] == ["Mail.ReadWrite.All"]

    def test_matched_app_is_updated(self, detector, storage, recorder, apps):
        result = detector.process_app(
            DiscoveredApp(external_id="other-ext", name="Slack", vendor="Slack Technologies"),
            idp_id="idp-1",
        )

        assert result == {"created": False, "app_id": apps["slack"]["id"]}
        slack = storage.get(APPS, apps["slack"]["id"])
        assert slack["external_id"] == "slack-ext"
        assert slack["metadata"]["last_synced_from"] == "idp-1"
        assert recorder.events == []

    def test_failing_handler_becomes_warning(self, tenant_id, storage, apps):
        def explode(event, payload):
            raise RuntimeError("webhook down")

        detector = ShadowITDetector(tenant_id, storage, EventBus([explode]))
        warnings = []

        result = detector.process_app(DiscoveredApp(external_id="x", name="Notion"), "idp-1", warnings=warnings)

        assert result["created"] is True
        assert warnings == ["Event app.discovered delivery failed: webhook down"]


class TestProcessFullSync:
    """Tests for feeding a sync result into storage."""

    def build(self):
        apps = [
            DiscoveredApp(
                external_id="ext-slack",
                name="Slack",
                vendor="Slack Technologies",
                website_url="https://slack.com",
            ),
            DiscoveredApp(
                external_id="ext-notion",
                name="Notion",
                vendor="Notion Labs",
                website_url="https://notion.so",
                permissions=["read"],
            ),
        ]
        access = [
            DiscoveredUserAccess(user_id="jane@acme.com", app_external_id="ext-slack", roles=["member"]),
            DiscoveredUserAccess(user_id="JANE@acme.com", app_external_id="ext-notion"),
            DiscoveredUserAccess(user_id="ghost@acme.com", app_external_id="ext-slack"),
            DiscoveredUserAccess(user_id="jane@acme.com", app_external_id="ext-unknown"),
        ]
        tokens = [
            DiscoveredOAuthToken(
                user_id="jane@acme.com",
                app_external_id="ext-notion",
                scopes=["read", "write"],
                token_id="tok-1",
            )
        ]
        return sync_result(apps, access, tokens)

    def test_first_sync(self, detector, storage, users, apps, tenant_id):
        stats = detector.process_full_sync(self.build(), "idp-1")

        assert stats.apps_processed == 2
        assert stats.apps_created == 1
        assert stats.apps_updated == 1
        assert stats.shadow_it_detected == 1
        assert stats.user_access_created == 2
        assert stats.tokens_created == 1
        assert stats.high_risk_apps == 0
        assert stats.warnings == []

        access = storage.find(USER_APP_ACCESS, user_id=users["jane"]["id"])
        assert {a["app_name"] for a in access} == {"Slack", "Notion"}
        assert all(a["assignment_method"] == "idp_sync" for a in access)

        token = storage.first(OAUTH_TOKENS, tenant_id=tenant_id)
        assert token["risk_level"] == "high"
        assert token["token_hash"] == "tok-1"
        assert token["idp_metadata"] == {"idp_id": "idp-1", "token_id": "tok-1"}

    def test_second_sync_updates_in_place(self, detector, storage, users, apps):
        detector.process_full_sync(self.build(), "idp-1")

        stats = detector.process_full_sync(self.build(), "idp-1")

        assert stats.apps_created == 0
        assert stats.apps_updated == 2
        assert stats.shadow_it_detected == 1
        assert stats.user_access_created == 0
        assert stats.tokens_created == 0
        assert len(storage.find(USER_APP_ACCESS)) == 2
        assert len(storage.find(OAUTH_TOKENS)) == 1
