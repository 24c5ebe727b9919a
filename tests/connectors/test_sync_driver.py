"""Tests for the full-sync driver and the connector factory."""

import asyncio
from typing import List

import pytest

from saasguard.connectors import (
    AzureADConnector,
    ConnectionTestResult,
    Connector,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    OktaConnector,
    UserSyncResult,
    create_connector,
)
from saasguard.core.exceptions import APIError, ValidationError
from saasguard.security.credentials import CredentialCipher


class FakeConnector(Connector):
    """In-memory connector with switchable failure points."""

    provider_type = "fake"
    provider_label = "Fake"

    def __init__(self, connected=True, fail_on=None, user_sync_error=None):
        super().__init__(config=None, tenant_id="t1", idp_id="idp-fake", page_delay=0)
        self.connected = connected
        self.fail_on = fail_on
        self.user_sync_error = user_sync_error
        self.calls: List[str] = []

    def _step(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise APIError(f"{name} exploded", status_code=400)

    async def test_connection(self):
        self.calls.append("test_connection")
        if not self.connected:
            return ConnectionTestResult(success=False, error="bad credentials")
        return ConnectionTestResult(success=True)

    async def discover_apps(self):
        self._step("discover_apps")
        return [DiscoveredApp(external_id="a1", name="Slack"), DiscoveredApp(external_id="a2", name="Zoom")]

    async def discover_user_access(self):
        self._step("discover_user_access")
        return [
            DiscoveredUserAccess(user_id="jane@acme.com", app_external_id="a1"),
            DiscoveredUserAccess(user_id="jane@acme.com", app_external_id="a2"),
            DiscoveredUserAccess(user_id="bob@acme.com", app_external_id="a1"),
        ]

    async def discover_oauth_tokens(self):
        self._step("discover_oauth_tokens")
        return [DiscoveredOAuthToken(user_id="jane@acme.com", app_external_id="a1", scopes=["openid"])]

    async def sync_users(self):
        self._step("sync_users")
        if self.user_sync_error:
            raise self.user_sync_error
        return UserSyncResult(users_added=2)

    def sync_metadata(self):
        return {"source": "fake"}


class TestPerformFullSync:
    @pytest.mark.asyncio
    async def test_success(self):
        connector = FakeConnector()

        result = await connector.perform_full_sync()

        assert result.success is True
        assert result.apps_discovered == 2
        assert result.users_processed == 2
        assert result.tokens_discovered == 1
        assert result.errors == ()
        assert result.raw_metadata["source"] == "fake"
        assert [a.name for a in result.apps] == ["Slack", "Zoom"]
        assert connector.calls == [
            "test_connection",
            "discover_apps",
            "discover_user_access",
            "discover_oauth_tokens",
            "sync_users",
        ]

    @pytest.mark.asyncio
    async def test_connection_failure_aborts(self):
        connector = FakeConnector(connected=False)

        result = await connector.perform_full_sync()

        assert result.success is False
        assert result.apps_discovered == 0
        assert result.errors == ("Connection test failed: bad credentials",)
        assert connector.calls == ["test_connection"]

    @pytest.mark.asyncio
    async def test_discovery_failure_keeps_partial_counts(self):
        connector = FakeConnector(fail_on="discover_oauth_tokens")

        result = await connector.perform_full_sync()

        assert result.success is False
        assert result.apps_discovered == 2
        assert result.users_processed == 2
        assert result.tokens_discovered == 0
        assert result.errors == ("discover_oauth_tokens exploded",)

    @pytest.mark.asyncio
    async def test_user_sync_failure_is_a_warning(self):
        connector = FakeConnector(user_sync_error=RuntimeError("directory offline"))

        result = await connector.perform_full_sync()

        assert result.success is True
        assert result.errors == ("User sync warning: directory offline",)

    @pytest.mark.asyncio
    async def test_result_is_immutable(self):
        result = await FakeConnector().perform_full_sync()

        with pytest.raises(AttributeError):
            result.success = False
        with pytest.raises(TypeError):
            result.raw_metadata["apps"] = ()

    @pytest.mark.asyncio
    async def test_to_dict_omits_raw_payload(self):
        result = await FakeConnector().perform_full_sync()

        summary = result.to_dict()

        assert "raw_metadata" not in summary
        assert summary["apps_discovered"] == 2
        assert list(summary["stage_durations_ms"]) == list(result.stage_durations_ms)

    @pytest.mark.asyncio
    async def test_each_stage_is_timed(self):
        class SlowAppsConnector(FakeConnector):
            async def discover_apps(self):
                await asyncio.sleep(0.05)
                return await super().discover_apps()

        result = await SlowAppsConnector().perform_full_sync()

        assert list(result.stage_durations_ms) == [
            "connection_test",
            "discover_apps",
            "discover_user_access",
            "discover_oauth_tokens",
            "sync_users",
        ]
        assert result.stage_durations_ms["discover_apps"] >= 40
        assert result.sync_duration_ms >= result.stage_durations_ms["discover_apps"]

    @pytest.mark.asyncio
    async def test_failed_stage_is_timed(self):
        result = await FakeConnector(fail_on="discover_user_access").perform_full_sync()

        assert list(result.stage_durations_ms) == [
            "connection_test",
            "discover_apps",
            "discover_user_access",
        ]
        with pytest.raises(TypeError):
            result.stage_durations_ms["sync_users"] = 0


class TestCreateConnector:
    def test_builds_connector_for_type(self, create_idp, cipher, storage):
        connector = create_connector(create_idp("okta"), cipher, storage)

        assert isinstance(connector, OktaConnector)
        assert connector.config.client_secret == "secret"
        assert connector.storage is storage

    def test_decrypts_secret(self, create_idp, storage):
        cipher = CredentialCipher(CredentialCipher.generate_key())
        provider = create_idp("azuread", client_secret=cipher.encrypt("azure-secret"))

        connector = create_connector(provider, cipher, storage, page_delay=0)

        assert isinstance(connector, AzureADConnector)
        assert connector.config.client_secret == "azure-secret"
        assert connector.page_delay == 0

    def test_unknown_type(self, cipher):
        with pytest.raises(ValidationError, match="Unsupported identity provider type"):
            create_connector({"type": "ldap", "tenant_id": "t1", "id": "x"}, cipher)
