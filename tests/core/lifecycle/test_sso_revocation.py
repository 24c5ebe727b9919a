"""Tests for SSO access revocation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from saasguard.core.exceptions import APIError, AuthenticationError
from saasguard.core.lifecycle.sso_revocation import SSORevocationService
from saasguard.storage import USER_APP_ACCESS


@pytest.fixture
def connector():
    """IdP connector double usable as an async context manager."""
    mock = MagicMock()
    mock.__aenter__.return_value = mock
    mock.revoke_app_access = AsyncMock(return_value={"grants_revoked": 1})
    mock.remove_app_role_assignment = AsyncMock(return_value={"assignments_removed": 1})
    mock.revoke_app_tokens = AsyncMock(return_value={"tokens_revoked": 2})
    mock.remove_user_from_all_groups = AsyncMock(return_value=3)
    return mock


@pytest.fixture
def factory(connector):
    return MagicMock(return_value=connector)


@pytest.fixture
def service(tenant_id, storage, cipher, factory) -> SSORevocationService:
    return SSORevocationService(tenant_id, storage, cipher, factory, {"page_delay": 0})


class TestRevokeAccess:
    """Tests for revoke_access."""

    @pytest.mark.asyncio
    async def test_unknown_app(self, service, users):
        result = await service.revoke_access(users["jane"]["id"], "missing")

        assert result.success is False
        assert result.message == "App not found"

    @pytest.mark.asyncio
    async def test_no_access_is_success(self, service, users, apps, factory):
        result = await service.revoke_access(users["jane"]["id"], apps["slack"]["id"])

        assert result.success is True
        assert result.message == "User does not have access to this app"
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_revokes_through_each_provider(
        self, service, users, apps, grant_access, create_idp, connector, factory, storage, cipher
    ):
        azure = create_idp("azuread")
        create_idp("google")
        create_idp("okta")
        grant_access(users["jane"], apps["slack"])

        result = await service.revoke_access(users["jane"]["id"], apps["slack"]["id"])

        assert result.success is True
        assert result.message == "SSO access revoked successfully"
        assert result.details["azuread"] == {
            "user_email": "jane@acme.com",
            "app_name": "Slack",
            "grants_revoked": 1,
            "assignments_removed": 1,
        }
        assert result.details["google"]["tokens_revoked"] == 2
        assert "okta" not in result.details

        assert factory.call_count == 2
        factory.assert_any_call(azure, cipher, storage=storage, page_delay=0)
        connector.revoke_app_access.assert_awaited_once_with("jane@acme.com", "Slack")
        assert storage.find(USER_APP_ACCESS) == []

    @pytest.mark.asyncio
    async def test_provider_call_failure_is_contained(
        self, service, users, apps, grant_access, create_idp, connector
    ):
        create_idp("azuread")
        grant_access(users["jane"], apps["slack"])
        connector.revoke_app_access.side_effect = APIError("Azure AD API error: 404", status_code=404)

        result = await service.revoke_access(users["jane"]["id"], apps["slack"]["id"])

        assert result.success is True
        assert result.details["azuread"]["grants_revoked"] == 0
        assert result.details["azuread"]["assignments_removed"] == 1

    @pytest.mark.asyncio
    async def test_connector_failure_still_removes_local_access(
        self, service, users, apps, grant_access, create_idp, factory, storage
    ):
        create_idp("azuread")
        grant_access(users["jane"], apps["slack"])
        factory.side_effect = AuthenticationError("Stored credential could not be decrypted")

        result = await service.revoke_access(users["jane"]["id"], apps["slack"]["id"])

        assert result.success is True
        assert result.message == "Access removed from database (SSO revocation not available)"
        assert result.details["azuread"] == {"error": "Stored credential could not be decrypted"}
        assert storage.find(USER_APP_ACCESS) == []

    @pytest.mark.asyncio
    async def test_without_providers(self, service, users, apps, grant_access, storage):
        grant_access(users["jane"], apps["slack"])

        result = await service.revoke_access(users["jane"]["id"], apps["slack"]["id"])

        assert result.message == "Access removed from database (SSO revocation not available)"
        assert result.details == {}
        assert storage.find(USER_APP_ACCESS) == []


class TestGroupsAndLicenses:
    @pytest.mark.asyncio
    async def test_remove_from_all_groups(self, service, users, create_idp, connector):
        create_idp("azuread")
        create_idp("okta")

        result = await service.remove_from_all_groups(users["jane"]["id"])

        assert result.success is True
        assert result.details == {
            "azuread": {"groups_removed": 3, "message": "Successfully removed from groups"}
        }
        connector.remove_user_from_all_groups.assert_awaited_once_with("jane@acme.com")

    @pytest.mark.asyncio
    async def test_group_removal_failure_is_reported(self, service, users, create_idp, connector):
        create_idp("google")
        connector.remove_user_from_all_groups.side_effect = AuthenticationError("Google rejected credentials: 403")

        result = await service.remove_from_all_groups(users["jane"]["id"])

        assert result.success is True
        assert result.details["google"] == {"error": "Google rejected credentials: 403"}

    @pytest.mark.asyncio
    async def test_remove_from_groups_unknown_user(self, service):
        result = await service.remove_from_all_groups("missing")

        assert result.success is False

    @pytest.mark.asyncio
    async def test_reclaim_licenses(self, service, users, apps, grant_access, storage):
        grant_access(users["jane"], apps["slack"])
        grant_access(users["jane"], apps["salesforce"])
        grant_access(users["bob"], apps["slack"])

        result = await service.reclaim_licenses(users["jane"]["id"])

        assert result.message == "Reclaimed 2 licenses"
        assert result.details["apps"] == ["Slack", "Salesforce"]
        assert [a["user_id"] for a in storage.find(USER_APP_ACCESS)] == [users["bob"]["id"]]
