"""Tests for the Google Workspace connector."""

import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import respx
from google.auth.exceptions import RefreshError, TransportError

from saasguard.connectors.google_workspace import (
    DRIVE_SCOPES,
    DirectoryToken,
    GoogleWorkspaceConnector,
    vendor_from_client_id,
)
from saasguard.connectors.http import AccessToken
from saasguard.connectors.models import ConnectorConfig
from saasguard.core.exceptions import APIError, AuthenticationError, ConnectionError, ValidationError
from saasguard.storage import USERS

DIRECTORY = "admin.googleapis.com"
DRIVE = "www.googleapis.com"
FROM_SERVICE_ACCOUNT_INFO = (
    "saasguard.connectors.google_workspace.service_account.Credentials.from_service_account_info"
)


@pytest.fixture
def fetch_token():
    """Replace service account token minting with a canned token."""
    mock = AsyncMock(return_value=AccessToken.from_expires_in("ya29.token", 3600))
    with patch.object(GoogleWorkspaceConnector, "_fetch_access_token", new=mock):
        yield mock


@pytest.fixture
def connector(storage, tenant_id, fast_retry, fetch_token) -> GoogleWorkspaceConnector:
    config = ConnectorConfig(
        client_id="",
        client_secret='{"type": "service_account"}',
        custom_config={"admin_email": "admin@acme.com"},
    )
    return GoogleWorkspaceConnector(
        config,
        tenant_id=tenant_id,
        idp_id="idp-google",
        storage=storage,
        retry_config=fast_retry,
        page_delay=0,
    )


@pytest.fixture
def google():
    with respx.mock(assert_all_called=False) as router:
        yield router


def directory(router, method: str, path: str):
    return router.route(method=method, host=DIRECTORY, path=f"/admin/directory/v1/{path}")


USERS_PAGE_1 = {
    "users": [
        {
            "id": "g-1",
            "primaryEmail": "jane@acme.com",
            "name": {"fullName": "Jane Doe", "givenName": "Jane", "familyName": "Doe"},
            "organizations": [{"department": "Engineering", "title": "Engineer"}],
        }
    ],
    "nextPageToken": "page-2",
}

USERS_PAGE_2 = {
    "users": [
        {"id": "g-2", "primaryEmail": "bob@acme.com", "suspended": True},
        {"id": "g-3"},
    ]
}

JANE_TOKENS = {
    "items": [
        {
            "clientId": "123.apps.googleusercontent.com",
            "displayText": "Zoom",
            "scopes": ["https://www.googleapis.com/auth/calendar"],
        },
        {
            "clientId": "slack-client.slack.com",
            "displayText": "Slack",
            "scopes": ["https://www.googleapis.com/auth/drive.readonly"],
        },
    ]
}

BOB_TOKENS = {
    "items": [
        {
            "clientId": "slack-client.slack.com",
            "displayText": "Slack",
            "scopes": [
                "https://www.googleapis.com/auth/drive.readonly",
                "https://www.googleapis.com/auth/gmail.readonly",
            ],
        },
        {"displayText": "No client id"},
    ]
}


def mock_directory(router, bob_tokens: httpx.Response = None):
    directory(router, "GET", "customer/my_customer/domains").mock(
        return_value=httpx.Response(200, json={"domains": [{"domainName": "acme.com"}]})
    )
    directory(router, "GET", "users").mock(
        side_effect=[
            httpx.Response(200, json=USERS_PAGE_1),
            httpx.Response(200, json=USERS_PAGE_2),
        ]
    )
    directory(router, "GET", "users/jane@acme.com/tokens").mock(
        return_value=httpx.Response(200, json=JANE_TOKENS)
    )
    directory(router, "GET", "users/bob@acme.com/tokens").mock(
        return_value=bob_tokens or httpx.Response(200, json=BOB_TOKENS)
    )


class TestGoogleHelpers:
    def test_vendor_from_client_id(self):
        assert vendor_from_client_id("123.apps.googleusercontent.com") == "Google"
        assert vendor_from_client_id("client.slack.com") == "client.slack"
        assert vendor_from_client_id("abc") is None

    def test_directory_token_defaults_display_text(self):
        token = DirectoryToken.from_api({"clientId": "client-1"})
        assert token.display_text == "client-1"
        assert token.scopes == []

    def test_requires_admin_email(self, storage):
        with pytest.raises(ValidationError, match="admin_email"):
            GoogleWorkspaceConnector(
                ConnectorConfig(client_id="", client_secret="{}"),
                tenant_id="t1",
                idp_id="idp",
                storage=storage,
            )

    def test_invalid_service_account_json(self, storage):
        connector = GoogleWorkspaceConnector(
            ConnectorConfig(
                client_id="",
                client_secret="not json",
                custom_config={"delegated_admin_email": "admin@acme.com"},
            ),
            tenant_id="t1",
            idp_id="idp",
            storage=storage,
        )
        with pytest.raises(AuthenticationError, match="Invalid service account key"):
            connector._service_account_info()


class TestGoogleTokenFetch:
    """Tests for service account token minting."""

    def credentials(self, refresh_side_effect):
        credentials = MagicMock()
        credentials.refresh.side_effect = refresh_side_effect
        credentials.token = "ya29.fresh"
        credentials.expiry = datetime(2030, 1, 1, 12, 0)
        return credentials

    @pytest.fixture
    def bare_connector(self, storage, tenant_id, fast_retry) -> GoogleWorkspaceConnector:
        return GoogleWorkspaceConnector(
            ConnectorConfig(
                client_id="",
                client_secret='{"type": "service_account"}',
                custom_config={"admin_email": "admin@acme.com"},
            ),
            tenant_id=tenant_id,
            idp_id="idp-google",
            storage=storage,
            retry_config=fast_retry,
        )

    @pytest.mark.asyncio
    async def test_transient_transport_error_is_retried(self, bare_connector):
        credentials = self.credentials([TransportError("connection reset"), None])

        with patch(FROM_SERVICE_ACCOUNT_INFO, return_value=credentials):
            token = await bare_connector._fetch_access_token("admin@acme.com", ["scope"])

        assert credentials.refresh.call_count == 2
        assert token.value == "ya29.fresh"
        assert token.expires_at.tzinfo is timezone.utc

    @pytest.mark.asyncio
    async def test_persistent_transport_error(self, bare_connector):
        credentials = self.credentials(TransportError("connection reset"))

        with patch(FROM_SERVICE_ACCOUNT_INFO, return_value=credentials):
            with pytest.raises(ConnectionError, match="unreachable"):
                await bare_connector._fetch_access_token("admin@acme.com", ["scope"])

        assert credentials.refresh.call_count == 3

    @pytest.mark.asyncio
    async def test_refresh_rejection_is_not_retried(self, bare_connector):
        credentials = self.credentials(RefreshError("unauthorized_client"))

        with patch(FROM_SERVICE_ACCOUNT_INFO, return_value=credentials):
            with pytest.raises(AuthenticationError, match="refresh failed"):
                await bare_connector._fetch_access_token("admin@acme.com", ["scope"])

        assert credentials.refresh.call_count == 1

    @pytest.mark.asyncio
    async def test_slow_token_endpoint_times_out(self, bare_connector, monkeypatch):
        monkeypatch.setattr("saasguard.connectors.google_workspace.TOKEN_TIMEOUT", 0.01)
        credentials = self.credentials(lambda request: time.sleep(0.2))

        with patch(FROM_SERVICE_ACCOUNT_INFO, return_value=credentials):
            with pytest.raises(ConnectionError, match="timeout"):
                await bare_connector._fetch_access_token("admin@acme.com", ["scope"])

        assert credentials.refresh.call_count == 3


class TestGoogleDiscovery:
    """Tests for discovery through the Directory API."""

    @pytest.mark.asyncio
    async def test_connection(self, connector, google):
        mock_directory(google)

        async with connector:
            result = await connector.test_connection()

        assert result.success is True
        assert google.calls.last.request.headers["Authorization"] == "Bearer ya29.token"

    @pytest.mark.asyncio
    async def test_connection_without_domains(self, connector, google):
        directory(google, "GET", "customer/my_customer/domains").mock(
            return_value=httpx.Response(200, json={"domains": []})
        )

        async with connector:
            result = await connector.test_connection()

        assert result.success is False
        assert result.error == "No domains found"

    @pytest.mark.asyncio
    async def test_apps_are_deduplicated_with_merged_scopes(self, connector, google):
        mock_directory(google)

        async with connector:
            apps = await connector.discover_apps()

        by_id = {a.external_id: a for a in apps}
        assert set(by_id) == {"123.apps.googleusercontent.com", "slack-client.slack.com"}
        assert by_id["123.apps.googleusercontent.com"].vendor == "Google"
        assert by_id["slack-client.slack.com"].permissions == [
            "https://www.googleapis.com/auth/drive.readonly",
            "https://www.googleapis.com/auth/gmail.readonly",
        ]

    @pytest.mark.asyncio
    async def test_full_sync(self, connector, google, storage):
        mock_directory(google)

        async with connector:
            result = await connector.perform_full_sync()

        assert result.success is True
        assert result.apps_discovered == 2
        assert result.users_processed == 2
        assert result.tokens_discovered == 3
        assert {t.token_id for t in result.tokens} == {
            "123.apps.googleusercontent.com",
            "slack-client.slack.com",
        }

        stored = {u["email"]: u for u in storage.find(USERS)}
        assert stored["jane@acme.com"]["name"] == "Jane Doe"
        assert stored["jane@acme.com"]["job_title"] == "Engineer"
        assert stored["bob@acme.com"]["status"] == "inactive"

    @pytest.mark.asyncio
    async def test_token_listing_failure_is_a_warning(self, connector, google):
        mock_directory(google, bob_tokens=httpx.Response(404, json={"error": "not found"}))

        async with connector:
            access = await connector.discover_user_access()

        assert {a.user_id for a in access} == {"jane@acme.com"}
        assert any("bob@acme.com" in w for w in connector.warnings)

    @pytest.mark.asyncio
    async def test_delegated_token_per_subject(self, connector, google, fetch_token):
        google.get(host=DRIVE, path="/drive/v3/files").mock(
            return_value=httpx.Response(200, json={"files": []})
        )

        async with connector:
            await connector.list_owned_files("jane@acme.com")

        fetch_token.assert_awaited_once_with("jane@acme.com", DRIVE_SCOPES)


class TestGoogleRevocation:
    """Tests for token, group and Drive operations."""

    @pytest.mark.asyncio
    async def test_revoke_app_tokens_matches_display_name(self, connector, google):
        directory(google, "GET", "users/jane@acme.com/tokens").mock(
            return_value=httpx.Response(200, json=JANE_TOKENS)
        )
        delete = directory(google, "DELETE", "users/jane@acme.com/tokens/slack-client.slack.com").mock(
            return_value=httpx.Response(204)
        )

        async with connector:
            result = await connector.revoke_app_tokens("jane@acme.com", "slack")

        assert result == {"tokens_revoked": 1}
        assert delete.call_count == 1

    @pytest.mark.asyncio
    async def test_remove_user_from_all_groups(self, connector, google):
        directory(google, "GET", "groups").mock(
            return_value=httpx.Response(
                200, json={"groups": [{"id": "grp-1", "name": "Eng"}, {"id": "grp-2", "name": "All"}]}
            )
        )
        delete = directory(google, "DELETE", "groups/grp-1/members/jane@acme.com").mock(
            return_value=httpx.Response(204)
        )
        directory(google, "DELETE", "groups/grp-2/members/jane@acme.com").mock(
            return_value=httpx.Response(204)
        )

        async with connector:
            removed = await connector.remove_user_from_all_groups("jane@acme.com")

        assert removed == 2
        assert delete.call_count == 1

    @pytest.mark.asyncio
    async def test_transfer_file_ownership_collects_per_file_errors(self, connector, google):
        google.get(host=DRIVE, path="/drive/v3/files").mock(
            return_value=httpx.Response(
                200,
                json={
                    "files": [
                        {"id": "file-1", "name": "Roadmap"},
                        {"id": "file-2", "name": "Budget"},
                    ]
                },
            )
        )
        transfer_1 = google.post(host=DRIVE, path="/drive/v3/files/file-1/permissions").mock(
            return_value=httpx.Response(200, json={"id": "perm-1"})
        )
        google.post(host=DRIVE, path="/drive/v3/files/file-2/permissions").mock(
            return_value=httpx.Response(400, json={"error": "cannot transfer"})
        )

        async with connector:
            result = await connector.transfer_file_ownership("jane@acme.com", "bob@acme.com")

        assert result["transferred"] == 1
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("Budget:")

        request = transfer_1.calls.last.request
        assert request.url.params["transferOwnership"] == "true"
        assert b"bob@acme.com" in request.content


class TestGoogleRequestLimits:
    """Tests for page caps, host checks and retry boundaries."""

    @pytest.mark.asyncio
    async def test_user_listing_page_cap(self, connector, google, monkeypatch):
        monkeypatch.setattr("saasguard.connectors.google_workspace.MAX_PAGES", 2)
        route = directory(google, "GET", "users").mock(
            return_value=httpx.Response(200, json={"users": [], "nextPageToken": "more"})
        )

        async with connector:
            apps = await connector.discover_apps()

        assert apps == []
        assert route.call_count == 2
        assert len(connector.warnings) == 1
        assert "Pagination limit" in connector.warnings[0]

    @pytest.mark.asyncio
    async def test_foreign_host_is_rejected_before_sending(self, connector, google):
        foreign = google.get(host="evil.example.com")

        async with connector:
            with pytest.raises(ValidationError, match="evil.example.com"):
                await connector._api("GET", "https://evil.example.com/admin/directory/v1/users")

        assert foreign.called is False

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, connector, google):
        route = directory(google, "DELETE", "users/jane@acme.com/tokens/client-1").mock(
            return_value=httpx.Response(400, json={"error": {"code": 400}})
        )

        async with connector:
            with pytest.raises(APIError):
                await connector.revoke_token("jane@acme.com", "client-1")

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, connector, google):
        route = directory(google, "GET", "customer/my_customer/domains").mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(200, json={"domains": [{"domainName": "acme.com"}]}),
            ]
        )

        async with connector:
            result = await connector.test_connection()

        assert result.success is True
        assert route.call_count == 2
