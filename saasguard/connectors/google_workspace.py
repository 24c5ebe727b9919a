"""Google Workspace connector over the Admin SDK Directory and Drive REST APIs."""

import asyncio
import json
import re
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import google.auth.exceptions
import structlog
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from saasguard.connectors.base import MAX_PAGES, Connector
from saasguard.connectors.http import AccessToken, TokenCache
from saasguard.connectors.models import (
    ConnectionTestResult,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    UserSyncResult,
)
from saasguard.core.exceptions import (
    APIError,
    AuthenticationError,
    ConnectionError,
    SaasGuardError,
    ValidationError,
)
from saasguard.core.utils.retry import retry_async
from saasguard.core.utils.url_validation import GOOGLE_API_HOSTS

logger = structlog.get_logger(__name__)

DIRECTORY_BASE_URL = "https://admin.googleapis.com/admin/directory/v1"
DRIVE_BASE_URL = "https://www.googleapis.com/drive/v3"
API_TIMEOUT = 30.0
TOKEN_TIMEOUT = 10.0

DIRECTORY_SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.user",
    "https://www.googleapis.com/auth/admin.directory.user.security",
    "https://www.googleapis.com/auth/admin.directory.group",
    "https://www.googleapis.com/auth/admin.directory.domain.readonly",
]
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]

_VENDOR_DOMAIN = re.compile(r"([a-z0-9-]+\.[a-z]{2,})", re.IGNORECASE)


def vendor_from_client_id(client_id: str) -> Optional[str]:
    """Best-effort vendor name from an OAuth client id."""
    if "googleusercontent.com" in client_id:
        return "Google"
    match = _VENDOR_DOMAIN.search(client_id)
    return match.group(1) if match else None


@dataclass
class DirectoryToken:
    """Subset of a Directory API ``token`` resource."""

    client_id: str
    display_text: str
    scopes: List[str] = field(default_factory=list)
    anonymous: bool = False
    native_app: bool = False
    etag: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DirectoryToken":
        client_id = data.get("clientId", "")
        return cls(
            client_id=client_id,
            display_text=data.get("displayText") or client_id,
            scopes=list(data.get("scopes") or []),
            anonymous=bool(data.get("anonymous", False)),
            native_app=bool(data.get("nativeApp", False)),
            etag=data.get("etag"),
        )


class GoogleWorkspaceConnector(Connector):
    """Discovers third-party OAuth grants across a Google Workspace domain.

    Authenticates with a service account using domain-wide delegation. The
    client secret holds the service account key JSON, and
    ``custom_config["admin_email"]`` names the admin to impersonate.
    """

    provider_type = "google"
    provider_label = "Google Workspace"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        custom = self.config.custom_config or {}
        self.admin_email = custom.get("admin_email") or custom.get("delegated_admin_email")
        if not self.admin_email:
            raise ValidationError("Google Workspace connector requires admin_email in custom_config")

        self.scopes = list(self.config.scopes) or DIRECTORY_SCOPES
        self._token_caches: Dict[str, TokenCache] = {}
        self._users: Optional[List[Dict[str, Any]]] = None
        self._user_tokens: Optional[Dict[str, List[DirectoryToken]]] = None

    def _service_account_info(self) -> Dict[str, Any]:
        try:
            return json.loads(self.config.client_secret)
        except ValueError as e:
            raise AuthenticationError(f"Invalid service account key: {e}")

    async def _fetch_access_token(self, subject: str, scopes: List[str]) -> AccessToken:
        """Mint a delegated access token for ``subject``."""
        try:
            credentials = service_account.Credentials.from_service_account_info(
                self._service_account_info(), scopes=scopes, subject=subject
            )
        except ValueError as e:
            raise AuthenticationError(f"Invalid service account key: {e}")

        async def attempt() -> None:
            try:
                # google-auth refreshes synchronously
                await asyncio.wait_for(asyncio.to_thread(credentials.refresh, Request()), TOKEN_TIMEOUT)
            except google.auth.exceptions.RefreshError as e:
                raise AuthenticationError(f"Google credential refresh failed: {e}")
            except google.auth.exceptions.TransportError as e:
                raise ConnectionError(f"Google token endpoint unreachable: {e}")
            except asyncio.TimeoutError:
                raise ConnectionError(f"Google token request timeout after {TOKEN_TIMEOUT}s")

        await retry_async(attempt, config=self.retry_config, operation="google_token")

        expiry = credentials.expiry.replace(tzinfo=timezone.utc)
        return AccessToken(value=credentials.token, expires_at=expiry)

    def _token_cache(self, subject: str, scopes: List[str]) -> TokenCache:
        key = f"{subject}|{' '.join(scopes)}"
        if key not in self._token_caches:
            self._token_caches[key] = TokenCache(lambda: self._fetch_access_token(subject, scopes))
        return self._token_caches[key]

    async def _api(
        self,
        method: str,
        url: str,
        subject: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> Any:
        cache = self._token_cache(subject or self.admin_email, scopes or self.scopes)
        token = await cache.get()
        try:
            return await self._request_json(
                method,
                url,
                timeout=API_TIMEOUT,
                allowed_hosts=GOOGLE_API_HOSTS,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except AuthenticationError:
            cache.invalidate()
            raise

    async def _directory(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._api(method, f"{DIRECTORY_BASE_URL}/{path}", **kwargs)

    async def _list_users(self) -> List[Dict[str, Any]]:
        if self._users is not None:
            return self._users

        users: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            if pages >= MAX_PAGES:
                self._page_limit_reached("users")
                break
            if pages > 0 and self.page_delay:
                await asyncio.sleep(self.page_delay)

            params = {"customer": "my_customer", "maxResults": 500}
            if page_token:
                params["pageToken"] = page_token

            payload = await self._directory("GET", "users", params=params)
            users.extend(payload.get("users") or [])
            pages += 1

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        self._users = users
        return users

    async def _list_tokens(self, user_key: str) -> List[DirectoryToken]:
        payload = await self._directory("GET", f"users/{quote(user_key, safe='@')}/tokens")
        return [DirectoryToken.from_api(t) for t in payload.get("items") or [] if t.get("clientId")]

    async def _tokens_by_user(self) -> Dict[str, List[DirectoryToken]]:
        """Enumerate OAuth grants for every user in the domain."""
        if self._user_tokens is not None:
            return self._user_tokens

        by_user: Dict[str, List[DirectoryToken]] = {}
        for user in await self._list_users():
            email = user.get("primaryEmail")
            if not email:
                continue
            try:
                by_user[email] = await self._list_tokens(email)
            except AuthenticationError:
                raise
            except SaasGuardError as e:
                logger.warning("google_token_listing_failed", user=email, error=str(e))
                self.warnings.append(f"Could not list OAuth tokens for {email}: {e}")

        self._user_tokens = by_user
        return by_user

    async def test_connection(self) -> ConnectionTestResult:
        try:
            payload = await self._directory("GET", "customer/my_customer/domains")
        except SaasGuardError as e:
            logger.warning("google_connection_test_failed", error=str(e))
            return ConnectionTestResult(success=False, error=str(e))

        domains = payload.get("domains") or []
        if not domains:
            return ConnectionTestResult(success=False, error="No domains found")

        logger.info("google_connection_test_succeeded", domain=domains[0].get("domainName"))
        return ConnectionTestResult(success=True)

    async def discover_apps(self) -> List[DiscoveredApp]:
        self._users = None
        self._user_tokens = None

        apps: Dict[str, DiscoveredApp] = {}
        for tokens in (await self._tokens_by_user()).values():
            for token in tokens:
                app = apps.get(token.client_id)
                if app is None:
                    apps[token.client_id] = DiscoveredApp(
                        external_id=token.client_id,
                        name=token.display_text,
                        vendor=vendor_from_client_id(token.client_id),
                        permissions=list(token.scopes),
                        metadata={
                            "anonymous": token.anonymous,
                            "native_app": token.native_app,
                            "etag": token.etag,
                        },
                    )
                else:
                    app.permissions.extend(s for s in token.scopes if s not in app.permissions)

        logger.info("google_apps_discovered", count=len(apps))
        return list(apps.values())

    async def discover_user_access(self) -> List[DiscoveredUserAccess]:
        access = [
            DiscoveredUserAccess(
                user_id=email,
                app_external_id=token.client_id,
                permissions=list(token.scopes),
            )
            for email, tokens in (await self._tokens_by_user()).items()
            for token in tokens
        ]
        logger.info("google_user_access_discovered", count=len(access))
        return access

    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]:
        tokens = [
            DiscoveredOAuthToken(
                user_id=email,
                app_external_id=token.client_id,
                scopes=list(token.scopes),
                token_id=token.client_id,
            )
            for email, user_tokens in (await self._tokens_by_user()).items()
            for token in user_tokens
        ]
        logger.info("google_oauth_tokens_discovered", count=len(tokens))
        return tokens

    async def sync_users(self) -> UserSyncResult:
        added = updated = 0

        for user in await self._list_users():
            email = user.get("primaryEmail")
            if not email:
                continue

            name = user.get("name") or {}
            organization = (user.get("organizations") or [{}])[0]
            created = self._upsert_user(
                email,
                {
                    "name": name.get("fullName"),
                    "first_name": name.get("givenName"),
                    "last_name": name.get("familyName"),
                    "department": organization.get("department"),
                    "job_title": organization.get("title"),
                    "external_id": user.get("id"),
                },
                active=not user.get("suspended", False),
            )
            if created:
                added += 1
            else:
                updated += 1

        logger.info("google_users_synced", added=added, updated=updated)
        return UserSyncResult(users_added=added, users_updated=updated)

    # Revocation helpers used by the lifecycle services

    async def revoke_app_tokens(self, user_email: str, app_name: str) -> Dict[str, int]:
        """Delete a user's tokens whose display name or client id contains ``app_name``."""
        wanted = app_name.lower()
        revoked = 0

        for token in await self._list_tokens(user_email):
            if wanted in token.display_text.lower() or wanted in token.client_id.lower():
                await self.revoke_token(user_email, token.client_id)
                revoked += 1

        logger.info("google_app_tokens_revoked", app_name=app_name, revoked=revoked)
        return {"tokens_revoked": revoked}

    async def revoke_token(self, user_email: str, client_id: str) -> None:
        await self._directory(
            "DELETE",
            f"users/{quote(user_email, safe='@')}/tokens/{quote(client_id, safe='')}",
        )

    async def get_user_groups(self, user_email: str) -> List[Dict[str, Any]]:
        payload = await self._directory("GET", "groups", params={"userKey": user_email})
        return [{"id": g.get("id"), "name": g.get("name")} for g in payload.get("groups") or []]

    async def remove_user_from_group(self, user_email: str, group_id: str) -> None:
        await self._directory(
            "DELETE",
            f"groups/{quote(group_id, safe='')}/members/{quote(user_email, safe='@')}",
        )
        logger.info("google_group_membership_removed", group_id=group_id)

    async def remove_user_from_all_groups(self, user_email: str) -> int:
        removed = 0
        for group in await self.get_user_groups(user_email):
            await self.remove_user_from_group(user_email, group["id"])
            removed += 1
        return removed

    async def list_owned_files(self, owner_email: str) -> List[Dict[str, Any]]:
        """List non-trashed Drive files owned by a user."""
        files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        pages = 0
        escaped = owner_email.replace("\\", "\\\\").replace("'", "\\'")

        while pages < MAX_PAGES:
            params = {
                "q": f"'{escaped}' in owners and trashed=false",
                "fields": "nextPageToken, files(id, name, mimeType)",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = await self._api(
                "GET", f"{DRIVE_BASE_URL}/files", subject=owner_email, scopes=DRIVE_SCOPES, params=params
            )
            files.extend(payload.get("files") or [])
            pages += 1

            page_token = payload.get("nextPageToken")
            if not page_token:
                return files

        self._page_limit_reached("drive files")
        return files

    async def transfer_file_ownership(self, from_email: str, to_email: str) -> Dict[str, Any]:
        """Make ``to_email`` the owner of every Drive file ``from_email`` owns.

        Returns:
            Dict with ``transferred`` count and per-file ``errors``
        """
        transferred = 0
        errors: List[str] = []

        for item in await self.list_owned_files(from_email):
            try:
                await self._api(
                    "POST",
                    f"{DRIVE_BASE_URL}/files/{quote(item['id'], safe='')}/permissions",
                    subject=from_email,
                    scopes=DRIVE_SCOPES,
                    params={"transferOwnership": "true"},
                    json={"role": "owner", "type": "user", "emailAddress": to_email},
                )
                transferred += 1
            except (APIError, ConnectionError) as e:
                logger.warning("drive_transfer_failed", file_id=item["id"], error=str(e))
                errors.append(f"{item.get('name', item['id'])}: {e}")

        logger.info("drive_ownership_transferred", transferred=transferred, failed=len(errors))
        return {"transferred": transferred, "errors": errors}
