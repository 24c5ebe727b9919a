"""Okta connector over the Okta management API."""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import structlog

from saasguard.connectors.base import MAX_PAGES, Connector
from saasguard.connectors.http import parse_datetime, parse_json
from saasguard.connectors.models import (
    ConnectionTestResult,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    UserSyncResult,
)
from saasguard.core.exceptions import AuthenticationError, SaasGuardError, ValidationError
from saasguard.core.utils.retry import RetryConfig
from saasguard.core.utils.url_validation import is_valid_okta_domain, sanitize_domain

logger = structlog.get_logger(__name__)

API_TIMEOUT = 30.0
OKTA_RETRY = RetryConfig(max_attempts=4, initial_delay=1.0)

CATEGORY_BY_SIGN_ON_MODE = {
    "SAML_2_0": "Authentication",
    "WS_FEDERATION": "Authentication",
    "OPENID_CONNECT": "Authentication",
    "SECURE_PASSWORD_STORE": "Productivity",
    "AUTO_LOGIN": "Productivity",
    "BOOKMARK": "Productivity",
}


def app_category(sign_on_mode: Optional[str]) -> str:
    return CATEGORY_BY_SIGN_ON_MODE.get(sign_on_mode or "", "Other")


class OktaConnector(Connector):
    """Discovers active app integrations and assignments in an Okta org.

    The client secret is an Okta API token, sent as ``SSWS``.
    """

    provider_type = "okta"
    provider_label = "Okta"

    def __init__(self, *args: Any, **kwargs: Any):
        kwargs.setdefault("retry_config", OKTA_RETRY)
        super().__init__(*args, **kwargs)
        domain = sanitize_domain(self.config.tenant_domain or "").lower()
        if not is_valid_okta_domain(domain):
            raise ValidationError(f"Invalid Okta domain: {self.config.tenant_domain}")
        self.domain = domain
        self.base_url = f"https://{domain}/api/v1"
        self._apps: Optional[List[Dict[str, Any]]] = None
        self._emails: Dict[str, Optional[str]] = {}

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"SSWS {self.config.client_secret}",
            "Accept": "application/json",
        }

    async def _get(self, path_or_url: str, **kwargs: Any):
        url = path_or_url if path_or_url.startswith("https://") else f"{self.base_url}{path_or_url}"
        return await self._request(
            "GET",
            url,
            timeout=API_TIMEOUT,
            allowed_hosts={self.domain},
            headers=self._headers,
            **kwargs,
        )

    async def _get_paginated(self, path: str, **kwargs: Any) -> List[Dict[str, Any]]:
        """Follow ``Link: rel="next"`` headers up to the page cap."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        pages = 0

        while url:
            if pages >= MAX_PAGES:
                self._page_limit_reached(path)
                break
            if pages > 0 and self.page_delay:
                await asyncio.sleep(self.page_delay)

            response = await self._get(url, **(kwargs if pages == 0 else {}))
            items.extend(parse_json(response, self.provider_label) or [])
            url = response.links.get("next", {}).get("url")
            pages += 1

        return items

    async def test_connection(self) -> ConnectionTestResult:
        try:
            await self._get("/org")
        except SaasGuardError as e:
            logger.warning("okta_connection_test_failed", domain=self.domain, error=str(e))
            return ConnectionTestResult(success=False, error=str(e))

        logger.info("okta_connection_test_succeeded", domain=self.domain)
        return ConnectionTestResult(success=True)

    async def _active_apps(self) -> List[Dict[str, Any]]:
        if self._apps is None:
            apps = await self._get_paginated("/apps", params={"limit": 200})
            self._apps = [a for a in apps if a.get("status") == "ACTIVE"]
        return self._apps

    async def discover_apps(self) -> List[DiscoveredApp]:
        self._apps = None
        discovered = []

        for app in await self._active_apps():
            settings = (app.get("settings") or {}).get("app") or {}
            logos = (app.get("_links") or {}).get("logo") or []
            sign_on_mode = app.get("signOnMode")
            discovered.append(
                DiscoveredApp(
                    external_id=app["id"],
                    name=app.get("label") or app.get("name") or app["id"],
                    vendor=app.get("name"),
                    logo_url=logos[0].get("href") if logos else None,
                    website_url=settings.get("url"),
                    metadata={
                        "sign_on_mode": sign_on_mode,
                        "category": app_category(sign_on_mode),
                        "created": app.get("created"),
                    },
                )
            )

        logger.info("okta_apps_discovered", count=len(discovered))
        return discovered

    async def _lookup_email(self, user_id: str) -> Optional[str]:
        if user_id in self._emails:
            return self._emails[user_id]

        try:
            response = await self._get(f"/users/{quote(user_id, safe='')}")
            profile = (parse_json(response, self.provider_label) or {}).get("profile") or {}
            email = profile.get("email") or profile.get("login")
        except AuthenticationError:
            raise
        except SaasGuardError as e:
            logger.warning("okta_user_lookup_failed", user_id=user_id, error=str(e))
            self.warnings.append(f"Could not resolve Okta user {user_id}: {e}")
            email = None

        self._emails[user_id] = email
        return email

    async def _assignment_email(self, assignment: Dict[str, Any]) -> Optional[str]:
        """Resolve the email behind an app assignment.

        Assignment profiles often omit the email, so the embedded user and
        then the user record itself are consulted. An assignment's ``id``
        is the Okta user id.
        """
        profile = assignment.get("profile") or {}
        embedded = ((assignment.get("_embedded") or {}).get("user") or {}).get("profile") or {}
        email = profile.get("email") or embedded.get("email")
        if email:
            return email

        if assignment.get("id"):
            email = await self._lookup_email(assignment["id"])
        return email or (assignment.get("credentials") or {}).get("userName")

    async def discover_user_access(self) -> List[DiscoveredUserAccess]:
        access: List[DiscoveredUserAccess] = []
        self._emails = {}

        for app in await self._active_apps():
            assignments = await self._get_paginated(f"/apps/{app['id']}/users", params={"expand": "user"})
            for assignment in assignments:
                profile = assignment.get("profile") or {}
                user_name = await self._assignment_email(assignment)
                if not user_name:
                    continue

                role = profile.get("role")
                access.append(
                    DiscoveredUserAccess(
                        user_id=user_name,
                        app_external_id=app["id"],
                        granted_date=parse_datetime(assignment.get("created")),
                        last_access_date=parse_datetime(assignment.get("lastUpdated")),
                        roles=[role] if role else [],
                    )
                )

        logger.info("okta_user_access_discovered", count=len(access))
        return access

    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]:
        # Okta does not expose end-user OAuth grants org-wide
        return []

    async def sync_users(self) -> UserSyncResult:
        users = await self._get_paginated("/users", params={"filter": 'status eq "ACTIVE"'})
        added = updated = 0

        for user in users:
            profile = user.get("profile") or {}
            email = profile.get("email") or profile.get("login")
            if not email:
                continue

            first, last = profile.get("firstName"), profile.get("lastName")
            created = self._upsert_user(
                email,
                {
                    "name": " ".join(p for p in (first, last) if p) or None,
                    "first_name": first,
                    "last_name": last,
                    "department": profile.get("department"),
                    "job_title": profile.get("title"),
                    "external_id": user.get("id"),
                },
                active=user.get("status") == "ACTIVE",
            )
            if created:
                added += 1
            else:
                updated += 1

        logger.info("okta_users_synced", added=added, updated=updated)
        return UserSyncResult(users_added=added, users_updated=updated)
