"""Azure AD (Microsoft Entra ID) connector over Microsoft Graph."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import structlog

from saasguard.connectors.base import MAX_PAGES, Connector
from saasguard.connectors.http import AccessToken, TokenCache, parse_datetime, parse_json
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
    SaasGuardError,
    ValidationError,
)
from saasguard.core.utils.url_validation import (
    AZURE_LOGIN_HOSTS,
    GRAPH_HOSTS,
    sanitize_domain,
)

logger = structlog.get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
TOKEN_TIMEOUT = 10.0
API_TIMEOUT = 30.0
GROUP_ODATA_TYPE = "#microsoft.graph.group"


@dataclass
class ServicePrincipal:
    """Subset of a Graph ``servicePrincipal`` resource."""

    id: str
    app_id: str
    display_name: str
    publisher_name: Optional[str] = None
    homepage: Optional[str] = None
    logo_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)  # delegated permissions the app exposes
    app_roles: List[str] = field(default_factory=list)
    sign_in_audience: Optional[str] = None
    service_principal_type: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ServicePrincipal":
        info = data.get("info") or {}
        return cls(
            id=data.get("id", ""),
            app_id=data.get("appId", ""),
            display_name=data.get("displayName") or data.get("appDisplayName") or "Unknown App",
            publisher_name=data.get("publisherName"),
            homepage=data.get("homepage"),
            logo_url=info.get("logoUrl"),
            tags=list(data.get("tags") or []),
            scopes=[s.get("value") for s in data.get("oauth2PermissionScopes") or [] if s.get("value")],
            app_roles=[r.get("value") for r in data.get("appRoles") or [] if r.get("value")],
            sign_in_audience=data.get("signInAudience"),
            service_principal_type=data.get("servicePrincipalType"),
        )


@dataclass
class PermissionGrant:
    """Subset of a Graph ``oAuth2PermissionGrant`` resource."""

    id: str
    client_id: str  # service principal object id
    resource_id: str
    principal_id: Optional[str]  # None for admin consent on behalf of all users
    consent_type: str
    scopes: List[str]
    start_time: Optional[str] = None
    expiry_time: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PermissionGrant":
        return cls(
            id=data.get("id", ""),
            client_id=data.get("clientId", ""),
            resource_id=data.get("resourceId", ""),
            principal_id=data.get("principalId"),
            consent_type=data.get("consentType", ""),
            scopes=[s for s in (data.get("scope") or "").split() if s],
            start_time=data.get("startTime"),
            expiry_time=data.get("expiryTime"),
        )


class AzureADConnector(Connector):
    """Discovers enterprise apps and delegated grants in an Azure AD tenant."""

    provider_type = "azuread"
    provider_label = "Azure AD"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if not self.config.tenant_domain:
            raise ValidationError("Azure AD connector requires a tenant domain")
        self.tenant = sanitize_domain(self.config.tenant_domain)
        self._tokens = TokenCache(self._fetch_access_token)
        self._principal_cache: Dict[str, Optional[str]] = {}
        self._grants: Optional[List[PermissionGrant]] = None
        self._principals: Optional[Dict[str, ServicePrincipal]] = None
        self.org_wide_grants: List[Dict[str, Any]] = []

    async def _fetch_access_token(self) -> AccessToken:
        url = TOKEN_URL_TEMPLATE.format(tenant=self.tenant)
        try:
            response = await self._request(
                "POST",
                url,
                timeout=TOKEN_TIMEOUT,
                allowed_hosts=AZURE_LOGIN_HOSTS,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "scope": GRAPH_SCOPE,
                },
            )
        except APIError as e:
            # Azure reports bad client credentials as 400 invalid_client
            raise AuthenticationError(f"Azure AD token request failed: {e}")

        payload = parse_json(response, self.provider_label)
        if not payload.get("access_token"):
            raise AuthenticationError("Azure AD token response did not include an access token")

        return AccessToken.from_expires_in(payload["access_token"], payload.get("expires_in", 3600))

    async def _graph(self, method: str, path_or_url: str, **kwargs: Any) -> Any:
        url = path_or_url if path_or_url.startswith("https://") else f"{GRAPH_BASE_URL}{path_or_url}"
        token = await self._tokens.get()
        try:
            return await self._request_json(
                method,
                url,
                timeout=API_TIMEOUT,
                allowed_hosts=GRAPH_HOSTS,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except AuthenticationError:
            self._tokens.invalidate()
            raise

    async def _graph_paginated(self, path: str, **kwargs: Any) -> List[Dict[str, Any]]:
        """Follow ``@odata.nextLink`` up to the page cap."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        pages = 0

        while url:
            if pages >= MAX_PAGES:
                self._page_limit_reached(path)
                break
            if pages > 0 and self.page_delay:
                await asyncio.sleep(self.page_delay)

            payload = await self._graph("GET", url, **(kwargs if pages == 0 else {}))
            items.extend(payload.get("value") or [])
            url = payload.get("@odata.nextLink")
            pages += 1

        return items

    async def test_connection(self) -> ConnectionTestResult:
        try:
            payload = await self._graph("GET", "/organization")
        except SaasGuardError as e:
            logger.warning("azure_connection_test_failed", tenant=self.tenant, error=str(e))
            return ConnectionTestResult(success=False, error=str(e))

        if not payload.get("value"):
            return ConnectionTestResult(success=False, error="No organization data returned")

        logger.info("azure_connection_test_succeeded", tenant=self.tenant)
        return ConnectionTestResult(success=True)

    async def _service_principals(self) -> Dict[str, ServicePrincipal]:
        if self._principals is None:
            raw = await self._graph_paginated("/servicePrincipals")
            self._principals = {sp.id: sp for sp in map(ServicePrincipal.from_api, raw)}
        return self._principals

    async def _permission_grants(self) -> List[PermissionGrant]:
        if self._grants is None:
            raw = await self._graph_paginated("/oauth2PermissionGrants")
            self._grants = [PermissionGrant.from_api(g) for g in raw]
        return self._grants

    async def _principal_name(self, principal_id: str) -> Optional[str]:
        """Resolve a user object id to its UPN, caching the answer."""
        if principal_id in self._principal_cache:
            return self._principal_cache[principal_id]

        try:
            user = await self._graph(
                "GET",
                f"/users/{quote(principal_id, safe='')}",
                params={"$select": "userPrincipalName,id"},
            )
            name = user.get("userPrincipalName")
        except AuthenticationError:
            raise
        except SaasGuardError as e:
            logger.warning("azure_principal_lookup_failed", principal_id=principal_id, error=str(e))
            name = None

        self._principal_cache[principal_id] = name
        return name

    async def discover_apps(self) -> List[DiscoveredApp]:
        # A new discovery pass starts from fresh provider state
        self._principals = None
        self._grants = None
        self.org_wide_grants = []

        # One application can surface as several service principals
        apps: Dict[str, DiscoveredApp] = {}
        for sp in (await self._service_principals()).values():
            if not sp.app_id:
                continue

            app = apps.get(sp.app_id)
            if app is None:
                apps[sp.app_id] = DiscoveredApp(
                    external_id=sp.app_id,
                    name=sp.display_name,
                    vendor=sp.publisher_name,
                    logo_url=sp.logo_url,
                    website_url=sp.homepage,
                    permissions=list(sp.scopes),
                    metadata={
                        "service_principal_id": sp.id,
                        "service_principal_ids": [sp.id],
                        "sign_in_audience": sp.sign_in_audience,
                        "service_principal_type": sp.service_principal_type,
                        "app_roles": list(sp.app_roles),
                        "tags": list(sp.tags),
                    },
                )
                continue

            app.permissions.extend(s for s in sp.scopes if s not in app.permissions)
            app.metadata["service_principal_ids"].append(sp.id)
            app.metadata["app_roles"].extend(r for r in sp.app_roles if r not in app.metadata["app_roles"])
            app.metadata["tags"].extend(t for t in sp.tags if t not in app.metadata["tags"])

        for app in apps.values():
            app.metadata["permission_count"] = len(app.permissions)

        logger.info("azure_apps_discovered", count=len(apps))
        return list(apps.values())

    async def discover_user_access(self) -> List[DiscoveredUserAccess]:
        principals = await self._service_principals()
        grants = await self._permission_grants()
        access: List[DiscoveredUserAccess] = []
        org_wide = []

        for grant in grants:
            sp = principals.get(grant.client_id)
            if sp is None:
                continue

            if not grant.principal_id:
                org_wide.append(
                    {"grant_id": grant.id, "app_external_id": sp.app_id, "scopes": grant.scopes}
                )
                continue

            upn = await self._principal_name(grant.principal_id)
            if not upn:
                continue

            access.append(
                DiscoveredUserAccess(
                    user_id=upn,
                    app_external_id=sp.app_id,
                    permissions=list(grant.scopes),
                    granted_date=parse_datetime(grant.start_time),
                )
            )

        if org_wide:
            self.org_wide_grants = org_wide
            self.warnings.append(
                f"{len(org_wide)} organization-wide grant(s) are not attributed to individual users"
            )

        logger.info("azure_user_access_discovered", count=len(access), org_wide=len(org_wide))
        return access

    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]:
        principals = await self._service_principals()
        grants = await self._permission_grants()
        tokens: List[DiscoveredOAuthToken] = []

        for grant in grants:
            sp = principals.get(grant.client_id)
            if sp is None or not grant.principal_id:
                continue

            upn = await self._principal_name(grant.principal_id)
            if not upn:
                continue

            tokens.append(
                DiscoveredOAuthToken(
                    user_id=upn,
                    app_external_id=sp.app_id,
                    scopes=list(grant.scopes),
                    granted_at=parse_datetime(grant.start_time),
                    expires_at=parse_datetime(grant.expiry_time),
                    token_id=grant.id,
                )
            )

        logger.info("azure_oauth_tokens_discovered", count=len(tokens))
        return tokens

    def sync_metadata(self) -> Dict[str, Any]:
        return {"org_wide_grants": tuple(self.org_wide_grants)}

    async def sync_users(self) -> UserSyncResult:
        users = await self._graph_paginated(
            "/users",
            params={
                "$select": "id,mail,userPrincipalName,displayName,givenName,surname,"
                "department,jobTitle,accountEnabled"
            },
        )
        added = updated = 0

        for user in users:
            email = user.get("mail") or user.get("userPrincipalName")
            if not email:
                continue

            created = self._upsert_user(
                email,
                {
                    "name": user.get("displayName"),
                    "first_name": user.get("givenName"),
                    "last_name": user.get("surname"),
                    "department": user.get("department"),
                    "job_title": user.get("jobTitle"),
                    "external_id": user.get("id"),
                },
                active=user.get("accountEnabled", True) is not False,
            )
            if created:
                added += 1
            else:
                updated += 1

        logger.info("azure_users_synced", added=added, updated=updated)
        return UserSyncResult(users_added=added, users_updated=updated)

    # Revocation helpers used by the lifecycle services

    async def _user_id(self, user_email: str) -> str:
        user = await self._graph("GET", f"/users/{quote(user_email, safe='@')}", params={"$select": "id"})
        if not user.get("id"):
            raise APIError(f"Azure AD user not found: {user_email}", status_code=404)
        return user["id"]

    async def get_user_groups(self, user_email: str) -> List[Dict[str, Any]]:
        """List security and Microsoft 365 groups the user belongs to."""
        user_id = await self._user_id(user_email)
        memberships = await self._graph_paginated(f"/users/{user_id}/memberOf")
        return [
            {"id": m.get("id"), "name": m.get("displayName")}
            for m in memberships
            if m.get("@odata.type") == GROUP_ODATA_TYPE
        ]

    async def remove_user_from_group(self, user_email: str, group_id: str) -> None:
        user_id = await self._user_id(user_email)
        await self._graph(
            "DELETE", f"/groups/{quote(group_id, safe='')}/members/{user_id}/$ref"
        )
        logger.info("azure_group_membership_removed", group_id=group_id)

    async def remove_user_from_all_groups(self, user_email: str) -> int:
        """Remove a user from every group.

        Returns:
            Number of memberships removed
        """
        removed = 0
        for group in await self.get_user_groups(user_email):
            await self.remove_user_from_group(user_email, group["id"])
            removed += 1
        return removed

    async def revoke_app_access(self, user_email: str, app_name: str) -> Dict[str, int]:
        """Delete a user's delegated grants for a named application."""
        user_id = await self._user_id(user_email)
        grants = await self._graph_paginated(
            "/oauth2PermissionGrants", params={"$filter": f"principalId eq '{user_id}'"}
        )
        escaped = app_name.replace("'", "''")
        principals = await self._graph_paginated(
            "/servicePrincipals", params={"$filter": f"displayName eq '{escaped}'"}
        )
        principal_ids = {sp.get("id") for sp in principals}

        revoked = 0
        for grant in map(PermissionGrant.from_api, grants):
            if grant.client_id in principal_ids or grant.resource_id in principal_ids:
                await self._graph("DELETE", f"/oauth2PermissionGrants/{quote(grant.id, safe='')}")
                revoked += 1

        logger.info("azure_app_access_revoked", app_name=app_name, grants_revoked=revoked)
        return {"grants_revoked": revoked}

    async def remove_app_role_assignment(self, user_email: str, app_name: str) -> Dict[str, int]:
        """Delete the user's app role assignments whose resource name contains ``app_name``."""
        user_id = await self._user_id(user_email)
        assignments = await self._graph_paginated(f"/users/{user_id}/appRoleAssignments")
        wanted = app_name.lower()

        removed = 0
        for assignment in assignments:
            if wanted in (assignment.get("resourceDisplayName") or "").lower():
                assignment_id = quote(assignment.get("id", ""), safe="")
                await self._graph("DELETE", f"/users/{user_id}/appRoleAssignments/{assignment_id}")
                removed += 1

        logger.info("azure_app_role_assignments_removed", app_name=app_name, removed=removed)
        return {"assignments_removed": removed}
