"""SSO access revocation through the tenant's identity providers."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import structlog

from saasguard.connectors.factory import create_connector
from saasguard.core.exceptions import SaasGuardError
from saasguard.storage import Storage
from saasguard.storage.queries import (
    delete_user_app_access,
    get_app,
    get_user,
    get_user_app_access,
    list_identity_providers,
    list_user_app_access,
)

logger = structlog.get_logger(__name__)


@dataclass
class RevocationResult:
    success: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "details": self.details}


class SSORevocationService:
    """Removes a user's IdP-level access to applications.

    Provider failures are recorded in the result details. The local access
    record is always deleted once revocation has been attempted.
    """

    def __init__(
        self,
        tenant_id: str,
        storage: Storage,
        cipher,
        connector_factory: Callable[..., Any] = create_connector,
        connector_options: Optional[Dict[str, Any]] = None,
    ):
        self.tenant_id = tenant_id
        self.storage = storage
        self.cipher = cipher
        self.connector_factory = connector_factory
        self.connector_options = connector_options or {}

    def _connector(self, idp: Dict[str, Any]):
        return self.connector_factory(idp, self.cipher, storage=self.storage, **self.connector_options)

    def _active_idps(self):
        return list_identity_providers(self.storage, self.tenant_id, active_only=True)

    async def revoke_access(self, user_id: str, app_id: str) -> RevocationResult:
        """Revoke one user's SSO access to one app.

        Args:
            user_id: Internal user id
            app_id: Catalog app id

        Returns:
            Revocation result; ``success`` is False only when the app is unknown
        """
        logger.info("sso_revocation_started", user_id=user_id, app_id=app_id)

        app = get_app(self.storage, self.tenant_id, app_id)
        if app is None:
            return RevocationResult(success=False, message="App not found")

        if get_user_app_access(self.storage, self.tenant_id, user_id, app_id) is None:
            return RevocationResult(success=True, message="User does not have access to this app")

        user = get_user(self.storage, user_id) or {}
        email = user.get("email")
        details: Dict[str, Any] = {}
        revoked = False

        for idp in self._active_idps():
            if idp.get("type") not in ("azuread", "google"):
                continue
            try:
                if not email:
                    raise SaasGuardError("User not found or has no email")

                if idp["type"] == "azuread":
                    details["azuread"] = await self._revoke_via_azure(idp, email, app["name"])
                else:
                    details["google"] = await self._revoke_via_google(idp, email, app["name"])
                revoked = True
            except SaasGuardError as e:
                logger.warning("sso_provider_revocation_failed", provider=idp["type"], error=str(e))
                details[idp["type"]] = {"error": str(e)}

        delete_user_app_access(self.storage, self.tenant_id, user_id, app_id)

        message = (
            "SSO access revoked successfully"
            if revoked
            else "Access removed from database (SSO revocation not available)"
        )
        logger.info("sso_revocation_finished", user_id=user_id, app_id=app_id, revoked_at_idp=revoked)
        return RevocationResult(success=True, message=message, details=details)

    async def _revoke_via_azure(self, idp: Dict[str, Any], email: str, app_name: str) -> Dict[str, Any]:
        grants_revoked = assignments_removed = 0

        async with self._connector(idp) as connector:
            try:
                grants_revoked = (await connector.revoke_app_access(email, app_name))["grants_revoked"]
            except SaasGuardError as e:
                logger.warning("azure_grant_revocation_failed", app_name=app_name, error=str(e))

            try:
                result = await connector.remove_app_role_assignment(email, app_name)
                assignments_removed = result["assignments_removed"]
            except SaasGuardError as e:
                logger.warning("azure_role_assignment_removal_failed", app_name=app_name, error=str(e))

        return {
            "user_email": email,
            "app_name": app_name,
            "grants_revoked": grants_revoked,
            "assignments_removed": assignments_removed,
        }

    async def _revoke_via_google(self, idp: Dict[str, Any], email: str, app_name: str) -> Dict[str, Any]:
        tokens_revoked = 0

        async with self._connector(idp) as connector:
            try:
                tokens_revoked = (await connector.revoke_app_tokens(email, app_name))["tokens_revoked"]
            except SaasGuardError as e:
                logger.warning("google_token_revocation_failed", app_name=app_name, error=str(e))

        return {"user_email": email, "app_name": app_name, "tokens_revoked": tokens_revoked}

    async def remove_from_all_groups(self, user_id: str) -> RevocationResult:
        """Remove a user from every group in each active Azure AD and Google IdP."""
        user = get_user(self.storage, user_id)
        if not user or not user.get("email"):
            return RevocationResult(success=False, message="User not found or has no email")

        results: Dict[str, Any] = {}
        for idp in self._active_idps():
            if idp.get("type") not in ("azuread", "google"):
                continue
            try:
                async with self._connector(idp) as connector:
                    removed = await connector.remove_user_from_all_groups(user["email"])
                results[idp["type"]] = {
                    "groups_removed": removed,
                    "message": "Successfully removed from groups",
                }
            except SaasGuardError as e:
                logger.warning("group_removal_failed", provider=idp["type"], error=str(e))
                results[idp["type"]] = {"error": str(e)}

        logger.info("groups_removed", user_id=user_id, providers=sorted(results))
        return RevocationResult(
            success=True, message="User removed from all security groups", details=results
        )

    async def reclaim_licenses(self, user_id: str) -> RevocationResult:
        """Drop every local access record of a user, freeing their seats."""
        if get_user(self.storage, user_id) is None:
            return RevocationResult(success=False, message="User not found")

        access_list = list_user_app_access(self.storage, self.tenant_id, user_id)
        for access in access_list:
            delete_user_app_access(self.storage, self.tenant_id, user_id, access["app_id"])

        return RevocationResult(
            success=True,
            message=f"Reclaimed {len(access_list)} licenses",
            details={
                "licenses_reclaimed": len(access_list),
                "apps": [a.get("app_name") for a in access_list],
            },
        )
