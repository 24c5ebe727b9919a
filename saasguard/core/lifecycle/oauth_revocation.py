"""OAuth token revocation at the issuing provider."""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
import structlog

from saasguard.connectors.factory import create_connector
from saasguard.connectors.http import send_request
from saasguard.core.exceptions import APIError, SaasGuardError, ValidationError
from saasguard.core.utils.retry import REVOCATION_RETRY, RetryConfig, retry_async
from saasguard.core.utils.url_validation import (
    REVOCATION_HOSTS,
    is_valid_okta_domain,
    sanitize_domain,
    validate_revocation_url,
)
from saasguard.storage import OAUTH_TOKENS, Storage, StorageError
from saasguard.storage.queries import get_app, get_identity_provider, get_user, list_oauth_tokens

logger = structlog.get_logger(__name__)

REVOCATION_TIMEOUT = 15.0
AZURE_REVOKE_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/revoke"
OKTA_REVOKE_URL_TEMPLATE = "https://{domain}/oauth2/v1/revoke"


@dataclass
class OAuthRevocationResult:
    success: bool
    tokens_revoked: int = 0
    apps: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tokens_revoked": self.tokens_revoked,
            "apps": self.apps,
            "errors": self.errors,
            "warnings": self.warnings,
        }


class OAuthRevocationService:
    """Revokes stored OAuth grants at the provider, then deletes them locally.

    Azure AD and Okta grants are revoked at their RFC 7009 endpoints. Google
    grants are deleted per user and client through the Directory API.

    A provider that rejects or cannot be reached for a revocation produces a
    warning. The local token record is deleted regardless, so revoked access
    never lingers in storage.
    """

    def __init__(
        self,
        tenant_id: str,
        storage: Storage,
        cipher,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: RetryConfig = REVOCATION_RETRY,
        timeout: float = REVOCATION_TIMEOUT,
        connector_factory: Callable[..., Any] = create_connector,
        connector_options: Optional[Dict[str, Any]] = None,
    ):
        """Initialize service.

        Args:
            tenant_id: Tenant whose tokens are revoked
            storage: Record store
            cipher: Cipher used to decrypt provider secrets
            http_client: Client to use instead of a per-batch one
            retry_config: Retry policy for revocation endpoints
            timeout: Per-request timeout in seconds
            connector_factory: Builds the Google connector used for grant deletion
            connector_options: Extra connector keyword arguments
        """
        self.tenant_id = tenant_id
        self.storage = storage
        self.cipher = cipher
        self.retry_config = retry_config
        self.timeout = timeout
        self.connector_factory = connector_factory
        self.connector_options = connector_options or {}
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient() as client:
            yield client

    async def revoke_all_tokens(self, user_id: str) -> OAuthRevocationResult:
        return await self._revoke_tokens(list_oauth_tokens(self.storage, self.tenant_id, user_id))

    async def revoke_tokens_for_app(self, user_id: str, app_id: str) -> OAuthRevocationResult:
        return await self._revoke_tokens(list_oauth_tokens(self.storage, self.tenant_id, user_id, app_id))

    async def _revoke_tokens(self, tokens: List[Dict[str, Any]]) -> OAuthRevocationResult:
        result = OAuthRevocationResult(success=True)
        logger.info("oauth_revocation_started", tenant_id=self.tenant_id, tokens=len(tokens))

        async with self._client() as client:
            for token in tokens:
                app_name = self._app_name(token)
                try:
                    warning = await self.revoke_token(token, client)
                except StorageError as e:
                    logger.error("oauth_token_delete_failed", token_id=token["id"], error=str(e))
                    result.errors.append(f"Failed to revoke {app_name or 'unknown'}: {e}")
                    continue

                result.tokens_revoked += 1
                if warning:
                    result.warnings.append(warning)
                if app_name:
                    result.apps.append(app_name)

        result.success = not result.errors
        logger.info(
            "oauth_revocation_finished",
            revoked=result.tokens_revoked,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    def _app_name(self, token: Dict[str, Any]) -> Optional[str]:
        if token.get("app_name"):
            return token["app_name"]
        app = get_app(self.storage, self.tenant_id, token.get("app_id") or "")
        return app.get("name") if app else None

    async def revoke_token(self, token: Dict[str, Any], client: httpx.AsyncClient) -> Optional[str]:
        """Revoke one token record.

        Returns:
            A warning if the provider call failed, else None

        Raises:
            StorageError: If the local record could not be deleted
        """
        metadata = token.get("idp_metadata") or {}
        idp_id = metadata.get("idp_id")
        warning = None

        if idp_id:
            try:
                idp = get_identity_provider(self.storage, self.tenant_id, idp_id)
                if idp and idp.get("status") == "active":
                    await self._revoke_at_provider(client, idp, token)
            except SaasGuardError as e:
                logger.warning("provider_revocation_failed", idp_id=idp_id, error=str(e))
                warning = f"Provider revocation failed for {self._app_name(token) or 'unknown'}: {e}"

        self.storage.delete(OAUTH_TOKENS, token["id"])
        logger.info("oauth_token_revoked", token_id=token["id"], app_id=token.get("app_id"))
        return warning

    async def _revoke_at_provider(
        self, client: httpx.AsyncClient, idp: Dict[str, Any], token: Dict[str, Any]
    ) -> None:
        provider = idp.get("type")
        provider_token = (token.get("idp_metadata") or {}).get("token_id")
        if not provider_token:
            logger.info("no_provider_token_id", provider=provider)
            return

        if provider == "azuread":
            tenant = sanitize_domain(idp.get("tenant_domain") or "common") or "common"
            url = AZURE_REVOKE_URL_TEMPLATE.format(tenant=tenant)
            validate_revocation_url(url, "azuread")
            await self._post(
                client,
                url,
                provider,
                allowed_hosts=REVOCATION_HOSTS["azuread"],
                data={"token": provider_token, "token_type_hint": "access_token"},
            )

        elif provider == "google":
            user = get_user(self.storage, token.get("user_id") or "") or {}
            await self._delete_google_grant(client, idp, user.get("email"), provider_token)

        elif provider == "okta":
            domain = sanitize_domain(idp.get("tenant_domain") or "").lower()
            if not is_valid_okta_domain(domain):
                raise ValidationError(f"Invalid Okta domain: {domain}")
            url = OKTA_REVOKE_URL_TEMPLATE.format(domain=domain)
            validate_revocation_url(url, "okta", okta_domain=domain)
            api_token = self.cipher.decrypt(idp["client_secret"]) if idp.get("client_secret") else ""
            await self._post(
                client,
                url,
                provider,
                allowed_hosts={domain},
                headers={"Authorization": f"SSWS {api_token}"},
                data={"token": provider_token, "token_type_hint": "access_token"},
            )

        else:
            logger.info("revocation_not_supported", provider=provider)

    async def _delete_google_grant(
        self,
        client: httpx.AsyncClient,
        idp: Dict[str, Any],
        user_email: Optional[str],
        client_id: str,
    ) -> None:
        """Delete a user's grant to an OAuth client through the Directory API.

        Google tracks third-party grants per user and client id, so the
        stored ``token_id`` is the client id rather than a bearer token.
        """
        if not user_email:
            raise ValidationError("User email not found for Google grant revocation")

        options = {"http_client": client, "retry_config": self.retry_config, **self.connector_options}
        connector = self.connector_factory(idp, self.cipher, storage=self.storage, **options)
        async with connector:
            try:
                await connector.revoke_token(user_email, client_id)
            except APIError as e:
                # 404 means the grant is already gone
                if e.status_code != 404:
                    raise
                logger.info("google_grant_already_revoked", client_id=client_id)
                return

        logger.info("provider_token_revoked", provider="google", client_id=client_id)

    async def _post(self, client: httpx.AsyncClient, url: str, provider: str, **kwargs: Any) -> None:
        async def attempt() -> httpx.Response:
            # RFC 7009 endpoints answer 400 for a token that is already invalid
            return await send_request(
                client,
                "POST",
                url,
                provider=provider,
                timeout=self.timeout,
                ok_statuses=(400,),
                **kwargs,
            )

        response = await retry_async(attempt, config=self.retry_config, operation=f"{provider}_revoke")
        logger.info("provider_token_revoked", provider=provider, status=response.status_code)

    def has_active_tokens(self, user_id: str) -> bool:
        return bool(list_oauth_tokens(self.storage, self.tenant_id, user_id))

    def get_apps_with_tokens(self, user_id: str) -> List[str]:
        names = []
        for token in list_oauth_tokens(self.storage, self.tenant_id, user_id):
            name = self._app_name(token)
            if name and name not in names:
                names.append(name)
        return names
