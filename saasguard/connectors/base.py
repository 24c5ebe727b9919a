"""Identity provider connector contract and the full-sync driver."""

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx
import structlog

from saasguard.connectors.http import parse_json, send_request
from saasguard.connectors.models import (
    ConnectionTestResult,
    ConnectorConfig,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    SyncResult,
    UserSyncResult,
)
from saasguard.core.exceptions import ValidationError
from saasguard.core.utils.retry import CONNECTOR_RETRY, RetryConfig, retry_async
from saasguard.storage import USERS, Storage, utc_now
from saasguard.storage.queries import get_user_by_email

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_DELAY = 0.1
MAX_PAGES = 100

STAGE_CONNECTION_TEST = "connection_test"
STAGE_DISCOVER_APPS = "discover_apps"
STAGE_DISCOVER_USER_ACCESS = "discover_user_access"
STAGE_DISCOVER_OAUTH_TOKENS = "discover_oauth_tokens"
STAGE_SYNC_USERS = "sync_users"


class Connector(ABC):
    """Base class for identity provider connectors.

    Subclasses implement discovery against one vendor API. A connector owns
    a lazily created ``httpx.AsyncClient`` which is closed by :meth:`aclose`
    or by leaving an ``async with`` block.
    """

    provider_type: str = ""
    provider_label: str = ""

    def __init__(
        self,
        config: ConnectorConfig,
        tenant_id: str,
        idp_id: str,
        storage: Optional[Storage] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        page_delay: float = DEFAULT_PAGE_DELAY,
    ):
        """Initialize connector.

        Args:
            config: Decrypted provider configuration
            tenant_id: Owning tenant
            idp_id: Identity provider record id
            storage: Record store, needed by :meth:`sync_users`
            http_client: Client to use instead of creating one
            retry_config: Retry policy for provider calls
            page_delay: Seconds to wait between pagination requests
        """
        self.config = config
        self.tenant_id = tenant_id
        self.idp_id = idp_id
        self.storage = storage
        self.retry_config = retry_config or CONNECTOR_RETRY
        self.page_delay = page_delay
        self.warnings: List[str] = []
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Connector":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Check credentials and reachability. Never raises."""

    @abstractmethod
    async def discover_apps(self) -> List[DiscoveredApp]:
        """List applications registered with the provider."""

    @abstractmethod
    async def discover_user_access(self) -> List[DiscoveredUserAccess]:
        """List which users can reach which discovered apps."""

    @abstractmethod
    async def discover_oauth_tokens(self) -> List[DiscoveredOAuthToken]:
        """List OAuth grants held by users."""

    @abstractmethod
    async def sync_users(self) -> UserSyncResult:
        """Upsert provider users into storage."""

    def sync_metadata(self) -> Dict[str, Any]:
        """Provider-specific extras added to ``SyncResult.raw_metadata``."""
        return {}

    async def perform_full_sync(self) -> SyncResult:
        return await perform_full_sync(self)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        allowed_hosts: Iterable[str] = (),
        allowed_suffixes: Iterable[str] = (),
        ok_statuses: Iterable[int] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a validated request, retrying transport and 5xx failures."""

        async def attempt() -> httpx.Response:
            return await send_request(
                self.client,
                method,
                url,
                provider=self.provider_label,
                timeout=timeout,
                allowed_hosts=allowed_hosts,
                allowed_suffixes=allowed_suffixes,
                ok_statuses=ok_statuses,
                **kwargs,
            )

        return await retry_async(
            attempt,
            config=self.retry_config,
            operation=f"{self.provider_type}_{method.lower()}",
        )

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._request(method, url, **kwargs)
        return parse_json(response, self.provider_label)

    def _page_limit_reached(self, resource: str) -> None:
        message = f"Pagination limit of {MAX_PAGES} pages reached for {resource}; results truncated"
        logger.warning("pagination_limit_reached", provider=self.provider_type, resource=resource)
        self.warnings.append(message)

    def _upsert_user(self, email: str, fields: Dict[str, Any], active: bool) -> bool:
        """Create or update a tenant user keyed by email.

        Returns:
            True if a user was created, False if updated
        """
        if self.storage is None:
            raise ValidationError("User sync requires a storage backend")

        changes = {
            **{k: v for k, v in fields.items() if v is not None},
            "status": "active" if active else "inactive",
            "idp_id": self.idp_id,
            "last_synced_at": utc_now(),
        }

        existing = get_user_by_email(self.storage, self.tenant_id, email)
        if existing:
            self.storage.update(USERS, existing["id"], changes)
            return False

        self.storage.create(
            USERS,
            {"tenant_id": self.tenant_id, "email": email, "role": "user", **changes},
        )
        return True


async def perform_full_sync(connector: Connector) -> SyncResult:
    """Run a complete discovery pass against one provider.

    Steps run in order: connection test, apps, user access, OAuth tokens,
    then user sync. A failed connection test aborts the sync. A user sync
    failure is reported as a warning-level error without failing the run.
    Any other failure stops the sync and returns the counts gathered so far.
    Each step that ran is timed under its stage name, including the one that
    failed.

    Args:
        connector: Connector to drive

    Returns:
        Immutable sync result
    """
    started = time.monotonic()
    errors: List[str] = []
    apps: List[DiscoveredApp] = []
    user_access: List[DiscoveredUserAccess] = []
    tokens: List[DiscoveredOAuthToken] = []
    users_processed = 0
    stage_durations: Dict[str, int] = {}

    @contextmanager
    def stage(name: str) -> Iterator[None]:
        stage_started = time.monotonic()
        try:
            yield
        finally:
            stage_durations[name] = int((time.monotonic() - stage_started) * 1000)

    def finish(success: bool, metadata: Optional[Dict[str, Any]] = None) -> SyncResult:
        duration_ms = int((time.monotonic() - started) * 1000)
        result = SyncResult(
            success=success,
            apps_discovered=len(apps),
            users_processed=users_processed,
            tokens_discovered=len(tokens),
            errors=tuple(errors),
            sync_duration_ms=duration_ms,
            raw_metadata=MappingProxyType(metadata or {}),
            warnings=tuple(connector.warnings),
            stage_durations_ms=MappingProxyType(dict(stage_durations)),
        )
        logger.info(
            "full_sync_finished",
            provider=connector.provider_type,
            tenant_id=connector.tenant_id,
            idp_id=connector.idp_id,
            success=success,
            apps=result.apps_discovered,
            users=result.users_processed,
            tokens=result.tokens_discovered,
            errors=len(errors),
            duration_ms=duration_ms,
            stage_durations_ms=stage_durations,
        )
        return result

    logger.info(
        "full_sync_started",
        provider=connector.provider_type,
        tenant_id=connector.tenant_id,
        idp_id=connector.idp_id,
    )

    try:
        with stage(STAGE_CONNECTION_TEST):
            connection = await connector.test_connection()
        if not connection.success:
            errors.append(f"Connection test failed: {connection.error}")
            return finish(False)

        with stage(STAGE_DISCOVER_APPS):
            apps = await connector.discover_apps()
        with stage(STAGE_DISCOVER_USER_ACCESS):
            user_access = await connector.discover_user_access()
        users_processed = len({access.user_id for access in user_access})
        with stage(STAGE_DISCOVER_OAUTH_TOKENS):
            tokens = await connector.discover_oauth_tokens()

        try:
            with stage(STAGE_SYNC_USERS):
                await connector.sync_users()
        except Exception as e:
            logger.warning("user_sync_failed", provider=connector.provider_type, error=str(e))
            errors.append(f"User sync warning: {e}")

        metadata = {
            "apps": tuple(apps),
            "user_access": tuple(user_access),
            "tokens": tuple(tokens),
            **connector.sync_metadata(),
        }
        return finish(True, metadata)

    except Exception as e:
        logger.error("full_sync_failed", provider=connector.provider_type, error=str(e))
        errors.append(str(e) or type(e).__name__)
        return finish(False)
