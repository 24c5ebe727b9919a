"""Scheduler for recurring identity provider syncs."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from saasguard.connectors.factory import create_connector
from saasguard.connectors.models import SyncResult
from saasguard.core.analyzers.shadow_it import ShadowITDetector
from saasguard.events import EventBus
from saasguard.storage import IDENTITY_PROVIDERS, Storage, StorageError, utc_now
from saasguard.storage.queries import get_identity_provider, list_identity_providers

logger = structlog.get_logger(__name__)

DEFAULT_SYNC_INTERVAL = 3600
MIN_SYNC_INTERVAL = 300


def sync_key(tenant_id: str, provider_id: str) -> str:
    return f"{tenant_id}-{provider_id}"


@dataclass
class SyncStatus:
    """Schedule and run state for one tenant/provider pair."""

    tenant_id: str
    provider_id: str
    interval_seconds: int
    last_run: Optional[str] = None
    next_run: Optional[str] = None
    is_running: bool = False


class SyncRegistry:
    """Tracks which tenant/provider syncs are in flight.

    ``try_acquire`` checks and claims a key under a lock, so a timer-fired
    sync and a manual trigger for the same key can never both proceed.
    """

    def __init__(self):
        self._running: Set[str] = set()
        self._lock: Optional[asyncio.Lock] = None

    async def try_acquire(self, key: str) -> bool:
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            if key in self._running:
                return False
            self._running.add(key)
            return True

    def release(self, key: str) -> None:
        self._running.discard(key)

    def is_running(self, key: str) -> bool:
        return key in self._running

    def __len__(self) -> int:
        return len(self._running)


class SyncScheduler:
    """Runs periodic full syncs per tenant and identity provider."""

    def __init__(
        self,
        storage: Storage,
        cipher,
        events: Optional[EventBus] = None,
        connector_factory: Callable[..., Any] = create_connector,
        connector_options: Optional[Dict[str, Any]] = None,
        default_interval: int = DEFAULT_SYNC_INTERVAL,
        min_interval: int = MIN_SYNC_INTERVAL,
        registry: Optional[SyncRegistry] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """Initialize scheduler.

        Args:
            storage: Record store holding providers and discovery results
            cipher: Cipher used to decrypt provider secrets
            events: Event bus passed to the Shadow IT detector
            connector_factory: Builds a connector from a provider record
            connector_options: Extra keyword arguments for the factory
            default_interval: Sync interval when a provider sets none, in seconds
            min_interval: Lower bound on any sync interval, in seconds
            registry: Single-flight registry (one is created if omitted)
            scheduler: APScheduler instance (one is created if omitted)
        """
        self.storage = storage
        self.cipher = cipher
        self.events = events or EventBus()
        self.connector_factory = connector_factory
        self.connector_options = connector_options or {}
        self.default_interval = default_interval
        self.min_interval = min_interval
        self.registry = registry or SyncRegistry()

        self.scheduler = scheduler or AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )

        self._schedules: Dict[str, SyncStatus] = {}

        logger.info(
            "sync_scheduler_initialized",
            default_interval=default_interval,
            min_interval=min_interval,
        )

    def start(self) -> None:
        """Start firing scheduled jobs. Must be called with a running event loop."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("sync_scheduler_started", jobs=len(self._schedules))

    def shutdown(self) -> None:
        self.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("sync_scheduler_shutdown")

    def _interval_for(self, provider: Dict[str, Any]) -> int:
        interval = int(provider.get("sync_interval") or self.default_interval)
        if interval < self.min_interval:
            logger.warning(
                "sync_interval_raised_to_minimum",
                provider_id=provider.get("id"),
                requested=interval,
                minimum=self.min_interval,
            )
            interval = self.min_interval
        return interval

    def schedule_provider(self, provider: Dict[str, Any]) -> SyncStatus:
        """Schedule recurring syncs for one provider, replacing any existing job."""
        tenant_id, provider_id = provider["tenant_id"], provider["id"]
        key = sync_key(tenant_id, provider_id)
        interval = self._interval_for(provider)

        self.scheduler.add_job(
            self.perform_sync,
            trigger=IntervalTrigger(seconds=interval),
            args=[tenant_id, provider_id],
            id=key,
            name=f"sync {provider.get('name') or provider_id}",
            replace_existing=True,
        )

        previous = self._schedules.get(key)
        status = SyncStatus(
            tenant_id=tenant_id,
            provider_id=provider_id,
            interval_seconds=interval,
            last_run=previous.last_run if previous else provider.get("last_sync_at"),
        )
        self._schedules[key] = status

        logger.info("provider_sync_scheduled", key=key, interval=interval)
        return status

    def schedule_tenant(self, tenant_id: str) -> int:
        """Schedule every active, sync-enabled provider of a tenant.

        Returns:
            Number of providers scheduled
        """
        scheduled = 0
        for provider in list_identity_providers(self.storage, tenant_id, active_only=True):
            if provider.get("sync_enabled", True):
                self.schedule_provider(provider)
                scheduled += 1

        logger.info("tenant_syncs_scheduled", tenant_id=tenant_id, providers=scheduled)
        return scheduled

    def stop_provider(self, tenant_id: str, provider_id: str) -> bool:
        key = sync_key(tenant_id, provider_id)
        if key not in self._schedules:
            return False

        if self.scheduler.get_job(key):
            self.scheduler.remove_job(key)
        del self._schedules[key]

        logger.info("provider_sync_stopped", key=key)
        return True

    def stop_tenant(self, tenant_id: str) -> int:
        stopped = 0
        for status in list(self._schedules.values()):
            if status.tenant_id == tenant_id and self.stop_provider(tenant_id, status.provider_id):
                stopped += 1
        return stopped

    def stop_all(self) -> None:
        for status in list(self._schedules.values()):
            self.stop_provider(status.tenant_id, status.provider_id)

    def get_status(self) -> List[SyncStatus]:
        statuses = []
        for key, status in self._schedules.items():
            job = self.scheduler.get_job(key)
            next_run = getattr(job, "next_run_time", None) if job else None
            status.next_run = next_run.isoformat() if next_run else None
            status.is_running = self.registry.is_running(key)
            statuses.append(status)
        return statuses

    def get_active_count(self) -> int:
        return len(self._schedules)

    def get_running_count(self) -> int:
        return len(self.registry)

    async def trigger_immediate_sync(self, tenant_id: str, provider_id: str) -> Optional[SyncResult]:
        """Run a sync now, outside the schedule. Skipped if one is already running."""
        logger.info("immediate_sync_triggered", tenant_id=tenant_id, provider_id=provider_id)
        return await self.perform_sync(tenant_id, provider_id)

    def _set_provider_state(self, provider_id: str, changes: Dict[str, Any]) -> None:
        self.storage.update(IDENTITY_PROVIDERS, provider_id, changes)

    async def perform_sync(self, tenant_id: str, provider_id: str) -> Optional[SyncResult]:
        """Run one full sync and persist its outcome.

        Never raises: failures are written to the provider record as
        ``sync_status="error"``.

        Returns:
            The sync result, or None when skipped or aborted
        """
        key = sync_key(tenant_id, provider_id)
        if not await self.registry.try_acquire(key):
            logger.info("sync_already_running", key=key)
            return None

        try:
            provider = get_identity_provider(self.storage, tenant_id, provider_id)
            if provider is None or provider.get("status") != "active":
                logger.warning("sync_provider_not_active", key=key)
                return None

            self._set_provider_state(provider_id, {"sync_status": "syncing", "sync_error": None})
            logger.info("sync_started", key=key, provider=provider.get("type"))

            connector = self.connector_factory(
                provider, self.cipher, storage=self.storage, **self.connector_options
            )
            async with connector:
                result = await connector.perform_full_sync()

            if result.success:
                detector = ShadowITDetector(tenant_id, self.storage, self.events)
                stats = detector.process_full_sync(result, provider_id)
                self._set_provider_state(
                    provider_id,
                    {
                        "sync_status": "idle",
                        "sync_error": None,
                        "last_sync_at": utc_now(),
                        "total_apps": result.apps_discovered,
                        "total_users": result.users_processed,
                    },
                )
                logger.info(
                    "sync_completed",
                    key=key,
                    apps=result.apps_discovered,
                    users=result.users_processed,
                    shadow_it=stats.shadow_it_detected,
                    warnings=len(stats.warnings) + len(result.warnings),
                    stage_durations_ms=dict(result.stage_durations_ms),
                )
            else:
                self._set_provider_state(
                    provider_id,
                    {"sync_status": "error", "sync_error": "; ".join(result.errors)},
                )
                logger.warning("sync_failed", key=key, errors=list(result.errors))

            if key in self._schedules:
                self._schedules[key].last_run = utc_now()
            return result

        except Exception as e:
            logger.error("sync_error", key=key, error=str(e))
            try:
                self._set_provider_state(provider_id, {"sync_status": "error", "sync_error": str(e)})
            except StorageError as storage_error:
                logger.error("sync_status_update_failed", key=key, error=str(storage_error))
            return None

        finally:
            self.registry.release(key)
