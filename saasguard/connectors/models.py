"""Provider-neutral discovery models produced by IdP connectors."""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass
class ConnectorConfig:
    """Decrypted credentials and options for one identity provider."""

    client_id: str
    client_secret: str
    tenant_domain: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    custom_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveredApp:
    """An application known to an identity provider."""

    external_id: str
    name: str
    vendor: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveredUserAccess:
    """A user's assignment to, or consent for, a discovered app."""

    user_id: str  # email or UPN as reported by the IdP
    app_external_id: str
    permissions: List[str] = field(default_factory=list)
    granted_date: Optional[datetime] = None
    last_access_date: Optional[datetime] = None
    roles: List[str] = field(default_factory=list)


@dataclass
class DiscoveredOAuthToken:
    """An OAuth grant held by a user for a discovered app."""

    user_id: str
    app_external_id: str
    scopes: List[str] = field(default_factory=list)
    granted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    token_id: Optional[str] = None  # provider identifier, never the token itself


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class UserSyncResult:
    users_added: int = 0
    users_updated: int = 0


@dataclass(frozen=True)
class SyncResult:
    """Immutable outcome of one full provider sync."""

    success: bool
    apps_discovered: int = 0
    users_processed: int = 0
    tokens_discovered: int = 0
    errors: Tuple[str, ...] = ()
    sync_duration_ms: int = 0
    raw_metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    warnings: Tuple[str, ...] = ()
    stage_durations_ms: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def apps(self) -> Tuple[DiscoveredApp, ...]:
        return tuple(self.raw_metadata.get("apps", ()))

    @property
    def user_access(self) -> Tuple[DiscoveredUserAccess, ...]:
        return tuple(self.raw_metadata.get("user_access", ()))

    @property
    def tokens(self) -> Tuple[DiscoveredOAuthToken, ...]:
        return tuple(self.raw_metadata.get("tokens", ()))

    def to_dict(self) -> Dict[str, Any]:
        """Summary without the raw discovery payload."""
        return {
            "success": self.success,
            "apps_discovered": self.apps_discovered,
            "users_processed": self.users_processed,
            "tokens_discovered": self.tokens_discovered,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "sync_duration_ms": self.sync_duration_ms,
            "stage_durations_ms": dict(self.stage_durations_ms),
        }
