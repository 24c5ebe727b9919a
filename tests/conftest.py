"""Pytest configuration and fixtures for saasguard tests."""

from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from saasguard.core.utils.retry import RetryConfig
from saasguard.events import EventBus, EventRecorder
from saasguard.security.credentials import PlaintextCipher
from saasguard.storage import (
    APPS,
    IDENTITY_PROVIDERS,
    OAUTH_TOKENS,
    USER_APP_ACCESS,
    USERS,
    MemoryStorage,
)


TENANT_ID = "tenant-1"


@pytest.fixture
def storage() -> MemoryStorage:
    """Provide an empty in-memory record store."""
    return MemoryStorage()


@pytest.fixture
def cipher() -> PlaintextCipher:
    """Provide a pass-through cipher so stored secrets stay readable."""
    return PlaintextCipher()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def events(recorder: EventRecorder) -> EventBus:
    """Provide an event bus that records everything it emits."""
    return EventBus([recorder])


@pytest.fixture
def tenant_id() -> str:
    return TENANT_ID


@pytest.fixture
def users(storage: MemoryStorage) -> Dict[str, Dict[str, Any]]:
    """Create a departing user, a manager and an IT operator."""
    return {
        "jane": storage.create(
            USERS,
            {"tenant_id": TENANT_ID, "email": "jane@acme.com", "name": "Jane Doe", "role": "user"},
        ),
        "bob": storage.create(
            USERS,
            {"tenant_id": TENANT_ID, "email": "bob@acme.com", "name": "Bob Smith", "role": "user"},
        ),
        "admin": storage.create(
            USERS,
            {"tenant_id": TENANT_ID, "email": "it@acme.com", "name": "IT Admin", "role": "admin"},
        ),
    }


@pytest.fixture
def apps(storage: MemoryStorage) -> Dict[str, Dict[str, Any]]:
    """Create catalog apps in each approval state."""
    return {
        "slack": storage.create(
            APPS,
            {
                "tenant_id": TENANT_ID,
                "name": "Slack",
                "vendor": "Slack Technologies",
                "approval_status": "approved",
                "category": "collaboration",
                "risk_score": 20,
                "external_id": "slack-ext",
            },
        ),
        "dropbox": storage.create(
            APPS,
            {
                "tenant_id": TENANT_ID,
                "name": "Dropbox",
                "vendor": "Dropbox",
                "approval_status": "pending",
                "risk_score": 40,
                "external_id": "dropbox-ext",
            },
        ),
        "salesforce": storage.create(
            APPS,
            {
                "tenant_id": TENANT_ID,
                "name": "Salesforce",
                "vendor": "Salesforce",
                "approval_status": "approved",
                "category": "crm",
                "risk_score": 80,
                "external_id": "sf-ext",
            },
        ),
    }


@pytest.fixture
def grant_access(storage: MemoryStorage):
    """Factory creating an active SSO access record linking a user to an app."""

    def create(user: Dict[str, Any], app: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        return storage.create(
            USER_APP_ACCESS,
            {
                "tenant_id": TENANT_ID,
                "user_id": user["id"],
                "app_id": app["id"],
                "app_name": app["name"],
                "access_type": "sso",
                "granted_at": "2024-01-01T00:00:00+00:00",
                "last_access_at": "2024-06-01T00:00:00+00:00",
                "permissions": [],
                "roles": [],
                "status": "active",
                **extra,
            },
        )

    return create


@pytest.fixture
def store_token(storage: MemoryStorage):
    """Factory creating a stored OAuth token record for a user and app."""

    def create(
        user: Dict[str, Any],
        app: Dict[str, Any],
        idp_id: Optional[str] = None,
        token_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return storage.create(
            OAUTH_TOKENS,
            {
                "tenant_id": TENANT_ID,
                "user_id": user["id"],
                "app_id": app["id"],
                "app_name": app["name"],
                "scopes": ["openid"],
                "idp_metadata": {"idp_id": idp_id, "token_id": token_id},
                "status": "active",
            },
        )

    return create


IDP_DEFAULTS = {
    "azuread": {"tenant_domain": "acme.onmicrosoft.com", "client_id": "azure-client"},
    "google": {"client_id": "", "config": {"admin_email": "admin@acme.com"}},
    "okta": {"tenant_domain": "acme.okta.com", "client_id": ""},
}


@pytest.fixture
def create_idp(storage: MemoryStorage):
    """Factory creating an active identity provider record."""

    def create(provider_type: str, **extra: Any) -> Dict[str, Any]:
        return storage.create(
            IDENTITY_PROVIDERS,
            {
                "tenant_id": TENANT_ID,
                "name": f"{provider_type} idp",
                "type": provider_type,
                "status": "active",
                "client_secret": "secret",
                "sync_enabled": True,
                "sync_status": "idle",
                **IDP_DEFAULTS[provider_type],
                **extra,
            },
        )

    return create


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry policy with no wait between attempts."""
    return RetryConfig(max_attempts=3, initial_delay=0.0)


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Provide a sample identity provider configuration."""
    return {
        "tenant_id": TENANT_ID,
        "identity_providers": [
            {
                "name": "Corporate Azure AD",
                "type": "azuread",
                "client_id": "azure-client",
                "client_secret": "${AZURE_CLIENT_SECRET}",
                "tenant_domain": "acme.onmicrosoft.com",
                "sync_interval": 3600,
            },
            {
                "name": "Okta",
                "type": "okta",
                "client_secret": "okta-api-token",
                "tenant_domain": "acme.okta.com",
            },
        ],
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, sample_config: Dict[str, Any]) -> Path:
    """Create a temporary config file for testing."""
    config_file = tmp_path / "saasguard.yaml"
    with open(config_file, "w") as f:
        yaml.dump(sample_config, f)

    return config_file
