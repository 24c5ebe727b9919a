"""Record storage used by the discovery and lifecycle services."""

from saasguard.storage.base import (
    APPS,
    AUTO_REVOKE_RECORDS,
    IDENTITY_PROVIDERS,
    OAUTH_TOKENS,
    OFFBOARDING_REQUESTS,
    OFFBOARDING_TASKS,
    PLAYBOOKS,
    USER_APP_ACCESS,
    USERS,
    Storage,
    StorageError,
    utc_now,
)
from saasguard.storage.memory import MemoryStorage
from saasguard.storage.sqlite import SQLiteStorage

__all__ = [
    "APPS",
    "AUTO_REVOKE_RECORDS",
    "IDENTITY_PROVIDERS",
    "OAUTH_TOKENS",
    "OFFBOARDING_REQUESTS",
    "OFFBOARDING_TASKS",
    "PLAYBOOKS",
    "USER_APP_ACCESS",
    "USERS",
    "Storage",
    "StorageError",
    "MemoryStorage",
    "SQLiteStorage",
    "utc_now",
]
