"""Lookups used by the core, expressed over the keyed-record API."""

from typing import Any, Dict, List, Optional

from saasguard.storage.base import (
    APPS,
    IDENTITY_PROVIDERS,
    OAUTH_TOKENS,
    OFFBOARDING_REQUESTS,
    OFFBOARDING_TASKS,
    USER_APP_ACCESS,
    USERS,
    Storage,
)

Record = Dict[str, Any]


def get_user(storage: Storage, user_id: str) -> Optional[Record]:
    return storage.get(USERS, user_id)


def get_user_by_email(storage: Storage, tenant_id: str, email: str) -> Optional[Record]:
    """Find a tenant user by email, case-insensitively."""
    wanted = (email or "").lower()
    for user in storage.find(USERS, tenant_id=tenant_id):
        if (user.get("email") or "").lower() == wanted:
            return user
    return None


def get_app(storage: Storage, tenant_id: str, app_id: str) -> Optional[Record]:
    app = storage.get(APPS, app_id)
    if app and app.get("tenant_id") == tenant_id:
        return app
    return None


def list_apps(storage: Storage, tenant_id: str) -> List[Record]:
    return storage.find(APPS, tenant_id=tenant_id)


def get_app_by_external_id(storage: Storage, tenant_id: str, external_id: str) -> Optional[Record]:
    return storage.first(APPS, tenant_id=tenant_id, external_id=external_id)


def get_user_app_access(
    storage: Storage, tenant_id: str, user_id: str, app_id: str
) -> Optional[Record]:
    return storage.first(USER_APP_ACCESS, tenant_id=tenant_id, user_id=user_id, app_id=app_id)


def list_user_app_access(storage: Storage, tenant_id: str, user_id: str) -> List[Record]:
    return storage.find(USER_APP_ACCESS, tenant_id=tenant_id, user_id=user_id)


def list_app_users(storage: Storage, tenant_id: str, app_id: str) -> List[Record]:
    return storage.find(USER_APP_ACCESS, tenant_id=tenant_id, app_id=app_id)


def delete_user_app_access(storage: Storage, tenant_id: str, user_id: str, app_id: str) -> int:
    """Delete every access record linking a user to an app.

    Returns:
        Number of records removed
    """
    removed = 0
    for access in storage.find(USER_APP_ACCESS, tenant_id=tenant_id, user_id=user_id, app_id=app_id):
        if storage.delete(USER_APP_ACCESS, access["id"]):
            removed += 1
    return removed


def get_oauth_token(
    storage: Storage, tenant_id: str, user_id: str, app_id: str
) -> Optional[Record]:
    return storage.first(OAUTH_TOKENS, tenant_id=tenant_id, user_id=user_id, app_id=app_id)


def list_oauth_tokens(
    storage: Storage, tenant_id: str, user_id: str, app_id: Optional[str] = None
) -> List[Record]:
    filters = {"tenant_id": tenant_id, "user_id": user_id}
    if app_id is not None:
        filters["app_id"] = app_id
    return storage.find(OAUTH_TOKENS, **filters)


def get_identity_provider(storage: Storage, tenant_id: str, provider_id: str) -> Optional[Record]:
    provider = storage.get(IDENTITY_PROVIDERS, provider_id)
    if provider and provider.get("tenant_id") == tenant_id:
        return provider
    return None


def list_identity_providers(
    storage: Storage, tenant_id: str, active_only: bool = False
) -> List[Record]:
    providers = storage.find(IDENTITY_PROVIDERS, tenant_id=tenant_id)
    if active_only:
        providers = [p for p in providers if p.get("status") == "active"]
    return providers


def get_offboarding_request(storage: Storage, tenant_id: str, request_id: str) -> Optional[Record]:
    request = storage.get(OFFBOARDING_REQUESTS, request_id)
    if request and request.get("tenant_id") == tenant_id:
        return request
    return None


def list_offboarding_tasks(storage: Storage, request_id: str) -> List[Record]:
    return storage.find(OFFBOARDING_TASKS, request_id=request_id)
