"""Keyed-record storage interface.

The core treats persistence as an opaque CRUD API over named collections
of dict records. Lookups are expressed as equality filters; there is no
query language.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

USERS = "users"
APPS = "apps"
USER_APP_ACCESS = "user_app_access"
OAUTH_TOKENS = "oauth_tokens"
IDENTITY_PROVIDERS = "identity_providers"
PLAYBOOKS = "offboarding_playbooks"
OFFBOARDING_REQUESTS = "offboarding_requests"
OFFBOARDING_TASKS = "offboarding_tasks"
AUTO_REVOKE_RECORDS = "auto_revoke_records"


class StorageError(Exception):
    """Raised when the backing store cannot be read or written."""

    pass


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (the storage timestamp format)."""
    return datetime.now(timezone.utc).isoformat()


def new_record_id() -> str:
    return uuid.uuid4().hex


class Storage(ABC):
    """Abstract keyed-record store."""

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one record by id.

        Args:
            collection: Collection name
            record_id: Record id

        Returns:
            A copy of the record, or None if missing
        """

    @abstractmethod
    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        """List records whose fields equal all given filter values.

        Args:
            collection: Collection name
            **filters: Field name to required value

        Returns:
            Copies of matching records in insertion order
        """

    @abstractmethod
    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record, assigning ``id`` and ``created_at`` if absent.

        Returns:
            A copy of the stored record
        """

    @abstractmethod
    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Merge ``changes`` into a record and stamp ``updated_at``.

        Returns:
            A copy of the updated record, or None if missing
        """

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record.

        Returns:
            True if a record was removed
        """

    def first(self, collection: str, **filters: Any) -> Optional[Dict[str, Any]]:
        """Return the first record matching the filters, or None."""
        matches = self.find(collection, **filters)
        return matches[0] if matches else None

    @staticmethod
    def _prepare_new(record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = dict(record)
        prepared.setdefault("id", new_record_id())
        prepared.setdefault("created_at", utc_now())
        return prepared

    @staticmethod
    def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        return all(record.get(key) == value for key, value in filters.items())
