"""In-process storage backed by dictionaries."""

import copy
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional

from saasguard.storage.base import Storage, utc_now


class MemoryStorage(Storage):
    """Dictionary-backed store for tests, dry runs and short-lived CLI use."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections[collection].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._collections[collection].values()
                if self._matches(record, filters)
            ]

    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = self._prepare_new(record)
        with self._lock:
            self._collections[collection][prepared["id"]] = copy.deepcopy(prepared)
        return prepared

    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections[collection].get(record_id)
            if record is None:
                return None
            record.update(copy.deepcopy(changes))
            record["updated_at"] = utc_now()
            return copy.deepcopy(record)

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._collections[collection].pop(record_id, None) is not None
