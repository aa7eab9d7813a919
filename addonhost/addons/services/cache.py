from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger("addonhost.addons.cache")

ADDONS_KEY = "addons"
HOOKS_KEY = "hooks"


class AddonCache:
    """
    Process-local cache for derived addon views (addon list, hook table).

    Invalidation is explicit: the lifecycle service deletes keys after every
    mutating operation instead of relying on expiry.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                logger.debug("Cache key '%s' invalidated", key)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
