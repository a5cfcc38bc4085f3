"""Explicit per-run cache for remote collections.

Lookups such as "all Autopilot devices" are expensive on large tenants and are needed several
times in one run (planning, then resolving ids). The cache is an object handed to whoever needs
it, lives for one run, and is cleared with `invalidate()` after any mutation.
"""

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class RunCache:
    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self.hits = 0
        self.misses = 0

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        value = loader()
        self._entries[key] = value
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one entry, or everything when no key is given."""
        if key is None:
            if self._entries:
                logger.debug("Invalidating %d cached collection(s)", len(self._entries))
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
