"""
Upstream name -> admin resource path cache.

One lock covers the whole resolve-or-list-and-populate sequence; callers
hold `cache.lock` around it:

    with cache.lock:
        path = cache.get(name)
        if path is None:
            cache.warm(list_upstreams())
            path = cache.get(name)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Optional

__all__ = ["UpstreamIdCache"]


class UpstreamIdCache:
    """
    In-memory map of logical upstream names to `upstreams/<id>` paths.

    Entries are added on listing or creation and overwritten whenever a later
    listing sees the same name. They are never evicted; a stale entry shows up
    as a gateway error on the next write.
    """

    def __init__(self, collection: str = "upstreams", *, logger: Optional[logging.Logger] = None) -> None:
        self.collection = collection
        self.lock = threading.Lock()
        self._paths: Dict[str, str] = {}
        self.logger = logger or logging.getLogger("as.cache")

    def __contains__(self, name: object) -> bool:
        return name in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def get(self, name: str) -> Optional[str]:
        return self._paths.get(name)

    def put(self, name: str, path: str) -> None:
        self._paths[name] = path

    def snapshot(self) -> Dict[str, str]:
        return dict(self._paths)

    def path_for(self, record: Dict[str, Any]) -> Optional[str]:
        """`upstreams/<id>` for a listing record; id falls back to the last `key` segment."""
        rid = record.get("id")
        if rid in (None, ""):
            key = str(record.get("key") or "")
            rid = key.rstrip("/").rsplit("/", 1)[-1] if key else None
        if rid in (None, ""):
            return None
        return f"{self.collection}/{rid}"

    def warm(self, records: Iterable[Dict[str, Any]]) -> int:
        """Index every named record; returns how many were indexed."""
        count = 0
        for rec in records:
            name = rec.get("name")
            path = self.path_for(rec)
            if not name or not path:
                continue
            self._paths[str(name)] = path
            count += 1
        self.logger.debug("Upstream cache warmed: indexed=%d total=%d", count, len(self._paths))
        return count
