# cache_store.py
"""
Key/value stores for the cached domain list snapshot.

A store keeps text bodies under a string key (the source URL) and honours
the TTL it is given on `put`. Callers never evict entries themselves.
"""

import os
import json
import time
import hashlib
import tempfile
import logging
from typing import Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    def match(self, key: str) -> Optional[str]: ...

    def put(self, key: str, body: str, ttl: int) -> None: ...


class MemoryCacheStore:
    """In-process store; entries expire `ttl` seconds after they are put."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    def match(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires, body = entry
        if self._clock() >= expires:
            del self._entries[key]
            return None
        return body

    def put(self, key: str, body: str, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, body)


class FileCacheStore:
    """
    One JSON file per key inside `directory`:
        { "key": ..., "expires": <unix ts>, "body": ... }
    Lets several workers on the same host share one snapshot.
    """

    def __init__(self, directory: str, clock: Callable[[], float] = time.time):
        self.directory = directory
        self._clock = clock
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self.directory, digest + ".json")

    def match(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable cache file %s: %s", path, e)
            return None
        if not isinstance(entry, dict) or entry.get("key") != key:
            return None
        if self._clock() >= entry.get("expires", 0):
            return None
        return entry.get("body")

    def put(self, key: str, body: str, ttl: int) -> None:
        path = self._path(key)
        # one temp file per writer
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"key": key, "expires": self._clock() + ttl, "body": body}, f)
            # last write wins between workers
            os.replace(tmp, path)
        except Exception:
            os.remove(tmp)
            raise
