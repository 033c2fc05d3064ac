from __future__ import annotations

"""Short-lived reply caches for chat turns and vision extractions."""

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Sequence, TypeVar

from .models import HistoryItem
from .utils import normalize_for_search

T = TypeVar("T")

IMAGE_KEY_MESSAGE_CHARS = 80


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Lock-guarded TTL map with sweep-on-access and a hard size cap."""

    def __init__(
        self,
        ttl_sec: float,
        max_entries: int = 200,
        evict_batch: int = 50,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_sec = ttl_sec
        self._max_entries = max_entries
        self._evict_batch = evict_batch
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _prune(self, now: float) -> None:
        """Purpose: Drop expired entries and enforce the size cap.
        Inputs/Outputs: Input is the current time; no return value.
        Side Effects / State: Mutates _entries; caller holds the lock.
        Dependencies: Relies on dict insertion order for oldest-first eviction.
        Failure Modes: None.
        If Removed: Memory grows without bound under sustained unique traffic.
        Testing Notes: Insert max_entries + 1 keys and expect evict_batch of the oldest gone.
        """
        # Expiry sweep first, then trim the oldest insertions when over the cap.
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) > self._max_entries:
            for key in list(self._entries)[: self._evict_batch]:
                del self._entries[key]

    def get(self, key: str) -> Optional[T]:
        # now == expires_at counts as expired.
        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: T) -> None:
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=value, expires_at=now + self._ttl_sec)
            if len(self._entries) > self._max_entries:
                self._prune(now)


def chat_cache_key(
    user_id: str,
    model: str,
    message: str,
    image_url: Optional[str],
    history: Sequence[HistoryItem],
) -> str:
    """Purpose: Hash everything that can change a chat reply into a cache key.
    Inputs/Outputs: Inputs are user id, model name, message, image URL, and the trimmed
        history; output is a sha256 hex digest.
    Side Effects / State: None.
    Dependencies: Uses json.dumps with sorted keys for a stable payload.
    Failure Modes: None.
    If Removed: Replies could be served across users or after history changes.
    Testing Notes: Different users with the same message must get different keys.
    """
    # Serialize a stable payload; the digest hides message content in the key.
    payload = {
        "userId": user_id,
        "model": model,
        "message": message or "",
        "imageUrl": image_url or "",
        "history": [{"role": item.role, "content": item.content} for item in history],
    }
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def image_cache_key(image_url: str, message: Optional[str]) -> str:
    normalized = normalize_for_search(message or "")[:IMAGE_KEY_MESSAGE_CHARS]
    return f"{image_url}::{normalized}"
