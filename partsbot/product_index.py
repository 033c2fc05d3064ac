from __future__ import annotations

"""Time-bounded, in-memory token index over the product catalog.

The scorer never queries the catalog per request; it reads this projection,
which is rebuilt wholesale from one bulk catalog read at most once per TTL.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol

from .utils import extract_value_tokens, normalize_code, tokenize

logger = logging.getLogger("partsbot.product_index")


class CatalogSource(Protocol):
    def load_products(self) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class TokenSets:
    name: FrozenSet[str]
    category: FrozenSet[str]
    description: FrozenSet[str]
    value: FrozenSet[str]
    all: FrozenSet[str]


@dataclass(frozen=True)
class ProductIndexEntry:
    """Immutable search projection of one catalog product."""
    product_id: str
    name: str
    code: Optional[str]
    category: Optional[str]
    description: str
    price: float
    stock: int
    image: Optional[str]
    code_normalized: str
    tokens: TokenSets


def _price_of(record: Mapping[str, Any]) -> float:
    price = record.get("price")
    if isinstance(price, Mapping):
        for key in ("salePrice", "originalPrice"):
            value = price.get(key)
            if isinstance(value, (int, float)):
                return float(value)
        return 0.0
    if isinstance(price, (int, float)):
        return float(price)
    return 0.0


def build_index_entry(record: Mapping[str, Any]) -> ProductIndexEntry:
    """Purpose: Project a catalog record into a ProductIndexEntry with token sets.
    Inputs/Outputs: Input is a catalog record (id, name, category, code, price,
        stock, images, description); output is a frozen entry.
    Side Effects / State: None.
    Dependencies: Uses tokenize, extract_value_tokens, normalize_code.
    Failure Modes: Missing fields become empty strings, 0 price or 0 stock.
    If Removed: The index cannot be rebuilt and scoring has nothing to read.
    Testing Notes: "Điện trở 10k" yields name tokens {dien, tro, 10k} and value {10k}.
    """
    # Build per-field token sets; value tokens come from name, description, and code.
    name = str(record.get("name") or "")
    category = str(record.get("category") or "")
    description = str(record.get("description") or "")
    code = str(record.get("code") or "")
    name_tokens = frozenset(tokenize(name))
    category_tokens = frozenset(tokenize(category))
    description_tokens = frozenset(tokenize(description))
    value_tokens = frozenset(
        extract_value_tokens(name) + extract_value_tokens(description) + extract_value_tokens(code)
    )
    code_normalized = normalize_code(code)
    all_tokens = set(name_tokens | category_tokens | description_tokens)
    if code_normalized:
        all_tokens.add(code_normalized)

    images = record.get("images")
    stock = record.get("stock")
    return ProductIndexEntry(
        product_id=str(record.get("_id") or record.get("id") or ""),
        name=name,
        code=code or None,
        category=category or None,
        description=description,
        price=_price_of(record),
        stock=int(stock) if isinstance(stock, (int, float)) else 0,
        image=images[0] if isinstance(images, list) and images else None,
        code_normalized=code_normalized,
        tokens=TokenSets(
            name=name_tokens,
            category=category_tokens,
            description=description_tokens,
            value=value_tokens,
            all=frozenset(all_tokens),
        ),
    )


class ProductIndex:
    """TTL-bounded cache of ProductIndexEntry built from one bulk catalog read."""

    def __init__(
        self,
        source: CatalogSource,
        ttl_sec: float = 120.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Optional[List[ProductIndexEntry]] = None
        self._expires_at = 0.0

    def get_index(self) -> List[ProductIndexEntry]:
        """Purpose: Return the cached index, rebuilding it on miss or expiry.
        Inputs/Outputs: No inputs; returns the list of entries.
        Side Effects / State: On refresh, replaces the cached list and expiry.
        Dependencies: Calls CatalogSource.load_products and build_index_entry.
        Failure Modes: Catalog read errors propagate; nothing is cached on failure
            and an expired list is never served.
        If Removed: Every chat turn would hit the catalog store directly.
        Testing Notes: Advance the clock past the TTL and assert a second bulk read.
        """
        # Serve from cache while fresh; the bulk read happens outside the lock.
        now = self._clock()
        with self._lock:
            if self._entries is not None and now < self._expires_at:
                return self._entries

        records = self._source.load_products()
        entries = [build_index_entry(record) for record in records]
        with self._lock:
            self._entries = entries
            self._expires_at = now + self._ttl_sec
        logger.info("product_index refreshed entries=%s ttl=%ss", len(entries), self._ttl_sec)
        return entries

    def invalidate(self) -> None:
        with self._lock:
            self._entries = None
            self._expires_at = 0.0
