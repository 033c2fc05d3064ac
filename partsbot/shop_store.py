from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .errors import CartError
from .models import Cart, CartItem
from .product_index import ProductIndex

logger = logging.getLogger("partsbot.shop_store")


class OrderSource(Protocol):
    def find_orders_for_user(self, user_id: str) -> List[Dict[str, Any]]: ...


class AddressSource(Protocol):
    def get_addresses(self, user_id: str) -> List[Dict[str, Any]]: ...


class CartService(Protocol):
    def add_item(self, user_id: str, product_id: str, quantity: int) -> Cart: ...


class ShopStore:
    """JSON-file backed orders, addresses, and carts for a single-process deployment."""

    def __init__(self, path: Optional[Path], index: ProductIndex) -> None:
        """Purpose: Initialize the store and hydrate from disk if available.
        Inputs/Outputs: Inputs are an optional file path and the product index used
            for cart validation; no return.
        Side Effects / State: Loads orders/addresses/carts into memory.
        Dependencies: Calls _load; ProductIndex for product existence and stock.
        Failure Modes: A corrupt file is logged and leaves empty caches.
        If Removed: Order, address, and cart collaborators have no implementation.
        Testing Notes: Point at a temp file and verify carts persist across instances.
        """
        # Keep configuration and preload persisted data if present.
        self._path = path
        self._index = index
        self._lock = threading.Lock()
        self._orders: Dict[str, List[Dict[str, Any]]] = {}
        self._addresses: Dict[str, List[Dict[str, Any]]] = {}
        self._carts: Dict[str, List[CartItem]] = {}
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted shop data from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates _orders, _addresses, _carts.
        Dependencies: Uses json.loads and CartItem for validation.
        Failure Modes: Missing file or JSONDecodeError results in an empty store.
        If Removed: Seeded orders and saved carts are never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate caches.
        """
        # Read and decode persisted JSON if present.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("shop data unreadable file=%s error=%s", self._path.name, exc.msg)
            return
        for user_id, orders in (data.get("orders") or {}).items():
            self._orders[user_id] = [order for order in orders if isinstance(order, dict)]
        for user_id, addresses in (data.get("addresses") or {}).items():
            self._addresses[user_id] = [addr for addr in addresses if isinstance(addr, dict)]
        for user_id, items in (data.get("carts") or {}).items():
            self._carts[user_id] = [CartItem(**item) for item in items]

    def _persist(self, carts: Dict[str, List[CartItem]]) -> None:
        """Purpose: Persist in-memory shop data to disk.
        Inputs/Outputs: Input is the cart table to write; writes to self._path.
        Side Effects / State: Writes a JSON file with orders/addresses/carts; in-memory
            state is not touched.
        Dependencies: Uses json.dumps and Path.write_text.
        Failure Modes: IO errors raise exceptions (not caught here).
        If Removed: Carts are lost on restart.
        Testing Notes: Ensure the file is created and JSON structure matches models.
        """
        # Serialize orders, addresses, and the given cart table.
        if not self._path:
            return
        payload = {
            "orders": self._orders,
            "addresses": self._addresses,
            "carts": {
                user_id: [item.model_dump() for item in items] for user_id, items in carts.items()
            },
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def find_orders_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(order) for order in self._orders.get(user_id, [])]

    def get_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(addr) for addr in self._addresses.get(user_id, [])]

    def get_cart(self, user_id: str) -> Cart:
        with self._lock:
            return Cart(userId=user_id, items=[item.model_copy() for item in self._carts.get(user_id, [])])

    def add_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        """Purpose: Add a product to the user's cart after stock validation.
        Inputs/Outputs: Inputs are user id, product id, and quantity; output is the
            updated Cart.
        Side Effects / State: Persists the updated cart, then swaps it into memory.
        Dependencies: Uses ProductIndex to resolve the product and its stock.
        Failure Modes: CartError when the product is unknown, out of stock, or the
            requested total exceeds stock; IO errors from _persist propagate and leave
            the in-memory cart unchanged.
        If Removed: Confirmed ADD_TO_CART actions cannot execute.
        Testing Notes: Adding more than the stock raises CartError and leaves the cart unchanged.
        """
        # Validate against the current index, then merge with any existing line.
        entry = next((item for item in self._index.get_index() if item.product_id == product_id), None)
        if entry is None:
            raise CartError("Sản phẩm không tồn tại")
        if entry.stock <= 0:
            raise CartError("Sản phẩm đã hết hàng")

        with self._lock:
            items = [item.model_copy() for item in self._carts.get(user_id, [])]
            existing = next((item for item in items if item.productId == product_id), None)
            current = existing.quantity if existing else 0
            if current + quantity > entry.stock:
                raise CartError(f"Chỉ còn {entry.stock} sản phẩm trong kho")
            if existing:
                existing.quantity = current + quantity
            else:
                items.append(CartItem(productId=product_id, quantity=quantity))
            carts = {**self._carts, user_id: items}
            self._persist(carts)
            self._carts = carts
            cart = Cart(userId=user_id, items=[item.model_copy() for item in items])
        logger.info("cart updated user=%s product=%s quantity=%s", user_id, product_id, quantity)
        return cart
