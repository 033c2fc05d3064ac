from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from partsbot.assistant import ShoppingAssistant
from partsbot.config import Settings
from partsbot.errors import CartError
from partsbot.models import Cart, CartItem
from partsbot.product_index import ProductIndex

PROMPTS_DIR = Path(__file__).resolve().parents[1] / "partsbot" / "prompts"


def product(
    product_id: str,
    name: str,
    code: Optional[str] = None,
    category: Optional[str] = None,
    description: str = "",
    price: float = 1000,
    stock: int = 10,
) -> Dict[str, Any]:
    return {
        "_id": product_id,
        "name": name,
        "code": code,
        "category": category,
        "description": description,
        "price": {"originalPrice": price},
        "stock": stock,
        "images": [],
    }


DEFAULT_CATALOG = [
    product("p-res-10k", "Điện trở 10k", "RES10K", "resistor", "Điện trở than 10k 1/4W", 300, 1200),
    product("p-res-1k", "Điện trở 1k", "RES1K", "resistor", "Điện trở than 1k 1/4W", 300, 800),
    product("p-cap-100uf", "Tụ hóa 100µF 25V", "CAP100U", "capacitor", "Tụ điện hóa", 1200, 450),
    product("p-ne555", "IC NE555 DIP-8", "NE555", "ic", "IC định thời", 5000, 150),
    product("p-relay", "Relay 5V 1 kênh", "RELAY5V", "relay", "Rơ le 5VDC", 9000, 0),
]


class ManualClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalog:
    def __init__(self, records: Optional[List[Dict[str, Any]]] = None) -> None:
        self.records = list(DEFAULT_CATALOG if records is None else records)
        self.loads = 0
        self.fail_next = False

    def load_products(self) -> List[Dict[str, Any]]:
        self.loads += 1
        if self.fail_next:
            self.fail_next = False
            raise OSError("catalog unavailable")
        return [dict(record) for record in self.records]


class FakeLLM:
    """Scripted LLM: each call pops the next reply; exceptions in the script are raised."""

    model_name = "fake-model"

    def __init__(self, replies: Optional[List[Any]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    def generate_content(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
    ) -> str:
        self.calls.append(
            {
                "contents": contents,
                "system_instruction": system_instruction,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        if not self.replies:
            raise AssertionError("unexpected LLM call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeShop:
    def __init__(self, index: ProductIndex) -> None:
        self.index = index
        self.orders: Dict[str, List[Dict[str, Any]]] = {}
        self.addresses: Dict[str, List[Dict[str, Any]]] = {}
        self.order_reads = 0
        self.add_calls: List[tuple] = []
        self.carts: Dict[str, Dict[str, int]] = {}

    def find_orders_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        self.order_reads += 1
        return list(self.orders.get(user_id, []))

    def get_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self.addresses.get(user_id, []))

    def add_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        if not any(entry.product_id == product_id for entry in self.index.get_index()):
            raise CartError("Sản phẩm không tồn tại")
        self.add_calls.append((user_id, product_id, quantity))
        cart = self.carts.setdefault(user_id, {})
        cart[product_id] = cart.get(product_id, 0) + quantity
        return Cart(
            userId=user_id,
            items=[CartItem(productId=pid, quantity=qty) for pid, qty in cart.items()],
        )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        gemini_api_key="test-key",
        gemini_model="fake-model",
        catalog_path=tmp_path / "catalog.json",
        shop_data_path=tmp_path / "shop.json",
        prompts_dir=PROMPTS_DIR,
    )


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def index(catalog: FakeCatalog, clock: ManualClock) -> ProductIndex:
    return ProductIndex(catalog, ttl_sec=120, clock=clock)


@pytest.fixture
def shop(index: ProductIndex) -> FakeShop:
    return FakeShop(index)


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def assistant(llm: FakeLLM, index: ProductIndex, shop: FakeShop, settings: Settings, clock: ManualClock) -> ShoppingAssistant:
    return ShoppingAssistant(
        llm=llm,
        index=index,
        orders=shop,
        addresses=shop,
        cart=shop,
        settings=settings,
        clock=clock,
    )
