from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .utils import extract_query_tokens, normalize_text

FREEFORM_MIN_LENGTH = 350

ORDER_RE = re.compile(
    r"don\s*hang|don\s*mua|lich\s*su\s*mua|order|van\s*chuyen|giao\s*hang|tracking|ma\s*don"
    r"|huy\s*don|trang\s*thai\s*don|cancel"
)
ADDRESS_RE = re.compile(
    r"dia\s*chi|so\s*dia\s*chi|address|shipping\s*address|dia\s*chi\s*giao|dia\s*chi\s*nhan"
    r"|dia\s*chi\s*mac\s*dinh"
)
FREEFORM_RE = re.compile(
    r"tai\s*sao|vi\s*sao|so\s*sanh|khac\s*nhau|nen\s*chon|tu\s*van|huong\s*dan|cach\s*lam|la\s*gi"
    r"|dung\s*de|nguyen\s*ly|co\s*phai|thong\s*so|how\s*to|why|compare|recommend|advisor|guide"
)
ADD_TO_CART_RE = re.compile(r"(thêm|bỏ|cho)\s+(vào\s+)?(giỏ|gio\s*hang|cart)", re.IGNORECASE)
QUANTITY_UNIT_RE = re.compile(r"\b(\d+)\s*(cái|chiếc|con|pcs|piece|sp|sản phẩm)(?!\w)", re.IGNORECASE)
CART_PHRASE = r"(?:thêm|bỏ|cho|mua|lấy)(?:\s+vào\s+(?:giỏ\s*hàng|giỏ|cart))?"
CART_COUNT_RE = re.compile(
    CART_PHRASE + r"\s+(\d+)(?![\w.,])(?!\s*(?:k|m|u|n|p|µ)?(?:ohm|hz|f|v|a|w|h|Ω)\b)", re.IGNORECASE
)


@dataclass(frozen=True)
class QueryIntent:
    normalized_message: str
    wants_orders: bool = False
    wants_addresses: bool = False
    wants_products: bool = False
    needs_freeform: bool = False

    @property
    def cacheable(self) -> bool:
        """Order and address answers are user- and time-sensitive; never cache them."""
        return not self.wants_orders and not self.wants_addresses


def detect_intent(message: Optional[str]) -> QueryIntent:
    """Purpose: Classify a raw chat message into independent intent flags.
    Inputs/Outputs: Input is the raw message; output is a QueryIntent.
    Side Effects / State: None; pure function.
    Dependencies: Uses normalize_text, extract_query_tokens, and module regexes.
    Failure Modes: Empty message yields all-false flags.
    If Removed: The chat flow cannot decide which context to build or whether the
        deterministic composer may answer.
    Testing Notes: "Đơn hàng của tôi tới đâu rồi" sets wants_orders; long messages
        (> 350 chars) always set needs_freeform.
    """
    # Regex flags run on the accent-free copy; product intent needs at least one token.
    normalized = normalize_text(message)
    return QueryIntent(
        normalized_message=normalized,
        wants_orders=bool(ORDER_RE.search(normalized)),
        wants_addresses=bool(ADDRESS_RE.search(normalized)),
        wants_products=bool(extract_query_tokens(message, normalized)),
        needs_freeform=bool(FREEFORM_RE.search(normalized)) or len(message or "") > FREEFORM_MIN_LENGTH,
    )


def wants_add_to_cart(message: Optional[str]) -> bool:
    """True when the message asks to put something into the cart."""
    return bool(ADD_TO_CART_RE.search(message or ""))


def extract_quantity(message: Optional[str]) -> Optional[int]:
    """Purpose: Read the requested item count from a cart message.
    Inputs/Outputs: Input is the raw message; output is a positive int or None.
    Failure Modes: Component values ("10k", "100 uF") and part numbers ("IC 555")
        are not counts; None lets the caller default to 1.
    Testing Notes: "thêm 3 cái điện trở 10k vào giỏ" -> 3.
    """
    # Counts with a unit win; a bare number only counts right after the cart phrase.
    text = message or ""
    match = QUANTITY_UNIT_RE.search(text) or CART_COUNT_RE.search(text)
    if not match:
        return None
    quantity = int(match.group(1))
    return quantity if quantity > 0 else None
