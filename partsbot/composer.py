from __future__ import annotations

"""Deterministic reply rendering: product/order/address bullets and vision summaries.

These renderers answer high-confidence, low-ambiguity turns without calling the
LLM. Output is plain bullet text with no markdown emphasis.
"""

import re
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .intent import QueryIntent
from .models import PartDescriptor, ProductCard
from .scoring import SearchMeta
from .utils import format_vnd

MAX_ORDER_LINES = 5

SINGLE_PRODUCT_HEADER = "Gợi ý sản phẩm"
PRODUCT_LIST_HEADER = "Danh sách sản phẩm phù hợp:"
CLARIFY_PROMPT = "Bạn cho mình thêm mã hoặc thông số (giá trị, loại linh kiện) để lọc chính xác hơn nhé."
NOT_FOUND_LINE = "Chưa tìm thấy sản phẩm phù hợp."
NOT_FOUND_HINT = "Bạn cho mình thêm mã sản phẩm, giá trị linh kiện hoặc loại linh kiện nhé."
UNCERTAIN_HEADER = "Mình tìm thấy {count} sản phẩm có thể liên quan nhưng chưa chắc chắn."

RELEVANT_CODES_RE = re.compile(r"RELEVANT_CODES:\s*\[(.*?)\]")
RELEVANT_CODES_LINE_RE = re.compile(r"RELEVANT_CODES:.*(\n|$)")


def format_product_bullet(card: ProductCard) -> str:
    """One product per line: name | code | price | stock."""
    return f"- {card.name or 'N/A'} | {card.code or 'N/A'} | {format_vnd(card.price)} | Tồn kho {card.stock}"


def _timestamp(value: Any) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def format_order_lines(orders: Sequence[Mapping[str, Any]]) -> List[str]:
    """Purpose: Render the user's most recent orders as bullet lines.
    Inputs/Outputs: Input is the order history; output is at most 5 lines, newest first.
    Side Effects / State: None.
    Dependencies: Uses _timestamp for createdAt/status.ordered ordering.
    Failure Modes: Missing fields render as N/A; unparseable dates sort last.
    If Removed: Order questions cannot be answered deterministically.
    Testing Notes: Cancelled orders carry the "(ĐÃ HỦY)" marker.
    """
    # Sort on createdAt, falling back to the ordered status timestamp.
    def order_time(order: Mapping[str, Any]) -> float:
        status = order.get("status") or {}
        return _timestamp(order.get("createdAt") or status.get("ordered"))

    lines: List[str] = []
    for order in sorted(orders, key=order_time, reverse=True)[:MAX_ORDER_LINES]:
        status = order.get("status") or {}
        code = order.get("code") or str(order.get("_id") or "")
        cancelled = " (ĐÃ HỦY)" if order.get("isCancelled") else ""
        total = order.get("totalPrice")
        total_text = format_vnd(total) if isinstance(total, (int, float)) else "N/A"
        shipped = "đã shipped" if status.get("shipped") else "chưa shipped"
        payment = f"payment={order.get('payment') or 'N/A'}"
        payment_status = f"paymentStatus={order.get('paymentStatus') or 'N/A'}"
        lines.append(f"- {code}{cancelled} | {shipped} | {payment} | {payment_status} | total={total_text}")
    return lines


def format_address_lines(addresses: Sequence[Mapping[str, Any]]) -> List[str]:
    """Render saved addresses, default address first."""
    ordered = sorted(addresses, key=lambda addr: 0 if addr.get("isDefault") else 1)
    lines: List[str] = []
    for addr in ordered:
        receiver = addr.get("name") or "Người nhận"
        phone = addr.get("phone") or "N/A"
        line1 = ", ".join(str(part) for part in (addr.get("street"), addr.get("ward"), addr.get("district"), addr.get("city")) if part)
        kind = f" | {addr['type']}" if addr.get("type") else ""
        default = " (mặc định)" if addr.get("isDefault") else ""
        lines.append(f"- {receiver} | {phone} | {line1 or 'Địa chỉ trống'}{kind}{default}")
    return lines


def compose_deterministic_reply(
    intent: QueryIntent,
    cards: Sequence[ProductCard],
    meta: Optional[SearchMeta],
    order_lines: Sequence[str],
    address_lines: Sequence[str],
) -> Optional[str]:
    """Purpose: Render a bullet reply from resolved context without the LLM.
    Inputs/Outputs: Inputs are intent flags, product cards, search meta, and order/
        address lines; output is the reply text or None when no section applies.
    Side Effects / State: None.
    Dependencies: Uses format_product_bullet and module reply constants.
    Failure Modes: None; empty sections render explicit "none" lines.
    If Removed: Every turn pays LLM latency and cost, even exact code lookups.
    Testing Notes: Low-confidence product results produce the clarifying prompt and no
        product list; zero candidates produce the not-found message.
    """
    # Sections appear in a fixed order: orders, addresses, products.
    lines: List[str] = []
    if intent.wants_orders:
        lines.append("Đơn hàng gần đây:")
        lines.extend(order_lines or ["- Không có đơn hàng nào."])

    if intent.wants_addresses:
        lines.append("Địa chỉ đã lưu:")
        lines.extend(address_lines or ["- Chưa có địa chỉ nào."])

    if intent.wants_products:
        if not cards:
            lines.append(NOT_FOUND_LINE)
            lines.append(NOT_FOUND_HINT)
        elif meta is not None and not meta.confident:
            lines.append(UNCERTAIN_HEADER.format(count=meta.total_candidates or len(cards)))
            lines.append(CLARIFY_PROMPT)
        else:
            lines.append(SINGLE_PRODUCT_HEADER if len(cards) == 1 else PRODUCT_LIST_HEADER)
            lines.extend(format_product_bullet(card) for card in cards)

    if not lines:
        return None
    return "\n".join(lines)


def _part_label(part: PartDescriptor, include_notes: bool) -> str:
    name = " / ".join(piece for piece in (part.vietnameseName, part.name) if piece)
    pieces = [name, part.value]
    if include_notes:
        pieces.append(part.notes)
    return " - ".join(piece for piece in pieces if piece) or "Linh kiện"


def compose_vision_reply(
    parts: Sequence[PartDescriptor],
    cards: Sequence[ProductCard],
    raw: Optional[str] = None,
) -> str:
    """Purpose: Summarise an image analysis: detected parts, then stock matches.
    Inputs/Outputs: Inputs are extracted parts, matched cards, and the raw LLM text;
        output is the reply text.
    Side Effects / State: None.
    Dependencies: Uses _part_label.
    Failure Modes: With no parts, shows the raw text (if any) or photo tips.
    If Removed: Image turns return cards with no explanation.
    Testing Notes: Parts with no stock match list the missing components.
    """
    # Step 1 lists what the model saw; step 2 what the shop stocks.
    lines: List[str] = []
    if not parts:
        if raw and len(raw) > 10:
            lines.append("❌ Không thể phân tích JSON từ ảnh. Dữ liệu không rõ ràng:")
            lines.append(raw)
        else:
            lines.append("❌ Không phát hiện linh kiện nào trong ảnh. Vui lòng:")
            lines.append("• Chụp rõ hơn")
            lines.append("• Chụp sơ đồ mạch hoặc hình ảnh linh kiện thực tế")
            lines.append("• Đảm bảo sáng đủ")
        return "\n".join(lines)

    lines.append(f"📸 Phân tích ảnh: Tìm thấy {len(parts)} linh kiện")
    lines.append("")
    lines.extend(f"• {_part_label(part, include_notes=True)}" for part in parts)
    lines.append("")

    if cards:
        lines.append("✅ Sản phẩm tìm thấy trong kho:")
        lines.append("")
        for card in cards:
            stock = f"✓ Còn {card.stock}" if card.stock > 0 else "❌ Hết hàng"
            lines.append(f"• {card.name} ({card.code or 'N/A'}) - {format_vnd(card.price)} - {stock}")
    else:
        lines.append("⚠️ CẢNH BÁO: Thiếu linh kiện trong kho")
        lines.append("")
        lines.append("Linh kiện cần tìm:")
        lines.extend(f"• {_part_label(part, include_notes=False)}" for part in parts)
        lines.append("")
        lines.append("Giải pháp:")
        lines.append("1. Liên hệ bộ phận kỹ thuật để nhập hàng")
        lines.append("2. Tìm linh kiện thay thế tương đương")
        lines.append("3. Kiểm tra lại danh sách linh kiện cần thiết")
    return "\n".join(lines)


def sanitize_reply(text: str) -> str:
    """Strip markdown emphasis and code ticks the client cannot render."""
    if not text:
        return text
    return re.sub(r"`{1,3}", "", text.replace("**", "").replace("*", "")).strip()


def split_relevant_codes(reply: str) -> Tuple[str, Optional[List[str]]]:
    """Purpose: Separate the hidden RELEVANT_CODES control line from an LLM reply.
    Inputs/Outputs: Input is raw reply text; output is (visible reply, codes or None).
        None means the line was absent; [] means the model found nothing relevant.
    Side Effects / State: None.
    Dependencies: Uses RELEVANT_CODES_RE.
    Failure Modes: None.
    If Removed: The control line leaks to users and cards are never narrowed.
    Testing Notes: "x\\nRELEVANT_CODES: [A, 'B']" -> ("x", ["A", "B"]).
    """
    # Codes may be quoted or bare; the control line is removed from the reply.
    match = RELEVANT_CODES_RE.search(reply or "")
    if not match:
        return reply, None
    codes = [code.strip().strip("'\"").strip() for code in match.group(1).split(",")]
    visible = RELEVANT_CODES_LINE_RE.sub("", reply, count=1).strip()
    return visible, [code for code in codes if code]
