from partsbot.composer import (
    NOT_FOUND_LINE,
    SINGLE_PRODUCT_HEADER,
    compose_deterministic_reply,
    compose_vision_reply,
    format_address_lines,
    format_order_lines,
    format_product_bullet,
    sanitize_reply,
    split_relevant_codes,
)
from partsbot.intent import QueryIntent
from partsbot.models import PartDescriptor, ProductCard
from partsbot.scoring import SearchMeta

NE555 = ProductCard(productId="p1", name="IC NE555", price=5000.0, stock=150, code="NE555")


def test_product_bullet_format():
    assert format_product_bullet(NE555) == "- IC NE555 | NE555 | 5000 VND | Tồn kho 150"


def test_single_confident_product_gets_header():
    intent = QueryIntent(normalized_message="ne555", wants_products=True)
    reply = compose_deterministic_reply(intent, [NE555], SearchMeta(confident=True, total_candidates=1), [], [])
    assert reply.splitlines() == [SINGLE_PRODUCT_HEADER, format_product_bullet(NE555)]


def test_no_candidates_gives_not_found():
    intent = QueryIntent(normalized_message="xyz", wants_products=True)
    reply = compose_deterministic_reply(intent, [], SearchMeta(), [], [])
    assert NOT_FOUND_LINE in reply


def test_nothing_to_say_returns_none():
    assert compose_deterministic_reply(QueryIntent(normalized_message="xin chao"), [], None, [], []) is None


def test_orders_and_addresses_sections():
    intent = QueryIntent(normalized_message="", wants_orders=True, wants_addresses=True)
    reply = compose_deterministic_reply(intent, [], None, [], ["- A | 090 | HCM"])
    assert "- Không có đơn hàng nào." in reply
    assert reply.index("Đơn hàng gần đây:") < reply.index("Địa chỉ đã lưu:")


def test_order_lines_latest_five_newest_first():
    orders = [
        {"code": f"DH{day:02d}", "createdAt": f"2026-09-{day:02d}T08:00:00Z", "totalPrice": 1000 * day}
        for day in range(1, 8)
    ]
    orders[6]["isCancelled"] = True
    orders[6]["status"] = {"shipped": "2026-09-08"}
    lines = format_order_lines(orders)
    assert len(lines) == 5
    assert lines[0] == "- DH07 (ĐÃ HỦY) | đã shipped | payment=N/A | paymentStatus=N/A | total=7000 VND"
    assert lines[-1].startswith("- DH03 ")


def test_order_without_created_at_uses_ordered_status():
    orders = [
        {"code": "OLD", "createdAt": "2026-01-01T00:00:00Z"},
        {"code": "NEW", "status": {"ordered": "2026-05-01T00:00:00Z"}},
    ]
    assert format_order_lines(orders)[0].startswith("- NEW ")


def test_address_lines_default_first():
    addresses = [
        {"name": "B", "phone": "2", "city": "Hà Nội"},
        {"name": "A", "phone": "1", "street": "12 Lê Lợi", "city": "HCM", "type": "home", "isDefault": True},
        {},
    ]
    lines = format_address_lines(addresses)
    assert lines[0] == "- A | 1 | 12 Lê Lợi, HCM | home (mặc định)"
    assert lines[2] == "- Người nhận | N/A | Địa chỉ trống"


def test_vision_reply_lists_parts_and_stock():
    parts = [PartDescriptor(name="NE555", vietnameseName="IC", notes="U1")]
    reply = compose_vision_reply(parts, [NE555])
    assert "Tìm thấy 1 linh kiện" in reply
    assert "• IC / NE555 - U1" in reply
    assert "• IC NE555 (NE555) - 5000 VND - ✓ Còn 150" in reply


def test_vision_reply_warns_when_nothing_in_stock():
    parts = [PartDescriptor(vietnameseName="Điện trở", value="4.7k")]
    reply = compose_vision_reply(parts, [])
    assert "Thiếu linh kiện" in reply
    assert "• Điện trở - 4.7k" in reply


def test_vision_reply_without_parts():
    assert "Dữ liệu không rõ ràng" in compose_vision_reply([], [], "the model said something odd")
    assert "Chụp rõ hơn" in compose_vision_reply([], [], "")


def test_sanitize_reply_strips_markdown():
    assert sanitize_reply("**Gợi ý** `NE555` *rẻ*") == "Gợi ý NE555 rẻ"


def test_split_relevant_codes():
    assert split_relevant_codes("Câu trả lời\nRELEVANT_CODES: [A, 'B', \"C\"]") == ("Câu trả lời", ["A", "B", "C"])
    assert split_relevant_codes("x\nRELEVANT_CODES: []") == ("x", [])
    assert split_relevant_codes("không có dòng điều khiển") == ("không có dòng điều khiển", None)
