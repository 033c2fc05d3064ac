from partsbot.models import HistoryItem
from partsbot.response_cache import TTLCache, chat_cache_key, image_cache_key

from conftest import ManualClock


def test_entry_expires_exactly_at_ttl():
    clock = ManualClock()
    cache = TTLCache(ttl_sec=180, clock=clock)
    cache.set("k", "reply")
    clock.advance(179)
    assert cache.get("k") == "reply"
    clock.advance(1)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_overflow_evicts_oldest_batch():
    clock = ManualClock()
    cache = TTLCache(ttl_sec=600, max_entries=4, evict_batch=2, clock=clock)
    for i in range(5):
        cache.set(f"k{i}", i)
    assert len(cache) == 3
    assert cache.get("k0") is None
    assert cache.get("k1") is None
    assert cache.get("k4") == 4


def test_reinsert_moves_key_to_newest():
    clock = ManualClock()
    cache = TTLCache(ttl_sec=600, max_entries=3, evict_batch=1, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    cache.set("a", 10)
    cache.set("d", 4)
    assert cache.get("b") is None
    assert cache.get("a") == 10


def test_chat_cache_key_separates_users_and_history():
    history = [HistoryItem(role="user", content="chào")]
    base = chat_cache_key("u1", "m", "NE555", None, history)
    assert base == chat_cache_key("u1", "m", "NE555", None, list(history))
    assert base != chat_cache_key("u2", "m", "NE555", None, history)
    assert base != chat_cache_key("u1", "m", "NE555", None, [])
    assert base != chat_cache_key("u1", "other", "NE555", None, history)
    assert base != chat_cache_key("u1", "m", "NE555", "https://x/a.png", history)
    assert len(base) == 64
    assert "NE555" not in base


def test_image_cache_key_normalizes_message():
    assert image_cache_key("https://x/a.png", "Mạch ĐIỆN") == "https://x/a.png::mach dien"
    assert image_cache_key("https://x/a.png", "x" * 200) == "https://x/a.png::" + "x" * 80
    assert image_cache_key("https://x/a.png", None) == "https://x/a.png::"
