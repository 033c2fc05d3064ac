from partsbot.composer import CLARIFY_PROMPT, compose_deterministic_reply
from partsbot.intent import detect_intent
from partsbot.product_index import build_index_entry
from partsbot.scoring import (
    ConfidencePolicy,
    ScoredCandidate,
    assess_confidence,
    format_context_line,
    rank,
    score_products,
    search_products,
)

from conftest import product


def entry(*args, **kwargs):
    return build_index_entry(product(*args, **kwargs))


def test_no_matching_token_scores_zero_and_is_excluded():
    entries = [entry("p1", "Điện trở 10k", "RES10K", "resistor", "Điện trở than")]
    assert score_products(entries, ["mosfet", "irf540"], ["33a"]) == []


def test_each_query_token_awards_only_its_best_tier():
    entries = [entry("p1", "IC NE555", "NE555", "ic", "NE555 timer")]
    [scored] = score_products(entries, ["ne555"], [])
    assert scored.score == 200
    assert scored.matched_tokens == 2
    assert scored.code_exact


def test_exact_code_entry_outscores_same_tokens_without_code():
    entries = [
        entry("a", "Ổn áp lm7805", "LM7805", "ic"),
        entry("b", "lm7805 regulator", "X1", "ic"),
    ]
    scores = {candidate.entry.product_id: candidate.score for candidate in score_products(entries, ["lm7805"], [])}
    assert scores["a"] > scores["b"]


def test_value_tokens_and_breadth_bonus():
    entries = [entry("p1", "Điện trở 10k", "RES10K", "resistor")]
    [scored] = score_products(entries, ["dien", "tro", "resistor"], ["10k"])
    # 30 + 30 + 20 (category) + 80 (value) + 10 (breadth)
    assert scored.score == 170
    assert scored.matched_tokens == 4


def test_rank_keeps_catalog_order_for_ties():
    entries = [entry(f"p{i}", f"LED {i}", f"LED{i}", "led") for i in range(5)]
    ranked = rank(score_products(entries, ["led"], []))
    assert [candidate.entry.product_id for candidate in ranked] == ["p0", "p1", "p2", "p3", "p4"]


def test_exact_code_is_confident_regardless_of_other_scores():
    entries = [
        entry("p1", "IC NE555", "NE555", "ic"),
        entry("p2", "Mạch NE555 module", "MOD555", "module"),
    ]
    ranked = rank(score_products(entries, ["ne555"], []))
    assert ranked[0].code_exact
    assert assess_confidence(ranked, ["ne555"], [], ConfidencePolicy(min_score=10_000))


def test_lone_candidate_uses_its_own_score_as_gap():
    lone = ScoredCandidate(entry=entry("p1", "x"), score=100, matched_tokens=1, code_exact=False)
    assert assess_confidence([lone], ["a", "b", "c", "d"], [])
    assert not assess_confidence([lone], ["a"], [], ConfidencePolicy(min_score=101))


def test_close_runner_up_and_low_ratio_is_not_confident():
    first = ScoredCandidate(entry=entry("p1", "x"), score=100, matched_tokens=1, code_exact=False)
    second = ScoredCandidate(entry=entry("p2", "y"), score=90, matched_tokens=1, code_exact=False)
    assert not assess_confidence([first, second], ["a", "b", "c"], [])
    assert not assess_confidence([], ["a"], [])


def test_resistor_query_against_single_entry_is_confident_top_card():
    entries = [entry("p1", "Điện trở 10k", "RES10K")]
    result = search_products(entries, "dien tro 10k")
    assert result.meta.confident
    assert [card.code for card in result.cards] == ["RES10K"]
    assert result.meta.value_tokens == ["10k"]


def test_description_only_matches_ask_for_clarification():
    entries = [
        entry(f"p{i}", f"Linh kiện bảo vệ số {i}", f"PRT{i}", "protection", "dùng kèm varistor bảo vệ nguồn")
        for i in range(20)
    ]
    result = search_products(entries, "varistor")
    assert result.meta.total_candidates == 20
    assert result.meta.top_score == 10
    assert not result.meta.confident
    assert len(result.cards) == 15
    assert len(result.context_lines) == 20

    reply = compose_deterministic_reply(detect_intent("varistor"), result.cards, result.meta, [], [])
    assert CLARIFY_PROMPT in reply
    assert not any(line.startswith("- ") for line in reply.splitlines())


def test_search_without_tokens_returns_empty_result():
    result = search_products([entry("p1", "x")], "??")
    assert result.cards == []
    assert not result.meta.confident


def test_format_context_line():
    line = format_context_line(entry("p1", "IC NE555", "NE555", "ic", price=5000, stock=3))
    assert line == "- IC NE555 | code=NE555 | cat=ic | price=5000 VND | stock=3"


def test_hyphenated_code_in_message_matches_exactly():
    entries = [
        entry("p1", "IC LM-555", "LM-555", "ic"),
        entry("p2", "Mạch LM-555 module", "MOD1", "module"),
    ]
    result = search_products(entries, "LM-555")
    assert result.meta.confident
    assert result.cards[0].code == "LM-555"
