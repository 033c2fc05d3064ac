import pytest

from partsbot.errors import MalformedResponseError
from partsbot.utils import (
    ParseResult,
    code_aware_tokens,
    derive_synonym_tokens,
    extract_keywords,
    extract_query_tokens,
    extract_value_tokens,
    format_vnd,
    normalize_code,
    normalize_for_search,
    normalize_text,
    slice_json_array,
    strip_code_fences,
    tokenize,
)


def test_normalize_text_folds_accents_and_d_stroke():
    assert normalize_text("Đơn hàng") == normalize_text("don hang") == "don hang"
    assert normalize_text(None) == ""


def test_normalize_for_search_maps_unit_symbols():
    assert normalize_for_search("Tụ 100µF") == "tu 100uf"
    assert normalize_for_search("10kΩ") == "10kohm"
    assert normalize_for_search("") == ""


def test_tokenize_splits_on_non_alphanumerics():
    assert tokenize("LM-555 Điện trở") == ["lm", "555", "dien", "tro"]
    assert tokenize(None) == []


def test_normalize_code_strips_separators():
    assert normalize_code("LM-555") == normalize_code("lm555") == "lm555"


def test_extract_value_tokens_adds_unit_stripped_form():
    assert extract_value_tokens("tu 100uF") == ["100uf", "100u"]
    assert extract_value_tokens("dien tro 10k") == ["10k"]
    assert extract_value_tokens("relay 5v") == ["5v"]
    assert extract_value_tokens("3 cai") == []


def test_extract_value_tokens_is_capped():
    text = " ".join(f"{n}k" for n in range(10, 40))
    assert len(extract_value_tokens(text)) == 12


def test_derive_synonym_tokens():
    assert derive_synonym_tokens("dien tro 10k") == ["resistor"]
    assert derive_synonym_tokens("vi mach dao dong") == ["ic"]
    assert derive_synonym_tokens("ro le 5v") == ["relay"]
    assert derive_synonym_tokens("") == []


def test_extract_keywords_drops_stopwords_and_short_tokens():
    assert extract_keywords("cho mình giá điện trở") == ["điện", "trở"]
    assert extract_keywords("a b NE555 NE555") == ["ne555"]


def test_extract_query_tokens_combines_keywords_and_synonyms():
    assert extract_query_tokens("cho mình giá điện trở 10k") == ["dien", "tro", "10k", "resistor"]


def test_separated_codes_also_yield_their_joined_form():
    assert code_aware_tokens("LM-555 Điện trở") == ["lm", "555", "lm555", "dien", "tro"]
    assert code_aware_tokens(None) == []
    assert "lm555" in extract_query_tokens("giá LM-555")


def test_strip_code_fences():
    assert strip_code_fences("```json\n[1, 2]\n```") == "[1, 2]"
    assert strip_code_fences(None) == ""


def test_slice_json_array_exact_and_salvaged():
    assert slice_json_array('noise [1, 2] tail') == "[1, 2]"
    assert slice_json_array('[{"a":1}, {"b"') is None
    assert slice_json_array('[{"a":1}, {"b"', salvage_truncated=True) == '[{"a":1}]'
    assert slice_json_array('[{"a"', salvage_truncated=True) is None
    assert slice_json_array("no array") is None


def test_format_vnd():
    assert format_vnd(15000.0) == "15000 VND"
    assert format_vnd(1.5) == "1.5 VND"
    assert format_vnd(None) == "0 VND"


def test_parse_result_unwrap():
    assert ParseResult.success([1]).unwrap() == [1]
    with pytest.raises(MalformedResponseError):
        ParseResult.failure("bad").unwrap()
