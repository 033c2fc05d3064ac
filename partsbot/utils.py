from __future__ import annotations

"""Text normalization, tokenization, and LLM-output helpers shared by the engine.

Everything here is pure: empty or None input yields empty output and nothing
raises. Normalized copies are used only for matching; display text is never
rewritten.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, TypeVar

from .errors import MalformedResponseError

T = TypeVar("T")

MAX_QUERY_TOKENS = 12
MAX_VALUE_TOKENS = 12
MAX_KEYWORDS = 8

KEYWORD_STOPWORDS = frozenset(
    {
        "toi", "mình", "minh", "ban", "bạn", "cho", "xin", "hỏi", "gia", "giá",
        "mua", "tim", "tìm", "can", "cần", "voi", "với", "va", "và", "la", "là",
        "the", "a", "an", "of", "to", "in", "on", "i", "you", "me", "con", "còn",
        "hàng", "hang", "không", "khong", "co", "có", "nhieu", "nhiêu", "bao",
        "bn", "shop", "cai", "cái", "don", "đơn", "dia", "địa", "chi", "chỉ",
        "order", "tracking", "address", "shipping", "dang", "đang", "het",
    }
)

VALUE_TOKEN_RE = re.compile(r"\b\d+(?:\.\d+)?\s*(?:k|m|g|u|n|p)?\s*(?:ohm|hz|v|a|w|f|h)?\b")
QUANTITY_UNIT_SUFFIX_RE = re.compile(r"(ohm|hz|v|a|w|f|h)$")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
KEYWORD_CLEAN_RE = re.compile(r"[^\w\s-]|_")
CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

SYNONYM_PATTERNS = [
    ("resistor", re.compile(r"\bdien\s*tro\b|\bresistor\b")),
    ("capacitor", re.compile(r"\btu\s*(?:dien)?\b|\bcapacitor\b")),
    ("diode", re.compile(r"\bdiode\b")),
    ("led", re.compile(r"\bled\b")),
    ("transistor", re.compile(r"\btransistor\b")),
    ("mosfet", re.compile(r"\bmosfet\b")),
    ("ic", re.compile(r"\bvi\s*mach\b|\bchip\b|\bic\b")),
    ("relay", re.compile(r"\brelay\b|\bro\s*le\b")),
    ("connector", re.compile(r"\b(?:cong\s*ket|connector|jack)\b")),
]


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Success/failure variant returned by the LLM output parsers."""
    ok: bool
    value: Optional[T] = None
    error: str = ""

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the parsed value or raise MalformedResponseError with the parse error."""
        if not self.ok:
            raise MalformedResponseError(self.error)
        return self.value  # type: ignore[return-value]


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(text: Optional[str]) -> str:
    """Purpose: Normalize free-form text for intent and keyword regexes.
    Inputs/Outputs: Input is a raw string; output is lowercase text without diacritics.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata; called by intent detection and synonym derivation.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Vietnamese messages typed with and without accents stop matching the
        same intent patterns.
    Testing Notes: "Đơn hàng" and "don hang" must normalize to the same string.
    """
    # Map đ before decomposition; it has no combining-mark form.
    if not text:
        return ""
    lowered = text.lower().replace("đ", "d")
    return _strip_marks(lowered)


def normalize_for_search(text: Optional[str]) -> str:
    """Purpose: Produce the matching copy of catalog fields and query text.
    Inputs/Outputs: Input is a raw string; output is lowercase ASCII-folded text with
        µ mapped to u and Ω mapped to ohm.
    Side Effects / State: None; pure function.
    Dependencies: Uses _strip_marks; called by tokenize and value-token extraction.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Unit symbols in product names (100µF, 10kΩ) never match typed queries.
    Testing Notes: "Tụ 100µF" -> "tu 100uf"; "10kΩ" -> "10kohm".
    """
    # Fold unit symbols first so the ASCII pass keeps them.
    if not text:
        return ""
    folded = (
        text.replace("µ", "u")
        .replace("μ", "u")
        .replace("Ω", "ohm")
        .replace("Ω", "ohm")
    )
    folded = folded.replace("Đ", "d").replace("đ", "d")
    return _strip_marks(folded).lower()


def tokenize(text: Optional[str]) -> List[str]:
    """Split the matching copy of ``text`` on non-alphanumeric boundaries."""
    cleaned = NON_ALNUM_RE.sub(" ", normalize_for_search(text))
    return [token for token in cleaned.split() if token]


def normalize_code(code: Optional[str]) -> str:
    """Purpose: Build the exact-match form of a product code.
    Inputs/Outputs: Input is a raw code; output is lowercase alphanumerics only.
    Side Effects / State: None.
    Dependencies: Uses normalize_for_search.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Codes with separators (LM-555) can never match a query token.
    Testing Notes: "LM-555" and "lm555" must produce the same value.
    """
    # Strip separators so a single query token can equal the whole code.
    return NON_ALNUM_RE.sub("", normalize_for_search(code))


def code_aware_tokens(text: Optional[str]) -> List[str]:
    """Tokenize ``text`` and, for words split by separators, add the joined code form.

    "LM-555" yields ["lm", "555", "lm555"] so it can equal a normalized product code.
    """
    tokens: List[str] = []
    for word in (text or "").split():
        parts = tokenize(word)
        tokens.extend(parts)
        if len(parts) > 1:
            tokens.append(normalize_code(word))
    return tokens


def dedupe(values: Iterable[str]) -> List[str]:
    """Keep the first occurrence of each non-empty value, preserving order."""
    return list(dict.fromkeys(value for value in values if value))


def extract_value_tokens(text: Optional[str]) -> List[str]:
    """Purpose: Extract measured-quantity tokens (10k, 100uf, 5v) from text.
    Inputs/Outputs: Input is raw text; output is at most 12 tokens.
    Side Effects / State: None.
    Dependencies: Uses VALUE_TOKEN_RE and QUANTITY_UNIT_SUFFIX_RE.
    Failure Modes: Returns an empty list when nothing matches.
    If Removed: Component values stop contributing the +80 value match in scoring.
    Testing Notes: "tu 100uF" yields ["100uf", "100u"]; single digits are ignored.
    """
    # Collapse inner whitespace, then add the unit-stripped alternate form.
    normalized = normalize_for_search(text)
    matches = [re.sub(r"\s+", "", match) for match in VALUE_TOKEN_RE.findall(normalized)]
    expanded: List[str] = []
    for token in matches:
        if len(token) < 2:
            continue
        expanded.append(token)
        stripped = QUANTITY_UNIT_SUFFIX_RE.sub("", token)
        if len(stripped) >= 2:
            expanded.append(stripped)
    return dedupe(expanded)[:MAX_VALUE_TOKENS]


def derive_synonym_tokens(normalized_message: str) -> List[str]:
    """Purpose: Map Vietnamese/English component names onto shared catalog tokens.
    Inputs/Outputs: Input is normalize_text output; output is a list of canonical tokens.
    Side Effects / State: None.
    Dependencies: Uses SYNONYM_PATTERNS.
    Failure Modes: Returns an empty list for empty input.
    If Removed: "dien tro" never reaches products categorised as "resistor".
    Testing Notes: "dien tro 10k" -> ["resistor"]; "vi mach" -> ["ic"].
    """
    # Evaluate every pattern; order follows SYNONYM_PATTERNS.
    if not normalized_message:
        return []
    return [token for token, pattern in SYNONYM_PATTERNS if pattern.search(normalized_message)]


def extract_keywords(text: Optional[str]) -> List[str]:
    """Purpose: Pull the content words out of a free-text message.
    Inputs/Outputs: Input is raw text; output is at most 8 deduplicated keywords.
    Side Effects / State: None.
    Dependencies: Uses KEYWORD_STOPWORDS.
    Failure Modes: Returns an empty list for empty input.
    If Removed: Filler words ("cho", "mình", "giá") would flood the scorer.
    Testing Notes: "cho mình giá điện trở" keeps only "điện" and "trở".
    """
    # Keep accents here; tokenize() folds them per keyword later.
    cleaned = KEYWORD_CLEAN_RE.sub(" ", text or "").lower()
    keywords = [token for token in cleaned.split() if len(token) >= 2 and token not in KEYWORD_STOPWORDS]
    return dedupe(keywords[:MAX_KEYWORDS])


def extract_query_tokens(message: Optional[str], normalized_message: Optional[str] = None) -> List[str]:
    """Combine tokenized keywords (with joined code forms) and derived synonyms, capped at 12 tokens."""
    tokens: List[str] = []
    for keyword in extract_keywords(message):
        tokens.extend(code_aware_tokens(keyword))
    normalized = normalized_message if normalized_message is not None else normalize_text(message)
    tokens.extend(derive_synonym_tokens(normalized))
    return dedupe(tokens)[:MAX_QUERY_TOKENS]


def strip_code_fences(text: Optional[str]) -> str:
    """Remove markdown code fences the LLM sometimes wraps JSON in."""
    if not text:
        return ""
    return CODE_FENCE_RE.sub("", text).strip()


def slice_json_array(text: str, salvage_truncated: bool = False) -> Optional[str]:
    """Purpose: Cut the JSON array out of an LLM reply.
    Inputs/Outputs: Input is fence-free text; output is the array substring or None.
    Side Effects / State: None.
    Dependencies: None; used by the vision and rerank/filter parsers.
    Failure Modes: Returns None when no array can be located. With
        salvage_truncated, an unterminated array is cut at the last "}" and closed.
    If Removed: Any prose around the JSON breaks parsing.
    Testing Notes: '[{"a":1}, {"b"' with salvage returns '[{"a":1}]'.
    """
    # Prefer the exact [ ... ] span; fall back to closing after the last object.
    start = text.find("[")
    if start == -1:
        return None
    end = text.rfind("]")
    if end > start:
        return text[start : end + 1]
    if not salvage_truncated:
        return None
    last_curly = text.rfind("}")
    if last_curly > start:
        return text[start : last_curly + 1] + "]"
    return None


def format_vnd(value: float) -> str:
    """Render a price without float noise: 15000.0 -> "15000 VND"."""
    number = float(value or 0)
    text = str(int(number)) if number.is_integer() else f"{number:.2f}".rstrip("0").rstrip(".")
    return f"{text} VND"
