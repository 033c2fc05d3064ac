from __future__ import annotations

"""LLM reordering of retrieved candidates and the vision match filter.

Both steps only narrow or reorder an already-retrieved set; identifiers the
model invents are dropped. Rerank failures fall back to the original order;
filter failures fall back to nothing.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .errors import MalformedResponseError, UpstreamError
from .gemini_client import LLMClient, text_part
from .intent import QueryIntent
from .models import PartDescriptor, ProductCard
from .product_index import ProductIndexEntry
from .prompt_loader import load_prompt, render_prompt
from .scoring import SearchMeta, to_card
from .utils import ParseResult, format_vnd, slice_json_array, strip_code_fences

logger = logging.getLogger("partsbot.reranker")

RERANK_LIMIT = 15
RERANK_MIN_CARDS = 6
RERANK_MAX_CARDS = 40
RERANK_TEMPERATURE = 0.2
RERANK_MAX_TOKENS = 300
FILTER_TEMPERATURE = 0.3
FILTER_MAX_TOKENS = 2000


@dataclass(frozen=True)
class FilterMatch:
    id: str
    reason: Optional[str] = None


def _card_key(card: ProductCard) -> str:
    return (card.code or card.productId or "").lower()


def should_rerank(intent: QueryIntent, meta: Optional[SearchMeta], cards: Sequence[ProductCard]) -> bool:
    """Rerank only mid-sized, uncertain product lists; free-form turns never rerank."""
    if intent.needs_freeform:
        return False
    if meta is not None and meta.confident:
        return False
    return RERANK_MIN_CARDS <= len(cards) <= RERANK_MAX_CARDS


def parse_rerank_codes(raw: Optional[str]) -> ParseResult[List[str]]:
    """Purpose: Parse the rerank reply into an ordered list of product codes.
    Inputs/Outputs: Input is raw LLM text; output is a ParseResult with at most 15 codes.
    Side Effects / State: None.
    Dependencies: Uses strip_code_fences and slice_json_array.
    Failure Modes: Missing array, invalid JSON, or a non-array value yield a failure.
    If Removed: Reranking cannot read the model's ordering.
    Testing Notes: '```json ["A", " B ", 3]```' -> ["A", "B"].
    """
    # Non-string entries are ignored rather than failing the whole reply.
    cleaned = strip_code_fences(raw)
    if not cleaned:
        return ParseResult.failure("empty reply")
    sliced = slice_json_array(cleaned) or cleaned
    try:
        parsed = json.loads(sliced)
    except json.JSONDecodeError as exc:
        return ParseResult.failure(f"invalid json: {exc.msg}")
    if not isinstance(parsed, list):
        return ParseResult.failure("expected a json array")
    codes = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
    return ParseResult.success(codes[:RERANK_LIMIT])


def apply_rerank(cards: Sequence[ProductCard], codes: Sequence[str]) -> List[ProductCard]:
    """Keep only cards named in ``codes``, ordered by the reply; empty codes keep the input."""
    if not codes:
        return list(cards)
    order: Dict[str, int] = {}
    for position, code in enumerate(codes):
        order.setdefault(code.lower(), position)
    kept = [card for card in cards if _card_key(card) and _card_key(card) in order]
    kept.sort(key=lambda card: order[_card_key(card)])
    return kept[:RERANK_LIMIT]


def rerank_products(
    llm: LLMClient,
    prompts_dir: Path,
    message: str,
    cards: Sequence[ProductCard],
) -> List[ProductCard]:
    """Purpose: Ask the LLM to reorder and narrow an uncertain candidate list.
    Inputs/Outputs: Inputs are the LLM client, prompt directory, the user message, and
        the cards; output is the reranked cards (original order on any failure).
    Side Effects / State: One LLM call.
    Dependencies: Uses rerank.txt, parse_rerank_codes, and apply_rerank.
    Failure Modes: Upstream and parse errors are logged with sizes and recovered.
    If Removed: Ambiguous lists are shown in raw score order.
    Testing Notes: Codes absent from the input set are ignored.
    """
    # Rows carry the code the model must echo back; productId stands in when code is empty.
    if not cards:
        return list(cards)
    rows = [
        f"{card.code or card.productId} | {card.name} | {card.category or 'N/A'} | "
        f"price={format_vnd(card.price)} | stock={card.stock}"
        for card in cards
    ]
    prompt = render_prompt(
        load_prompt(prompts_dir / "rerank.txt"),
        {"QUERY": message, "PRODUCTS": "\n".join(rows), "LIMIT": RERANK_LIMIT},
    )
    try:
        raw = llm.generate_content(
            [{"role": "user", "parts": [text_part(prompt)]}],
            temperature=RERANK_TEMPERATURE,
            max_output_tokens=RERANK_MAX_TOKENS,
        )
        codes = parse_rerank_codes(raw).unwrap()
    except (UpstreamError, MalformedResponseError) as exc:
        logger.warning(
            "rerank fallback cards=%s message_chars=%s error=%s",
            len(cards),
            len(message or ""),
            type(exc).__name__,
        )
        return list(cards)
    reranked = apply_rerank(cards, codes)
    logger.info("rerank cards_in=%s codes=%s cards_out=%s", len(cards), len(codes), len(reranked))
    return reranked


def parse_filter_response(raw: Optional[str]) -> ParseResult[List[FilterMatch]]:
    """Purpose: Parse the vision filter reply into {id, reason} matches.
    Inputs/Outputs: Input is raw LLM text; output is a ParseResult of FilterMatch.
    Side Effects / State: None.
    Dependencies: Uses strip_code_fences and slice_json_array (no truncation salvage).
    Failure Modes: Missing array or invalid JSON yield a failure; items without a
        string id are skipped.
    If Removed: The vision flow cannot narrow ambiguous candidates.
    Testing Notes: '[{"id": "p1", "reason": "10k"}, {"foo": 1}]' -> one match.
    """
    # The filter must fail closed, so a truncated array is not repaired.
    sliced = slice_json_array(strip_code_fences(raw))
    if sliced is None:
        return ParseResult.failure("no json array")
    try:
        parsed = json.loads(sliced)
    except json.JSONDecodeError as exc:
        return ParseResult.failure(f"invalid json: {exc.msg}")
    if not isinstance(parsed, list):
        return ParseResult.failure("expected a json array")
    matches: List[FilterMatch] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id:
            continue
        reason = item.get("reason")
        matches.append(FilterMatch(id=item_id, reason=reason if isinstance(reason, str) else None))
    return ParseResult.success(matches)


def filter_products(
    llm: LLMClient,
    prompts_dir: Path,
    parts: Sequence[PartDescriptor],
    candidates: Sequence[ProductIndexEntry],
) -> List[ProductCard]:
    """Purpose: Let the LLM pick which candidates actually match the detected parts.
    Inputs/Outputs: Inputs are the LLM client, prompt directory, parts, and candidate
        entries; output is the cards whose id the model returned, in reply order.
    Side Effects / State: One LLM call.
    Dependencies: Uses vision_filter.txt and parse_filter_response.
    Failure Modes: Parse failures return []; UpstreamError propagates to the caller.
    If Removed: Uncertain image matches would be shown unfiltered.
    Testing Notes: Ids not in the candidate set are ignored.
    """
    # Send a compact projection; only ids from this set can come back.
    parts_json = json.dumps(
        [{"name": part.name, "value": part.value, "vietnameseName": part.vietnameseName} for part in parts],
        ensure_ascii=False,
    )
    products_json = json.dumps(
        [
            {
                "id": entry.product_id,
                "name": entry.name,
                "code": entry.code,
                "category": entry.category,
                "description": entry.description,
            }
            for entry in candidates
        ],
        ensure_ascii=False,
    )
    prompt = render_prompt(
        load_prompt(prompts_dir / "vision_filter.txt"),
        {"PARTS_JSON": parts_json, "PRODUCTS_JSON": products_json},
    )
    raw = llm.generate_content(
        [{"role": "user", "parts": [text_part(prompt)]}],
        temperature=FILTER_TEMPERATURE,
        max_output_tokens=FILTER_MAX_TOKENS,
    )
    result = parse_filter_response(raw)
    if not result.ok:
        logger.warning(
            "vision filter unparseable raw_chars=%s candidates=%s error=%s",
            len(raw or ""),
            len(candidates),
            result.error,
        )
        return []

    by_id = {entry.product_id: entry for entry in candidates}
    cards: List[ProductCard] = []
    seen = set()
    for match in result.value or []:
        entry = by_id.get(match.id)
        if entry is None or match.id in seen:
            continue
        seen.add(match.id)
        cards.append(to_card(entry))
    logger.info("vision filter candidates=%s matches=%s", len(candidates), len(cards))
    return cards
