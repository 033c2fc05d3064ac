from __future__ import annotations

"""Deterministic product scoring and the confidence verdict that gates the LLM."""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from .models import ProductCard
from .product_index import ProductIndexEntry
from .utils import extract_query_tokens, extract_value_tokens, format_vnd, normalize_text

logger = logging.getLogger("partsbot.scoring")

CODE_EXACT_SCORE = 200
NAME_SCORE = 30
CATEGORY_SCORE = 20
DESCRIPTION_SCORE = 10
VALUE_SCORE = 80
BREADTH_BONUS = 10
BREADTH_MIN_MATCHED = 3

CANDIDATE_POOL_SIZE = 60
CONTEXT_SIZE = 30
DISPLAY_SIZE = 15


@dataclass(frozen=True)
class ConfidencePolicy:
    """Thresholds for trusting the deterministic ranking without the LLM."""
    min_score: float = 90.0
    min_ratio: float = 0.6
    min_gap: float = 30.0


@dataclass
class ScoredCandidate:
    entry: ProductIndexEntry
    score: int
    matched_tokens: int
    code_exact: bool


@dataclass
class SearchMeta:
    tokens: List[str] = field(default_factory=list)
    value_tokens: List[str] = field(default_factory=list)
    total_candidates: int = 0
    confident: bool = False
    top_score: int = 0


@dataclass
class ProductSearchResult:
    cards: List[ProductCard]
    context_lines: List[str]
    meta: SearchMeta


def score_products(
    entries: Sequence[ProductIndexEntry],
    query_tokens: Sequence[str],
    value_tokens: Sequence[str],
) -> List[ScoredCandidate]:
    """Purpose: Score catalog entries against query and value tokens.
    Inputs/Outputs: Inputs are index entries and token lists; output is an unsorted
        list of candidates with score > 0.
    Side Effects / State: None.
    Dependencies: Reads ProductIndexEntry.tokens and code_normalized.
    Failure Modes: None; entries without any match are dropped.
    If Removed: Deterministic retrieval disappears and every turn needs the LLM.
    Testing Notes: A token awards at most one tier (code > name > category > description).
    """
    # First matching tier wins per query token; value tokens add independently.
    scores: List[ScoredCandidate] = []
    for entry in entries:
        score = 0
        matched = 0
        code_exact = False
        for token in query_tokens:
            if not token:
                continue
            if entry.code_normalized and token == entry.code_normalized:
                score += CODE_EXACT_SCORE
                matched += 2
                code_exact = True
            elif token in entry.tokens.name:
                score += NAME_SCORE
                matched += 1
            elif token in entry.tokens.category:
                score += CATEGORY_SCORE
                matched += 1
            elif token in entry.tokens.description:
                score += DESCRIPTION_SCORE
                matched += 1
        for token in value_tokens:
            if token in entry.tokens.value:
                score += VALUE_SCORE
                matched += 1
        if matched >= BREADTH_MIN_MATCHED:
            score += BREADTH_BONUS
        if score > 0:
            scores.append(ScoredCandidate(entry=entry, score=score, matched_tokens=matched, code_exact=code_exact))
    return scores


def rank(scores: Sequence[ScoredCandidate], limit: int = CANDIDATE_POOL_SIZE) -> List[ScoredCandidate]:
    """Sort by score descending; equal scores keep catalog order (stable sort)."""
    return sorted(scores, key=lambda candidate: candidate.score, reverse=True)[:limit]


def assess_confidence(
    scores: Sequence[ScoredCandidate],
    query_tokens: Sequence[str],
    value_tokens: Sequence[str],
    policy: ConfidencePolicy = ConfidencePolicy(),
) -> bool:
    """Purpose: Decide whether the top deterministic match can skip the LLM.
    Inputs/Outputs: Inputs are ranked candidates (descending) and the query tokens;
        output is the confidence verdict.
    Side Effects / State: None.
    Dependencies: Uses ConfidencePolicy thresholds.
    Failure Modes: Empty candidate list is never confident.
    If Removed: Broad shallow matches would be presented as certain answers.
    Testing Notes: Exact code match is confident regardless of other scores.
    """
    # Exact code short-circuits; otherwise require strength plus breadth or separation.
    if not scores:
        return False
    top = scores[0]
    if top.code_exact:
        return True
    total_tokens = max(1, len(query_tokens) + len(value_tokens))
    match_ratio = top.matched_tokens / total_tokens
    gap = top.score - scores[1].score if len(scores) > 1 else top.score
    return top.score >= policy.min_score and (match_ratio >= policy.min_ratio or gap >= policy.min_gap)


def to_card(entry: ProductIndexEntry) -> ProductCard:
    return ProductCard(
        productId=entry.product_id,
        name=entry.name,
        price=entry.price,
        stock=entry.stock,
        image=entry.image,
        category=entry.category,
        code=entry.code,
    )


def format_context_line(entry: ProductIndexEntry) -> str:
    code = f"code={entry.code}" if entry.code else "code=N/A"
    category = f"cat={entry.category}" if entry.category else "cat=N/A"
    return f"- {entry.name or 'N/A'} | {code} | {category} | price={format_vnd(entry.price)} | stock={entry.stock}"


def search_products(
    entries: Sequence[ProductIndexEntry],
    message: str,
    policy: ConfidencePolicy = ConfidencePolicy(),
) -> ProductSearchResult:
    """Purpose: Run the deterministic text search for a chat message.
    Inputs/Outputs: Inputs are index entries and the raw message; output is display
        cards (top 15), LLM context lines (top 30), and SearchMeta.
    Side Effects / State: None.
    Dependencies: Uses extract_query_tokens, extract_value_tokens, score_products,
        rank, and assess_confidence.
    Failure Modes: A message with no tokens returns an empty, non-confident result.
    If Removed: The chat flow cannot build product context or cards.
    Testing Notes: Query "dien tro 10k" against a single "Điện trở 10k" entry is
        confident and returns it as the only card.
    """
    # Extract tokens once; rank the 60-candidate pool and slice views from it.
    normalized = normalize_text(message)
    query_tokens = extract_query_tokens(message, normalized)
    value_tokens = extract_value_tokens(message)
    if not query_tokens and not value_tokens:
        return ProductSearchResult(cards=[], context_lines=[], meta=SearchMeta())

    ranked = rank(score_products(entries, query_tokens, value_tokens))
    confident = assess_confidence(ranked, query_tokens, value_tokens, policy)
    meta = SearchMeta(
        tokens=query_tokens,
        value_tokens=value_tokens,
        total_candidates=len(ranked),
        confident=confident,
        top_score=ranked[0].score if ranked else 0,
    )
    logger.debug(
        "search tokens=%s values=%s candidates=%s confident=%s top=%s",
        len(query_tokens),
        len(value_tokens),
        meta.total_candidates,
        confident,
        meta.top_score,
    )
    return ProductSearchResult(
        cards=[to_card(candidate.entry) for candidate in ranked[:DISPLAY_SIZE]],
        context_lines=[format_context_line(candidate.entry) for candidate in ranked[:CONTEXT_SIZE]],
        meta=meta,
    )
