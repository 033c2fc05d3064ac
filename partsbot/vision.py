from __future__ import annotations

"""Image-to-parts extraction and stock matching.

The vision model reads a schematic or component photo into PartDescriptor
records; those are turned into query/value tokens and scored against the
product index like a text query.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import requests

from .errors import ImageFetchError, UpstreamError
from .gemini_client import LLMClient, image_part, text_part
from .models import PartDescriptor, ProductCard
from .product_index import ProductIndex
from .prompt_loader import load_prompt, render_prompt
from .reranker import filter_products
from .scoring import ConfidencePolicy, assess_confidence, rank, score_products, to_card
from .utils import (
    MAX_QUERY_TOKENS,
    MAX_VALUE_TOKENS,
    ParseResult,
    code_aware_tokens,
    dedupe,
    extract_value_tokens,
    slice_json_array,
    strip_code_fences,
)

logger = logging.getLogger("partsbot.vision")

DEFAULT_IMAGE_MIME = "image/jpeg"
EXTRACT_TEMPERATURE = 0.2
EXTRACT_MAX_TOKENS = 2000
CONFIDENT_CARD_LIMIT = 20
FILTER_CANDIDATE_LIMIT = 40

ImageFetcher = Callable[[str, float], Tuple[bytes, str]]


def download_image(url: str, timeout: float) -> Tuple[bytes, str]:
    """Purpose: Download an image for the vision model.
    Inputs/Outputs: Inputs are the URL and a timeout in seconds; output is
        (bytes, mime type).
    Side Effects / State: One outbound HTTP GET.
    Dependencies: Uses requests.
    Failure Modes: Network errors, timeouts, and non-2xx statuses raise ImageFetchError.
    If Removed: Image turns cannot be analysed.
    Testing Notes: Patch requests.get; a 404 must raise ImageFetchError.
    """
    # The mime type comes from the response header; parameters after ";" are dropped.
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("image download failed error=%s", type(exc).__name__)
        raise ImageFetchError() from exc
    if not response.ok:
        logger.warning("image download rejected status=%s", response.status_code)
        raise ImageFetchError()
    content_type = response.headers.get("content-type") or DEFAULT_IMAGE_MIME
    mime_type = content_type.split(";")[0].strip() or DEFAULT_IMAGE_MIME
    return response.content, mime_type


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_parts_response(raw: Optional[str]) -> ParseResult[List[PartDescriptor]]:
    """Purpose: Parse the vision model's JSON array into PartDescriptor records.
    Inputs/Outputs: Input is raw LLM text; output is a ParseResult of descriptors.
    Side Effects / State: None.
    Dependencies: Uses strip_code_fences and slice_json_array with truncation salvage.
    Failure Modes: No array at all or invalid JSON yield a failure. A truncated array
        with no complete object salvages to an empty list.
    If Removed: Image replies cannot be matched to stock.
    Testing Notes: '[{"name":"R1","value":"10k"' -> []; the closed form -> one part.
    """
    # Salvage keeps the complete objects of a reply cut off by the token limit.
    cleaned = strip_code_fences(raw)
    if "[" not in cleaned:
        return ParseResult.failure("no json array")
    sliced = slice_json_array(cleaned, salvage_truncated=True)
    if sliced is None:
        return ParseResult.success([])
    try:
        parsed = json.loads(sliced)
    except json.JSONDecodeError as exc:
        return ParseResult.failure(f"invalid json: {exc.msg}")
    if not isinstance(parsed, list):
        return ParseResult.failure("expected a json array")

    parts: List[PartDescriptor] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        part = PartDescriptor(
            name=_optional_str(item.get("name")),
            vietnameseName=_optional_str(item.get("vietnameseName")),
            value=_optional_str(item.get("value")),
            package=_optional_str(item.get("package")),
            notes=_optional_str(item.get("designator")) or _optional_str(item.get("notes")),
        )
        if part.name or part.value or part.vietnameseName:
            parts.append(part)
    return ParseResult.success(parts)


class VisionPipeline:
    """Extracts parts from an image and matches them against the product index."""

    def __init__(
        self,
        llm: LLMClient,
        index: ProductIndex,
        prompts_dir: Path,
        policy: ConfidencePolicy = ConfidencePolicy(),
        image_timeout: float = 15.0,
        fetch_image: ImageFetcher = download_image,
    ) -> None:
        self._llm = llm
        self._index = index
        self._prompts_dir = prompts_dir
        self._policy = policy
        self._image_timeout = image_timeout
        self._fetch_image = fetch_image

    def extract_parts(self, message: str, image_url: str) -> Tuple[List[PartDescriptor], str]:
        """Purpose: Download the image and ask the vision model for its components.
        Inputs/Outputs: Inputs are the user message and image URL; output is
            (parts, raw model text).
        Side Effects / State: One HTTP download and one LLM call.
        Dependencies: Uses vision_extract.txt and parse_parts_response.
        Failure Modes: ImageFetchError and UpstreamError propagate; unparseable replies
            return no parts and keep the raw text for the reply.
        If Removed: The image branch of the chat flow has nothing to search with.
        Testing Notes: Inject fetch_image and a fake LLM.
        """
        # The user's message rides along as extra context for the model.
        data, mime_type = self._fetch_image(image_url, self._image_timeout)
        prompt = render_prompt(load_prompt(self._prompts_dir / "vision_extract.txt"), {"MESSAGE": message or ""})
        raw = self._llm.generate_content(
            [{"role": "user", "parts": [text_part(prompt), image_part(mime_type, data)]}],
            temperature=EXTRACT_TEMPERATURE,
            max_output_tokens=EXTRACT_MAX_TOKENS,
        )
        result = parse_parts_response(raw)
        if not result.ok:
            logger.warning("vision parse failed raw_chars=%s error=%s", len(raw or ""), result.error)
            return [], raw
        parts = result.value or []
        logger.info("vision extracted parts=%s image_bytes=%s", len(parts), len(data))
        return parts, raw

    def search_by_parts(self, parts: List[PartDescriptor]) -> List[ProductCard]:
        """Purpose: Score detected parts against the index and pick matching products.
        Inputs/Outputs: Input is the part list; output is product cards.
        Side Effects / State: May refresh the product index; may call the LLM filter.
        Dependencies: Uses score_products, rank, assess_confidence, and filter_products.
        Failure Modes: Filter failure returns [] rather than unfiltered guesses.
        If Removed: Image replies cannot show stock matches.
        Testing Notes: A confident match returns up to 20 cards without an LLM call.
        """
        # Union the tokens of every part; values also feed the value-token set.
        tokens: List[str] = []
        values: List[str] = []
        for part in parts:
            for field in (part.name, part.vietnameseName, part.value):
                if field:
                    tokens.extend(code_aware_tokens(field))
            if part.value:
                values.extend(extract_value_tokens(part.value))
        query_tokens = dedupe(tokens)[:MAX_QUERY_TOKENS]
        value_tokens = dedupe(values)[:MAX_VALUE_TOKENS]
        if not query_tokens and not value_tokens:
            return []

        ranked = rank(score_products(self._index.get_index(), query_tokens, value_tokens))
        if not ranked:
            return []
        if assess_confidence(ranked, query_tokens, value_tokens, self._policy):
            return [to_card(candidate.entry) for candidate in ranked[:CONFIDENT_CARD_LIMIT]]

        candidates = [candidate.entry for candidate in ranked[:FILTER_CANDIDATE_LIMIT]]
        try:
            return filter_products(self._llm, self._prompts_dir, parts, candidates)
        except UpstreamError as exc:
            logger.warning("vision filter failed candidates=%s error=%s", len(candidates), exc.message)
            return []
