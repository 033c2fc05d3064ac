from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import ConfigurationError, UpstreamError

logger = logging.getLogger("partsbot.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {"category": HarmCategory.HARM_CATEGORY_HARASSMENT, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_HATE_SPEECH, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, "threshold": HarmBlockThreshold.BLOCK_NONE},
]

EMPTY_REPLY_FALLBACK = "Mình chưa nhận được phản hồi hợp lệ từ AI. Bạn thử hỏi lại giúp mình nhé."


class LLMClient(Protocol):
    model_name: str

    def generate_content(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
    ) -> str: ...


def text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


def image_part(mime_type: str, data: bytes) -> Dict[str, Any]:
    """Inline image part; the SDK base64-encodes ``data`` on the wire."""
    return {"inline_data": {"mime_type": mime_type, "data": data}}


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching, timeouts, and error mapping."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key and caches a model.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ConfigurationError if the API key is missing.
        If Removed: No LLM call in the engine can execute.
        Testing Notes: Validate a missing key raises ConfigurationError.
        """
        # Configure API key and seed the default model cache.
        if not settings.gemini_api_key:
            raise ConfigurationError()
        genai.configure(api_key=settings.gemini_api_key)
        self.model_name = _normalize_model_name(settings.gemini_model)
        self._timeout = settings.llm_timeout_seconds
        self._models: Dict[str, genai.GenerativeModel] = {
            self.model_name: genai.GenerativeModel(self.model_name),
        }

    def _model_for(self, system_instruction: Optional[str]) -> genai.GenerativeModel:
        # System instructions are bound at model construction; only bare models are cached.
        if system_instruction:
            return genai.GenerativeModel(self.model_name, system_instruction=system_instruction)
        return self._models[self.model_name]

    def generate_content(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
    ) -> str:
        """Purpose: Generate a reply from role-tagged contents (text and inline images).
        Inputs/Outputs: Input is a list of {"role", "parts"} dicts plus generation
            options; returns the concatenated text of the first candidate.
        Side Effects / State: One network call to the Gemini API.
        Dependencies: Uses genai.GenerativeModel.generate_content and _response_text.
        Failure Modes: API errors raise UpstreamError with the provider message; an
            empty or blocked reply returns EMPTY_REPLY_FALLBACK.
        If Removed: Reranking, vision extraction, and free-form answers stop working.
        Testing Notes: Mock the SDK model and assert error mapping and fallback text.
        """
        # Call the SDK with an explicit request deadline and log sizes only.
        started = time.monotonic()
        try:
            response = self._model_for(system_instruction).generate_content(
                contents,
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_output_tokens,
                },
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
        except google_exceptions.GoogleAPIError as exc:
            logger.warning(
                "gemini call failed model=%s turns=%s error=%s",
                self.model_name,
                len(contents),
                type(exc).__name__,
            )
            raise UpstreamError(getattr(exc, "message", "") or "") from exc

        text = _response_text(response)
        logger.info(
            "gemini call model=%s turns=%s reply_chars=%s elapsed_ms=%d",
            self.model_name,
            len(contents),
            len(text),
            (time.monotonic() - started) * 1000,
        )
        return text or EMPTY_REPLY_FALLBACK


def _response_text(response: Any) -> str:
    """Concatenate the text fragments of the first candidate; "" when there is none."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ""
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []
    return "".join(getattr(part, "text", "") or "" for part in parts).strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Failure Modes: Returns empty string for falsy input.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
