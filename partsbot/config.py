from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the LLM, data paths, cache TTLs, and ranking policy."""
    gemini_api_key: str
    gemini_model: str
    catalog_path: Path
    shop_data_path: Path
    prompts_dir: Path
    product_index_ttl_sec: float = 120.0
    chat_cache_ttl_sec: float = 180.0
    image_cache_ttl_sec: float = 600.0
    pending_action_ttl_sec: float = 600.0
    cache_max_entries: int = 200
    cache_evict_batch: int = 50
    confidence_min_score: float = 90.0
    confidence_min_ratio: float = 0.6
    confidence_min_gap: float = 30.0
    escalate_uncertain: bool = True
    llm_timeout_seconds: float = 30.0
    image_timeout_seconds: float = 15.0
    history_limit: int = 20
    log_level: str = "INFO"

    @property
    def llm_configured(self) -> bool:
        return bool(self.gemini_api_key)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values raise ValueError.
    If Removed: App cannot configure the LLM, caches, or ranking thresholds.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data paths, then build Settings with numeric overrides.
    catalog_path = os.getenv("CATALOG_PATH")
    shop_data_path = os.getenv("SHOP_DATA_PATH")
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash").strip() or "gemini-1.5-flash",
        catalog_path=Path(catalog_path) if catalog_path else (BASE_DIR / ".." / "resources" / "catalog.json").resolve(),
        shop_data_path=Path(shop_data_path) if shop_data_path else (BASE_DIR / "data" / "shop.json").resolve(),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        product_index_ttl_sec=float(os.getenv("PRODUCT_INDEX_TTL_SEC", "120")),
        chat_cache_ttl_sec=float(os.getenv("CHAT_CACHE_TTL_SEC", "180")),
        image_cache_ttl_sec=float(os.getenv("IMAGE_CACHE_TTL_SEC", "600")),
        pending_action_ttl_sec=float(os.getenv("PENDING_ACTION_TTL_SEC", "600")),
        cache_max_entries=int(os.getenv("CACHE_MAX_ENTRIES", "200")),
        cache_evict_batch=int(os.getenv("CACHE_EVICT_BATCH", "50")),
        confidence_min_score=float(os.getenv("CONFIDENCE_MIN_SCORE", "90")),
        confidence_min_ratio=float(os.getenv("CONFIDENCE_MIN_RATIO", "0.6")),
        confidence_min_gap=float(os.getenv("CONFIDENCE_MIN_GAP", "30")),
        escalate_uncertain=_env_flag("ESCALATE_UNCERTAIN", True),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        image_timeout_seconds=float(os.getenv("IMAGE_TIMEOUT_SECONDS", "15")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "20")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
