from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Mapping, Tuple

_TEMPLATE_CACHE: Dict[Tuple[str, float], str] = {}
PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: Caches the text keyed by path and mtime.
    Dependencies: Uses Path.read_text/read_bytes; used by the rerank, vision, and
        generation steps.
    Failure Modes: Missing files raise FileNotFoundError. UnicodeDecodeError triggers
        a fallback decode with errors ignored, which can drop invalid bytes.
    If Removed: Every LLM call loses its instructions.
    Testing Notes: Validate BOM-stripping and that an edited file is re-read.
    """
    # Re-read only when the file changed on disk.
    key = (str(prompt_path), prompt_path.stat().st_mtime)
    cached = _TEMPLATE_CACHE.get(key)
    if cached is not None:
        return cached
    try:
        text = prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore").lstrip("\ufeff")
    _TEMPLATE_CACHE[key] = text
    return text


def render_prompt(template: str, values: Mapping[str, object]) -> str:
    """Substitute ``<<NAME>>`` placeholders in one pass; unknown placeholders are left as-is.

    Substituted values are not scanned again, so user text containing "<<PRODUCTS>>"
    stays literal.
    """

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return PLACEHOLDER_RE.sub(substitute, template)
