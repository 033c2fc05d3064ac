from __future__ import annotations

"""Catalog file loader used as the product index's bulk catalog source.

Reads a JSON catalog (a list, or an object with an "items" list) whose records
may use Vietnamese or English field names, and projects each record into the
canonical shape the index expects:
{_id, name, code, category, description, price{originalPrice, salePrice}, stock, images}.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import normalize_text

logger = logging.getLogger("partsbot.catalog")

THOUSANDS_RE = re.compile(r"\d{1,3}(?:([.,])\d{3})(?:\1\d{3})*")
DECIMAL_RE = re.compile(r"\d+(?:[.,]\d+)?")

ID_KEYS = ["_id", "id", "product id", "ma id"]
CODE_KEYS = ["code", "sku", "ma san pham", "part no.", "ma", "product code"]
NAME_KEYS = ["name", "ten", "ten san pham", "product name"]
DESC_KEYS = ["description", "mo ta", "chi tiet", "spec"]
CATEGORY_KEYS = ["category", "danh muc", "loai", "nhom"]
STOCK_KEYS = ["stock", "ton kho", "so luong", "quantity"]
SALE_PRICE_KEYS = ["salePrice", "gia khuyen mai", "gia ban"]
ORIGINAL_PRICE_KEYS = ["originalPrice", "price", "gia", "gia goc"]
IMAGE_KEYS = ["images", "image", "hinh anh", "anh"]


@dataclass
class CatalogMeta:
    """Metadata describing the catalog file version for logging."""
    file_name: str
    updated_at: str
    sha256: str


def normalize_key(text: str) -> str:
    return normalize_text(text).replace(" ", "")


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        """Purpose: Configure the loader with a catalog file path.
        Inputs/Outputs: Input is a Path to the catalog JSON; no return value.
        Side Effects / State: Stores the path; meta is filled on each load.
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; load_products() raises on read/parse errors.
        If Removed: The product index has no catalog to read.
        Testing Notes: Instantiate with a temp path and call load_products().
        """
        # Store the catalog location for subsequent loads.
        self._path = path
        self.meta: Optional[CatalogMeta] = None

    def load_products(self) -> List[Dict[str, Any]]:
        """Purpose: Read and project every catalog record into the canonical shape.
        Inputs/Outputs: No inputs; returns a list of canonical product dicts.
        Side Effects / State: Reads the file; updates self.meta.
        Dependencies: Uses json, hashlib, and _get_first_value.
        Failure Modes: Missing file (OSError) and JSON decode errors propagate so
            the index does not cache an empty catalog.
        If Removed: Index refresh cannot run.
        Testing Notes: Records keyed "Tên sản phẩm"/"Mã" map to name/code.
        """
        # Hash the raw bytes for the log line, then project record by record.
        raw_bytes = self._path.read_bytes()
        self.meta = CatalogMeta(
            file_name=self._path.name,
            updated_at=datetime.fromtimestamp(self._path.stat().st_mtime).isoformat(),
            sha256=hashlib.sha256(raw_bytes).hexdigest(),
        )
        data = json.loads(raw_bytes.decode("utf-8-sig"))
        if isinstance(data, dict):
            items = data.get("items", [])
        elif isinstance(data, list):
            items = data
        else:
            items = []

        products = [project_record(item, position) for position, item in enumerate(items) if isinstance(item, dict)]
        logger.info(
            "catalog loaded file=%s items=%s sha256=%s",
            self.meta.file_name,
            len(products),
            self.meta.sha256[:12],
        )
        return products


def project_record(item: Dict[str, Any], position: int = 0) -> Dict[str, Any]:
    """Map one raw catalog record onto canonical product fields."""
    price = item.get("price")
    if isinstance(price, dict):
        sale = _to_number(_get_first_value(price, SALE_PRICE_KEYS))
        original = _to_number(_get_first_value(price, ORIGINAL_PRICE_KEYS))
    else:
        sale = _to_number(_get_first_value(item, SALE_PRICE_KEYS))
        original = _to_number(_get_first_value(item, ORIGINAL_PRICE_KEYS))

    images = _get_first_value(item, IMAGE_KEYS)
    if isinstance(images, str):
        images = [images]
    stock = _to_number(_get_first_value(item, STOCK_KEYS))
    product_id = _get_first_value(item, ID_KEYS)
    return {
        "_id": str(product_id) if product_id is not None else f"item-{position}",
        "name": str(_get_first_value(item, NAME_KEYS) or "").strip(),
        "code": str(_get_first_value(item, CODE_KEYS) or "").strip() or None,
        "category": str(_get_first_value(item, CATEGORY_KEYS) or "").strip() or None,
        "description": str(_get_first_value(item, DESC_KEYS) or "").strip(),
        "price": {"originalPrice": original, "salePrice": sale},
        "stock": int(stock) if stock is not None else 0,
        "images": [str(image) for image in images] if isinstance(images, list) else [],
    }


def _to_number(value: Any) -> Optional[float]:
    # Grouped strings ("15.000", "1,200,000") are thousands; a lone separator is a decimal point.
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if THOUSANDS_RE.fullmatch(text):
            return float(text.replace(".", "").replace(",", ""))
        if DECIMAL_RE.fullmatch(text):
            return float(text.replace(",", "."))
    return None


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first matching field in a dict by key synonyms.
    Inputs/Outputs: Input is a raw dict and a list of candidate keys; returns value or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_key and _has_value.
    Failure Modes: Returns None when no keys match or values are empty.
    If Removed: Field mapping for name/code/category/price fails in load_products().
    Testing Notes: Verify accented and unaccented keys resolve to the same value.
    """
    # Exact normalized-key match only; partial matches would confuse "ma" with "ma id".
    normalized_map = {normalize_key(str(k)): k for k in item.keys()}
    for key in keys:
        actual = normalized_map.get(normalize_key(key))
        if actual is not None and _has_value(item.get(actual)):
            return item.get(actual)
    return None


def _has_value(value: Any) -> bool:
    # Treat None or empty strings as missing values.
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True
