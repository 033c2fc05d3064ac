import json

import pytest

from partsbot.resource_loader import CatalogLoader, project_record


def test_vietnamese_keys_are_projected(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "items": [
                    {
                        "Mã": "RES10K",
                        "Tên sản phẩm": "Điện trở 10k",
                        "Danh mục": "resistor",
                        "Giá": "15.000",
                        "Tồn kho": 42,
                        "Hình ảnh": "https://cdn.example.com/r.jpg",
                    }
                ]
            },
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )
    loader = CatalogLoader(path)
    [record] = loader.load_products()

    assert record == {
        "_id": "item-0",
        "name": "Điện trở 10k",
        "code": "RES10K",
        "category": "resistor",
        "description": "",
        "price": {"originalPrice": 15000.0, "salePrice": None},
        "stock": 42,
        "images": ["https://cdn.example.com/r.jpg"],
    }
    assert loader.meta.file_name == "catalog.json"
    assert len(loader.meta.sha256) == 64


def test_list_form_with_nested_price(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps([{"_id": "p1", "name": "LED đỏ", "price": {"originalPrice": 500, "salePrice": 400}}, "junk"]),
        encoding="utf-8",
    )
    [record] = CatalogLoader(path).load_products()
    assert record["_id"] == "p1"
    assert record["price"] == {"originalPrice": 500.0, "salePrice": 400.0}
    assert record["stock"] == 0
    assert record["code"] is None


def test_blank_values_fall_through_to_next_key():
    record = project_record({"code": "  ", "sku": "NE555", "name": "IC"}, 3)
    assert record["code"] == "NE555"
    assert record["_id"] == "item-3"


@pytest.mark.parametrize(
    "raw, expected",
    [("15.000", 15000.0), ("1,200,000", 1200000.0), ("12.5", 12.5), ("3,3", 3.3), (" 42 ", 42.0), ("abc", None)],
)
def test_price_strings_distinguish_grouping_from_decimals(raw, expected):
    record = project_record({"_id": "p1", "name": "LED", "price": raw}, 0)
    assert record["price"]["originalPrice"] == expected


def test_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        CatalogLoader(tmp_path / "missing.json").load_products()
