import os

from partsbot.prompt_loader import load_prompt, render_prompt

from conftest import PROMPTS_DIR


def test_bom_is_stripped(tmp_path):
    path = tmp_path / "p.txt"
    path.write_bytes("\ufeffXin chào <<NAME>>".encode("utf-8"))
    assert load_prompt(path) == "Xin chào <<NAME>>"


def test_changed_file_is_reread(tmp_path):
    path = tmp_path / "p.txt"
    path.write_text("v1", encoding="utf-8")
    os.utime(path, (1_000, 1_000))
    assert load_prompt(path) == "v1"
    path.write_text("v2", encoding="utf-8")
    os.utime(path, (2_000, 2_000))
    assert load_prompt(path) == "v2"


def test_invalid_bytes_are_dropped(tmp_path):
    path = tmp_path / "p.txt"
    path.write_bytes(b"ok\xff!")
    assert load_prompt(path) == "ok!"


def test_render_replaces_known_placeholders_only():
    assert render_prompt("<<A>> và <<B>>", {"A": 1}) == "1 và <<B>>"


def test_substituted_values_are_not_rendered_again():
    rendered = render_prompt("Q: <<QUERY>> P: <<PRODUCTS>>", {"QUERY": "<<PRODUCTS>>", "PRODUCTS": "list"})
    assert rendered == "Q: <<PRODUCTS>> P: list"


def test_shipped_templates_have_their_placeholders():
    assert "<<CONTEXT>>" in load_prompt(PROMPTS_DIR / "system_instruction.txt")
    assert "<<MESSAGE>>" in load_prompt(PROMPTS_DIR / "vision_extract.txt")
    assert "<<PRODUCTS_JSON>>" in load_prompt(PROMPTS_DIR / "vision_filter.txt")
