import pytest

from gost_editor.errors import RuleEvaluationError
from gost_editor.rules.load_rules import (
    checked_rule_keys,
    default_gost_rules,
    load_formatting_rules,
    rules_from_dict,
)


def test_default_rule_pack_loads():
    rules = default_gost_rules()
    assert rules.name == "gost-7.32-2017"
    assert rules.document.margins_mm == {"top": 20.0, "bottom": 20.0, "left": 30.0, "right": 15.0}
    body = rules.for_block("body")
    assert body.font == "Times New Roman"
    assert body.size_pt == 14.0
    assert body.line_spacing == 1.5
    assert body.indent_first_line_mm == 12.5
    assert rules.for_block("heading_1").alignment == "center"
    assert rules.for_block("heading_2").numbering == "1.1"
    assert rules.for_block("other") is None
    assert rules.tolerances.margin_mm == 0.5


def test_checked_rule_keys_follow_the_rule_set():
    keys = checked_rule_keys(default_gost_rules())
    assert "margins.left" in keys
    assert "body.font" in keys
    assert "heading_1.numbering" in keys
    assert "bibliography.order" in keys
    assert "typography.nbsp_initials" in keys
    assert "typography.prohibited_abbreviations" in keys


@pytest.mark.parametrize("pack, rule_key", [
    ({"blocks": {"footnote": {"font": "Arial"}}}, "blocks.footnote"),
    ({"blocks": {"body": {"alignment": "middle"}}}, "blocks.body.alignment"),
    ({"blocks": {"body": {"size_pt": -2}}}, "blocks.body.size_pt"),
    ({"blocks": {"body": {"size_pt": "big"}}}, "blocks.body.size_pt"),
    ({"blocks": {"body": {"bold": "yes"}}}, "blocks.body.bold"),
    ({"blocks": {"heading_1": {"numbering": "I"}}}, "blocks.heading_1.numbering"),
    ({"document": {"margins_mm": {"inner": 20}}}, "document.margins_mm.inner"),
    ({"document": {"page_numbering": {"start": 0}}}, "document.page_numbering.start"),
    ({"document": {"bibliography_sort": "random"}}, "document.bibliography_sort"),
    ({"tolerances": {"color": 1}}, "tolerances.color"),
    ({"blocks": {"body": {"font_size": 14, "alignement": "justify"}}}, "blocks.body.font_size"),
    ({"blocks": {"body": {"size_pt": 14, "alignement": "justify"}}}, "blocks.body.alignement"),
    ({"document": {"margin_mm": {"top": 20}}}, "document.margin_mm"),
    ({"document": {"page_numbering": {"begin": 1}}}, "document.page_numbering.begin"),
    ({"document": {"typography": {"em_dashes": True}}}, "document.typography.em_dashes"),
    ({"document": {"typography": {"abbreviations": "т.д."}}}, "document.typography.abbreviations"),
    ({"block": {"body": {"font": "Arial"}}}, "block"),
])
def test_malformed_rule_entries_name_their_key(pack, rule_key):
    with pytest.raises(RuleEvaluationError) as exc:
        rules_from_dict(pack)
    assert exc.value.rule_key == rule_key
    assert exc.value.to_dict()["details"]["rule_key"] == rule_key


def test_hanging_indent_is_allowed():
    rules = rules_from_dict({"blocks": {"bibliography_entry": {"indent_first_line_mm": -10}}})
    assert rules.for_block("bibliography_entry").indent_first_line_mm == -10.0


def test_invalid_yaml_is_a_rule_error(tmp_path):
    path = tmp_path / "broken.yml"
    path.write_text("blocks: [unclosed\n", encoding="utf-8")
    with pytest.raises(RuleEvaluationError) as exc:
        load_formatting_rules(str(path))
    assert exc.value.rule_key == "<root>"


def test_custom_rule_pack_from_file(tmp_path):
    path = tmp_path / "custom.yml"
    path.write_text(
        "name: narrow\n"
        "document:\n"
        "  margins_mm: {left: 25}\n"
        "blocks:\n"
        "  body: {font: Arial, size_pt: 12}\n",
        encoding="utf-8",
    )
    rules = load_formatting_rules(str(path))
    assert rules.name == "narrow"
    assert rules.document.margins_mm == {"left": 25.0}
    assert rules.for_block("body").font == "Arial"
    assert rules.document.title_page is None
