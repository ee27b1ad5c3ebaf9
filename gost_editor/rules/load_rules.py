from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional
import logging
import os

import yaml

from gost_editor.errors import RuleEvaluationError
from gost_editor.ir import BLOCK_TYPES

logger = logging.getLogger(__name__)

DEFAULT_RULE_PACK = os.path.join(os.path.dirname(__file__), "gost_default.yml")

ALIGNMENTS = ("left", "center", "right", "justify")
NUMBERING_STYLES = ("1", "1.1", "1.1.1")
BIBLIOGRAPHY_SORTS = ("alphabetical", "citation", "none")
MARGIN_SIDES = ("top", "bottom", "left", "right")
TYPOGRAPHY_FLAGS = ("em_dash", "straight_quotes", "nbsp_units", "nbsp_initials", "prohibited_abbreviations")
# GOST 7.32 5.9.3: graphical shortcuts not allowed in running text
GRAPHICAL_ABBREVIATIONS = ("т.д.", "т.п.", "т.е.", "т.к.", "и др.")


@dataclass
class BlockRules:
    font: Optional[str] = None
    size_pt: Optional[float] = None
    bold: Optional[bool] = None
    italic: Optional[bool] = None
    alignment: Optional[str] = None
    indent_first_line_mm: Optional[float] = None
    line_spacing: Optional[float] = None
    space_before_pt: Optional[float] = None
    space_after_pt: Optional[float] = None
    numbering: Optional[str] = None      # heading numbering style: 1 | 1.1 | 1.1.1
    no_trailing_dot: bool = False


@dataclass
class TypographyRules:
    em_dash: bool = True
    straight_quotes: bool = True
    nbsp_units: bool = True
    nbsp_initials: bool = False
    prohibited_abbreviations: bool = False
    abbreviations: List[str] = field(default_factory=lambda: list(GRAPHICAL_ABBREVIATIONS))


@dataclass
class DocumentRules:
    margins_mm: Dict[str, float] = field(default_factory=dict)
    page_numbering_start: Optional[int] = None
    title_page: Optional[bool] = None
    forbid_highlight: bool = True
    bibliography_sort: str = "alphabetical"
    typography: TypographyRules = field(default_factory=TypographyRules)


@dataclass
class Tolerances:
    """Inclusive bands: a value within ``tol`` of the expected one passes."""
    margin_mm: float = 0.5
    line_spacing: float = 0.05
    indent_mm: float = 0.5
    font_size_pt: float = 0.25
    spacing_pt: float = 1.0


@dataclass
class FormattingRules:
    name: str = "custom"
    document: DocumentRules = field(default_factory=DocumentRules)
    blocks: Dict[str, BlockRules] = field(default_factory=dict)
    tolerances: Tolerances = field(default_factory=Tolerances)

    def for_block(self, block_type: str) -> Optional[BlockRules]:
        return self.blocks.get(block_type)


BLOCK_FIELDS = tuple(f.name for f in fields(BlockRules))
DOCUMENT_KEYS = ("margins_mm", "page_numbering", "forbid_highlight", "bibliography_sort", "typography")
TYPOGRAPHY_FIELDS = TYPOGRAPHY_FLAGS + ("abbreviations",)
PACK_KEYS = ("name", "document", "blocks", "tolerances")


def load_rule_pack(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_formatting_rules(path: str) -> FormattingRules:
    try:
        pack = load_rule_pack(path)
    except yaml.YAMLError as e:
        raise RuleEvaluationError(f"Rule pack {path} is not valid YAML: {e}", rule_key="<root>")
    return rules_from_dict(pack)


def default_gost_rules() -> FormattingRules:
    return load_formatting_rules(DEFAULT_RULE_PACK)


def _number(value: Any, key: str, *, allow_negative: bool = False) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RuleEvaluationError(f"{key} must be a number, got {value!r}", rule_key=key)
    if not allow_negative and value < 0:
        raise RuleEvaluationError(f"{key} must not be negative, got {value!r}", rule_key=key)
    return float(value)


def _flag(value: Any, key: str) -> Optional[bool]:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise RuleEvaluationError(f"{key} must be true or false, got {value!r}", rule_key=key)
    return value


def _choice(value: Any, key: str, allowed) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    if value not in allowed:
        raise RuleEvaluationError(f"{key} must be one of {', '.join(allowed)}, got {value!r}", rule_key=key)
    return value


def _mapping(value: Any, key: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RuleEvaluationError(f"{key} must be a mapping", rule_key=key)
    return value


def _strings(value: Any, key: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise RuleEvaluationError(f"{key} must be a list of non-empty strings", rule_key=key)
    return [v.strip() for v in value]


def _known_keys(raw: Dict[str, Any], key: str, allowed) -> None:
    for name in raw:
        if name not in allowed:
            raise RuleEvaluationError(f"Unknown rule {name!r} in {key}", rule_key=f"{key}.{name}")


def _block_rules(raw: Any, key: str) -> BlockRules:
    raw = _mapping(raw, key)
    _known_keys(raw, key, BLOCK_FIELDS)
    font = raw.get("font")
    if font is not None and (not isinstance(font, str) or not font.strip()):
        raise RuleEvaluationError(f"{key}.font must be a font name", rule_key=f"{key}.font")
    size = _number(raw.get("size_pt"), f"{key}.size_pt")
    if size == 0:
        raise RuleEvaluationError(f"{key}.size_pt must be positive", rule_key=f"{key}.size_pt")
    spacing = _number(raw.get("line_spacing"), f"{key}.line_spacing")
    if spacing == 0:
        raise RuleEvaluationError(f"{key}.line_spacing must be positive", rule_key=f"{key}.line_spacing")
    return BlockRules(
        font=font.strip() if font else None,
        size_pt=size,
        bold=_flag(raw.get("bold"), f"{key}.bold"),
        italic=_flag(raw.get("italic"), f"{key}.italic"),
        alignment=_choice(raw.get("alignment"), f"{key}.alignment", ALIGNMENTS),
        # negative first-line indent = hanging indent
        indent_first_line_mm=_number(raw.get("indent_first_line_mm"), f"{key}.indent_first_line_mm", allow_negative=True),
        line_spacing=spacing,
        space_before_pt=_number(raw.get("space_before_pt"), f"{key}.space_before_pt"),
        space_after_pt=_number(raw.get("space_after_pt"), f"{key}.space_after_pt"),
        numbering=_choice(raw.get("numbering"), f"{key}.numbering", NUMBERING_STYLES),
        no_trailing_dot=bool(_flag(raw.get("no_trailing_dot"), f"{key}.no_trailing_dot")),
    )


def _document_rules(raw: Any) -> DocumentRules:
    raw = _mapping(raw, "document")
    _known_keys(raw, "document", DOCUMENT_KEYS)
    margins: Dict[str, float] = {}
    for side, val in _mapping(raw.get("margins_mm"), "document.margins_mm").items():
        if side not in MARGIN_SIDES:
            raise RuleEvaluationError(f"Unknown margin side {side!r}", rule_key=f"document.margins_mm.{side}")
        margins[side] = _number(val, f"document.margins_mm.{side}")

    numbering = _mapping(raw.get("page_numbering"), "document.page_numbering")
    _known_keys(numbering, "document.page_numbering", ("start", "title_page"))
    start = numbering.get("start")
    if start is not None and (isinstance(start, bool) or not isinstance(start, int) or start < 1):
        raise RuleEvaluationError(f"page_numbering.start must be a positive integer, got {start!r}",
                                  rule_key="document.page_numbering.start")

    typo = _mapping(raw.get("typography"), "document.typography")
    _known_keys(typo, "document.typography", TYPOGRAPHY_FIELDS)
    defaults = TypographyRules()
    typography = TypographyRules(
        abbreviations=_strings(typo.get("abbreviations", defaults.abbreviations), "document.typography.abbreviations"),
        **{
            name: bool(_flag(typo.get(name, getattr(defaults, name)), f"document.typography.{name}"))
            for name in TYPOGRAPHY_FLAGS
        },
    )

    return DocumentRules(
        margins_mm=margins,
        page_numbering_start=start,
        title_page=_flag(numbering.get("title_page"), "document.page_numbering.title_page"),
        forbid_highlight=bool(_flag(raw.get("forbid_highlight", True), "document.forbid_highlight")),
        bibliography_sort=_choice(raw.get("bibliography_sort", "alphabetical"), "document.bibliography_sort",
                                  BIBLIOGRAPHY_SORTS),
        typography=typography,
    )


def rules_from_dict(pack: Dict[str, Any]) -> FormattingRules:
    """Validate a parsed rule pack and build FormattingRules from it.

    Raises RuleEvaluationError naming the offending key on any malformed
    entry: unknown block types, wrong value types, bad alignments or
    numbering styles, negative sizes.
    """
    if not isinstance(pack, dict):
        raise RuleEvaluationError("Rule pack must be a mapping", rule_key="<root>")
    for name in pack:
        if name not in PACK_KEYS:
            raise RuleEvaluationError(f"Unknown rule pack section {name!r}", rule_key=name)

    blocks: Dict[str, BlockRules] = {}
    for block_type, raw in _mapping(pack.get("blocks"), "blocks").items():
        if block_type not in BLOCK_TYPES:
            raise RuleEvaluationError(f"Unknown block type {block_type!r}", rule_key=f"blocks.{block_type}")
        blocks[block_type] = _block_rules(raw, f"blocks.{block_type}")

    tol_raw = _mapping(pack.get("tolerances"), "tolerances")
    tolerances = Tolerances()
    for name in list(tol_raw):
        if not hasattr(tolerances, name):
            raise RuleEvaluationError(f"Unknown tolerance {name!r}", rule_key=f"tolerances.{name}")
        value = _number(tol_raw[name], f"tolerances.{name}")
        if value is not None:
            setattr(tolerances, name, value)

    rules = FormattingRules(
        name=str(pack.get("name", "custom")),
        document=_document_rules(pack.get("document")),
        blocks=blocks,
        tolerances=tolerances,
    )
    logger.debug(f"Loaded rule pack {rules.name!r} with {len(blocks)} block rule sets")
    return rules


def checked_rule_keys(rules: FormattingRules) -> List[str]:
    """Rule paths this rule set enables, for reporting."""
    keys: List[str] = [f"margins.{side}" for side in rules.document.margins_mm]
    if rules.document.page_numbering_start is not None:
        keys.append("page_numbering.start")
    if rules.document.title_page is not None:
        keys.append("page_numbering.title_page")
    for block_type, block in rules.blocks.items():
        for attr in ("font", "size_pt", "bold", "italic", "alignment", "indent_first_line_mm",
                     "line_spacing", "space_before_pt", "space_after_pt", "numbering"):
            if getattr(block, attr) is not None:
                keys.append(f"{block_type}.{attr}")
        if block.no_trailing_dot:
            keys.append(f"{block_type}.no_trailing_dot")
    if rules.document.bibliography_sort == "alphabetical":
        keys.append("bibliography.order")
    typo = rules.document.typography
    keys.extend(f"typography.{name}" for name in TYPOGRAPHY_FLAGS if getattr(typo, name))
    return keys
