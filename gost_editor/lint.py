"""
Rule engine: compare effective formatting of classified paragraphs and
section properties against a FormattingRules set.

Per-paragraph checks yield point violations (run-level ones aggregated per
paragraph and attribute). Heading numbering and bibliography order are
evaluated over the whole sequence and yield range violations.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import re

from gost_editor.adapters.docx_adapter import parse_docx_structure
from gost_editor.classify import is_structural_heading
from gost_editor.errors import RuleEvaluationError
from gost_editor.ir import (
    AnalysisResult,
    EnrichedParagraph,
    HEADING_LEVELS,
    ParagraphNode,
    RunNode,
    SectionProps,
    Violation,
    ViolationLocation,
)
from gost_editor.rules.load_rules import BlockRules, FormattingRules, Tolerances, checked_rule_keys
from gost_editor.stats import DEFAULT_CHARS_PER_PAGE, compute_statistics

logger = logging.getLogger(__name__)

# Absorbs float noise from unit conversions at the tolerance boundary
_EPS = 1e-6

SEVERITY = {
    "margins": "critical",
    "font.family": "critical",
    "font.size": "critical",
    "font.bold": "warning",
    "font.italic": "warning",
    "font.highlight": "warning",
    "paragraph.alignment": "warning",
    "paragraph.indent_first_line": "warning",
    "paragraph.line_spacing": "warning",
    "paragraph.space_before": "info",
    "paragraph.space_after": "info",
    "page_numbering.start": "warning",
    "page_numbering.title_page": "warning",
    "headings.numbering": "critical",
    "headings.trailing_dot": "info",
    "bibliography.order": "warning",
    "typography": "info",
}

_HEADING_NUMBER = re.compile(r"^(\d+(?:\.\d+)*)\.?(?:\s|$)")
_BIB_NUMBER = re.compile(r"^\s*\[?\d+[\].)]?\s*")
_CYRILLIC = re.compile(r"[А-Яа-яЁё]")

_UNITS = re.compile(r"\d +(?:мм|см|км|кг|мг|мл|мин|м|г|л|с|ч|%)(?![А-Яа-яЁёA-Za-z])")
_INITIALS = re.compile(r"[А-ЯЁ]\. *[А-ЯЁ]\. +[А-ЯЁ][а-яё]+|[А-ЯЁ][а-яё]+ +[А-ЯЁ]\. *[А-ЯЁ]\.")


def abbreviation_pattern(abbr: str) -> re.Pattern:
    """Match an abbreviation whole, with or without spaces after its inner dots."""
    out = []
    for i, ch in enumerate(abbr):
        if ch == ".":
            out.append(r"\.\s*" if 0 < i < len(abbr) - 1 and not abbr[i + 1].isspace() else r"\.")
        elif ch.isspace():
            out.append(r"\s+")
        else:
            out.append(re.escape(ch))
    tail = r"(?!\w)" if abbr[-1].isalnum() else ""
    return re.compile(r"(?<!\w)" + "".join(out) + tail, re.IGNORECASE)


def within(actual: Optional[float], expected: float, tol: float) -> bool:
    """Inclusive tolerance band; unknown values never pass."""
    if actual is None:
        return False
    return abs(actual - expected) <= tol + _EPS


def _num(value: float) -> str:
    return f"{value:g}"


def _violation(rule_id: str, rule_path: str, expected: str, actual: str, description: str,
               location: ViolationLocation, block_type: Optional[str] = None,
               auto_fixable: bool = True, target: Any = None) -> Violation:
    category = rule_id.split(".")[0]
    severity = SEVERITY.get(rule_id) or SEVERITY.get(category, "warning")
    return Violation(
        rule_id=rule_id,
        rule_path=rule_path,
        category=category,
        severity=severity,
        expected=expected,
        actual=actual,
        description=description,
        location=location,
        block_type=block_type,
        auto_fixable=auto_fixable,
        target=target,
    )


# --- document level -------------------------------------------------------

def check_sections(sections: Sequence[SectionProps], rules: FormattingRules) -> List[Violation]:
    out: List[Violation] = []
    doc = rules.document
    tol = rules.tolerances.margin_mm
    for si, section in enumerate(sections):
        for side, expected in doc.margins_mm.items():
            actual = section.margins_mm.get(side)
            if not within(actual, expected, tol):
                out.append(_violation(
                    f"margins.{side}", f"document.margins_mm.{side}",
                    f"{_num(expected)} mm", f"{_num(round(actual, 2))} mm" if actual is not None else "unset",
                    f"Section {si + 1}: {side} margin must be {_num(expected)} mm",
                    ViolationLocation(section_index=si), target=expected,
                ))

    if not sections:
        return out
    first = sections[0]
    if doc.page_numbering_start is not None:
        # Word numbers from 1 when pgNumType/@w:start is absent
        actual_start = first.page_numbering_start or 1
        if actual_start != doc.page_numbering_start:
            out.append(_violation(
                "page_numbering.start", "document.page_numbering.start",
                str(doc.page_numbering_start), str(actual_start),
                f"Page numbering must start at {doc.page_numbering_start}",
                ViolationLocation(section_index=0), target=doc.page_numbering_start,
            ))
    if doc.title_page is not None and first.title_page != doc.title_page:
        out.append(_violation(
            "page_numbering.title_page", "document.page_numbering.title_page",
            "hidden on title page" if doc.title_page else "shown on first page",
            "hidden on title page" if first.title_page else "shown on first page",
            "Page number visibility on the title page does not match the rules",
            ViolationLocation(section_index=0), target=doc.title_page,
        ))
    return out


# --- run level --------------------------------------------------------------

def _run_check(
    p: ParagraphNode,
    block_type: str,
    rule_id: str,
    rule_path: str,
    expected_value: Any,
    expected: str,
    render: Callable[[RunNode], str],
    ok: Callable[[RunNode], bool],
    description: str,
) -> Optional[Violation]:
    bad = [r for r in p.runs if r.is_visible and not ok(r)]
    if not bad:
        return None
    actual = ", ".join(dict.fromkeys(render(r) for r in bad))
    return _violation(
        rule_id, rule_path, expected, actual, description,
        ViolationLocation(paragraph_index=p.index, run_indices=tuple(r.index for r in bad)),
        block_type=block_type, target=expected_value,
    )


def check_runs(p: ParagraphNode, block_type: str, block: BlockRules, rules: FormattingRules) -> List[Violation]:
    tol: Tolerances = rules.tolerances
    checks: List[Optional[Violation]] = []
    if block.font is not None:
        want = block.font.casefold()
        checks.append(_run_check(
            p, block_type, "font.family", f"{block_type}.font", block.font, block.font,
            lambda r: r.format.font or "unset",
            lambda r: (r.format.font or "").casefold() == want,
            f"Font must be {block.font}",
        ))
    if block.size_pt is not None:
        checks.append(_run_check(
            p, block_type, "font.size", f"{block_type}.size_pt", block.size_pt, f"{_num(block.size_pt)} pt",
            lambda r: f"{_num(r.format.size_pt)} pt" if r.format.size_pt is not None else "unset",
            lambda r: within(r.format.size_pt, block.size_pt, tol.font_size_pt),
            f"Font size must be {_num(block.size_pt)} pt",
        ))
    if block.bold is not None:
        checks.append(_run_check(
            p, block_type, "font.bold", f"{block_type}.bold", block.bold, "bold" if block.bold else "regular",
            lambda r: "bold" if r.format.bold else "regular",
            lambda r: bool(r.format.bold) == block.bold,
            "Text must be bold" if block.bold else "Text must not be bold",
        ))
    if block.italic is not None:
        checks.append(_run_check(
            p, block_type, "font.italic", f"{block_type}.italic", block.italic, "italic" if block.italic else "upright",
            lambda r: "italic" if r.format.italic else "upright",
            lambda r: bool(r.format.italic) == block.italic,
            "Text must be italic" if block.italic else "Text must not be italic",
        ))
    if rules.document.forbid_highlight:
        checks.append(_run_check(
            p, block_type, "font.highlight", "document.forbid_highlight", None, "no highlight",
            lambda r: r.format.highlight or "none",
            lambda r: r.format.highlight is None,
            "Highlighting is not allowed",
        ))
    return [v for v in checks if v is not None]


# --- paragraph level --------------------------------------------------------

def check_paragraph(p: ParagraphNode, block_type: str, block: BlockRules, rules: FormattingRules) -> List[Violation]:
    out: List[Violation] = []
    fmt = p.format
    tol = rules.tolerances
    loc = ViolationLocation(paragraph_index=p.index)

    def add(rule_id: str, attr: str, expected: str, actual: str, description: str, target: Any) -> None:
        out.append(_violation(rule_id, f"{block_type}.{attr}", expected, actual, description, loc,
                              block_type=block_type, target=target))

    if block.alignment is not None and fmt.alignment != block.alignment:
        add("paragraph.alignment", "alignment", block.alignment, fmt.alignment or "unset",
            f"Alignment must be {block.alignment}", block.alignment)

    if block.indent_first_line_mm is not None:
        actual = fmt.indent_first_line_mm or 0.0
        if not within(actual, block.indent_first_line_mm, tol.indent_mm):
            add("paragraph.indent_first_line", "indent_first_line_mm",
                f"{_num(block.indent_first_line_mm)} mm", f"{_num(round(actual, 2))} mm",
                f"First line indent must be {_num(block.indent_first_line_mm)} mm", block.indent_first_line_mm)

    if block.line_spacing is not None:
        if fmt.line_spacing_rule not in (None, "auto"):
            add("paragraph.line_spacing", "line_spacing", _num(block.line_spacing),
                f"{_num(round(fmt.line_spacing or 0.0, 2))} pt {fmt.line_spacing_rule}",
                f"Line spacing must be {_num(block.line_spacing)}", block.line_spacing)
        elif not within(fmt.line_spacing, block.line_spacing, tol.line_spacing):
            actual = _num(round(fmt.line_spacing, 2)) if fmt.line_spacing is not None else "unset"
            add("paragraph.line_spacing", "line_spacing", _num(block.line_spacing), actual,
                f"Line spacing must be {_num(block.line_spacing)}", block.line_spacing)

    for attr, rule_id, label in (("space_before_pt", "paragraph.space_before", "before"),
                                 ("space_after_pt", "paragraph.space_after", "after")):
        expected = getattr(block, attr)
        if expected is None:
            continue
        actual = getattr(fmt, attr) or 0.0
        if not within(actual, expected, tol.spacing_pt):
            add(rule_id, attr, f"{_num(expected)} pt", f"{_num(round(actual, 2))} pt",
                f"Spacing {label} paragraph must be {_num(expected)} pt", expected)
    return out


# --- typography -------------------------------------------------------------

def check_typography(p: ParagraphNode, block_type: str, rules: FormattingRules) -> List[Violation]:
    typo = rules.document.typography
    text = p.text
    loc = ViolationLocation(paragraph_index=p.index)
    out: List[Violation] = []

    def add(rule_id: str, path: str, expected: str, found: List[str], description: str) -> None:
        out.append(_violation(rule_id, path, expected, ", ".join(dict.fromkeys(found)),
                              f"{description} ({len(found)}x)", loc, block_type=block_type, auto_fixable=False))

    if typo.em_dash and "—" in text:
        add("typography.em_dash", "document.typography.em_dash", "–", ["—"] * text.count("—"),
            "Em dash must be replaced by an en dash")
    if typo.straight_quotes and '"' in text:
        add("typography.straight_quotes", "document.typography.straight_quotes", "«»", ['"'] * text.count('"'),
            "Straight quotes must be replaced by «»")
    if typo.nbsp_units:
        found = _UNITS.findall(text)
        if found:
            add("typography.nbsp_units", "document.typography.nbsp_units", "no-break space before unit", found,
                "A no-break space is required between a number and its unit")
    if typo.nbsp_initials:
        found = _INITIALS.findall(text)
        if found:
            add("typography.nbsp_initials", "document.typography.nbsp_initials", "no-break space after initials",
                found, "A no-break space is required between initials and surname")
    if typo.prohibited_abbreviations:
        found = [m.group(0) for abbr in typo.abbreviations for m in abbreviation_pattern(abbr).finditer(text)]
        if found:
            add("typography.prohibited_abbreviations", "document.typography.prohibited_abbreviations",
                "full wording", found, "Graphical abbreviations are not allowed in running text")
    return out


# --- structural -------------------------------------------------------------

def check_heading_numbering(enriched: Sequence[EnrichedParagraph], rules: FormattingRules) -> List[Violation]:
    """Heading numbers must run 1, 2, 3 / N.1, N.2 / N.M.1 without gaps."""
    out: List[Violation] = []
    counters = [0, 0, 0]
    previous: Dict[int, int] = {}
    for ep in enriched:
        level = HEADING_LEVELS.get(ep.block_type)
        block = rules.for_block(ep.block_type)
        if not level or block is None or block.numbering is None:
            continue
        text = ep.text.strip()
        if is_structural_heading(text):
            continue

        counters[level - 1] += 1
        for deeper in range(level, 3):
            counters[deeper] = 0
        expected = ".".join(str(c) for c in counters[:level])
        m = _HEADING_NUMBER.match(text)
        actual = m.group(1) if m else None

        if actual != expected:
            start = previous.get(level, ep.index)
            out.append(_violation(
                "headings.numbering", f"{ep.block_type}.numbering", expected, actual or "no number",
                f"Heading number must be {expected} (numbering style {block.numbering})",
                ViolationLocation(paragraph_index=start, end_paragraph_index=ep.index),
                block_type=ep.block_type, auto_fixable=False,
            ))
            # resync on the document's own numbering so one slip is reported once
            parts = actual.split(".") if actual else []
            if len(parts) == level:
                for k, part in enumerate(parts):
                    counters[k] = int(part)
        previous[level] = ep.index

        if block.no_trailing_dot and text.endswith(".") and not text.endswith(".."):
            out.append(_violation(
                "headings.trailing_dot", f"{ep.block_type}.no_trailing_dot", "no trailing dot", "trailing dot",
                "Headings must not end with a dot",
                ViolationLocation(paragraph_index=ep.index), block_type=ep.block_type, auto_fixable=False,
            ))
    return out


def bibliography_sort_key(text: str):
    """Cyrillic entries first, then Latin; case-insensitive within each group."""
    body = _BIB_NUMBER.sub("", text).strip()
    first = next((ch for ch in body if ch.isalpha()), "")
    return (0 if _CYRILLIC.match(first) else 1, body.casefold())


def check_bibliography_order(enriched: Sequence[EnrichedParagraph], rules: FormattingRules) -> List[Violation]:
    if rules.document.bibliography_sort != "alphabetical":
        return []
    entries = [ep for ep in enriched if ep.block_type == "bibliography_entry" and ep.text.strip()]
    for prev, cur in zip(entries, entries[1:]):
        if bibliography_sort_key(cur.text) < bibliography_sort_key(prev.text):
            return [_violation(
                "bibliography.order", "document.bibliography_sort", "alphabetical",
                f"\"{cur.text.strip()[:40]}\" follows \"{prev.text.strip()[:40]}\"",
                "Bibliography entries must be sorted alphabetically (Cyrillic before Latin)",
                ViolationLocation(paragraph_index=entries[0].index, end_paragraph_index=entries[-1].index),
                block_type="bibliography_entry", auto_fixable=False,
            )]
    return []


# --- entry point ------------------------------------------------------------

def lint_paragraphs(enriched: Sequence[EnrichedParagraph], rules: FormattingRules) -> List[Violation]:
    out: List[Violation] = []
    for ep in enriched:
        block = rules.for_block(ep.block_type)
        if block is None:
            continue
        p = ep.paragraph
        out.extend(check_paragraph(p, ep.block_type, block, rules))
        out.extend(check_runs(p, ep.block_type, block, rules))
        out.extend(check_typography(p, ep.block_type, rules))
    return out


def analyze(buffer: bytes, rules: FormattingRules, enriched: Sequence[EnrichedParagraph],
            chars_per_page: int = DEFAULT_CHARS_PER_PAGE) -> AnalysisResult:
    """Evaluate every rule against the document; violations come in document order."""
    structure = parse_docx_structure(buffer)
    if len(enriched) != len(structure.paragraphs):
        raise RuleEvaluationError(
            f"Got {len(enriched)} classified paragraphs for a document with {len(structure.paragraphs)}",
            rule_key="<enriched>",
        )

    violations: List[Violation] = []
    violations.extend(check_sections(structure.sections, rules))
    violations.extend(lint_paragraphs(enriched, rules))
    violations.extend(check_heading_numbering(enriched, rules))
    violations.extend(check_bibliography_order(enriched, rules))
    violations.sort(key=lambda v: (v.location.paragraph_index is not None, v.location.paragraph_index or 0))

    stats = compute_statistics(structure, violations, chars_per_page)
    logger.info(f"Analysis found {len(violations)} violations across {stats.paragraph_count} paragraphs")
    return AnalysisResult(violations=violations, statistics=stats, checked_rules=checked_rule_keys(rules))
