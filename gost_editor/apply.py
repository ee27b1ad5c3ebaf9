"""
In-place markup rewriter.

Each FormatOp is resolved against the original document.xml tree by index
(paragraphs and sections through the same traversal the parser uses) and
mutates exactly one property element. New property elements are inserted at
their schema position inside w:pPr, w:rPr and w:sectPr so Word accepts the
result.
"""
from __future__ import annotations
from typing import Callable, Dict, List, Sequence, Tuple
import logging

from docx.oxml.ns import qn
from docx.shared import Mm, Pt, Twips

from gost_editor.adapters.container import DOCUMENT_PART, DocxPackage, serialize_xml
from gost_editor.adapters.docx_adapter import (
    DEFAULT_MARGINS_MM,
    get_body,
    iter_runs,
    iter_section_elements,
    paragraph_elements,
)
from gost_editor.editops import FormatOp, SCOPE_ORDER

logger = logging.getLogger(__name__)

PPR_ORDER: Tuple[str, ...] = (
    "w:pStyle", "w:keepNext", "w:keepLines", "w:pageBreakBefore", "w:framePr", "w:widowControl",
    "w:numPr", "w:suppressLineNumbers", "w:pBdr", "w:shd", "w:tabs", "w:suppressAutoHyphens",
    "w:kinsoku", "w:wordWrap", "w:overflowPunct", "w:topLinePunct", "w:autoSpaceDE", "w:autoSpaceDN",
    "w:bidi", "w:adjustRightInd", "w:snapToGrid", "w:spacing", "w:ind", "w:contextualSpacing",
    "w:mirrorIndents", "w:suppressOverlap", "w:jc", "w:textDirection", "w:textAlignment",
    "w:textboxTightWrap", "w:outlineLvl", "w:divId", "w:cnfStyle", "w:rPr", "w:sectPr", "w:pPrChange",
)
RPR_ORDER: Tuple[str, ...] = (
    "w:rStyle", "w:rFonts", "w:b", "w:bCs", "w:i", "w:iCs", "w:caps", "w:smallCaps", "w:strike",
    "w:dstrike", "w:outline", "w:shadow", "w:emboss", "w:imprint", "w:noProof", "w:snapToGrid",
    "w:vanish", "w:webHidden", "w:color", "w:spacing", "w:w", "w:kern", "w:position", "w:sz",
    "w:szCs", "w:highlight", "w:u", "w:effect", "w:bdr", "w:shd", "w:fitText", "w:vertAlign",
    "w:rtl", "w:cs", "w:em", "w:lang", "w:eastAsianLayout", "w:specVanish", "w:oMath", "w:rPrChange",
)
SECTPR_ORDER: Tuple[str, ...] = (
    "w:headerReference", "w:footerReference", "w:footnotePr", "w:endnotePr", "w:type", "w:pgSz",
    "w:pgMar", "w:paperSrc", "w:pgBorders", "w:lnNumType", "w:pgNumType", "w:cols", "w:formProt",
    "w:vAlign", "w:noEndnote", "w:titlePg", "w:textDirection", "w:bidi", "w:rtlGutter", "w:docGrid",
    "w:printerSettings", "w:sectPrChange",
)

_JC_VALUES = {"left": "left", "center": "center", "right": "right", "justify": "both"}


class OpTargetMissing(LookupError):
    pass


def mm_to_twips(mm: float) -> int:
    return int(round(Mm(mm) / Twips(1)))


def pt_to_twips(pt: float) -> int:
    return int(round(Pt(pt) / Twips(1)))


def get_or_add(parent, tag: str, order: Sequence[str]):
    """Return ``parent``'s ``tag`` child, inserting it before its schema successors."""
    el = parent.find(qn(tag))
    if el is not None:
        return el
    el = parent.makeelement(qn(tag), {})
    successors = {qn(t) for t in order[order.index(tag) + 1:]}
    for i, child in enumerate(parent):
        if child.tag in successors:
            parent.insert(i, el)
            return el
    parent.append(el)
    return el


def get_or_add_first(parent, tag: str):
    """pPr / rPr: always the first child of their owner."""
    el = parent.find(qn(tag))
    if el is None:
        el = parent.makeelement(qn(tag), {})
        parent.insert(0, el)
    return el


def _drop_attrs(el, *names: str) -> None:
    for name in names:
        el.attrib.pop(qn(name), None)


def _set_toggle(rPr, tag: str, value: bool) -> None:
    el = get_or_add(rPr, tag, RPR_ORDER)
    if value:
        _drop_attrs(el, "w:val")
    else:
        el.set(qn("w:val"), "0")


# --- paragraph properties ---------------------------------------------------

def set_alignment(pPr, value: str) -> None:
    get_or_add(pPr, "w:jc", PPR_ORDER).set(qn("w:val"), _JC_VALUES[value])


def set_indent_first_line(pPr, value: float) -> None:
    ind = get_or_add(pPr, "w:ind", PPR_ORDER)
    _drop_attrs(ind, "w:firstLine", "w:hanging", "w:firstLineChars", "w:hangingChars")
    if value < 0:
        ind.set(qn("w:hanging"), str(mm_to_twips(-value)))
    else:
        ind.set(qn("w:firstLine"), str(mm_to_twips(value)))


def set_line_spacing(pPr, value: float) -> None:
    spacing = get_or_add(pPr, "w:spacing", PPR_ORDER)
    spacing.set(qn("w:line"), str(int(round(value * 240))))
    spacing.set(qn("w:lineRule"), "auto")


def set_space_before(pPr, value: float) -> None:
    spacing = get_or_add(pPr, "w:spacing", PPR_ORDER)
    _drop_attrs(spacing, "w:beforeLines", "w:beforeAutospacing")
    spacing.set(qn("w:before"), str(pt_to_twips(value)))


def set_space_after(pPr, value: float) -> None:
    spacing = get_or_add(pPr, "w:spacing", PPR_ORDER)
    _drop_attrs(spacing, "w:afterLines", "w:afterAutospacing")
    spacing.set(qn("w:after"), str(pt_to_twips(value)))


# --- run properties ---------------------------------------------------------

def set_font(rPr, value: str) -> None:
    rFonts = get_or_add(rPr, "w:rFonts", RPR_ORDER)
    # theme references take precedence over explicit names in Word
    _drop_attrs(rFonts, "w:asciiTheme", "w:hAnsiTheme", "w:cstheme")
    for attr in ("w:ascii", "w:hAnsi", "w:cs"):
        rFonts.set(qn(attr), value)


def set_size(rPr, value: float) -> None:
    half_points = str(int(round(value * 2)))
    get_or_add(rPr, "w:sz", RPR_ORDER).set(qn("w:val"), half_points)
    get_or_add(rPr, "w:szCs", RPR_ORDER).set(qn("w:val"), half_points)


def set_bold(rPr, value: bool) -> None:
    _set_toggle(rPr, "w:b", bool(value))


def set_italic(rPr, value: bool) -> None:
    _set_toggle(rPr, "w:i", bool(value))


def clear_highlight(rPr, value=None) -> None:
    direct = rPr.find(qn("w:highlight"))
    if direct is not None:
        rPr.remove(direct)
    else:
        # highlight comes from a style: override it
        get_or_add(rPr, "w:highlight", RPR_ORDER).set(qn("w:val"), "none")


# --- section properties -----------------------------------------------------

def _margin_setter(side: str) -> Callable:
    def set_margin(sectPr, value: float) -> None:
        pgMar = sectPr.find(qn("w:pgMar"))
        if pgMar is None:
            pgMar = get_or_add(sectPr, "w:pgMar", SECTPR_ORDER)
            # every pgMar attribute is required by the schema
            for name, mm in DEFAULT_MARGINS_MM.items():
                pgMar.set(qn(f"w:{name}"), str(mm_to_twips(mm)))
            for name, twips in (("header", 708), ("footer", 708), ("gutter", 0)):
                pgMar.set(qn(f"w:{name}"), str(twips))
        pgMar.set(qn(f"w:{side}"), str(mm_to_twips(value)))
    return set_margin


def set_page_numbering_start(sectPr, value: int) -> None:
    get_or_add(sectPr, "w:pgNumType", SECTPR_ORDER).set(qn("w:start"), str(int(value)))


def set_title_page(sectPr, value: bool) -> None:
    if value:
        _drop_attrs(get_or_add(sectPr, "w:titlePg", SECTPR_ORDER), "w:val")
    else:
        existing = sectPr.find(qn("w:titlePg"))
        if existing is not None:
            sectPr.remove(existing)


PARAGRAPH_SETTERS: Dict[str, Callable] = {
    "alignment": set_alignment,
    "indent_first_line": set_indent_first_line,
    "line_spacing": set_line_spacing,
    "space_before": set_space_before,
    "space_after": set_space_after,
}
RUN_SETTERS: Dict[str, Callable] = {
    "font": set_font,
    "size": set_size,
    "bold": set_bold,
    "italic": set_italic,
    "highlight": clear_highlight,
}
SECTION_SETTERS: Dict[str, Callable] = {
    "margin.top": _margin_setter("top"),
    "margin.bottom": _margin_setter("bottom"),
    "margin.left": _margin_setter("left"),
    "margin.right": _margin_setter("right"),
    "page_numbering.start": set_page_numbering_start,
    "page_numbering.title_page": set_title_page,
}


# --- application ------------------------------------------------------------

class _Arena:
    """Original-tree elements addressed by the parser's indices."""

    def __init__(self, root):
        self.body = get_body(root)
        self.paragraphs = paragraph_elements(self.body)
        self.sections = [s for s, _ in iter_section_elements(self.body)]

    def paragraph(self, index):
        if index is None or not 0 <= index < len(self.paragraphs):
            raise OpTargetMissing(f"paragraph {index}")
        return self.paragraphs[index]

    def section(self, index):
        index = index or 0
        if not self.sections and index == 0:
            # a document without sectPr gets the default body-level one
            self.sections.append(self.body.makeelement(qn("w:sectPr"), {}))
            self.body.append(self.sections[0])
        if not 0 <= index < len(self.sections):
            raise OpTargetMissing(f"section {index}")
        return self.sections[index]


def _apply_one(arena: _Arena, op: FormatOp) -> None:
    if op.scope == "document":
        SECTION_SETTERS[op.prop](arena.section(op.section_index), op.value)
    elif op.scope == "paragraph":
        pPr = get_or_add_first(arena.paragraph(op.paragraph_index), "w:pPr")
        PARAGRAPH_SETTERS[op.prop](pPr, op.value)
    else:
        runs = list(iter_runs(arena.paragraph(op.paragraph_index)))
        missing = [i for i in op.run_indices if not 0 <= i < len(runs)]
        if missing or not op.run_indices:
            raise OpTargetMissing(f"runs {missing or '[]'} of paragraph {op.paragraph_index}")
        for i in op.run_indices:
            RUN_SETTERS[op.prop](get_or_add_first(runs[i], "w:rPr"), op.value)


def apply_format_ops(package: DocxPackage, ops: List[FormatOp]) -> List[FormatOp]:
    """Apply ops to ``package``'s document.xml; statuses are updated in place.

    document.xml is re-serialized only when at least one op applied, so a
    compliant document keeps its original bytes.
    """
    arena = _Arena(package.read_xml(DOCUMENT_PART))
    applied = 0
    for op in sorted(ops, key=lambda o: SCOPE_ORDER[o.scope]):
        if op.status != "proposed":
            continue
        try:
            _apply_one(arena, op)
        except OpTargetMissing as e:
            op.status = "failed"
            op.verification["reason"] = f"target_missing: {e}"
            logger.warning(f"Op {op.id} ({op.rule_id}) failed: {e} not found")
            continue
        op.status = "applied"
        applied += 1

    if applied:
        package.set_part(DOCUMENT_PART, serialize_xml(arena.body.getroottree().getroot()))
    logger.info(f"Applied {applied}/{len(ops)} format ops")
    return ops
