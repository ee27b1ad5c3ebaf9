"""
Style inheritance resolution for WordprocessingML.

Effective formatting is computed as an explicit bottom-up merge:

    built-in defaults -> docDefaults -> paragraph style chain (root first)
        -> character style chain -> direct properties

Each layer is read into a RunFormat / ParagraphFormat whose unset fields are
None, and ``merge`` lets every later layer override the fields it sets.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional
import logging

from docx.oxml.ns import qn
from docx.shared import Twips

from gost_editor.adapters.container import DocxPackage, STYLES_PART, THEME_PART
from gost_editor.errors import MalformedDocumentError
from gost_editor.ir import RunFormat, ParagraphFormat, merge

logger = logging.getLogger(__name__)

# Word's own values when a document declares no docDefaults
BASE_RUN = RunFormat(font="Times New Roman", size_pt=10.0, bold=False, italic=False, highlight=None)
BASE_PARAGRAPH = ParagraphFormat(
    alignment="left",
    indent_first_line_mm=0.0,
    indent_left_mm=0.0,
    line_spacing=1.0,
    line_spacing_rule="auto",
    space_before_pt=0.0,
    space_after_pt=0.0,
    page_break_before=False,
)

_JC_MAP = {
    "left": "left",
    "start": "left",
    "center": "center",
    "right": "right",
    "end": "right",
    "both": "justify",
    "distribute": "justify",
    "justify": "justify",
}

_FALSE_VALUES = {"0", "false", "off"}


def toggle(el) -> Optional[bool]:
    """Value of an on/off property element (w:b, w:i, ...); None when absent."""
    if el is None:
        return None
    val = el.get(qn("w:val"))
    return val is None or val.lower() not in _FALSE_VALUES


def twips_to_mm(val: Optional[str]) -> Optional[float]:
    if val is None:
        return None
    try:
        return Twips(int(float(val))).mm
    except ValueError:
        return None


def twips_to_pt(val: Optional[str]) -> Optional[float]:
    if val is None:
        return None
    try:
        return Twips(int(float(val))).pt
    except ValueError:
        return None


def read_run_format(rPr, theme_fonts: Optional[Dict[str, str]] = None) -> RunFormat:
    """Read the properties one w:rPr sets; unset fields stay None."""
    if rPr is None:
        return RunFormat()
    theme_fonts = theme_fonts or {}

    font = None
    rFonts = rPr.find(qn("w:rFonts"))
    if rFonts is not None:
        theme = rFonts.get(qn("w:asciiTheme")) or rFonts.get(qn("w:hAnsiTheme"))
        if theme:
            font = theme_fonts.get("major" if theme.startswith("major") else "minor")
        font = font or rFonts.get(qn("w:ascii")) or rFonts.get(qn("w:hAnsi"))

    size = None
    sz = rPr.find(qn("w:sz"))
    if sz is not None and sz.get(qn("w:val")):
        try:
            size = int(sz.get(qn("w:val"))) / 2.0
        except ValueError:
            size = None

    highlight = None
    hl = rPr.find(qn("w:highlight"))
    if hl is not None:
        highlight = hl.get(qn("w:val")) or "none"

    return RunFormat(
        font=font,
        size_pt=size,
        bold=toggle(rPr.find(qn("w:b"))),
        italic=toggle(rPr.find(qn("w:i"))),
        highlight=highlight,
    )


def read_paragraph_format(pPr) -> ParagraphFormat:
    """Read the properties one w:pPr sets; unset fields stay None."""
    if pPr is None:
        return ParagraphFormat()

    alignment = None
    jc = pPr.find(qn("w:jc"))
    if jc is not None:
        alignment = _JC_MAP.get(jc.get(qn("w:val"), ""), jc.get(qn("w:val")))

    first_line = left = None
    ind = pPr.find(qn("w:ind"))
    if ind is not None:
        if ind.get(qn("w:hanging")) is not None:
            hanging = twips_to_mm(ind.get(qn("w:hanging")))
            first_line = -hanging if hanging is not None else None
        elif ind.get(qn("w:firstLine")) is not None:
            first_line = twips_to_mm(ind.get(qn("w:firstLine")))
        left = twips_to_mm(ind.get(qn("w:left")) or ind.get(qn("w:start")))

    line = rule = before = after = None
    spacing = pPr.find(qn("w:spacing"))
    if spacing is not None:
        before = twips_to_pt(spacing.get(qn("w:before")))
        after = twips_to_pt(spacing.get(qn("w:after")))
        raw_line = spacing.get(qn("w:line"))
        if raw_line is not None:
            rule = spacing.get(qn("w:lineRule")) or "auto"
            try:
                line = int(float(raw_line)) / 240.0 if rule == "auto" else twips_to_pt(raw_line)
            except ValueError:
                line = rule = None

    return ParagraphFormat(
        alignment=alignment,
        indent_first_line_mm=first_line,
        indent_left_mm=left,
        line_spacing=line,
        line_spacing_rule=rule,
        space_before_pt=before,
        space_after_pt=after,
        page_break_before=toggle(pPr.find(qn("w:pageBreakBefore"))),
    )


@dataclass
class StyleDef:
    style_id: str
    name: str
    type: str
    based_on: Optional[str] = None
    is_default: bool = False
    ppr: ParagraphFormat = field(default_factory=ParagraphFormat)
    rpr: RunFormat = field(default_factory=RunFormat)
    has_numbering: bool = False


class StyleSheet:
    """Styles, docDefaults and theme fonts of one package."""

    def __init__(
        self,
        styles: Optional[Dict[str, StyleDef]] = None,
        doc_run: Optional[RunFormat] = None,
        doc_paragraph: Optional[ParagraphFormat] = None,
        theme_fonts: Optional[Dict[str, str]] = None,
    ):
        self.styles = styles or {}
        self.doc_run = doc_run or RunFormat()
        self.doc_paragraph = doc_paragraph or ParagraphFormat()
        self.theme_fonts = theme_fonts or {}
        self.default_paragraph_style = next(
            (s.style_id for s in self.styles.values() if s.type == "paragraph" and s.is_default),
            None,
        )

    @classmethod
    def from_package(cls, package: DocxPackage) -> "StyleSheet":
        theme_fonts = _read_theme_fonts(package)
        if not package.has_part(STYLES_PART):
            return cls(theme_fonts=theme_fonts)

        root = package.read_xml(STYLES_PART)
        doc_run = RunFormat()
        doc_paragraph = ParagraphFormat()
        defaults = root.find(qn("w:docDefaults"))
        if defaults is not None:
            doc_run = read_run_format(defaults.find(f"{qn('w:rPrDefault')}/{qn('w:rPr')}"), theme_fonts)
            doc_paragraph = read_paragraph_format(defaults.find(f"{qn('w:pPrDefault')}/{qn('w:pPr')}"))

        styles: Dict[str, StyleDef] = {}
        for el in root.findall(qn("w:style")):
            style_id = el.get(qn("w:styleId"))
            if not style_id:
                continue
            name_el = el.find(qn("w:name"))
            based_el = el.find(qn("w:basedOn"))
            pPr = el.find(qn("w:pPr"))
            styles[style_id] = StyleDef(
                style_id=style_id,
                name=name_el.get(qn("w:val")) if name_el is not None else style_id,
                type=el.get(qn("w:type"), "paragraph"),
                based_on=based_el.get(qn("w:val")) if based_el is not None else None,
                is_default=el.get(qn("w:default")) in ("1", "true", "on"),
                ppr=read_paragraph_format(pPr),
                rpr=read_run_format(el.find(qn("w:rPr")), theme_fonts),
                has_numbering=pPr is not None and pPr.find(qn("w:numPr")) is not None,
            )
        logger.debug(f"Loaded {len(styles)} styles")
        return cls(styles, doc_run, doc_paragraph, theme_fonts)

    def style_name(self, style_id: Optional[str]) -> Optional[str]:
        if not style_id:
            return None
        style = self.styles.get(style_id)
        return style.name if style else style_id

    def chain(self, style_id: Optional[str]) -> List[StyleDef]:
        """basedOn chain for a style, root first."""
        out: List[StyleDef] = []
        seen = set()
        while style_id and style_id in self.styles and style_id not in seen:
            seen.add(style_id)
            style = self.styles[style_id]
            out.append(style)
            style_id = style.based_on
        out.reverse()
        return out

    def paragraph_style_id(self, style_id: Optional[str]) -> Optional[str]:
        return style_id if style_id in self.styles else self.default_paragraph_style

    def style_has_numbering(self, style_id: Optional[str]) -> bool:
        return any(s.has_numbering for s in self.chain(self.paragraph_style_id(style_id)))

    def paragraph_format(self, style_id: Optional[str], direct: ParagraphFormat) -> ParagraphFormat:
        layers = [BASE_PARAGRAPH, self.doc_paragraph]
        layers.extend(s.ppr for s in self.chain(self.paragraph_style_id(style_id)))
        layers.append(direct)
        return merge(*layers)

    def run_format(self, paragraph_style_id: Optional[str], run_style_id: Optional[str], direct: RunFormat) -> RunFormat:
        layers = [BASE_RUN, self.doc_run]
        layers.extend(s.rpr for s in self.chain(self.paragraph_style_id(paragraph_style_id)))
        layers.extend(s.rpr for s in self.chain(run_style_id))
        layers.append(direct)
        resolved = merge(*layers)
        if resolved.highlight == "none":
            resolved = replace(resolved, highlight=None)
        return resolved


def _read_theme_fonts(package: DocxPackage) -> Dict[str, str]:
    if not package.has_part(THEME_PART):
        return {}
    try:
        root = package.read_xml(THEME_PART)
    except MalformedDocumentError as e:
        logger.warning(f"Ignoring unreadable theme part: {e}")
        return {}
    fonts: Dict[str, str] = {}
    for key, tag in (("major", "a:majorFont"), ("minor", "a:minorFont")):
        latin = root.find(f".//{qn(tag)}/{qn('a:latin')}")
        if latin is not None and latin.get("typeface"):
            fonts[key] = latin.get("typeface")
    return fonts
