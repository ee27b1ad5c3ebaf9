from __future__ import annotations
from typing import Iterator, List, Optional, Tuple
import hashlib
import logging

from docx.oxml.ns import qn

from gost_editor.adapters.container import DocxPackage, DOCUMENT_PART, open_package
from gost_editor.adapters.styles import StyleSheet, read_paragraph_format, read_run_format, toggle, twips_to_mm
from gost_editor.errors import MalformedDocumentError
from gost_editor.ir import (
    DocxStructure,
    ParagraphNode,
    ParagraphRef,
    RunNode,
    SectionProps,
    StructureInventory,
    TableAnchor,
)

logger = logging.getLogger(__name__)

M_NS = "http://schemas.openxmlformats.org/officeDocument/2006/math"
MC_NS = "http://schemas.openxmlformats.org/markup-compatibility/2006"

EMBEDDED_TAGS = frozenset({
    qn("w:drawing"),
    qn("w:pict"),
    qn("w:object"),
    f"{{{M_NS}}}oMath",
    f"{{{M_NS}}}oMathPara",
})
_MC_FALLBACK = f"{{{MC_NS}}}Fallback"

# Inline containers whose runs belong to the paragraph's own run sequence
_RUN_CONTAINERS = frozenset({
    qn("w:hyperlink"),
    qn("w:ins"),
    qn("w:smartTag"),
    qn("w:fldSimple"),
    qn("w:customXml"),
    qn("w:sdtContent"),
    qn("w:sdt"),
})

# GOST defaults when a document carries no sectPr at all
DEFAULT_MARGINS_MM = {"top": 20.0, "bottom": 20.0, "left": 30.0, "right": 15.0}


def get_body(document_root):
    body = document_root.find(qn("w:body"))
    if body is None:
        raise MalformedDocumentError("Document has no w:body element")
    return body


def iter_paragraph_elements(body) -> Iterator[Tuple[object, ParagraphRef]]:
    """Paragraphs in reading order: body-level w:p and w:p inside block-level w:sdt.

    Table cells and text boxes are not entered. The parser and the rewriter
    both walk the document through this function, so its order is the index
    every later stage uses.
    """
    for body_index, child in enumerate(body):
        if child.tag == qn("w:p"):
            yield child, ParagraphRef(body_index=body_index)
        elif child.tag == qn("w:sdt"):
            content = child.find(qn("w:sdtContent"))
            if content is None:
                continue
            for sdt_index, inner in enumerate(content):
                if inner.tag == qn("w:p"):
                    yield inner, ParagraphRef(body_index=body_index, sdt_index=sdt_index)


def paragraph_elements(body) -> List[object]:
    return [p for p, _ in iter_paragraph_elements(body)]


def iter_section_elements(body) -> Iterator[Tuple[object, Optional[int]]]:
    """w:sectPr elements in section order with the index of the paragraph carrying each.

    The final, body-level section comes last with a paragraph index of None.
    """
    for index, (p, _) in enumerate(iter_paragraph_elements(body)):
        sectPr = p.find(f"{qn('w:pPr')}/{qn('w:sectPr')}")
        if sectPr is not None:
            yield sectPr, index
    body_sectPr = body.find(qn("w:sectPr"))
    if body_sectPr is not None:
        yield body_sectPr, None


def iter_runs(paragraph) -> Iterator[object]:
    """w:r elements of a paragraph, including those in hyperlinks and insertions."""
    for child in paragraph:
        if child.tag == qn("w:r"):
            yield child
        elif child.tag in _RUN_CONTAINERS:
            yield from iter_runs(child)


def count_embedded(el) -> int:
    """Count embedded objects below ``el`` without descending into them."""
    count = 0
    for child in el:
        if not isinstance(child.tag, str) or child.tag == _MC_FALLBACK:
            continue
        if child.tag in EMBEDDED_TAGS:
            count += 1
            continue
        count += count_embedded(child)
    return count


def run_text(run) -> Tuple[str, int]:
    """Visible text of a run and the number of explicit page breaks in it."""
    parts: List[str] = []
    page_breaks = 0
    for child in run:
        tag = child.tag
        if tag == qn("w:t"):
            parts.append(child.text or "")
        elif tag == qn("w:tab"):
            parts.append("\t")
        elif tag == qn("w:br"):
            if child.get(qn("w:type")) == "page":
                page_breaks += 1
            else:
                parts.append("\n")
        elif tag == qn("w:cr"):
            parts.append("\n")
        elif tag == qn("w:noBreakHyphen"):
            parts.append("-")
    return "".join(parts), page_breaks


def _style_val(props, tag: str) -> Optional[str]:
    if props is None:
        return None
    el = props.find(qn(tag))
    return el.get(qn("w:val")) if el is not None else None


def read_section(sectPr, paragraph_index: Optional[int]) -> SectionProps:
    margins = dict(DEFAULT_MARGINS_MM)
    pgMar = sectPr.find(qn("w:pgMar"))
    if pgMar is not None:
        for side in ("top", "bottom", "left", "right"):
            val = twips_to_mm(pgMar.get(qn(f"w:{side}")))
            if val is not None:
                margins[side] = abs(val)

    width, height = 210.0, 297.0
    pgSz = sectPr.find(qn("w:pgSz"))
    if pgSz is not None:
        width = twips_to_mm(pgSz.get(qn("w:w"))) or width
        height = twips_to_mm(pgSz.get(qn("w:h"))) or height

    start = None
    pgNumType = sectPr.find(qn("w:pgNumType"))
    if pgNumType is not None and pgNumType.get(qn("w:start")):
        try:
            start = int(pgNumType.get(qn("w:start")))
        except ValueError:
            start = None

    return SectionProps(
        margins_mm=margins,
        page_width_mm=width,
        page_height_mm=height,
        page_numbering_start=start,
        title_page=bool(toggle(sectPr.find(qn("w:titlePg")))),
        paragraph_index=paragraph_index,
    )


def read_paragraph(p, index: int, ref: ParagraphRef, sheet: StyleSheet) -> ParagraphNode:
    pPr = p.find(qn("w:pPr"))
    style_id = _style_val(pPr, "w:pStyle")
    effective_style = sheet.paragraph_style_id(style_id)
    paragraph_format = sheet.paragraph_format(style_id, read_paragraph_format(pPr))

    runs: List[RunNode] = []
    texts: List[str] = []
    page_breaks = 0
    for run_index, r in enumerate(iter_runs(p)):
        rPr = r.find(qn("w:rPr"))
        text, breaks = run_text(r)
        page_breaks += breaks
        texts.append(text)
        runs.append(RunNode(
            index=run_index,
            text=text,
            format=sheet.run_format(effective_style, _style_val(rPr, "w:rStyle"), read_run_format(rPr, sheet.theme_fonts)),
            has_embedded_object=count_embedded(r) > 0,
        ))

    numPr = pPr.find(qn("w:numPr")) if pPr is not None else None
    list_level = None
    if numPr is not None:
        ilvl = _style_val(numPr, "w:ilvl")
        list_level = int(ilvl) if ilvl and ilvl.isdigit() else 0

    embedded = count_embedded(p)
    return ParagraphNode(
        index=index,
        ref=ref,
        text="".join(texts),
        style_id=effective_style,
        style_name=sheet.style_name(effective_style),
        format=paragraph_format,
        runs=runs,
        has_embedded_object=embedded > 0,
        embedded_objects=embedded,
        is_list_item=numPr is not None or sheet.style_has_numbering(style_id),
        list_level=list_level,
        page_break_count=page_breaks,
    )


def extract_structure(package: DocxPackage) -> DocxStructure:
    """Walk document.xml of an opened package into a DocxStructure."""
    root = package.read_xml(DOCUMENT_PART)
    body = get_body(root)
    sheet = StyleSheet.from_package(package)

    structure = DocxStructure()
    paragraph_by_body_index = {}
    for index, (p, ref) in enumerate(iter_paragraph_elements(body)):
        structure.paragraphs.append(read_paragraph(p, index, ref, sheet))
        paragraph_by_body_index[ref.body_index] = index
    for sectPr, index in iter_section_elements(body):
        structure.sections.append(read_section(sectPr, index))

    last_paragraph: Optional[int] = None
    for body_index, child in enumerate(body):
        if body_index in paragraph_by_body_index:
            last_paragraph = paragraph_by_body_index[body_index]
        if child.tag == qn("w:tbl"):
            structure.tables.append(TableAnchor(body_index=body_index, after_paragraph_index=last_paragraph))

    if not structure.sections:
        structure.sections.append(SectionProps(margins_mm=dict(DEFAULT_MARGINS_MM)))

    logger.info(
        f"Parsed {len(structure.paragraphs)} paragraphs, {len(structure.tables)} tables, "
        f"{structure.image_count} embedded objects, {len(structure.sections)} sections"
    )
    return structure


def parse_docx_structure(buffer: bytes) -> DocxStructure:
    return extract_structure(open_package(buffer))


def extract_inventory(package: DocxPackage) -> StructureInventory:
    """Counts and media fingerprints used to check that nothing was lost."""
    body = get_body(package.read_xml(DOCUMENT_PART))
    paragraphs = paragraph_elements(body)
    inv = StructureInventory(
        paragraph_count=len(paragraphs),
        embedded_object_count=count_embedded(body),
        table_count=sum(1 for child in body.iter(qn("w:tbl"))),
    )
    for name in package.part_names:
        if name.startswith("word/media/") or name.startswith("word/embeddings/"):
            inv.media[name] = hashlib.sha256(package.read_part(name)).hexdigest()
    return inv
