"""
Marked original: the source document with every violation made visible.

Offending runs get a red highlight and each flagged paragraph gets one Word
comment listing its violations. Only run properties, comment anchors and the
comments part are added; text, drawings and tables are left as they are.
"""
from __future__ import annotations
from collections import defaultdict
from typing import Dict, List, Sequence, Set
import logging

from lxml import etree
from docx.opc.constants import CONTENT_TYPE as CT, RELATIONSHIP_TYPE as RT
from docx.oxml.ns import nsdecls, qn

from gost_editor.adapters.container import (
    DOCUMENT_PART,
    DocxPackage,
    ensure_content_type_override,
    ensure_relationship,
    serialize_xml,
)
from gost_editor.adapters.docx_adapter import get_body, iter_runs, paragraph_elements, run_text
from gost_editor.apply import RPR_ORDER, get_or_add, get_or_add_first
from gost_editor.ir import Violation

logger = logging.getLogger(__name__)

COMMENTS_PART = "word/comments.xml"
COMMENT_AUTHOR = "GOST Editor"
COMMENT_INITIALS = "GE"
MARK_COLOR = "red"


def anchor_paragraph(v: Violation) -> int:
    """Paragraph a violation is shown on: the end of a range, the first paragraph for document scope."""
    loc = v.location
    if loc.is_range:
        return loc.end_paragraph_index
    return loc.paragraph_index if loc.paragraph_index is not None else 0


def comment_text(v: Violation) -> str:
    return f"[{v.severity}] {v.description}: expected {v.expected}, found {v.actual} ({v.rule_id})"


def _load_comments(package: DocxPackage):
    if package.has_part(COMMENTS_PART):
        root = package.read_xml(COMMENTS_PART)
        ids = [int(c.get(qn("w:id"))) for c in root.iter(qn("w:comment")) if (c.get(qn("w:id")) or "").isdigit()]
        return root, max(ids, default=-1) + 1
    return etree.fromstring(f"<w:comments {nsdecls('w')}/>"), 0


def _add_comment(comments, comment_id: int, lines: Sequence[str]) -> None:
    comment = etree.SubElement(comments, qn("w:comment"))
    comment.set(qn("w:id"), str(comment_id))
    comment.set(qn("w:author"), COMMENT_AUTHOR)
    comment.set(qn("w:initials"), COMMENT_INITIALS)
    for line in lines:
        r = etree.SubElement(etree.SubElement(comment, qn("w:p")), qn("w:r"))
        t = etree.SubElement(r, qn("w:t"))
        t.set("{http://www.w3.org/XML/1998/namespace}space", "preserve")
        t.text = line


def _anchor_comment(p, comment_id: int) -> None:
    start = p.makeelement(qn("w:commentRangeStart"), {qn("w:id"): str(comment_id)})
    pPr = p.find(qn("w:pPr"))
    p.insert(p.index(pPr) + 1 if pPr is not None else 0, start)
    p.append(p.makeelement(qn("w:commentRangeEnd"), {qn("w:id"): str(comment_id)}))
    ref_run = etree.SubElement(p, qn("w:r"))
    etree.SubElement(ref_run, qn("w:commentReference")).set(qn("w:id"), str(comment_id))


def _highlight(run) -> None:
    rPr = get_or_add_first(run, "w:rPr")
    get_or_add(rPr, "w:highlight", RPR_ORDER).set(qn("w:val"), MARK_COLOR)


def mark_violations(package: DocxPackage, violations: Sequence[Violation]) -> int:
    """Highlight and comment ``violations`` in ``package``; returns the number of comments added."""
    if not violations:
        return 0
    root = package.read_xml(DOCUMENT_PART)
    paragraphs = paragraph_elements(get_body(root))
    if not paragraphs:
        logger.warning(f"Document has no paragraphs; {len(violations)} violations left unmarked")
        return 0

    by_paragraph: Dict[int, List[Violation]] = defaultdict(list)
    for v in violations:
        index = anchor_paragraph(v)
        if 0 <= index < len(paragraphs):
            by_paragraph[index].append(v)
        else:
            logger.warning(f"Violation {v.rule_id} points at missing paragraph {index}")

    comments, next_id = _load_comments(package)
    for index in sorted(by_paragraph):
        p = paragraphs[index]
        runs = list(iter_runs(p))
        flagged: Set[int] = set()
        for v in by_paragraph[index]:
            if v.location.paragraph_index is None:
                continue  # document scope: comment only
            if v.location.run_indices and v.location.paragraph_index == index:
                flagged.update(i for i in v.location.run_indices if i < len(runs))
            else:
                flagged.update(range(len(runs)))
        for i in sorted(flagged):
            if run_text(runs[i])[0].strip():
                _highlight(runs[i])

        _add_comment(comments, next_id, [comment_text(v) for v in by_paragraph[index]])
        _anchor_comment(p, next_id)
        next_id += 1

    package.set_part(DOCUMENT_PART, serialize_xml(root))
    package.set_part(COMMENTS_PART, serialize_xml(comments))
    ensure_relationship(package, RT.COMMENTS, "comments.xml")
    ensure_content_type_override(package, COMMENTS_PART, CT.WML_COMMENTS)
    logger.info(f"Marked {len(violations)} violations in {len(by_paragraph)} paragraphs")
    return len(by_paragraph)
