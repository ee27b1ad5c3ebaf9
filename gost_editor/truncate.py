from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence
import logging

from docx.oxml.ns import qn

from gost_editor.adapters.container import DOCUMENT_PART, open_package, serialize_xml, write_package
from gost_editor.adapters.docx_adapter import get_body
from gost_editor.ir import ParagraphNode
from gost_editor.redline import COMMENTS_PART
from gost_editor.stats import DEFAULT_CHARS_PER_PAGE, estimate_page_count, paragraph_pages

logger = logging.getLogger(__name__)


@dataclass
class TruncationPlan:
    original_page_count: int
    cut_paragraph: Optional[int] = None   # first paragraph dropped; None = nothing to drop

    @property
    def truncates(self) -> bool:
        return self.cut_paragraph is not None


def plan_truncation(paragraphs: Sequence[ParagraphNode], max_pages: int,
                    chars_per_page: int = DEFAULT_CHARS_PER_PAGE) -> TruncationPlan:
    total = estimate_page_count(paragraphs, chars_per_page)
    plan = TruncationPlan(original_page_count=total)
    if total <= max_pages:
        return plan
    for p, page in zip(paragraphs, paragraph_pages(paragraphs, chars_per_page)):
        if page > max_pages:
            plan.cut_paragraph = p.index
            break
    return plan


def _prune_comments(package, body) -> None:
    if not package.has_part(COMMENTS_PART):
        return
    kept = {el.get(qn("w:id")) for el in body.iter(qn("w:commentReference"))}
    comments = package.read_xml(COMMENTS_PART)
    for comment in list(comments.iter(qn("w:comment"))):
        if comment.get(qn("w:id")) not in kept:
            comment.getparent().remove(comment)
    package.set_part(COMMENTS_PART, serialize_xml(comments))


def truncate_document(buffer: bytes, paragraphs: Sequence[ParagraphNode], plan: TruncationPlan) -> bytes:
    """Copy of ``buffer`` without the body content from ``plan.cut_paragraph`` on.

    ``paragraphs`` must come from the source document; outputs built from it
    keep the same body layout, so the parser's references still apply. The
    final body-level section properties are kept.
    """
    if not plan.truncates:
        return buffer
    package = open_package(buffer)
    root = package.read_xml(DOCUMENT_PART)
    body = get_body(root)
    ref = paragraphs[plan.cut_paragraph].ref

    children = list(body)
    first_dropped = ref.body_index
    if ref.sdt_index:
        # cut inside a content control: keep its leading paragraphs
        content = children[ref.body_index].find(qn("w:sdtContent"))
        for inner in list(content)[ref.sdt_index:]:
            content.remove(inner)
        first_dropped += 1
    for child in children[first_dropped:]:
        if child.tag != qn("w:sectPr"):
            body.remove(child)

    package.set_part(DOCUMENT_PART, serialize_xml(root))
    _prune_comments(package, body)
    logger.info(f"Truncated to {plan.cut_paragraph} paragraphs (document has ~{plan.original_page_count} pages)")
    return write_package(package)
