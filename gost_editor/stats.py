from __future__ import annotations
from collections import Counter
from typing import List, Sequence, Tuple
import re

from gost_editor.ir import DocumentStatistics, DocxStructure, ParagraphNode, Violation

DEFAULT_CHARS_PER_PAGE = 2000


def _walk_pages(paragraphs: Sequence[ParagraphNode], chars_per_page: int) -> Tuple[List[int], int]:
    pages: List[int] = []
    page, used = 1, 0
    for p in paragraphs:
        if p.format.page_break_before and used > 0:
            page, used = page + 1, 0
        pages.append(page)
        used += len(p.text)
        while used > chars_per_page:
            page, used = page + 1, used - chars_per_page
        if p.page_break_count:
            page, used = page + p.page_break_count, 0
    # a trailing page break with nothing after it opens no page
    last = page if used > 0 or not pages else max(page - 1, pages[-1])
    return pages, last


def paragraph_pages(paragraphs: Sequence[ParagraphNode], chars_per_page: int = DEFAULT_CHARS_PER_PAGE) -> List[int]:
    """Estimated 1-based page on which each paragraph starts.

    Text fills pages at ``chars_per_page``; explicit page breaks and
    ``pageBreakBefore`` start a new page.
    """
    return _walk_pages(paragraphs, chars_per_page)[0]


def estimate_page_count(paragraphs: Sequence[ParagraphNode], chars_per_page: int = DEFAULT_CHARS_PER_PAGE) -> int:
    return _walk_pages(paragraphs, chars_per_page)[1]


def compute_statistics(structure: DocxStructure, violations: Sequence[Violation],
                       chars_per_page: int = DEFAULT_CHARS_PER_PAGE) -> DocumentStatistics:
    texts = [p.text for p in structure.paragraphs]
    total = sum(len(t) for t in texts)
    return DocumentStatistics(
        total_characters=total,
        characters_without_spaces=sum(len(re.sub(r"\s", "", t)) for t in texts),
        word_count=sum(len(t.split()) for t in texts),
        page_count=estimate_page_count(structure.paragraphs, chars_per_page),
        paragraph_count=len(structure.paragraphs),
        image_count=structure.image_count,
        table_count=len(structure.tables),
        violations_by_category=dict(Counter(v.category for v in violations)),
        violations_by_severity=dict(Counter(v.severity for v in violations)),
    )
