"""
Block classification: attach a semantic block type to every paragraph.

The labeling itself is delegated to a ``BlockOracle``. ``BlockClassifier``
owns everything around it: skipping paragraphs that need no label, chunking
the document under the oracle's size limits, carrying the tail of the
previous chunk as context, optional parallel chunks, timeouts, and the
fallback to ``body`` when a chunk cannot be classified.
"""
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple
import logging
import re
import time

from gost_editor.config import PipelineConfig
from gost_editor.errors import ClassificationFailure, ClassificationTimeoutError
from gost_editor.ir import BLOCK_TYPES, EnrichedParagraph, ParagraphNode, enrich

logger = logging.getLogger(__name__)

# (text, label) pairs already classified, oldest first
Carry = List[Tuple[str, str]]

# Paragraphs this far into the document can no longer be the title page
TITLE_PAGE_MAX_PARAGRAPHS = 40


@dataclass(frozen=True)
class BlockContext:
    index: int
    total: int
    style_name: Optional[str] = None
    is_list_item: bool = False
    on_title_page: bool = False
    previous_block_type: Optional[str] = None
    section_title: Optional[str] = None   # text of the closest heading_1 above


@dataclass(frozen=True)
class OracleItem:
    text: str
    context: BlockContext


class BlockOracle:
    """Labels one paragraph with a block type from ``BLOCK_TYPES``."""

    name = "oracle"

    def classify(self, text: str, context: BlockContext) -> str:
        raise NotImplementedError

    def classify_batch(self, items: Sequence[OracleItem], carry: Carry) -> List[str]:
        """Label a chunk in order; previous label and section title flow through."""
        previous, section = _carry_state(carry)
        labels: List[str] = []
        for item in items:
            ctx = replace(item.context, previous_block_type=previous, section_title=section)
            label = self.classify(item.text, ctx)
            labels.append(label)
            previous = label
            if label == "heading_1":
                section = item.text
        return labels


def _carry_state(carry: Carry) -> Tuple[Optional[str], Optional[str]]:
    previous = carry[-1][1] if carry else None
    section = None
    for text, label in carry:
        if label == "heading_1":
            section = text
    return previous, section


def _norm(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().rstrip(".:").casefold()


STRUCTURAL_HEADINGS = frozenset({
    "введение", "заключение", "содержание", "оглавление", "реферат", "аннотация",
    "список литературы", "список использованных источников", "список использованной литературы",
    "библиографический список", "список сокращений", "термины и определения",
    "перечень сокращений и обозначений", "определения", "обозначения и сокращения",
    "introduction", "conclusion", "contents", "abstract", "references", "bibliography",
})
BIBLIOGRAPHY_TITLES = frozenset({
    "список литературы", "список использованных источников", "список использованной литературы",
    "библиографический список", "references", "bibliography",
})

_STYLE_HEADING = re.compile(r"^(?:heading|заголовок)\s*(\d)$", re.IGNORECASE)
_STYLE_TOC = re.compile(r"^(?:toc|оглавление)\s*\d$", re.IGNORECASE)
_APPENDIX = re.compile(r"^приложение\s+[а-яёa-z]$", re.IGNORECASE)
_TOC_LINE = re.compile(r"^.{2,}?(?:\.{3,}|…+|\t)\s*\d+$")
_FIGURE_CAPTION = re.compile(r"^(?:рисунок|рис\.|figure|fig\.)\s*[\dА-ЯЁA-Z]", re.IGNORECASE)
_TABLE_CAPTION = re.compile(r"^(?:таблица|table)\s+[\dА-ЯЁA-Z]", re.IGNORECASE)
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+){0,2})\.?\s+\S")


def is_structural_heading(text: str) -> bool:
    """Unnumbered chapter-level headings such as ВВЕДЕНИЕ or ПРИЛОЖЕНИЕ А."""
    norm = _norm(text)
    return norm in STRUCTURAL_HEADINGS or bool(_APPENDIX.match(norm))


class HeuristicBlockOracle(BlockOracle):
    """Deterministic labeling from style names, prefixes and document position."""

    name = "heuristic"
    max_heading_chars = 150

    def classify(self, text: str, context: BlockContext) -> str:
        stripped = text.strip()
        style = (context.style_name or "").strip()

        if context.on_title_page:
            return "title_field"

        m = _STYLE_HEADING.match(style)
        if m:
            return f"heading_{min(max(int(m.group(1)), 1), 3)}"
        if _STYLE_TOC.match(style):
            return "toc_entry"
        if style.lower() in ("title", "subtitle", "название"):
            return "title_field"

        if _TOC_LINE.match(stripped):
            return "toc_entry"
        if _FIGURE_CAPTION.match(stripped):
            return "caption_figure"
        if _TABLE_CAPTION.match(stripped):
            return "caption_table"
        if is_structural_heading(stripped):
            return "heading_1"

        if context.section_title and _norm(context.section_title) in BIBLIOGRAPHY_TITLES:
            return "bibliography_entry"

        m = _NUMBERED_HEADING.match(stripped)
        if m and not context.is_list_item and len(stripped) <= self.max_heading_chars and not stripped.endswith("."):
            depth = m.group(1).count(".") + 1
            return f"heading_{depth}"

        return "body"


def needs_oracle(paragraph: ParagraphNode) -> bool:
    """Empty paragraphs and object-only paragraphs are labeled ``other`` directly."""
    return bool(paragraph.text.strip())


def title_page_end(paragraphs: Sequence[ParagraphNode]) -> int:
    """Index of the first paragraph after the title page, or 0 when there is none."""
    for p in paragraphs[:TITLE_PAGE_MAX_PARAGRAPHS]:
        if _STYLE_HEADING.match((p.style_name or "").strip()):
            return 0
        if p.format.page_break_before and p.index > 0:
            return p.index
        if p.page_break_count:
            return p.index + 1
    return 0


def build_contexts(paragraphs: Sequence[ParagraphNode]) -> List[BlockContext]:
    end = title_page_end(paragraphs)
    total = len(paragraphs)
    return [
        BlockContext(
            index=i,
            total=total,
            style_name=p.style_name,
            is_list_item=p.is_list_item,
            on_title_page=i < end,
        )
        for i, p in enumerate(paragraphs)
    ]


def chunk_indices(indices: Sequence[int], paragraphs: Sequence[ParagraphNode],
                  max_paragraphs: int, max_chars: int) -> List[List[int]]:
    """Split consecutive paragraph indices into chunks under both limits."""
    chunks: List[List[int]] = []
    current: List[int] = []
    size = 0
    for i in indices:
        n = len(paragraphs[i].text)
        if current and (len(current) >= max_paragraphs or size + n > max_chars):
            chunks.append(current)
            current, size = [], 0
        current.append(i)
        size += n
    if current:
        chunks.append(current)
    return chunks


class BlockClassifier:
    def __init__(self, oracle: BlockOracle, config: Optional[PipelineConfig] = None):
        self.oracle = oracle
        self.config = config or PipelineConfig()

    def classify(self, paragraphs: Sequence[ParagraphNode]) -> List[EnrichedParagraph]:
        """One EnrichedParagraph per input paragraph, same order; never edits text."""
        cfg = self.config
        contexts = build_contexts(paragraphs)
        labels: List[Optional[str]] = [None] * len(paragraphs)
        sources: List[str] = ["oracle"] * len(paragraphs)

        pending = [i for i, p in enumerate(paragraphs) if needs_oracle(p)]
        for i, p in enumerate(paragraphs):
            if not needs_oracle(p):
                labels[i] = "other"
                sources[i] = "skipped"

        chunks = chunk_indices(pending, paragraphs, cfg.max_batch_paragraphs, cfg.max_batch_chars)
        logger.info(f"Classifying {len(pending)} paragraphs in {len(chunks)} chunks with {self.oracle.name}")
        start = time.time()

        if cfg.max_concurrent > 1 and len(chunks) > 1:
            executor = ThreadPoolExecutor(max_workers=cfg.max_concurrent)
            try:
                self._classify_parallel(executor, chunks, paragraphs, contexts, labels, sources)
            finally:
                # a timed-out oracle call is abandoned, not awaited
                executor.shutdown(wait=False, cancel_futures=True)
        else:
            self._classify_sequential(chunks, paragraphs, contexts, labels, sources)

        fallbacks = sum(1 for s in sources if s == "fallback")
        logger.info(f"Classification done in {time.time() - start:.1f}s ({fallbacks} paragraphs fell back to body)")
        return [
            enrich(p, labels[i], confidence=0.0 if sources[i] == "fallback" else 1.0, source=sources[i])
            for i, p in enumerate(paragraphs)
        ]

    def _items(self, chunk: List[int], paragraphs, contexts) -> List[OracleItem]:
        return [OracleItem(text=paragraphs[i].text, context=contexts[i]) for i in chunk]

    def _carry(self, before: int, pending_labels: List[Tuple[int, str]], paragraphs) -> Carry:
        if self.config.carry_over <= 0:
            return []
        tail = [(i, label) for i, label in pending_labels if i < before][-self.config.carry_over:]
        return [(paragraphs[i].text, label) for i, label in tail]

    def _await(self, future, chunk: List[int]) -> List[str]:
        try:
            result = future.result(timeout=self.config.classify_timeout_s)
        except FutureTimeout:
            raise ClassificationTimeoutError(
                f"Classifier did not answer within {self.config.classify_timeout_s}s",
                {"paragraphs": [chunk[0], chunk[-1]]},
            )
        if len(result) != len(chunk):
            raise ClassificationFailure(f"Classifier returned {len(result)} labels for {len(chunk)} paragraphs")
        unknown = [label for label in result if label not in BLOCK_TYPES]
        if unknown:
            raise ClassificationFailure(f"Classifier returned unknown labels: {sorted(set(unknown))}")
        return list(result)

    def _record(self, chunk: List[int], result: Optional[List[str]], error, labels, sources) -> None:
        if result is None:
            logger.warning(f"Chunk {chunk[0]}-{chunk[-1]} falls back to body: {type(error).__name__}: {error}")
            for i in chunk:
                labels[i] = "body"
                sources[i] = "fallback"
            return
        for i, label in zip(chunk, result):
            labels[i] = label

    def _classify_sequential(self, chunks, paragraphs, contexts, labels, sources) -> None:
        done: List[Tuple[int, str]] = []
        for chunk in chunks:
            carry = self._carry(chunk[0], done, paragraphs)
            # one worker per chunk: an abandoned call must not block the next chunk
            executor = ThreadPoolExecutor(max_workers=1)
            future = executor.submit(self.oracle.classify_batch, self._items(chunk, paragraphs, contexts), carry)
            try:
                result, error = self._await(future, chunk), None
            except ClassificationFailure as e:
                result, error = None, e
            finally:
                executor.shutdown(wait=False)
            self._record(chunk, result, error, labels, sources)
            done.extend((i, labels[i]) for i in chunk)

    def _classify_parallel(self, executor, chunks, paragraphs, contexts, labels, sources) -> None:
        # Chunks cannot wait for each other, so carried context comes from a heuristic pre-pass
        pending = [i for chunk in chunks for i in chunk]
        prepass = HeuristicBlockOracle().classify_batch(self._items(pending, paragraphs, contexts), [])
        prepass_labels = list(zip(pending, prepass))

        futures = [
            executor.submit(
                self.oracle.classify_batch,
                self._items(chunk, paragraphs, contexts),
                self._carry(chunk[0], prepass_labels, paragraphs),
            )
            for chunk in chunks
        ]
        for chunk, future in zip(chunks, futures):
            try:
                result, error = self._await(future, chunk), None
            except ClassificationFailure as e:
                result, error = None, e
            self._record(chunk, result, error, labels, sources)
