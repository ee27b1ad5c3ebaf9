import threading
import time

import pytest

from gost_editor.classify import (
    BlockClassifier,
    BlockContext,
    BlockOracle,
    HeuristicBlockOracle,
    OracleItem,
    build_contexts,
    chunk_indices,
    title_page_end,
)
from gost_editor.config import PipelineConfig
from gost_editor.errors import ClassificationFailure

from docx_builders import LabelOracle, para, paras


def ctx(**kwargs):
    return BlockContext(index=0, total=1, **kwargs)


@pytest.mark.parametrize("text, style, expected", [
    ("ВВЕДЕНИЕ", None, "heading_1"),
    ("Список использованных источников", None, "heading_1"),
    ("ПРИЛОЖЕНИЕ А", None, "heading_1"),
    ("1 Анализ предметной области", None, "heading_1"),
    ("1.2 Постановка задачи", None, "heading_2"),
    ("2.1.3 Выбор метода", None, "heading_3"),
    ("Рисунок 3 – Архитектура", None, "caption_figure"),
    ("Таблица 2 – Результаты", None, "caption_table"),
    ("Введение ........ 3", None, "toc_entry"),
    ("Что угодно", "heading 2", "heading_2"),
    ("Что угодно", "TOC 1", "toc_entry"),
    ("Обычный текст абзаца.", None, "body"),
    ("1 Числа бывают разными, и это предложение.", None, "body"),
])
def test_heuristic_labels(text, style, expected):
    assert HeuristicBlockOracle().classify(text, ctx(style_name=style)) == expected


def test_heuristic_uses_section_title_for_bibliography():
    texts = ["СПИСОК ЛИТЕРАТУРЫ", "Иванов И. И. Книга. – М., 2020.", "Петров П. П. Статья."]
    contexts = build_contexts(paras(*texts))
    items = [OracleItem(text=t, context=c) for t, c in zip(texts, contexts)]
    labels = HeuristicBlockOracle().classify_batch(items, [])
    assert labels == ["heading_1", "bibliography_entry", "bibliography_entry"]


def test_section_title_comes_from_carry():
    labels = HeuristicBlockOracle().classify_batch(
        [OracleItem(text="Сидоров С. С. Монография.", context=ctx())],
        [("СПИСОК ЛИТЕРАТУРЫ", "heading_1"), ("Иванов И. И. Книга.", "bibliography_entry")],
    )
    assert labels == ["bibliography_entry"]


def test_title_page_ends_at_first_page_break():
    paragraphs = [para(0, "Университет"), para(1, "Курсовая работа", page_break_count=1), para(2, "Текст")]
    assert title_page_end(paragraphs) == 2
    contexts = build_contexts(paragraphs)
    assert [c.on_title_page for c in contexts] == [True, True, False]
    # a heading style before any break means there is no title page
    assert title_page_end([para(0, "1 Глава", style_name="heading 1"), para(1, "x", page_break_count=1)]) == 0


def test_chunking_respects_both_limits():
    paragraphs = paras("a" * 10, "b" * 10, "c" * 10, "d" * 30, "e")
    assert chunk_indices(range(5), paragraphs, max_paragraphs=2, max_chars=1000) == [[0, 1], [2, 3], [4]]
    assert chunk_indices(range(5), paragraphs, max_paragraphs=10, max_chars=25) == [[0, 1], [2], [3], [4]]


def test_classification_never_changes_paragraphs():
    paragraphs = paras("ВВЕДЕНИЕ", "", "Текст работы.", "   ", "1 Теория")
    before = [(p.index, p.text) for p in paragraphs]
    enriched = BlockClassifier(HeuristicBlockOracle()).classify(paragraphs)

    assert [(ep.index, ep.text) for ep in enriched] == before
    assert [ep.paragraph for ep in enriched] == paragraphs
    assert [ep.block_type for ep in enriched] == ["heading_1", "other", "body", "other", "heading_1"]
    assert [ep.source for ep in enriched] == ["oracle", "skipped", "oracle", "skipped", "oracle"]
    assert enriched[0].level == 1


class FailingOracle(BlockOracle):
    name = "failing"

    def classify_batch(self, items, carry):
        raise ClassificationFailure("model unavailable")


class ShortOracle(BlockOracle):
    name = "short"

    def classify_batch(self, items, carry):
        return ["body"] * (len(items) - 1)


class SlowOracle(BlockOracle):
    name = "slow"

    def classify_batch(self, items, carry):
        time.sleep(1.0)
        return ["heading_1"] * len(items)


class BrokenOracle(BlockOracle):
    name = "broken"

    def classify_batch(self, items, carry):
        raise RuntimeError("bug")


@pytest.mark.parametrize("oracle, config", [
    (FailingOracle(), PipelineConfig()),
    (ShortOracle(), PipelineConfig()),
    (SlowOracle(), PipelineConfig(classify_timeout_s=0.05)),
])
def test_failed_chunks_fall_back_to_body(oracle, config):
    paragraphs = paras("ВВЕДЕНИЕ", "Текст", "")
    enriched = BlockClassifier(oracle, config).classify(paragraphs)
    assert [ep.block_type for ep in enriched] == ["body", "body", "other"]
    assert [ep.source for ep in enriched] == ["fallback", "fallback", "skipped"]
    assert enriched[0].confidence == 0.0


def test_only_the_failed_chunk_falls_back():
    class SecondChunkFails(LabelOracle):
        def classify_batch(self, items, carry):
            if items[0].context.index >= 2:
                raise ClassificationFailure("bad reply")
            return super().classify_batch(items, carry)

    oracle = SecondChunkFails({"ВВЕДЕНИЕ": "heading_1", "ЗАКЛЮЧЕНИЕ": "heading_1"})
    config = PipelineConfig(max_batch_paragraphs=2)
    enriched = BlockClassifier(oracle, config).classify(paras("ВВЕДЕНИЕ", "Текст", "ЗАКЛЮЧЕНИЕ", "Текст"))
    assert [ep.block_type for ep in enriched] == ["heading_1", "body", "body", "body"]
    assert [ep.source for ep in enriched] == ["oracle", "oracle", "fallback", "fallback"]


def test_timed_out_chunk_does_not_stall_later_chunks():
    class FirstCallHangs(LabelOracle):
        def __init__(self, table):
            super().__init__(table)
            self.calls = 0

        def classify_batch(self, items, carry):
            self.calls += 1
            if self.calls == 1:
                time.sleep(1.0)
            return super().classify_batch(items, carry)

    oracle = FirstCallHangs({"ВВЕДЕНИЕ": "heading_1"})
    config = PipelineConfig(max_batch_paragraphs=1, classify_timeout_s=0.2)
    enriched = BlockClassifier(oracle, config).classify(paras("Текст", "ВВЕДЕНИЕ", "Текст"))
    assert [ep.source for ep in enriched] == ["fallback", "oracle", "oracle"]
    assert [ep.block_type for ep in enriched] == ["body", "heading_1", "body"]


def test_unexpected_oracle_errors_propagate():
    with pytest.raises(RuntimeError):
        BlockClassifier(BrokenOracle()).classify(paras("Текст"))


def test_previous_chunk_tail_is_carried():
    class RecordingOracle(LabelOracle):
        def __init__(self, labels):
            super().__init__(labels)
            self.carries = []
            self.lock = threading.Lock()

        def classify_batch(self, items, carry):
            with self.lock:
                self.carries.append(list(carry))
            return super().classify_batch(items, carry)

    oracle = RecordingOracle({"Глава": "heading_1"})
    config = PipelineConfig(max_batch_paragraphs=2, carry_over=3)
    BlockClassifier(oracle, config).classify(paras("Глава", "a", "", "b", "c", "d"))

    assert oracle.carries == [
        [],
        [("Глава", "heading_1"), ("a", "body")],
        [("a", "body"), ("b", "body"), ("c", "body")],
    ]


def test_parallel_chunks_match_sequential_labels():
    paragraphs = paras(
        "ВВЕДЕНИЕ", "Текст введения.", "1 Теория", "1.1 Обзор", "Текст обзора.",
        "СПИСОК ЛИТЕРАТУРЫ", "Иванов И. И. Книга.", "Петров П. П. Статья.",
    )
    sequential = BlockClassifier(HeuristicBlockOracle(), PipelineConfig(max_batch_paragraphs=1)).classify(paragraphs)
    parallel = BlockClassifier(
        HeuristicBlockOracle(), PipelineConfig(max_batch_paragraphs=1, max_concurrent=4)
    ).classify(paragraphs)
    assert [ep.block_type for ep in parallel] == [ep.block_type for ep in sequential]
    assert parallel[-1].block_type == "bibliography_entry"
