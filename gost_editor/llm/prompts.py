from __future__ import annotations

SYSTEM_PROMPT = """You are a document structure analyst for Russian academic papers
(theses, coursework, reports) formatted to GOST 7.32.
Your task is to assign each paragraph exactly one block type.

Block types:
- title_field: any line of the title page (university, department, topic, author, supervisor, city, year)
- heading_1: chapter or structural heading (ВВЕДЕНИЕ, ЗАКЛЮЧЕНИЕ, СОДЕРЖАНИЕ, СПИСОК ЛИТЕРАТУРЫ, "1 Анализ ...", ПРИЛОЖЕНИЕ А)
- heading_2: section heading ("1.1 ...")
- heading_3: subsection heading ("1.1.1 ...")
- body: ordinary text, list items, formulas explained in text
- caption_figure: figure caption ("Рисунок 1 – ...")
- caption_table: table caption ("Таблица 1 – ...")
- bibliography_entry: one entry of the reference list
- toc_entry: one line of the table of contents
- other: anything else (signatures, stray fragments)

Rules:
1. Output ONLY a JSON array of block type strings, one per paragraph, in input order
2. Do not add explanations or commentary
3. Never merge, split, skip or reorder paragraphs"""

CLASSIFY_PROMPT_TEMPLATE = """Classify the numbered paragraphs below.

Already classified paragraphs right before them (context only, do not classify):
{carry}

Paragraphs to classify ({count} total):
{paragraphs}

JSON array of {count} block types:"""

NO_CARRY = "(start of document)"


def format_carry(carry) -> str:
    if not carry:
        return NO_CARRY
    return "\n".join(f"[{label}] {_clip(text)}" for text, label in carry)


def format_paragraphs(items, max_chars: int = 600) -> str:
    lines = []
    for n, item in enumerate(items, start=1):
        ctx = item.context
        hints = [f"position {ctx.index + 1}/{ctx.total}"]
        if ctx.style_name:
            hints.append(f"style {ctx.style_name}")
        if ctx.is_list_item:
            hints.append("list item")
        lines.append(f"{n}. ({', '.join(hints)}) {_clip(item.text, max_chars)}")
    return "\n".join(lines)


def _clip(text: str, max_chars: int = 200) -> str:
    text = " ".join(text.split())
    return text if len(text) <= max_chars else text[:max_chars] + "…"
