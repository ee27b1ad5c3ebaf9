from __future__ import annotations
from typing import Dict, Any, List
import json


def write_json(path: str, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def write_txt(path: str, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_txt(payload))


def render_txt(payload: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append(f"Review Bundle — {payload.get('timestamp_utc')}")
    lines.append(f"Rules: {payload.get('rules')}   Classifier: {payload.get('classifier')}")
    lines.append("")
    a = payload.get("artifacts", {})
    lines.append("Artifacts")
    lines.append(f"- Original:  {a.get('original_docx')}")
    lines.append(f"- Marked:    {a.get('marked_docx')}")
    lines.append(f"- Formatted: {a.get('formatted_docx')}")
    if a.get("trial_formatted_docx"):
        lines.append(f"- Trial marked:    {a.get('trial_marked_docx')}")
        lines.append(f"- Trial formatted: {a.get('trial_formatted_docx')}")
    lines.append("")
    t = payload.get("truncation", {})
    if t.get("was_truncated"):
        lines.append(f"Trial copies cut from ~{t.get('original_page_count')} pages")
        lines.append("")
    s = payload.get("statistics", {})
    lines.append("Document")
    for k in ("paragraph_count", "page_count", "word_count", "total_characters", "image_count", "table_count"):
        lines.append(f"- {k}: {s.get(k)}")
    lines.append("")
    cls = payload.get("classification", {})
    if cls:
        lines.append("Block types")
        for k, v in cls.items():
            lines.append(f"- {k}: {v}")
        if payload.get("fallback_paragraphs"):
            lines.append(f"- (fell back to body: {payload['fallback_paragraphs']})")
        lines.append("")
    stats = payload.get("stats", {})
    lines.append("Stats")
    for k, v in stats.items():
        lines.append(f"- {k}: {v}")
    lines.append("")
    violations = payload.get("violations", []) or []
    if violations:
        lines.append("Violations")
        for v in violations[:60]:
            loc = v["location"]
            where = "document" if loc["paragraph_index"] is None else f"¶{loc['paragraph_index']}"
            if loc.get("end_paragraph_index") is not None:
                where += f"-{loc['end_paragraph_index']}"
            lines.append(f"- [{v['severity'].upper()}] {v['rule_id']} @ {where}: "
                         f"expected {v['expected']}, found {v['actual']}")
        if len(violations) > 60:
            lines.append(f"... plus {len(violations)-60} more.")
        lines.append("")
    ops = payload.get("formatops", []) or []
    if ops:
        lines.append("FormatOps (first 50)")
        for op in ops[:50]:
            target = f"section {op['section_index'] or 0}" if op["scope"] == "document" else f"¶{op['paragraph_index']}"
            lines.append(f"- {op['status']}: {op['prop']} = {op['value']} @ {target}")
    return "\n".join(lines)
