from __future__ import annotations
from typing import List, Optional, Sequence
import hashlib
import logging

from gost_editor.editops import FormatOp, SCOPE_ORDER
from gost_editor.ir import EnrichedParagraph, Violation

logger = logging.getLogger(__name__)

# rule id -> (scope, property the rewriter sets)
FIXES = {
    "margins.top": ("document", "margin.top"),
    "margins.bottom": ("document", "margin.bottom"),
    "margins.left": ("document", "margin.left"),
    "margins.right": ("document", "margin.right"),
    "page_numbering.start": ("document", "page_numbering.start"),
    "page_numbering.title_page": ("document", "page_numbering.title_page"),
    "paragraph.alignment": ("paragraph", "alignment"),
    "paragraph.indent_first_line": ("paragraph", "indent_first_line"),
    "paragraph.line_spacing": ("paragraph", "line_spacing"),
    "paragraph.space_before": ("paragraph", "space_before"),
    "paragraph.space_after": ("paragraph", "space_after"),
    "font.family": ("run", "font"),
    "font.size": ("run", "size"),
    "font.bold": ("run", "bold"),
    "font.italic": ("run", "italic"),
    "font.highlight": ("run", "highlight"),
}


def _mk_id(seed: str) -> str:
    return hashlib.sha1(seed.encode("utf-8")).hexdigest()[:12]


def propose_from_violations(
    violations: Sequence[Violation],
    enriched: Optional[Sequence[EnrichedParagraph]] = None,
) -> List[FormatOp]:
    """Turn auto-fixable violations into FormatOps in application order."""
    ops: List[FormatOp] = []
    known = len(enriched) if enriched is not None else None
    for v in violations:
        fix = FIXES.get(v.rule_id)
        if not v.auto_fixable or fix is None:
            continue
        scope, prop = fix
        loc = v.location
        op = FormatOp(
            id=_mk_id(f"{v.rule_id}|{loc.section_index}|{loc.paragraph_index}|{loc.run_indices}"),
            scope=scope,
            prop=prop,
            value=v.target,
            rule_id=v.rule_id,
            paragraph_index=loc.paragraph_index,
            run_indices=loc.run_indices,
            section_index=loc.section_index,
        )
        if scope != "document" and (loc.paragraph_index is None or (known is not None and loc.paragraph_index >= known)):
            op.status = "skipped"
            op.verification["reason"] = "no_paragraph"
        ops.append(op)

    ops.sort(key=lambda o: (SCOPE_ORDER[o.scope], o.section_index or 0, o.paragraph_index or 0))
    logger.debug(f"Proposed {len(ops)} format ops from {len(violations)} violations")
    return ops
