from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Literal, Optional, Tuple

Scope = Literal["document", "paragraph", "run"]

# Application order: document-wide settings, then paragraph properties, then runs
SCOPE_ORDER = {"document": 0, "paragraph": 1, "run": 2}


@dataclass
class FormatOp:
    id: str
    scope: Scope
    prop: str                    # margin.top|page_numbering.start|alignment|font|size|...
    value: Any
    rule_id: str
    paragraph_index: Optional[int] = None
    run_indices: Tuple[int, ...] = ()
    section_index: Optional[int] = None
    status: str = "proposed"     # proposed|applied|skipped|failed
    verification: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["run_indices"] = list(self.run_indices)
        return d
