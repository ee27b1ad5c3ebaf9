from __future__ import annotations
from dataclasses import dataclass, field, asdict, fields
from typing import List, Dict, Optional, Tuple, Literal, Any

BlockType = Literal[
    "title_field",
    "heading_1",
    "heading_2",
    "heading_3",
    "body",
    "caption_figure",
    "caption_table",
    "bibliography_entry",
    "toc_entry",
    "other",
]

BLOCK_TYPES: Tuple[str, ...] = (
    "title_field",
    "heading_1",
    "heading_2",
    "heading_3",
    "body",
    "caption_figure",
    "caption_table",
    "bibliography_entry",
    "toc_entry",
    "other",
)

HEADING_LEVELS: Dict[str, int] = {"heading_1": 1, "heading_2": 2, "heading_3": 3}


def merge(*layers):
    """Layered override: later layers win for every field they set (non-None)."""
    base = layers[0]
    out = {f.name: getattr(base, f.name) for f in fields(base)}
    for layer in layers[1:]:
        if layer is None:
            continue
        for f in fields(layer):
            val = getattr(layer, f.name)
            if val is not None:
                out[f.name] = val
    return type(base)(**out)


@dataclass(frozen=True)
class RunFormat:
    font: Optional[str] = None
    size_pt: Optional[float] = None
    bold: Optional[bool] = None
    italic: Optional[bool] = None
    highlight: Optional[str] = None


@dataclass(frozen=True)
class ParagraphFormat:
    alignment: Optional[str] = None
    indent_first_line_mm: Optional[float] = None  # negative = hanging
    indent_left_mm: Optional[float] = None
    line_spacing: Optional[float] = None          # multiplier when rule is auto, points otherwise
    line_spacing_rule: Optional[str] = None       # auto|exact|atLeast
    space_before_pt: Optional[float] = None
    space_after_pt: Optional[float] = None
    page_break_before: Optional[bool] = None


@dataclass(frozen=True)
class ParagraphRef:
    body_index: int                   # index among w:body children
    sdt_index: Optional[int] = None   # index inside w:sdtContent when wrapped


@dataclass
class RunNode:
    index: int                        # position among the paragraph's w:r
    text: str
    format: RunFormat
    has_embedded_object: bool = False

    @property
    def is_visible(self) -> bool:
        return bool(self.text.strip())


@dataclass
class ParagraphNode:
    index: int
    ref: ParagraphRef
    text: str
    style_id: Optional[str] = None
    style_name: Optional[str] = None
    format: ParagraphFormat = field(default_factory=ParagraphFormat)
    runs: List[RunNode] = field(default_factory=list)
    has_embedded_object: bool = False
    embedded_objects: int = 0
    is_list_item: bool = False
    list_level: Optional[int] = None
    page_break_count: int = 0


@dataclass
class SectionProps:
    margins_mm: Dict[str, float]
    page_width_mm: float = 210.0
    page_height_mm: float = 297.0
    page_numbering_start: Optional[int] = None
    title_page: bool = False
    paragraph_index: Optional[int] = None  # paragraph carrying the break; None = body-level


@dataclass(frozen=True)
class TableAnchor:
    body_index: int
    after_paragraph_index: Optional[int]


@dataclass
class DocxStructure:
    paragraphs: List[ParagraphNode] = field(default_factory=list)
    sections: List[SectionProps] = field(default_factory=list)
    tables: List[TableAnchor] = field(default_factory=list)

    @property
    def image_count(self) -> int:
        return sum(p.embedded_objects for p in self.paragraphs)


@dataclass(frozen=True)
class EnrichedParagraph:
    paragraph: ParagraphNode
    block_type: BlockType
    level: Optional[int] = None
    confidence: float = 1.0
    source: str = "oracle"   # oracle|fallback|skipped

    @property
    def index(self) -> int:
        return self.paragraph.index

    @property
    def text(self) -> str:
        return self.paragraph.text


def enrich(paragraph: ParagraphNode, block_type: BlockType, confidence: float = 1.0, source: str = "oracle") -> EnrichedParagraph:
    return EnrichedParagraph(
        paragraph=paragraph,
        block_type=block_type,
        level=HEADING_LEVELS.get(block_type),
        confidence=confidence,
        source=source,
    )


@dataclass(frozen=True)
class ViolationLocation:
    paragraph_index: Optional[int] = None     # None = document scope
    run_indices: Tuple[int, ...] = ()
    end_paragraph_index: Optional[int] = None  # set for range violations
    section_index: Optional[int] = None

    @property
    def is_range(self) -> bool:
        return self.end_paragraph_index is not None


@dataclass
class Violation:
    rule_id: str
    rule_path: str
    category: str
    severity: str  # info|warning|critical
    expected: str
    actual: str
    description: str
    location: ViolationLocation = field(default_factory=ViolationLocation)
    block_type: Optional[str] = None
    auto_fixable: bool = True
    # Raw expected value for the rewriter (strings above are for display)
    target: Any = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["location"]["run_indices"] = list(self.location.run_indices)
        d.pop("target", None)
        return d


@dataclass
class DocumentStatistics:
    total_characters: int = 0
    characters_without_spaces: int = 0
    word_count: int = 0
    page_count: int = 0
    paragraph_count: int = 0
    image_count: int = 0
    table_count: int = 0
    violations_by_category: Dict[str, int] = field(default_factory=dict)
    violations_by_severity: Dict[str, int] = field(default_factory=dict)


@dataclass
class AnalysisResult:
    violations: List[Violation] = field(default_factory=list)
    statistics: DocumentStatistics = field(default_factory=DocumentStatistics)
    checked_rules: List[str] = field(default_factory=list)


@dataclass
class StructureInventory:
    paragraph_count: int = 0
    embedded_object_count: int = 0
    table_count: int = 0
    media: Dict[str, str] = field(default_factory=dict)  # part name -> sha256
