"""
GOST document formatter

Reads a .docx thesis or coursework, classifies every paragraph into a block
type, checks the document against a GOST 7.32 rule pack and writes two
outputs: the original with every violation highlighted and commented, and a
corrected copy with all formatting fixes applied. Text, order and embedded
objects are never changed.

Main entry point: run_pipeline()

Stages:
1. Parse - paragraphs, runs and resolved formatting
2. Classify - block type per paragraph (Claude or heuristics)
3. Analyze - violations and document statistics
4. Format - marked original and corrected document
"""
from gost_editor.adapters.docx_adapter import parse_docx_structure
from gost_editor.pipeline import (
    enrich_with_block_markup,
    analyze_document,
    format_document,
    run_pipeline,
    FormattingResult,
    PipelineRun,
)
from gost_editor.config import PipelineConfig
from gost_editor.rules.load_rules import FormattingRules, default_gost_rules, load_formatting_rules
from gost_editor.errors import (
    GostEditorError,
    MalformedDocumentError,
    ClassificationFailure,
    ClassificationTimeoutError,
    RuleEvaluationError,
    SerializationError,
    ConfigurationError,
)

__all__ = [
    "parse_docx_structure",
    "enrich_with_block_markup",
    "analyze_document",
    "format_document",
    "run_pipeline",
    "FormattingResult",
    "PipelineRun",
    "PipelineConfig",
    "FormattingRules",
    "default_gost_rules",
    "load_formatting_rules",
    "GostEditorError",
    "MalformedDocumentError",
    "ClassificationFailure",
    "ClassificationTimeoutError",
    "RuleEvaluationError",
    "SerializationError",
    "ConfigurationError",
]
