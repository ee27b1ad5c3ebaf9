from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from gost_editor.adapters.container import open_package, write_package
from gost_editor.adapters.docx_adapter import extract_inventory, extract_structure, parse_docx_structure
from gost_editor.apply import apply_format_ops
from gost_editor.changelog import write_json, write_txt
from gost_editor.classify import BlockClassifier, BlockOracle, HeuristicBlockOracle
from gost_editor.config import PipelineConfig
from gost_editor.editops import FormatOp
from gost_editor.errors import ConfigurationError, RuleEvaluationError, SerializationError
from gost_editor.ir import AnalysisResult, DocxStructure, EnrichedParagraph, ParagraphNode, Violation
from gost_editor.lint import analyze
from gost_editor.llm.client import ClaudeBlockOracle, LLMConfig
from gost_editor.propose import propose_from_violations
from gost_editor.redline import mark_violations
from gost_editor.rules.load_rules import FormattingRules, default_gost_rules, load_formatting_rules
from gost_editor.stats import estimate_page_count
from gost_editor.truncate import plan_truncation, truncate_document
from gost_editor.verify import verify_output

logger = logging.getLogger(__name__)


@dataclass
class FormattingResult:
    marked_original: bytes
    formatted_document: bytes
    ops: List[FormatOp] = field(default_factory=list)
    fixes_applied: int = 0
    was_truncated: bool = False
    original_page_count: int = 0
    truncated_marked_original: Optional[bytes] = None
    truncated_formatted_document: Optional[bytes] = None


@dataclass
class PipelineRun:
    structure: DocxStructure
    enriched: List[EnrichedParagraph]
    analysis: AnalysisResult
    result: FormattingResult


def default_oracle(config: PipelineConfig) -> BlockOracle:
    """Claude when an API key is configured, the deterministic heuristics otherwise."""
    if config.anthropic_api_key:
        return ClaudeBlockOracle(LLMConfig(
            api_key=config.anthropic_api_key,
            model=config.llm_model,
            max_retries=config.llm_max_retries,
            timeout_s=config.classify_timeout_s,
        ))
    logger.info("No ANTHROPIC_API_KEY configured; classifying with heuristics")
    return HeuristicBlockOracle()


def enrich_with_block_markup(
    paragraphs: Sequence[ParagraphNode],
    oracle: Optional[BlockOracle] = None,
    config: Optional[PipelineConfig] = None,
) -> List[EnrichedParagraph]:
    cfg = config or PipelineConfig()
    return BlockClassifier(oracle or default_oracle(cfg), cfg).classify(paragraphs)


def analyze_document(
    buffer: bytes,
    rules: FormattingRules,
    enriched: Sequence[EnrichedParagraph],
    config: Optional[PipelineConfig] = None,
) -> AnalysisResult:
    cfg = config or PipelineConfig()
    return analyze(buffer, rules, enriched, chars_per_page=cfg.chars_per_page)


def _build_both(builders: Dict[str, Callable[[], bytes]], timeout_s: float) -> Dict[str, bytes]:
    """Run the output builders concurrently; either every output is produced or none."""
    executor = ThreadPoolExecutor(max_workers=len(builders))
    try:
        futures = {label: executor.submit(build) for label, build in builders.items()}
        outputs: Dict[str, bytes] = {}
        for label, future in futures.items():
            try:
                outputs[label] = future.result(timeout=timeout_s)
            except FutureTimeout:
                raise SerializationError(f"Writing the {label} timed out after {timeout_s}s", {"output": label})
        return outputs
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def format_document(
    buffer: bytes,
    rules: FormattingRules,
    violations: Sequence[Violation],
    enriched: Sequence[EnrichedParagraph],
    access_tier: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
) -> FormattingResult:
    """Produce the marked original and the corrected document from one source buffer.

    Both outputs are built from independent copies of the source package and
    verified against its inventory. Restricted access tiers additionally get
    page-capped variants; the full-length pair is always returned.
    """
    cfg = config or PipelineConfig()
    source = open_package(buffer)
    structure = extract_structure(source)
    if len(enriched) != len(structure.paragraphs):
        raise RuleEvaluationError(
            f"Got {len(enriched)} classified paragraphs for a document with {len(structure.paragraphs)}",
            rule_key="<enriched>",
        )
    inventory = extract_inventory(source)
    ops = propose_from_violations(violations, enriched)

    def build_formatted() -> bytes:
        package = source.copy()
        apply_format_ops(package, ops)
        return write_package(package)

    def build_marked() -> bytes:
        package = source.copy()
        mark_violations(package, violations)
        return write_package(package)

    outputs = _build_both({"formatted document": build_formatted, "marked original": build_marked},
                          cfg.codec_timeout_s)
    for label, data in outputs.items():
        verify_output(inventory, data, label)

    result = FormattingResult(
        marked_original=outputs["marked original"],
        formatted_document=outputs["formatted document"],
        ops=ops,
        fixes_applied=sum(1 for o in ops if o.status == "applied"),
        original_page_count=estimate_page_count(structure.paragraphs, cfg.chars_per_page),
    )

    max_pages = cfg.truncation_limit(access_tier)
    if max_pages:
        plan = plan_truncation(structure.paragraphs, max_pages, cfg.chars_per_page)
        result.original_page_count = plan.original_page_count
        if plan.truncates:
            result.was_truncated = True
            result.truncated_marked_original = truncate_document(result.marked_original, structure.paragraphs, plan)
            result.truncated_formatted_document = truncate_document(result.formatted_document, structure.paragraphs, plan)

    logger.info(
        f"Formatting done: {result.fixes_applied}/{len(ops)} fixes applied"
        + (f", trial copy capped at {max_pages} of {result.original_page_count} pages" if result.was_truncated else "")
    )
    return result


def run_pipeline(
    buffer: bytes,
    rules: Optional[FormattingRules] = None,
    *,
    oracle: Optional[BlockOracle] = None,
    access_tier: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
) -> PipelineRun:
    """Parse, classify, analyze and format one document."""
    cfg = config or PipelineConfig()
    rules = rules or default_gost_rules()
    structure = parse_docx_structure(buffer)
    enriched = enrich_with_block_markup(structure.paragraphs, oracle, cfg)
    analysis = analyze_document(buffer, rules, enriched, cfg)
    result = format_document(buffer, rules, analysis.violations, enriched, access_tier, cfg)
    return PipelineRun(structure=structure, enriched=enriched, analysis=analysis, result=result)


def process_docx(
    *,
    input_docx: str,
    out_dir: str,
    rules_path: Optional[str] = None,
    classifier: str = "auto",
    access_tier: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
) -> Dict[str, Any]:
    """Run the pipeline on a file and write the review bundle next to it."""
    cfg = config or PipelineConfig.from_env()
    if classifier == "claude" and not cfg.anthropic_api_key:
        raise ConfigurationError("The claude classifier requires ANTHROPIC_API_KEY", {"classifier": classifier})
    ts = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    stem = Path(input_docx).stem
    bundle = Path(out_dir) / f"{stem}_{ts.replace('-', '').replace(':', '').replace('T', '_')}"
    bundle.mkdir(parents=True, exist_ok=True)

    rules = load_formatting_rules(rules_path) if rules_path else default_gost_rules()
    if classifier == "heuristic":
        oracle: BlockOracle = HeuristicBlockOracle()
    else:
        oracle = default_oracle(cfg)

    buffer = Path(input_docx).read_bytes()
    run = run_pipeline(buffer, rules, oracle=oracle, access_tier=access_tier, config=cfg)
    res = run.result

    artifacts: Dict[str, Optional[str]] = {
        "original_docx": str(bundle / f"{stem}.original.docx"),
        "marked_docx": str(bundle / f"{stem}.marked.docx"),
        "formatted_docx": str(bundle / f"{stem}.formatted.docx"),
        "trial_marked_docx": None,
        "trial_formatted_docx": None,
    }
    Path(artifacts["original_docx"]).write_bytes(buffer)
    Path(artifacts["marked_docx"]).write_bytes(res.marked_original)
    Path(artifacts["formatted_docx"]).write_bytes(res.formatted_document)
    if res.was_truncated:
        artifacts["trial_marked_docx"] = str(bundle / f"{stem}.trial.marked.docx")
        artifacts["trial_formatted_docx"] = str(bundle / f"{stem}.trial.formatted.docx")
        Path(artifacts["trial_marked_docx"]).write_bytes(res.truncated_marked_original)
        Path(artifacts["trial_formatted_docx"]).write_bytes(res.truncated_formatted_document)

    stats = run.analysis.statistics
    payload: Dict[str, Any] = {
        "timestamp_utc": ts,
        "rules": rules.name,
        "classifier": oracle.name,
        "access_tier": access_tier,
        "artifacts": artifacts,
        "statistics": stats.__dict__,
        "classification": {
            block_type: sum(1 for ep in run.enriched if ep.block_type == block_type)
            for block_type in dict.fromkeys(ep.block_type for ep in run.enriched)
        },
        "fallback_paragraphs": sum(1 for ep in run.enriched if ep.source == "fallback"),
        "truncation": {
            "was_truncated": res.was_truncated,
            "original_page_count": res.original_page_count,
        },
        "stats": {
            "violations_total": len(run.analysis.violations),
            "formatops_total": len(res.ops),
            "formatops_applied": res.fixes_applied,
            "formatops_failed": sum(1 for o in res.ops if o.status == "failed"),
        },
        "checked_rules": run.analysis.checked_rules,
        "violations": [v.to_dict() for v in run.analysis.violations],
        "formatops": [o.to_dict() for o in res.ops],
    }

    write_json(str(bundle / f"{stem}.changelog.json"), payload)
    write_txt(str(bundle / f"{stem}.changelog.txt"), payload)
    return payload
