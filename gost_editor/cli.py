from __future__ import annotations
import argparse
import json
import logging
import os
import sys

from gost_editor.config import ACCESS_TIERS, PipelineConfig
from gost_editor.errors import GostEditorError
from gost_editor.pipeline import process_docx


def main(argv=None):
    ap = argparse.ArgumentParser(
        prog="gost-format",
        description="Check and reformat a .docx thesis or coursework against GOST rules",
    )
    ap.add_argument("input_docx", help="Path to input .docx")
    ap.add_argument("--out", default="./gost_out", help="Output directory")
    ap.add_argument("--rules", default=None, help="Rule pack YAML (default: bundled GOST 7.32)")
    ap.add_argument("--tier", default=None, choices=ACCESS_TIERS, help="Access tier; trial caps the extra trial copies")
    ap.add_argument("--verbose", "-v", action="store_true", help="Log pipeline progress")

    cls_group = ap.add_argument_group("Classifier Options")
    cls_group.add_argument(
        "--classifier",
        default="auto",
        choices=["auto", "heuristic", "claude"],
        help="Block classifier: claude (needs ANTHROPIC_API_KEY), heuristic, or auto (claude when a key is set)"
    )
    cls_group.add_argument(
        "--llm-model",
        default=None,
        help="Claude model for classification (default: claude-sonnet-4-20250514 or GOST_LLM_MODEL)"
    )
    cls_group.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Classify this many chunks in parallel"
    )

    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = PipelineConfig.from_env()
    if args.llm_model:
        config.llm_model = args.llm_model
    if args.max_concurrent:
        config.max_concurrent = args.max_concurrent

    if args.classifier == "claude" and not config.anthropic_api_key:
        ap.error("--classifier claude requires the ANTHROPIC_API_KEY environment variable")

    try:
        payload = process_docx(
            input_docx=args.input_docx,
            out_dir=args.out,
            rules_path=args.rules,
            classifier=args.classifier,
            access_tier=args.tier,
            config=config,
        )
    except GostEditorError as e:
        print(json.dumps({"error": e.to_dict()}, ensure_ascii=False, indent=2), file=sys.stderr)
        return 1

    output = {
        "bundle_dir": os.path.dirname(payload["artifacts"]["formatted_docx"]),
        "classifier": payload["classifier"],
        "violations_total": payload["stats"]["violations_total"],
        "formatops_applied": payload["stats"]["formatops_applied"],
        "formatops_failed": payload["stats"]["formatops_failed"],
        "page_count": payload["statistics"]["page_count"],
        "was_truncated": payload["truncation"]["was_truncated"],
    }
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
