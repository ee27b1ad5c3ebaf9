import json

import pytest
from docx.oxml.ns import qn

from gost_editor.adapters.container import DOCUMENT_PART, open_package
from gost_editor.adapters.docx_adapter import parse_docx_structure
from gost_editor.classify import HeuristicBlockOracle
from gost_editor.cli import main
from gost_editor.config import PipelineConfig
from gost_editor.errors import ConfigurationError
from gost_editor.pipeline import process_docx, run_pipeline
from gost_editor.redline import COMMENTS_PART
from gost_editor.rules.load_rules import default_gost_rules
from gost_editor.truncate import plan_truncation

from docx_builders import para, paged_document, report_document


def test_plan_cuts_at_first_paragraph_past_the_limit():
    paragraphs = [para(i, f"Страница {i}", page_break_count=1) for i in range(10)]
    plan = plan_truncation(paragraphs, max_pages=3)
    assert plan.original_page_count == 10
    assert plan.cut_paragraph == 3
    assert plan.truncates
    assert not plan_truncation(paragraphs, max_pages=10).truncates


def test_trial_tier_gets_truncated_copies_and_full_outputs():
    data = paged_document(10)
    config = PipelineConfig(trial_max_pages=3)
    run = run_pipeline(data, default_gost_rules(), oracle=HeuristicBlockOracle(), access_tier="trial", config=config)
    res = run.result

    assert res.was_truncated
    assert res.original_page_count == 10
    assert len(parse_docx_structure(res.formatted_document).paragraphs) == 10
    assert len(parse_docx_structure(res.marked_original).paragraphs) == 10

    short = parse_docx_structure(res.truncated_formatted_document)
    assert [p.text for p in short.paragraphs] == ["Страница 1", "Страница 2", "Страница 3"]
    assert len(short.sections) == 1

    marked = open_package(res.truncated_marked_original)
    referenced = {el.get(qn("w:id")) for el in marked.read_xml(DOCUMENT_PART).iter(qn("w:commentReference"))}
    comments = {el.get(qn("w:id")) for el in marked.read_xml(COMMENTS_PART).iter(qn("w:comment"))}
    assert comments == referenced
    assert len(parse_docx_structure(res.truncated_marked_original).paragraphs) == 3


def test_other_tiers_are_not_truncated():
    data = paged_document(10)
    config = PipelineConfig(trial_max_pages=3)
    for tier in (None, "subscription"):
        res = run_pipeline(data, default_gost_rules(), oracle=HeuristicBlockOracle(), access_tier=tier,
                           config=config).result
        assert not res.was_truncated
        assert res.truncated_formatted_document is None

    short = run_pipeline(paged_document(2), default_gost_rules(), oracle=HeuristicBlockOracle(),
                         access_tier="trial", config=config).result
    assert not short.was_truncated


def test_process_docx_writes_review_bundle(tmp_path):
    src = tmp_path / "thesis.docx"
    src.write_bytes(report_document())
    payload = process_docx(input_docx=str(src), out_dir=str(tmp_path / "out"), classifier="heuristic",
                           config=PipelineConfig())

    for key in ("original_docx", "marked_docx", "formatted_docx"):
        assert open(payload["artifacts"][key], "rb").read()[:2] == b"PK"
    assert payload["classifier"] == "heuristic"
    assert payload["statistics"]["image_count"] == 1
    assert payload["stats"]["violations_total"] == len(payload["violations"])
    assert payload["classification"]["heading_1"] == 2

    bundle = tmp_path / "out"
    changelog = next(bundle.glob("*/thesis.changelog.json"))
    assert json.loads(changelog.read_text(encoding="utf-8"))["rules"] == "gost-7.32-2017"
    assert "Violations" in next(bundle.glob("*/thesis.changelog.txt")).read_text(encoding="utf-8")


def test_claude_classifier_without_key_is_a_configuration_error(tmp_path):
    src = tmp_path / "thesis.docx"
    src.write_bytes(report_document())
    with pytest.raises(ConfigurationError) as exc:
        process_docx(input_docx=str(src), out_dir=str(tmp_path / "out"), classifier="claude",
                     config=PipelineConfig(anthropic_api_key=None))
    assert exc.value.to_dict()["code"] == "configuration_error"
    assert not (tmp_path / "out").exists()


def test_cli_prints_summary(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    src = tmp_path / "thesis.docx"
    src.write_bytes(report_document())
    assert main([str(src), "--out", str(tmp_path / "out"), "--classifier", "heuristic"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["classifier"] == "heuristic"
    assert summary["violations_total"] > 0
    assert summary["was_truncated"] is False


def test_cli_reports_malformed_input(tmp_path, capsys):
    src = tmp_path / "broken.docx"
    src.write_bytes(b"not a docx")
    assert main([str(src), "--out", str(tmp_path / "out"), "--classifier", "heuristic"]) == 1
    assert json.loads(capsys.readouterr().err)["error"]["code"] == "malformed_document"
