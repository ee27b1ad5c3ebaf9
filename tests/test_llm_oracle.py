from types import SimpleNamespace

import pytest

from gost_editor.classify import BlockClassifier, BlockContext, OracleItem
from gost_editor.config import PipelineConfig
from gost_editor.errors import ClassificationFailure
from gost_editor.llm import ClaudeBlockOracle, LLMConfig, parse_labels
from gost_editor.llm.prompts import NO_CARRY, format_carry, format_paragraphs
from gost_editor.pipeline import default_oracle

from docx_builders import paras


class FakeMessages:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=self.reply)])


def fake_oracle(reply):
    oracle = ClaudeBlockOracle(LLMConfig(api_key="test-key", min_request_interval=0.0))
    messages = FakeMessages(reply)
    oracle._client = SimpleNamespace(messages=messages)
    return oracle, messages


def test_parse_labels_accepts_array_inside_prose():
    assert parse_labels('Here you go:\n["heading_1", "body"]\n', 2) == ["heading_1", "body"]


@pytest.mark.parametrize("reply", [
    "no json here",
    '["body"',
    '["body", "body", "body"]',
    '["body", "paragraph"]',
    '["body", 3]',
])
def test_parse_labels_rejects_unusable_replies(reply):
    with pytest.raises(ClassificationFailure):
        parse_labels(reply, 2)


def test_prompt_carries_context_and_numbers_paragraphs():
    items = [
        OracleItem(text="1 Теория", context=BlockContext(index=4, total=10, style_name="Normal")),
        OracleItem(text="Текст", context=BlockContext(index=5, total=10, is_list_item=True)),
    ]
    text = format_paragraphs(items)
    assert "1. (position 5/10, style Normal) 1 Теория" in text
    assert "2. (position 6/10, list item) Текст" in text
    assert format_carry([]) == NO_CARRY
    assert format_carry([("ВВЕДЕНИЕ", "heading_1")]) == "[heading_1] ВВЕДЕНИЕ"


def test_claude_oracle_labels_a_chunk():
    oracle, messages = fake_oracle('["heading_1", "body"]')
    labels = BlockClassifier(oracle).classify(paras("ВВЕДЕНИЕ", "Текст введения."))
    assert [ep.block_type for ep in labels] == ["heading_1", "body"]
    assert [ep.source for ep in labels] == ["oracle", "oracle"]

    call = messages.calls[0]
    assert call["model"] == "claude-sonnet-4-20250514"
    assert call["temperature"] == 0.0
    assert "ВВЕДЕНИЕ" in call["messages"][0]["content"]
    assert "JSON array of 2 block types" in call["messages"][0]["content"]


def test_bad_claude_reply_falls_back_to_body():
    oracle, _ = fake_oracle("I am not sure what these are.")
    labels = BlockClassifier(oracle).classify(paras("ВВЕДЕНИЕ", "Текст"))
    assert [ep.block_type for ep in labels] == ["body", "body"]
    assert {ep.source for ep in labels} == {"fallback"}


def test_default_oracle_depends_on_api_key():
    assert default_oracle(PipelineConfig()).name == "heuristic"
    oracle = default_oracle(PipelineConfig(anthropic_api_key="k", llm_model="claude-test"))
    assert oracle.name == "claude"
    assert oracle.config.model == "claude-test"


def test_config_from_env():
    cfg = PipelineConfig.from_env({
        "GOST_MAX_BATCH_PARAGRAPHS": "10",
        "GOST_MAX_CONCURRENT": "4",
        "GOST_TRIAL_MAX_PAGES": "",
        "ANTHROPIC_API_KEY": "",
    })
    assert cfg.max_batch_paragraphs == 10
    assert cfg.max_concurrent == 4
    assert cfg.trial_max_pages is None
    assert cfg.anthropic_api_key is None
    assert cfg.truncation_limit("trial") is None


def test_only_trial_tier_is_capped():
    cfg = PipelineConfig(trial_max_pages=5)
    assert cfg.truncation_limit("trial") == 5
    assert cfg.truncation_limit("subscription") is None
    assert cfg.truncation_limit(None) is None
