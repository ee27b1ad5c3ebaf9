from __future__ import annotations

from gost_editor.llm.client import ClaudeBlockOracle, LLMConfig, parse_labels

__all__ = ["ClaudeBlockOracle", "LLMConfig", "parse_labels"]
