from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Mapping
import os

ACCESS_TIERS = ("trial", "one_time", "subscription", "admin", "none")
RESTRICTED_TIERS = frozenset({"trial"})


@dataclass
class PipelineConfig:
    """Runtime settings for one pipeline invocation."""
    # Classifier batching
    max_batch_paragraphs: int = 60
    max_batch_chars: int = 12000
    carry_over: int = 3               # classified paragraphs carried into the next batch
    max_concurrent: int = 1           # >1 classifies batches in parallel
    classify_timeout_s: float = 60.0

    # Container codec
    codec_timeout_s: float = 120.0

    # Page estimation / trial truncation
    chars_per_page: int = 2000
    trial_max_pages: Optional[int] = 30

    # Oracle
    anthropic_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_retries: int = 3

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        env = os.environ if env is None else env
        cfg = cls()
        cfg.max_batch_paragraphs = int(env.get("GOST_MAX_BATCH_PARAGRAPHS", cfg.max_batch_paragraphs))
        cfg.max_batch_chars = int(env.get("GOST_MAX_BATCH_CHARS", cfg.max_batch_chars))
        cfg.max_concurrent = int(env.get("GOST_MAX_CONCURRENT", cfg.max_concurrent))
        cfg.classify_timeout_s = float(env.get("GOST_CLASSIFY_TIMEOUT_S", cfg.classify_timeout_s))
        cfg.codec_timeout_s = float(env.get("GOST_CODEC_TIMEOUT_S", cfg.codec_timeout_s))
        cfg.chars_per_page = int(env.get("GOST_CHARS_PER_PAGE", cfg.chars_per_page))
        max_pages = env.get("GOST_TRIAL_MAX_PAGES")
        if max_pages is not None:
            cfg.trial_max_pages = int(max_pages) if max_pages.strip() else None
        cfg.anthropic_api_key = env.get("ANTHROPIC_API_KEY") or None
        cfg.llm_model = env.get("GOST_LLM_MODEL", cfg.llm_model)
        return cfg

    def truncation_limit(self, access_tier: Optional[str]) -> Optional[int]:
        """Page cap for ``access_tier``; None when output is not capped."""
        if access_tier in RESTRICTED_TIERS and self.trial_max_pages:
            return self.trial_max_pages
        return None
