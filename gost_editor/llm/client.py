from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence
import json
import logging
import re
import time

import anthropic

from gost_editor.classify import BlockContext, BlockOracle, Carry, OracleItem
from gost_editor.errors import ClassificationFailure, ClassificationTimeoutError
from gost_editor.ir import BLOCK_TYPES
from gost_editor.llm.prompts import (
    SYSTEM_PROMPT,
    CLASSIFY_PROMPT_TEMPLATE,
    format_carry,
    format_paragraphs,
)

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


@dataclass
class LLMConfig:
    """Configuration for the Claude classification oracle."""
    api_key: str
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    temperature: float = 0.0  # labels must be reproducible
    max_retries: int = 3  # Max retries for rate limit / overload errors
    timeout_s: float = 60.0
    min_request_interval: float = 0.3  # Min seconds between requests per worker


def parse_labels(raw: str, expected: int) -> List[str]:
    """Extract the JSON label array from a model reply."""
    m = _JSON_ARRAY.search(raw)
    if not m:
        raise ClassificationFailure("Classifier reply holds no JSON array", {"reply": raw[:200]})
    try:
        labels = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise ClassificationFailure(f"Classifier reply is not valid JSON: {e}", {"reply": raw[:200]})
    if not isinstance(labels, list) or len(labels) != expected:
        raise ClassificationFailure(
            f"Expected {expected} labels, got {len(labels) if isinstance(labels, list) else type(labels).__name__}"
        )
    labels = [str(label).strip() for label in labels]
    unknown = sorted({label for label in labels if label not in BLOCK_TYPES})
    if unknown:
        raise ClassificationFailure(f"Unknown block types in reply: {unknown}")
    return labels


class ClaudeBlockOracle(BlockOracle):
    """Block classification through Anthropic's Claude API."""

    name = "claude"

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client: Optional["anthropic.Anthropic"] = None

    @property
    def client(self) -> "anthropic.Anthropic":
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self.config.api_key,
                timeout=self.config.timeout_s,
                max_retries=0,
            )
        return self._client

    def _complete(self, user_prompt: str) -> str:
        """One Messages API call with retry on rate limits and overload."""
        for attempt in range(self.config.max_retries + 1):
            try:
                time.sleep(self.config.min_request_interval)
                message = self.client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": user_prompt}],
                )
                result = ""
                for block in message.content:
                    if hasattr(block, "text"):
                        result += block.text
                return result.strip()

            except anthropic.APITimeoutError as e:
                raise ClassificationTimeoutError(f"Claude request timed out: {e}")
            except anthropic.APIStatusError as e:
                retryable = e.status_code == 429 or e.status_code >= 500
                if retryable and attempt < self.config.max_retries:
                    # Exponential backoff: 2s, 4s, 8s
                    backoff = 2 ** (attempt + 1)
                    logger.warning(f"Claude returned {e.status_code}, retry {attempt+1}/{self.config.max_retries} in {backoff}s")
                    time.sleep(backoff)
                    continue
                raise ClassificationFailure(f"Claude request failed with status {e.status_code}: {e}")
            except anthropic.APIError as e:
                raise ClassificationFailure(f"Claude request failed: {type(e).__name__}: {e}")

        raise ClassificationFailure("Claude retries exhausted")

    def classify_batch(self, items: Sequence[OracleItem], carry: Carry) -> List[str]:
        if not items:
            return []
        prompt = CLASSIFY_PROMPT_TEMPLATE.format(
            carry=format_carry(carry),
            count=len(items),
            paragraphs=format_paragraphs(items),
        )
        labels = parse_labels(self._complete(prompt), len(items))
        logger.debug(f"Claude labeled {len(labels)} paragraphs starting at {items[0].context.index}")
        return labels

    def classify(self, text: str, context: BlockContext) -> str:
        return self.classify_batch([OracleItem(text=text, context=context)], [])[0]
