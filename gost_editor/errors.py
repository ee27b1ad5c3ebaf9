"""Exception hierarchy for the formatting pipeline.

Only classification failures are recovered inside the pipeline (the paragraph
falls back to ``body``). Everything else propagates to the caller, which marks
the owning job as failed using ``code`` and the message.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

__all__ = [
    "GostEditorError",
    "MalformedDocumentError",
    "ClassificationFailure",
    "ClassificationTimeoutError",
    "RuleEvaluationError",
    "SerializationError",
    "ConfigurationError",
]


class GostEditorError(RuntimeError):
    """Base class for every tagged pipeline failure."""

    code = "pipeline_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "details": self.details}


class MalformedDocumentError(GostEditorError):
    """The container cannot be opened or its markup is not well-formed."""

    code = "malformed_document"


class ClassificationFailure(GostEditorError):
    """The block classification oracle failed or returned an unusable answer."""

    code = "classification_failure"


class ClassificationTimeoutError(ClassificationFailure):
    """The block classification oracle did not answer in time."""

    code = "classification_timeout"


class RuleEvaluationError(GostEditorError):
    """A rule set entry is malformed; ``rule_key`` names the offending entry."""

    code = "rule_evaluation_error"

    def __init__(self, message: str, rule_key: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.rule_key = rule_key
        self.details.setdefault("rule_key", rule_key)


class SerializationError(GostEditorError):
    """Re-packing the container failed."""

    code = "serialization_error"


class ConfigurationError(GostEditorError):
    """The requested run cannot be set up, e.g. a classifier without credentials."""

    code = "configuration_error"
