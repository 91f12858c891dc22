"""Interfaces for the collaborators consumed by the problem-solving engines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class SafetyVerdict:
    is_safe: bool
    category: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class ValidationVerdict:
    has_violations: bool
    improved_response: Optional[str] = None
    violations: tuple = ()


@dataclass
class GenerationResult:
    """Outcome of a text-generation call.

    ``ok`` is False when the backend failed; ``text`` is then empty and
    ``error`` holds the reason. Callers pick their own fallback text.
    """

    ok: bool
    text: str = ""
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "GenerationResult":
        return cls(ok=False, text="", error=error)


class SafetyGate:
    def check_content(self, text: str) -> SafetyVerdict:
        raise NotImplementedError


class ResponseValidator:
    def validate_response(self, text: str, context: Dict[str, Any]) -> ValidationVerdict:
        raise NotImplementedError


class TextGenerator:
    def generate(self, prompt: str, *, temperature: float = 0.7, max_tokens: int = 300) -> GenerationResult:
        raise NotImplementedError


class ActivityLogger:
    def log_activity(self, event: Dict[str, Any]) -> None:
        raise NotImplementedError
