"""Default content safety gate and student-response validator.

Both are keyword/regex screens. They are deliberately shallow: the engine
only needs a yes/no decision (and an optional rewrite hint) before running
its own heuristics.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Pattern

from engines.base import ResponseValidator, SafetyGate, SafetyVerdict, ValidationVerdict

logger = logging.getLogger(__name__)

_JAILBREAK_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "system_manipulation": [
        re.compile(r"ignore\s+(?:previous|all|your|the)\s+(?:instructions|rules|guidelines|prompts)", re.I),
        re.compile(r"(?:override|bypass|disable|turn off)\s+(?:safety|filter|restriction|limit)", re.I),
        re.compile(r"(?:system|admin|developer)\s+(?:mode|override|access|privilege)", re.I),
        re.compile(r"(?:jailbreak|break free|hack|exploit)\s+(?:the|your|this)\s+(?:system|ai|prompt)", re.I),
    ],
    "role_playing": [
        re.compile(r"forget\s+(?:you are|youre|you're)\s+(?:a|an)\s+ai", re.I),
        re.compile(r"(?:pretend|act|roleplay)\s+(?:like|as if|that)\s+you\s+(?:are|were|have)", re.I),
    ],
    "prompt_injection": [
        re.compile(r"(?:prompt|instruction)\s*[:=]\s*[\"']?(?:ignore|forget|override)", re.I),
        re.compile(r"\{\{.*?(?:ignore|override|system).*?\}\}", re.I),
    ],
}

_INAPPROPRIATE_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "violence": [
        re.compile(r"\b(?:kill|murder|assassinate|torture)\b", re.I),
        re.compile(r"\b(?:gun|bomb|explosive)s?\b", re.I),
    ],
    "adult_content": [
        re.compile(r"\b(?:sex|sexual|porn|nude|naked)\b", re.I),
        re.compile(r"\b(?:cocaine|marijuana|heroin)\b", re.I),
    ],
    "harassment": [
        re.compile(r"\b(?:stupid|idiot|dumb|loser)\s+(?:teacher|tutor|bot|ai)\b", re.I),
        re.compile(r"\bi\s+hate\s+you\b", re.I),
    ],
}

_SHORTCUT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?:give me|tell me|show me)\s+(?:the|all)\s+(?:answers?|solutions?)", re.I),
    re.compile(r"(?:just|simply|quickly)\s+(?:give|tell|show)\s+(?:me\s+)?(?:the|all)\s+(?:answers?|solutions?)", re.I),
    re.compile(r"(?:complete|do|finish|solve)\s+(?:my|this|the)\s+(?:homework|assignment|test)\s+for me", re.I),
]

_WORD = re.compile(r"[a-z0-9]+")


class KeywordSafetyGate(SafetyGate):
    """Regex screen for jailbreak attempts and content unsuitable for students."""

    def __init__(self, strict: bool = False):
        self.strict = strict

    def check_content(self, text: str) -> SafetyVerdict:
        content = text or ""
        for category, patterns in _JAILBREAK_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(content):
                    logger.info("Safety gate blocked response (jailbreak/%s)", category)
                    return SafetyVerdict(False, "jailbreak", category)
        for category, patterns in _INAPPROPRIATE_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(content):
                    logger.info("Safety gate blocked response (inappropriate/%s)", category)
                    return SafetyVerdict(False, "inappropriate_content", category)
        if self.strict:
            for pattern in _SHORTCUT_PATTERNS:
                if pattern.search(content):
                    logger.info("Safety gate blocked shortcut-seeking response")
                    return SafetyVerdict(False, "educational_violation", "shortcut_seeking")
        return SafetyVerdict(True)


class StudentResponseValidator(ResponseValidator):
    """Flags responses that sidestep the work instead of attempting it."""

    def __init__(self, echo_threshold: float = 0.9, min_echo_words: int = 4):
        self.echo_threshold = echo_threshold
        self.min_echo_words = min_echo_words

    def validate_response(self, text: str, context: Dict[str, Any]) -> ValidationVerdict:
        violations = []
        improved = None

        for pattern in _SHORTCUT_PATTERNS:
            if pattern.search(text or ""):
                violations.append("shortcut_seeking")
                improved = (
                    "Let's work through this step by step. "
                    "Which part of the problem can you try on your own first?"
                )
                break

        prompt = str(context.get("original_input") or "")
        words = _WORD.findall((text or "").lower())
        prompt_words = set(_WORD.findall(prompt.lower()))
        if prompt_words and len(words) >= self.min_echo_words:
            overlap = sum(1 for word in words if word in prompt_words) / len(words)
            if overlap >= self.echo_threshold:
                violations.append("echoes_prompt")

        return ValidationVerdict(bool(violations), improved, tuple(violations))
