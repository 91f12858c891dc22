"""Heuristic mistake classification.

Three independent analyses look at a response: the subject-scoped pattern
library, generic content checks, and a subject-family specific pass that always
includes the completeness check. Their results are merged into one
:class:`MistakeClassification`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from engines.context import StepContext
from engines.mistake_patterns import MistakePatternRegistry
from engines.taxonomy import MistakeType, Severity

logger = logging.getLogger(__name__)

PATTERN_MATCH_CONFIDENCE = 0.8
DEFAULT_ANALYSIS_CONFIDENCE = 0.5
# responses shorter than this share of the expected answer count as incomplete
INCOMPLETE_RATIO = 0.3

SEVERITY_INDICATORS = (
    (Severity.CRITICAL, {"fundamental_misunderstanding", "critical_error"}),
    (Severity.HIGH, {"major_error", "conceptual_gap"}),
    (Severity.MEDIUM, {"procedural_error", "incomplete_response"}),
)

ROOT_CAUSES = {
    MistakeType.CONCEPTUAL: "Incomplete understanding of core concepts",
    MistakeType.PROCEDURAL: "Unfamiliarity with problem-solving procedures",
    MistakeType.COMPUTATIONAL: "Arithmetic calculation errors",
    MistakeType.STRATEGIC: "Difficulty selecting appropriate problem-solving strategy",
}
DEFAULT_ROOT_CAUSE = "General learning difficulty"

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_DECIMAL = re.compile(r"-?\d+\.\d+")
_DIGITS = re.compile(r"\d+")
_UNITS = re.compile(r"\d+\s*(cm|m|g|kg|ml|l|°C|°F)")
_MATH_FORMS = (
    (re.compile(r"\d+\s*[+\-*/]\s*\d+\s*=\s*\d+"), "computational"),
    (re.compile(r"x\s*=\s*\d+"), "algebraic"),
    (re.compile(r"\(\s*\d+\s*,\s*\d+\s*\)"), "coordinate"),
)
SCIENTIFIC_TERMS = ("hypothesis", "experiment", "variable", "control", "observation")
TRANSITIONS = ("however", "therefore", "furthermore", "in addition", "consequently")
REASONING_WORDS = ("because", "since", "therefore", "thus", "so")


@dataclass
class PatternMatch:
    pattern: str
    type: MistakeType
    confidence: float
    indicators: List[str]


@dataclass
class AnalysisResult:
    """Outcome of one of the three analyses.

    ``confidence`` stays ``None`` when the analysis has no opinion; it then
    counts as the default confidence when the analyses are combined.
    """

    name: str
    indicators: List[str] = field(default_factory=list)
    matches: List[PatternMatch] = field(default_factory=list)
    confidence: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MistakeClassification:
    primary_type: MistakeType
    severity: Severity
    confidence: float
    indicators: List[str] = field(default_factory=list)
    misconceptions: List[str] = field(default_factory=list)
    root_causes: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primaryType": self.primary_type.value,
            "severity": self.severity.value,
            "confidence": round(self.confidence, 3),
            "indicators": list(self.indicators),
            "misconceptions": list(self.misconceptions),
            "rootCauses": list(self.root_causes),
            "patterns": list(self.patterns),
        }


def _sentences(text: str) -> List[str]:
    return [part for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def _words(text: str) -> List[str]:
    return [word for word in text.strip().split() if word]


def _check_completeness(result: AnalysisResult, response: str, expected: str) -> None:
    if len(response.strip()) < len(expected.strip()) * INCOMPLETE_RATIO:
        result.indicators.append("incomplete_response")


class MistakeClassifier:
    def __init__(self, patterns: MistakePatternRegistry):
        self.patterns = patterns
        self._subject_handlers: Dict[str, Callable[[str, str], AnalysisResult]] = {
            "mathematics": self._analyze_math,
            "science": self._analyze_science,
            "writing": self._analyze_writing,
            "general": self._analyze_general,
        }

    def classify(self, response: str, expected: Optional[str], step: StepContext) -> MistakeClassification:
        """Classify the mistake in ``response`` for ``step``."""
        expected_text = expected or ""
        analyses = [
            self.analyze_patterns(response, step.subject),
            self.analyze_content(response, expected_text, step.keywords),
            self.analyze_subject(response, expected_text, step.subject),
        ]

        primary = self._primary_type(analyses)
        indicators = [indicator for analysis in analyses for indicator in analysis.indicators]
        classification = MistakeClassification(
            primary_type=primary,
            severity=self.severity_for(indicators),
            confidence=self._combined_confidence(analyses),
            indicators=indicators,
            misconceptions=self._misconceptions(analyses),
            root_causes=[ROOT_CAUSES.get(primary, DEFAULT_ROOT_CAUSE)],
            patterns=[match.pattern for analysis in analyses for match in analysis.matches],
        )
        logger.debug(
            "classified step %s as %s/%s (%.2f)",
            step.step_number,
            classification.primary_type.value,
            classification.severity.value,
            classification.confidence,
        )
        return classification

    # ---- analyses ----
    def analyze_patterns(self, response: str, subject: Optional[str]) -> AnalysisResult:
        result = AnalysisResult(name="patterns")
        best = 0.0
        for pattern in self.patterns.patterns_for(subject):
            if pattern.matches(response):
                result.matches.append(
                    PatternMatch(pattern.name, pattern.type, PATTERN_MATCH_CONFIDENCE, list(pattern.indicators))
                )
                result.indicators.extend(pattern.indicators)
                best = max(best, PATTERN_MATCH_CONFIDENCE)
        # zero means "no match", which combines like "no opinion"
        result.confidence = best or None
        return result

    def analyze_content(self, response: str, expected: str, keywords: List[str]) -> AnalysisResult:
        student_length = len(response.strip())
        expected_length = len(expected.strip())
        ratio = student_length / expected_length if expected_length > 0 else 0.0

        sentences = _sentences(response)
        lowered = response.lower()
        found = [word for word in keywords if word.lower() in lowered]
        missing = [word for word in keywords if word.lower() not in lowered]
        student_words = _words(response)
        expected_words = _words(expected)

        details = {
            "length": {
                "ratio": ratio,
                "tooShort": ratio < 0.3,
                "tooLong": ratio > 3.0,
                "appropriate": 0.3 <= ratio <= 3.0,
            },
            "structure": {
                "hasSentences": bool(re.search(r"[.!?]", response)),
                "hasCapitalization": bool(re.search(r"[A-Z]", response)),
                "hasPunctuation": bool(re.search(r"[.,;:!?]", response)),
                "sentenceCount": len(sentences),
            },
            "keywords": {
                "expectedCount": len(keywords),
                "foundCount": len(found),
                "missing": missing,
                "coverage": len(found) / len(keywords) if keywords else 1.0,
            },
            "coherence": {
                "sentenceCount": len(sentences),
                "averageLength": (sum(len(s) for s in sentences) / len(sentences)) if sentences else 0.0,
                "hasLogicalFlow": len(sentences) > 1,
            },
            "completeness": {
                "wordCount": len(student_words),
                "expectedWordCount": len(expected_words),
                "completeness": len(student_words) / len(expected_words) if expected_words else 1.0,
                "isComplete": len(student_words) >= len(expected_words) * 0.5,
            },
        }
        return AnalysisResult(name="content", details=details)

    def analyze_subject(self, response: str, expected: str, subject: Optional[str]) -> AnalysisResult:
        family = self.patterns.family_for(subject)
        handler = self._subject_handlers.get(family, self._analyze_general)
        return handler(response, expected)

    def _analyze_math(self, response: str, expected: str) -> AnalysisResult:
        result = AnalysisResult(name="mathematics")
        _check_completeness(result, response, expected)
        result.details["forms"] = [name for regex, name in _MATH_FORMS if regex.search(response)]
        if _DECIMAL.search(response) and not _DECIMAL.search(expected):
            result.indicators.append("unnecessary_decimal")
        if "=" in response and "=" not in expected:
            result.indicators.append("premature_equation")
        return result

    def _analyze_science(self, response: str, expected: str) -> AnalysisResult:
        result = AnalysisResult(name="science")
        _check_completeness(result, response, expected)
        lowered = response.lower()
        used = [term for term in SCIENTIFIC_TERMS if term in lowered]
        if not used and any(term in expected.lower() for term in SCIENTIFIC_TERMS):
            result.indicators.append("missing_scientific_vocabulary")
        if _DIGITS.search(response) and not _UNITS.search(response):
            result.indicators.append("missing_units")
        return result

    def _analyze_writing(self, response: str, expected: str) -> AnalysisResult:
        result = AnalysisResult(name="writing")
        _check_completeness(result, response, expected)
        if len(_sentences(response)) < 2 and len(_SENTENCE_SPLIT.split(expected)) >= 2:
            result.indicators.append("insufficient_development")
        lowered = response.lower()
        if not any(transition in lowered for transition in TRANSITIONS):
            result.indicators.append("lack_of_transitions")
        return result

    def _analyze_general(self, response: str, expected: str) -> AnalysisResult:
        result = AnalysisResult(name="general")
        _check_completeness(result, response, expected)
        lowered = response.lower()
        if not any(word in lowered for word in REASONING_WORDS):
            result.indicators.append("lack_of_reasoning")
        return result

    # ---- combination ----
    @staticmethod
    def _primary_type(analyses: List[AnalysisResult]) -> MistakeType:
        scores: Dict[MistakeType, float] = {}
        for analysis in analyses:
            for match in analysis.matches:
                scores[match.type] = scores.get(match.type, 0.0) + match.confidence
        if not scores:
            return MistakeType.CONCEPTUAL
        # max() keeps the first type seen on ties
        return max(scores, key=lambda mistake_type: scores[mistake_type])

    @staticmethod
    def severity_for(indicators: List[str]) -> Severity:
        present = set(indicators)
        for severity, keys in SEVERITY_INDICATORS:
            if present & keys:
                return severity
        return Severity.LOW

    @staticmethod
    def _combined_confidence(analyses: List[AnalysisResult]) -> float:
        values = [
            analysis.confidence if analysis.confidence else DEFAULT_ANALYSIS_CONFIDENCE
            for analysis in analyses
        ]
        return sum(values) / len(values)

    @staticmethod
    def _misconceptions(analyses: List[AnalysisResult]) -> List[str]:
        return [
            f"Potential misconception in {match.pattern}"
            for analysis in analyses
            for match in analysis.matches
            if match.type is MistakeType.CONCEPTUAL
        ]
