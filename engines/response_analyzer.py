"""Scoring of a single step response.

The analyzer is deliberately heuristic: a bag-of-words overlap against the
expected response where one exists, shallow structure checks where it does
not, and the mistake classifier for anything that looks wrong.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engines.base import ResponseValidator, SafetyGate
from engines.context import StepContext
from engines.guided_questions import GuidedQuestionGenerator, GuidedQuestionSet
from engines.mistake_classifier import MistakeClassification, MistakeClassifier
from engines.remediation import RemediationStrategy, RemediationStrategyBuilder
from engines.taxonomy import MistakeType, Quality, Severity, Understanding

logger = logging.getLogger(__name__)

EXCELLENT_THRESHOLD = 0.8
GOOD_THRESHOLD = 0.6
PARTIAL_THRESHOLD = 0.3

FEEDBACK_UNSAFE = "Please provide an appropriate response to the problem."
FEEDBACK_VALIDATION = "Please try to provide a more detailed response."
FEEDBACK_EXCELLENT = "Excellent work! Your reasoning is clear and accurate."
FEEDBACK_GOOD = "Good thinking! Your approach is on the right track."
FEEDBACK_PARTIAL = "You have some good ideas, but let's work on developing them further."
FEEDBACK_OFF_TRACK = "Let's take a step back and think about this differently."
FEEDBACK_SYSTEMATIC = "I can see you're thinking through this systematically. Good work!"
FEEDBACK_EXPLAIN_MORE = "You're on the right track. Can you explain your reasoning a bit more?"
FEEDBACK_INCOMPLETE = "Please try to provide a more complete response. What are you thinking?"
FEEDBACK_UNAVAILABLE = "I'm having trouble analyzing your response right now. Please continue."

QUALITY_BY_MISTAKE_TYPE = {
    MistakeType.CONCEPTUAL: Quality.INCORRECT,
    MistakeType.PROCEDURAL: Quality.INCORRECT,
    MistakeType.STRATEGIC: Quality.INCORRECT,
    MistakeType.COMPUTATIONAL: Quality.NEEDS_IMPROVEMENT,
    MistakeType.CARELESS: Quality.NEEDS_IMPROVEMENT,
    MistakeType.COMMUNICATION: Quality.NEEDS_IMPROVEMENT,
    MistakeType.PREREQUISITE: Quality.NEEDS_IMPROVEMENT,
    MistakeType.METACOGNITIVE: Quality.NEEDS_IMPROVEMENT,
}

ACCURACY_BY_SEVERITY = {
    Severity.LOW: 0.6,
    Severity.MEDIUM: 0.4,
    Severity.HIGH: 0.2,
    Severity.CRITICAL: 0.1,
}

MISTAKE_FEEDBACK = {
    MistakeType.CONCEPTUAL: "Let's make sure we understand the core concept clearly.",
    MistakeType.PROCEDURAL: "Let's review the steps for this type of problem.",
    MistakeType.COMPUTATIONAL: "Let's double-check our calculations.",
    MistakeType.STRATEGIC: "Let's think about different approaches we could use.",
}
DEFAULT_MISTAKE_FEEDBACK = "Let's work through this together."

_NON_WORD = re.compile(r"[^\w\s]")
_STRUCTURE_WORDS = re.compile(r"\b(first|second|then|next|because|therefore)\b", re.I)
_REASONING_WORDS = re.compile(r"\b(because|since|so|therefore|thus)\b", re.I)


def clean_words(text: str) -> set[str]:
    """Lower-case, strip punctuation and return the set of words."""
    cleaned = _NON_WORD.sub("", (text or "").lower())
    return {word for word in cleaned.split() if word}


def response_similarity(first: str, second: str) -> float:
    """Bag-of-words overlap: shared words over all distinct words."""
    words_a = clean_words(first)
    words_b = clean_words(second)
    union = words_a | words_b
    if not words_a or not words_b or not union:
        return 0.0
    return len(words_a & words_b) / len(union)


@dataclass
class MistakeDetail:
    """One mistake to be written to the mistake log."""

    type: MistakeType
    severity: Severity
    confidence: float
    description: str
    indicators: List[str] = field(default_factory=list)
    misconceptions: List[str] = field(default_factory=list)
    root_causes: List[str] = field(default_factory=list)

    @classmethod
    def from_classification(cls, classification: MistakeClassification) -> "MistakeDetail":
        return cls(
            type=classification.primary_type,
            severity=classification.severity,
            confidence=classification.confidence,
            description="; ".join(classification.root_causes),
            indicators=list(classification.indicators),
            misconceptions=list(classification.misconceptions),
            root_causes=list(classification.root_causes),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "confidence": round(self.confidence, 3),
            "description": self.description,
            "indicators": list(self.indicators),
        }


@dataclass
class MistakeAnalysis:
    classification: MistakeClassification
    guided_questions: GuidedQuestionSet
    remediation: RemediationStrategy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mistakeClassification": self.classification.to_dict(),
            "guidedQuestions": self.guided_questions.to_dict(),
            "remediationStrategy": self.remediation.to_dict(),
        }


@dataclass
class ResponseAnalysis:
    quality: Quality
    accuracy: float
    understanding: Understanding
    feedback: str
    misconceptions: List[str] = field(default_factory=list)
    mistakes: List[MistakeDetail] = field(default_factory=list)
    mistake_analysis: Optional[MistakeAnalysis] = None
    similarity: Optional[float] = None

    @property
    def guided_questions(self) -> Optional[GuidedQuestionSet]:
        return self.mistake_analysis.guided_questions if self.mistake_analysis else None

    @property
    def remediation(self) -> Optional[RemediationStrategy]:
        return self.mistake_analysis.remediation if self.mistake_analysis else None

    def to_dict(self) -> Dict[str, Any]:
        questions = self.guided_questions
        remediation = self.remediation
        return {
            "quality": self.quality.value,
            "accuracy": self.accuracy,
            "understanding": self.understanding.value,
            "feedback": self.feedback,
            "misconceptions": list(self.misconceptions),
            "mistakes": [mistake.to_dict() for mistake in self.mistakes],
            "guidedQuestions": questions.to_dict() if questions else None,
            "remediationStrategy": remediation.to_dict() if remediation else None,
        }


def _unsafe() -> ResponseAnalysis:
    return ResponseAnalysis(Quality.INAPPROPRIATE, 0.0, Understanding.CONFUSED, FEEDBACK_UNSAFE)


def mistake_feedback(analysis: MistakeAnalysis) -> str:
    feedback = "I notice there might be some confusion here. "
    feedback += MISTAKE_FEEDBACK.get(analysis.classification.primary_type, DEFAULT_MISTAKE_FEEDBACK)
    immediate = analysis.guided_questions.immediate
    if immediate:
        feedback += f" {immediate[0].question}"
    return feedback


class ResponseAnalyzer:
    def __init__(
        self,
        safety_gate: SafetyGate,
        validator: ResponseValidator,
        classifier: MistakeClassifier,
        questions: GuidedQuestionGenerator,
        remediation: RemediationStrategyBuilder,
    ):
        self.safety_gate = safety_gate
        self.validator = validator
        self.classifier = classifier
        self.questions = questions
        self.remediation = remediation

    def analyze(self, response: str, step: StepContext, emotional_state: Optional[str] = None) -> ResponseAnalysis:
        try:
            verdict = self.safety_gate.check_content(response)
        except Exception:
            # unreachable gate means unsafe
            logger.error("Safety gate failed; treating response as inappropriate", exc_info=True)
            return _unsafe()
        if not verdict.is_safe:
            return _unsafe()

        try:
            analysis = self._score(response, step, emotional_state)
        except Exception:
            logger.error("Response analysis failed for step %s", step.step_number, exc_info=True)
            return ResponseAnalysis(Quality.UNKNOWN, 0.5, Understanding.PARTIAL, FEEDBACK_UNAVAILABLE)
        analysis.accuracy = round(max(0.0, min(1.0, analysis.accuracy)), 2)
        return analysis

    def analyze_mistake(self, response: str, step: StepContext, emotional_state: Optional[str] = None) -> MistakeAnalysis:
        """Classify the mistake in ``response`` and derive questions and a plan."""
        classification = self.classifier.classify(response, step.expected_response, step)
        guided = self.questions.generate(classification, step, emotional_state)
        plan = self.remediation.build(classification, step)
        return MistakeAnalysis(classification, guided, plan)

    def _try_mistake_analysis(self, response: str, step: StepContext, emotional_state: Optional[str]) -> Optional[MistakeAnalysis]:
        try:
            return self.analyze_mistake(response, step, emotional_state)
        except Exception:
            logger.warning("Mistake analysis unavailable for step %s", step.step_number, exc_info=True)
            return None

    def _validator_feedback(self, response: str, step: StepContext) -> Optional[str]:
        try:
            verdict = self.validator.validate_response(
                response, {"context": "problem_solving", "original_input": step.prompt}
            )
        except Exception:
            logger.warning("Response validator failed; continuing without it", exc_info=True)
            return None
        if verdict.has_violations:
            return verdict.improved_response or FEEDBACK_VALIDATION
        return None

    def _score(self, response: str, step: StepContext, emotional_state: Optional[str]) -> ResponseAnalysis:
        validator_feedback = self._validator_feedback(response, step)
        if step.expected_response:
            return self._score_against_expected(response, step, emotional_state)
        return self._score_open(response, step, emotional_state, validator_feedback)

    def _score_against_expected(self, response: str, step: StepContext, emotional_state: Optional[str]) -> ResponseAnalysis:
        similarity = response_similarity(response, step.expected_response or "")
        if similarity > EXCELLENT_THRESHOLD:
            return ResponseAnalysis(
                Quality.EXCELLENT,
                0.9 + (similarity - EXCELLENT_THRESHOLD) * 0.5,
                Understanding.CONFIDENT,
                FEEDBACK_EXCELLENT,
                similarity=similarity,
            )
        if similarity > GOOD_THRESHOLD:
            return ResponseAnalysis(
                Quality.GOOD,
                0.7 + (similarity - GOOD_THRESHOLD),
                Understanding.PARTIAL,
                FEEDBACK_GOOD,
                similarity=similarity,
            )

        mistake = self._try_mistake_analysis(response, step, emotional_state)
        if mistake is not None:
            classification = mistake.classification
            return ResponseAnalysis(
                QUALITY_BY_MISTAKE_TYPE[classification.primary_type],
                ACCURACY_BY_SEVERITY[classification.severity],
                Understanding.PARTIAL if classification.severity is Severity.LOW else Understanding.CONFUSED,
                mistake_feedback(mistake),
                misconceptions=list(classification.misconceptions),
                mistakes=[MistakeDetail.from_classification(classification)],
                mistake_analysis=mistake,
                similarity=similarity,
            )

        if similarity > PARTIAL_THRESHOLD:
            return ResponseAnalysis(
                Quality.NEEDS_IMPROVEMENT,
                0.4 + (similarity - PARTIAL_THRESHOLD),
                Understanding.PARTIAL,
                FEEDBACK_PARTIAL,
                similarity=similarity,
            )
        return ResponseAnalysis(
            Quality.INCORRECT,
            max(0.1, similarity),
            Understanding.CONFUSED,
            FEEDBACK_OFF_TRACK,
            mistakes=[
                MistakeDetail(
                    MistakeType.CONCEPTUAL,
                    Severity.MEDIUM,
                    0.5,
                    "Student response does not match expected approach",
                )
            ],
            similarity=similarity,
        )

    def _score_open(
        self,
        response: str,
        step: StepContext,
        emotional_state: Optional[str],
        validator_feedback: Optional[str],
    ) -> ResponseAnalysis:
        length = len(response.strip())
        if length > 50 and _STRUCTURE_WORDS.search(response) and _REASONING_WORDS.search(response):
            return ResponseAnalysis(Quality.GOOD, 0.75, Understanding.CONFIDENT, FEEDBACK_SYSTEMATIC)
        if length > 20:
            return ResponseAnalysis(
                Quality.NEEDS_IMPROVEMENT,
                0.6,
                Understanding.PARTIAL,
                validator_feedback or FEEDBACK_EXPLAIN_MORE,
            )

        analysis = ResponseAnalysis(Quality.INCORRECT, 0.3, Understanding.CONFUSED, FEEDBACK_INCOMPLETE)
        mistake = self._try_mistake_analysis(response, step, emotional_state)
        if mistake is not None:
            analysis.mistake_analysis = mistake
            analysis.misconceptions = list(mistake.classification.misconceptions)
            analysis.mistakes = [MistakeDetail.from_classification(mistake.classification)]
        return analysis
