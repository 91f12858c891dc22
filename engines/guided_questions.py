"""Guided question generation for classified mistakes."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from engines.base import TextGenerator
from engines.context import StepContext
from engines.mistake_classifier import MistakeClassification
from engines.scaffolding import MISTAKE_ANALYSIS, ScaffoldingEngine
from engines.taxonomy import MistakeType, Priority, Severity

logger = logging.getLogger(__name__)

IMMEDIATE_COUNT = 2
FOLLOW_UP_COUNT = 3

STRATEGY_BY_SEVERITY = {
    Severity.CRITICAL: "intensive_support",
    Severity.HIGH: "guided_discovery",
    Severity.MEDIUM: "socratic_questioning",
}
DEFAULT_STRATEGY = "supportive"

_QUESTION_SENTENCE = re.compile(r"[^.!?\n]*\?")


class QuestioningTemplateError(ValueError):
    """Raised when ``questioning_templates.json`` contains invalid data."""


@dataclass
class GuidedQuestion:
    question: str
    kind: str
    purpose: str
    priority: Priority = Priority.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "question": self.question,
            "purpose": self.purpose,
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuidedQuestion":
        return cls(
            question=str(data["question"]),
            kind=str(data.get("type") or "diagnostic"),
            purpose=str(data.get("purpose") or ""),
            priority=Priority(data.get("priority") or "medium"),
        )


@dataclass
class GuidedQuestionSet:
    immediate: List[GuidedQuestion] = field(default_factory=list)
    follow_up: List[GuidedQuestion] = field(default_factory=list)
    reflection: List[GuidedQuestion] = field(default_factory=list)
    strategy: str = DEFAULT_STRATEGY

    @property
    def total_questions(self) -> int:
        return len(self.immediate) + len(self.follow_up) + len(self.reflection)

    def ordered(self) -> List[tuple[str, GuidedQuestion]]:
        """All questions with their bucket name, in asking order."""
        return (
            [("immediate", q) for q in self.immediate]
            + [("followUp", q) for q in self.follow_up]
            + [("reflection", q) for q in self.reflection]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediate": [q.to_dict() for q in self.immediate],
            "followUp": [q.to_dict() for q in self.follow_up],
            "reflection": [q.to_dict() for q in self.reflection],
            "totalQuestions": self.total_questions,
            "questioningStrategy": self.strategy,
        }


class QuestioningTemplates:
    """Diagnostic and mistake-specific question tables keyed by mistake type."""

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent.parent / "data"
        self.path = Path(path) if path is not None else base_path / "questioning_templates.json"
        self.diagnostic: Dict[MistakeType, List[GuidedQuestion]] = {}
        self.specific: Dict[MistakeType, GuidedQuestion] = {}
        self.default_specific: Optional[GuidedQuestion] = None
        self.reload()

    def reload(self) -> None:
        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, dict):
            raise QuestioningTemplateError("Questioning templates must be a JSON object")

        diagnostic: Dict[MistakeType, List[GuidedQuestion]] = {}
        for key, entries in (raw.get("diagnostic") or {}).items():
            mistake_type = self._mistake_type(key)
            if not isinstance(entries, list) or not entries:
                raise QuestioningTemplateError(f"Diagnostic questions for {key} must be a non-empty list")
            diagnostic[mistake_type] = [self._question(entry, "diagnostic", key) for entry in entries]

        specific: Dict[MistakeType, GuidedQuestion] = {}
        default_specific = None
        for key, entry in (raw.get("specific") or {}).items():
            question = self._question(entry, "probing", key)
            if key == "default":
                default_specific = question
            else:
                specific[self._mistake_type(key)] = question

        self.diagnostic = diagnostic
        self.specific = specific
        self.default_specific = default_specific

    @staticmethod
    def _mistake_type(key: str) -> MistakeType:
        try:
            return MistakeType(key)
        except ValueError as exc:
            raise QuestioningTemplateError(f"Unknown mistake type in questioning templates: {key}") from exc

    @staticmethod
    def _question(entry: Any, kind: str, key: str) -> GuidedQuestion:
        if not isinstance(entry, dict) or not str(entry.get("question", "")).strip():
            raise QuestioningTemplateError(f"Question for {key} needs a non-empty 'question'")
        try:
            priority = Priority(entry.get("priority") or "medium")
        except ValueError as exc:
            raise QuestioningTemplateError(f"Question for {key} has invalid priority") from exc
        return GuidedQuestion(
            question=str(entry["question"]).strip(),
            kind=kind,
            purpose=str(entry.get("purpose") or ""),
            priority=priority,
        )


def personalize(question: str, step: StepContext) -> str:
    return question.replace("{step}", step.title or "this step").replace(
        "{subject}", (step.subject or "the topic").replace("_", " ")
    )


def extract_questions(text: str) -> List[str]:
    """Return the sentences of ``text`` that end in a question mark."""
    return [match.strip() for match in _QUESTION_SENTENCE.findall(text or "") if len(match.strip()) > 1]


class GuidedQuestionGenerator:
    def __init__(
        self,
        templates: QuestioningTemplates,
        scaffolding: ScaffoldingEngine,
        generator: Optional[TextGenerator] = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 200,
    ):
        self.templates = templates
        self.scaffolding = scaffolding
        self.generator = generator
        self.temperature = temperature
        self.max_tokens = max_tokens

    def generate(
        self,
        classification: MistakeClassification,
        step: StepContext,
        emotional_state: Optional[str] = None,
    ) -> GuidedQuestionSet:
        questions: List[GuidedQuestion] = []
        questions.extend(self.diagnostic_questions(classification, step))
        questions.extend(self.specific_questions(classification))
        questions.extend(self.socratic_questions(classification, step, emotional_state))
        questions.extend(self.metacognitive_questions(classification))

        ordered = self.sequence(questions)
        return GuidedQuestionSet(
            immediate=ordered[:IMMEDIATE_COUNT],
            follow_up=ordered[IMMEDIATE_COUNT:IMMEDIATE_COUNT + FOLLOW_UP_COUNT],
            reflection=ordered[IMMEDIATE_COUNT + FOLLOW_UP_COUNT:],
            strategy=self.questioning_strategy(classification.severity),
        )

    def diagnostic_questions(self, classification: MistakeClassification, step: StepContext) -> List[GuidedQuestion]:
        return [
            GuidedQuestion(personalize(q.question, step), "diagnostic", q.purpose, q.priority)
            for q in self.templates.diagnostic.get(classification.primary_type, [])
        ]

    def specific_questions(self, classification: MistakeClassification) -> List[GuidedQuestion]:
        question = self.templates.specific.get(classification.primary_type, self.templates.default_specific)
        return [question] if question is not None else []

    def socratic_questions(
        self,
        classification: MistakeClassification,
        step: StepContext,
        emotional_state: Optional[str] = None,
    ) -> List[GuidedQuestion]:
        try:
            base = self.scaffolding.build(
                MISTAKE_ANALYSIS,
                content=step.prompt,
                subject=step.subject,
                emotional_state=emotional_state,
                difficulty=step.difficulty,
                seed=step.step_number,
            )
        except KeyError:
            logger.warning("No mistake-analysis scaffolding available", exc_info=True)
            return []

        text = base.text
        if self.generator is not None:
            request = self.scaffolding.generation_request(
                base,
                step_prompt=step.prompt,
                session_fields={"step": step.step_number},
                focus=f"{classification.primary_type.value} mistake, {classification.severity.value} severity",
            )
            result = self.generator.generate(request, temperature=self.temperature, max_tokens=self.max_tokens)
            if result.ok:
                text = result.text
            else:
                logger.info("Socratic phrasing unavailable (%s); using template text", result.error)

        return [
            GuidedQuestion(sentence, "socratic", "Guide understanding through questioning", Priority.HIGH)
            for sentence in extract_questions(text)
        ]

    @staticmethod
    def metacognitive_questions(classification: MistakeClassification) -> List[GuidedQuestion]:
        questions = []
        if classification.severity in (Severity.HIGH, Severity.CRITICAL):
            questions.append(
                GuidedQuestion(
                    "What strategies could you use to check your work in the future?",
                    "metacognitive",
                    "Develop self-monitoring skills",
                    Priority.HIGH,
                )
            )
        questions.append(
            GuidedQuestion(
                "What did you learn from working through this mistake?",
                "metacognitive",
                "Consolidate learning from error",
                Priority.MEDIUM,
            )
        )
        questions.append(
            GuidedQuestion(
                "How will you approach similar problems differently next time?",
                "metacognitive",
                "Transfer learning to future situations",
                Priority.MEDIUM,
            )
        )
        return questions

    @staticmethod
    def sequence(questions: List[GuidedQuestion]) -> List[GuidedQuestion]:
        """Drop repeated questions, then order by priority keeping insertion order on ties."""
        seen = set()
        unique = []
        for question in questions:
            key = question.question.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(question)
        return sorted(unique, key=lambda q: q.priority.rank)

    @staticmethod
    def questioning_strategy(severity: Severity) -> str:
        return STRATEGY_BY_SEVERITY.get(severity, DEFAULT_STRATEGY)
