"""Scaffolding intervention dispatch for problem-solving sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engines.base import TextGenerator
from engines.context import SessionContext, StepContext
from engines.guided_questions import GuidedQuestionSet
from engines.response_analyzer import ResponseAnalysis
from engines.scaffolding import MISTAKE_ANALYSIS, PROBLEM_SOLVING, ScaffoldingEngine
from engines.taxonomy import HintLevel, InterventionType, Quality, Trigger, Understanding

logger = logging.getLogger(__name__)

FALLBACK_SCAFFOLDING = (
    "Let's work through this step by step. Take your time and think about what the question is asking."
)
FALLBACK_STEP_GUIDANCE = "Let's begin this step. Read the prompt carefully and think about your approach."
DIRECT_HINT_FALLBACK = "Think about breaking this down into smaller parts. What do you know for certain?"
MISTAKE_SUFFIX = "\n\nI notice there might be some confusion with {types}. Let's work through this together."
CONFUSION_SUFFIX = (
    "\n\nLet's take this one piece at a time. What part of the question makes the most sense to you right now?"
)

GENERATED_CONFIDENCE = 0.8
TEMPLATE_CONFIDENCE = 0.6
FALLBACK_CONFIDENCE = 0.5

TYPE_BY_TRIGGER = {
    Trigger.STUDENT_REQUESTED: InterventionType.HINT,
    Trigger.MISTAKE_DETECTED: InterventionType.CORRECTION,
    Trigger.CONFUSION_DETECTED: InterventionType.CLARIFICATION,
    Trigger.STEP_INTRODUCTION: InterventionType.GUIDANCE,
}


@dataclass
class Intervention:
    type: InterventionType
    content: str
    trigger: Trigger
    style: str
    confidence: float
    strategy: Optional[str] = None
    purpose: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    questions: Optional[GuidedQuestionSet] = None

    @property
    def counts_as_hint(self) -> bool:
        return self.type.counts_as_hint

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type.value,
            "content": self.content,
            "trigger": self.trigger.value,
            "style": self.style,
            "confidence": self.confidence,
        }
        if self.strategy:
            payload["strategy"] = self.strategy
        if self.purpose:
            payload["purpose"] = self.purpose
        return payload


def decide_trigger(help_requested: bool, analysis: ResponseAnalysis) -> Optional[Trigger]:
    """First matching row of the decision table, or None when no help is due."""
    if help_requested:
        return Trigger.STUDENT_REQUESTED
    if analysis.quality is Quality.INCORRECT:
        return Trigger.MISTAKE_DETECTED
    if analysis.understanding is Understanding.CONFUSED:
        return Trigger.CONFUSION_DETECTED
    return None


class ScaffoldingInterventionDispatcher:
    """Choose and phrase the help surfaced after a submission.

    The text generator is optional and unreliable; every path has a static
    fallback so an intervention is always produced.
    """

    def __init__(
        self,
        scaffolding: ScaffoldingEngine,
        generator: Optional[TextGenerator] = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 300,
    ):
        self.scaffolding = scaffolding
        self.generator = generator
        self.temperature = temperature
        self.max_tokens = max_tokens

    def dispatch(
        self,
        trigger: Trigger,
        analysis: ResponseAnalysis,
        step: StepContext,
        session: SessionContext,
        *,
        hint_level: HintLevel = HintLevel.GENTLE,
    ) -> Intervention:
        questions = analysis.guided_questions
        if questions is not None and questions.immediate:
            return self._guided_questioning(trigger, analysis, questions)
        return self._scaffolding(trigger, analysis, step, session, hint_level)

    def _guided_questioning(
        self, trigger: Trigger, analysis: ResponseAnalysis, questions: GuidedQuestionSet
    ) -> Intervention:
        first = questions.immediate[0]
        classification = analysis.mistake_analysis.classification if analysis.mistake_analysis else None
        return Intervention(
            type=InterventionType.GUIDED_QUESTIONING,
            content=first.question,
            trigger=trigger,
            style="adaptive",
            confidence=GENERATED_CONFIDENCE,
            strategy=questions.strategy,
            purpose=first.purpose,
            metadata={
                "mistakeType": classification.primary_type.value if classification else None,
                "severity": classification.severity.value if classification else None,
                "hasGuidedQuestions": True,
            },
            questions=questions,
        )

    def _scaffolding(
        self,
        trigger: Trigger,
        analysis: Optional[ResponseAnalysis],
        step: StepContext,
        session: SessionContext,
        hint_level: HintLevel,
    ) -> Intervention:
        kind = MISTAKE_ANALYSIS if trigger is Trigger.MISTAKE_DETECTED else PROBLEM_SOLVING
        try:
            base = self.scaffolding.build(
                kind,
                content=step.prompt,
                subject=step.subject,
                emotional_state=session.emotional_state,
                difficulty=step.difficulty,
                seed=session.hints_requested + step.step_number,
            )
        except KeyError:
            logger.warning("Scaffolding template missing for %s", kind, exc_info=True)
            return self._fallback(trigger)

        text = base.text
        confidence = TEMPLATE_CONFIDENCE
        if self.generator is not None:
            request = self.scaffolding.generation_request(
                base,
                step_prompt=step.prompt,
                session_fields=session.as_prompt_fields(),
                focus=trigger.value.replace("_", " "),
            )
            result = self.generator.generate(request, temperature=self.temperature, max_tokens=self.max_tokens)
            if not result.ok or not result.text.strip():
                logger.warning("Scaffolding generation failed for session %s: %s", session.session_id, result.error)
                return self._fallback(trigger)
            text = result.text.strip()
            confidence = GENERATED_CONFIDENCE

        intervention_type = TYPE_BY_TRIGGER[trigger]
        if trigger is Trigger.STUDENT_REQUESTED and hint_level is HintLevel.DIRECT:
            text = step.scaffolding_guidance or DIRECT_HINT_FALLBACK
        elif trigger is Trigger.MISTAKE_DETECTED and analysis is not None and analysis.mistakes:
            types = ", ".join(dict.fromkeys(mistake.type.value for mistake in analysis.mistakes))
            text += MISTAKE_SUFFIX.format(types=types)
        elif trigger is Trigger.CONFUSION_DETECTED:
            text += CONFUSION_SUFFIX

        return Intervention(
            type=intervention_type,
            content=text,
            trigger=trigger,
            style=base.style,
            confidence=confidence,
            metadata={"hintLevel": hint_level.value} if trigger is Trigger.STUDENT_REQUESTED else {},
        )

    @staticmethod
    def _fallback(trigger: Trigger) -> Intervention:
        return Intervention(
            type=InterventionType.GUIDANCE,
            content=FALLBACK_SCAFFOLDING,
            trigger=trigger,
            style="SUPPORTIVE",
            confidence=FALLBACK_CONFIDENCE,
            metadata={"fallback": True},
        )

    def hint(self, level: HintLevel, step: StepContext, session: SessionContext) -> Intervention:
        """Help requested outside a submission.

        Gentle and moderate hints use the scaffolding hint lines; a direct
        hint hands over the step's authored guidance.
        """
        if level is HintLevel.DIRECT:
            return Intervention(
                type=InterventionType.HINT,
                content=step.scaffolding_guidance or DIRECT_HINT_FALLBACK,
                trigger=Trigger.STUDENT_REQUESTED,
                style="DIRECT",
                confidence=TEMPLATE_CONFIDENCE,
                metadata={"hintLevel": level.value},
            )
        intervention = self._scaffolding(Trigger.STUDENT_REQUESTED, None, step, session, level)
        hint_line = self.scaffolding.hint_text(
            level.value,
            prompt=step.prompt,
            subject=step.subject,
            emotional_state=session.emotional_state,
            difficulty=step.difficulty,
        )
        if hint_line and intervention.type is InterventionType.HINT:
            intervention.content = f"{intervention.content}\n\n{hint_line}"
        # an explicit request is logged and counted as a hint even on fallback text
        intervention.type = InterventionType.HINT
        return intervention

    def step_guidance(self, step: StepContext, session: SessionContext) -> Intervention:
        """Introductory guidance for ``step``; template text only."""
        try:
            base = self.scaffolding.build(
                PROBLEM_SOLVING,
                content=step.prompt,
                subject=step.subject,
                emotional_state=session.emotional_state,
                difficulty=step.difficulty,
                seed=step.step_number,
            )
        except KeyError:
            logger.warning("No step guidance template; using fallback", exc_info=True)
            return Intervention(
                type=InterventionType.GUIDANCE,
                content=FALLBACK_STEP_GUIDANCE,
                trigger=Trigger.STEP_INTRODUCTION,
                style="BALANCED",
                confidence=FALLBACK_CONFIDENCE,
            )
        return Intervention(
            type=InterventionType.GUIDANCE,
            content=base.text,
            trigger=Trigger.STEP_INTRODUCTION,
            style=base.style,
            confidence=TEMPLATE_CONFIDENCE,
        )


def pending_questions(questions: GuidedQuestionSet) -> List[Dict[str, Any]]:
    """Flatten a question set into the persisted asking order."""
    return [dict(question.to_dict(), bucket=bucket) for bucket, question in questions.ordered()]
