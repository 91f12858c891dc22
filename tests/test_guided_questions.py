"""Test cases for guided question generation and remediation plans."""

import json

import pytest

from engines.base import GenerationResult, TextGenerator
from engines.context import StepContext
from engines.guided_questions import (
    GuidedQuestion,
    GuidedQuestionGenerator,
    QuestioningTemplateError,
    QuestioningTemplates,
    extract_questions,
)
from engines.mistake_classifier import MistakeClassification
from engines.remediation import RemediationStrategyBuilder
from engines.scaffolding import ScaffoldingEngine
from engines.taxonomy import MistakeType, Priority, Severity


class FakeGenerator(TextGenerator):
    def __init__(self, text):
        self.text = text
        self.prompts = []

    def generate(self, prompt, *, temperature=0.7, max_tokens=300):
        self.prompts.append(prompt)
        return GenerationResult(ok=True, text=self.text)


class FailingGenerator(TextGenerator):
    def __init__(self):
        self.calls = 0

    def generate(self, prompt, *, temperature=0.7, max_tokens=300):
        self.calls += 1
        return GenerationResult.failure("timeout")


STEP = StepContext(step_number=3, prompt="Do the multiplication.", title="Multiply", subject="mathematics", difficulty=4)


def _classification(mistake_type=MistakeType.COMPUTATIONAL, severity=Severity.MEDIUM):
    return MistakeClassification(
        primary_type=mistake_type,
        severity=severity,
        confidence=0.6,
        indicators=["arithmetic_mistake"],
        root_causes=["Arithmetic calculation errors"],
    )


def _generator(text_generator=None):
    return GuidedQuestionGenerator(QuestioningTemplates(), ScaffoldingEngine(), text_generator)


def test_extract_questions_keeps_question_sentences():
    text = "Good start. What do you notice first? Try again!\nWhich step comes next?"
    assert extract_questions(text) == ["What do you notice first?", "Which step comes next?"]
    assert extract_questions("") == []


@pytest.mark.parametrize("mistake_type", list(MistakeType))
def test_buckets_respect_sizes(mistake_type):
    questions = _generator().generate(_classification(mistake_type), STEP)

    assert 1 <= len(questions.immediate) <= 2
    assert len(questions.follow_up) <= 3
    assert questions.total_questions == len(questions.immediate) + len(questions.follow_up) + len(questions.reflection)


def test_questions_are_sorted_by_priority_and_deduplicated():
    questions = _generator(FakeGenerator("Which calculation in Multiply are you least sure about? Fine."))
    result = questions.generate(_classification(), STEP)
    ordered = [q for _, q in result.ordered()]

    ranks = [q.priority.rank for q in ordered]
    assert ranks == sorted(ranks)
    texts = [q.question.lower() for q in ordered]
    assert len(texts) == len(set(texts))
    # diagnostic template text is personalised with the step title
    assert ordered[0].question == "Which calculation in Multiply are you least sure about?"


def test_generated_socratic_questions_are_used():
    fake = FakeGenerator("What is six times four? How can you check it?")
    result = _generator(fake).generate(_classification(), STEP)
    socratic = [q.question for _, q in result.ordered() if q.kind == "socratic"]

    assert socratic == ["What is six times four?", "How can you check it?"]
    assert "computational mistake" in fake.prompts[0]


def test_generator_failure_falls_back_to_template_questions():
    failing = FailingGenerator()
    result = _generator(failing).generate(_classification(), STEP)
    socratic = [q.question for _, q in result.ordered() if q.kind == "socratic"]

    assert failing.calls == 1
    assert socratic
    assert all(q.endswith("?") for q in socratic)


def test_self_monitoring_question_only_for_serious_mistakes():
    low = _generator().metacognitive_questions(_classification(severity=Severity.LOW))
    high = _generator().metacognitive_questions(_classification(severity=Severity.HIGH))

    assert len(low) == 2
    assert len(high) == 3
    assert high[0].priority is Priority.HIGH


@pytest.mark.parametrize(
    "severity, strategy",
    [
        (Severity.CRITICAL, "intensive_support"),
        (Severity.HIGH, "guided_discovery"),
        (Severity.MEDIUM, "socratic_questioning"),
        (Severity.LOW, "supportive"),
    ],
)
def test_questioning_strategy_follows_severity(severity, strategy):
    assert _generator().generate(_classification(severity=severity), STEP).strategy == strategy


def test_question_round_trip_through_dict():
    question = GuidedQuestion("Why?", "probing", "Probe reasoning", Priority.LOW)
    assert GuidedQuestion.from_dict(question.to_dict()) == question


def test_templates_reject_unknown_types(tmp_path):
    path = tmp_path / "questions.json"
    path.write_text(json.dumps({"diagnostic": {"sloppy": [{"question": "Why?"}]}}), encoding="utf-8")
    with pytest.raises(QuestioningTemplateError):
        QuestioningTemplates(path)


def test_remediation_plan_is_fully_populated():
    plan = RemediationStrategyBuilder().build(_classification(severity=Severity.HIGH), STEP)
    payload = plan.to_dict()

    assert set(payload) == {"immediate", "shortTerm", "longTerm", "adaptations"}
    assert set(payload["immediate"]) == {"actions", "explanations", "examples"}
    assert set(payload["shortTerm"]) == {"practice", "concepts", "skills"}
    assert set(payload["longTerm"]) == {"recommendations", "resources", "monitoring"}
    assert all(values for bucket in ("immediate", "shortTerm", "longTerm") for values in payload[bucket].values())
    assert "Break down into smaller steps" in payload["adaptations"]
    assert "Use visual aids if helpful" in payload["adaptations"]
    assert payload["longTerm"]["resources"] == ["Additional learning materials on mathematics"]


def test_remediation_without_step_context():
    plan = RemediationStrategyBuilder().build(_classification(MistakeType.STRATEGIC, Severity.LOW))
    assert plan.immediate["actions"] == ["List two different ways to approach this step"]
    assert plan.adaptations == ["Offer a quick self-check prompt"]
