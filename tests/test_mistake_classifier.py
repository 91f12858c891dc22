"""Test cases for mistake pattern loading and classification."""

import json

import pytest

from engines.context import StepContext, extract_keywords
from engines.mistake_classifier import (
    DEFAULT_ROOT_CAUSE,
    MistakeClassifier,
    ROOT_CAUSES,
)
from engines.mistake_patterns import MistakePatternConfigError, MistakePatternRegistry
from engines.taxonomy import MistakeType, Severity


@pytest.fixture(scope="module")
def classifier():
    return MistakeClassifier(MistakePatternRegistry())


def _step(subject="mathematics", keywords=None):
    return StepContext(
        step_number=2,
        prompt="Calculate the area.",
        title="Area",
        subject=subject,
        keywords=list(keywords or ["area", "multiply"]),
        difficulty=2,
    )


def _write(tmp_path, payload):
    path = tmp_path / "patterns.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_registry_scopes_patterns_by_family():
    registry = MistakePatternRegistry()

    assert registry.family_for("Algebra") == "mathematics"
    assert registry.family_for("history") == "general"
    assert registry.family_for(None) == "general"
    names = [pattern.name for pattern in registry.patterns_for("math")]
    assert names == ["calculation_error", "order_of_operations"]
    assert [p.name for p in registry.patterns_for("history")] == ["incomplete_response", "no_reasoning", "guessing"]


def test_registry_rejects_invalid_files(tmp_path):
    with pytest.raises(MistakePatternConfigError):
        MistakePatternRegistry(_write(tmp_path, {"patterns": {"mathematics": []}}))
    with pytest.raises(MistakePatternConfigError):
        MistakePatternRegistry(
            _write(tmp_path, {"patterns": {"general": [{"name": "x", "type": "sloppy", "pattern": "x"}]}})
        )
    with pytest.raises(MistakePatternConfigError):
        MistakePatternRegistry(
            _write(tmp_path, {"patterns": {"general": [{"name": "x", "type": "careless", "pattern": "("}]}})
        )
    with pytest.raises(FileNotFoundError):
        MistakePatternRegistry(tmp_path / "missing.json")


def test_arithmetic_expression_votes_computational(classifier):
    result = classifier.classify("6 * 4 = 26", "Multiply six by four", _step())

    assert result.primary_type is MistakeType.COMPUTATIONAL
    assert "calculation_error" in result.patterns
    assert "arithmetic_mistake" in result.indicators
    assert "premature_equation" in result.indicators
    assert result.root_causes == [ROOT_CAUSES[MistakeType.COMPUTATIONAL]]


def test_short_answer_is_communication_with_low_severity(classifier):
    result = classifier.classify("idk", None, _step("general"))

    assert result.primary_type is MistakeType.COMMUNICATION
    assert result.severity is Severity.LOW
    assert result.root_causes == [DEFAULT_ROOT_CAUSE]
    # patterns 0.8, content and subject analyses default to 0.5
    assert result.confidence == pytest.approx((0.8 + 0.5 + 0.5) / 3)


def test_incomplete_response_raises_severity(classifier):
    expected = "First I would list every task, then give each task an owner because the work must be shared."
    result = classifier.classify("tasks and owners", expected, _step("history"))

    assert "incomplete_response" in result.indicators
    assert result.severity is Severity.MEDIUM


def test_short_wrong_math_answer_is_incomplete(classifier):
    result = classifier.classify("25", "The area is twenty four metres", _step())

    assert result.primary_type is MistakeType.CONCEPTUAL
    assert result.patterns == []
    assert "incomplete_response" in result.indicators
    assert result.severity is Severity.MEDIUM


def test_subject_families_do_not_inherit_general_patterns(classifier):
    for subject in ("mathematics", "biology", "writing"):
        result = classifier.classify("idk", None, _step(subject))
        assert result.primary_type is MistakeType.CONCEPTUAL
        assert result.patterns == []


def test_no_votes_defaults_to_conceptual(classifier):
    result = classifier.classify(
        "The hypothesis is that sunlight matters so the plants grow", "A hypothesis", _step("science")
    )
    assert result.primary_type is MistakeType.CONCEPTUAL
    assert result.patterns == []


def test_science_overgeneralization_is_a_misconception(classifier):
    result = classifier.classify("Sunlight always causes growth so that is it", "", _step("biology"))

    assert result.primary_type is MistakeType.CONCEPTUAL
    assert result.misconceptions == ["Potential misconception in overgeneralization"]


def test_writing_checks_transitions(classifier):
    result = classifier.classify(
        "Gardens are good. We should build one.", "Gardens help. They teach. However they cost.", _step("writing")
    )
    assert "lack_of_transitions" in result.indicators


def test_content_analysis_reports_keyword_coverage(classifier):
    analysis = classifier.analyze_content("the area is big", "the area is six times four", ["area", "multiply"])

    assert analysis.indicators == []
    assert analysis.details["keywords"]["missing"] == ["multiply"]
    assert analysis.details["keywords"]["coverage"] == 0.5
    assert analysis.details["completeness"]["isComplete"] is True


def test_severity_table():
    assert MistakeClassifier.severity_for(["fundamental_misunderstanding", "procedural_error"]) is Severity.CRITICAL
    assert MistakeClassifier.severity_for(["conceptual_gap"]) is Severity.HIGH
    assert MistakeClassifier.severity_for(["procedural_error"]) is Severity.MEDIUM
    assert MistakeClassifier.severity_for(["too_short"]) is Severity.LOW


def test_step_keywords_fall_back_to_prompt_words():
    step = StepContext.from_records(
        {"step_number": 1, "title": "Find the area", "prompt": "What is the area of the bed?"},
        {"subject": "mathematics", "difficulty_level": 2},
    )
    assert step.keywords == ["find", "area", "bed"]
    assert extract_keywords("How can you and I do this") == []
