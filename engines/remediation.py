"""Deterministic remediation plans keyed by mistake type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engines.context import StepContext
from engines.mistake_classifier import MistakeClassification
from engines.taxonomy import MistakeType, Severity

_PLANS: Dict[MistakeType, Dict[str, List[str]]] = {
    MistakeType.CONCEPTUAL: {
        "actions": ["Revisit the core idea behind {step}"],
        "explanations": ["Let me help clarify this concept with a simpler case"],
        "examples": ["Work through a worked example of the same concept"],
        "practice": ["Practice problems that isolate the concept"],
        "concepts": ["Review the definitions used in {subject}"],
        "skills": ["Explain the concept in your own words"],
    },
    MistakeType.PROCEDURAL: {
        "actions": ["Write out each step of the procedure in order"],
        "explanations": ["Compare your steps with the standard procedure"],
        "examples": ["Follow a worked example step by step"],
        "practice": ["Practice the procedure on similar problems"],
        "concepts": ["Review why each step of the procedure is needed"],
        "skills": ["Build a checklist for the procedure"],
    },
    MistakeType.COMPUTATIONAL: {
        "actions": ["Redo the calculation one operation at a time"],
        "explanations": ["Check each arithmetic operation separately"],
        "examples": ["Estimate the answer first, then compare"],
        "practice": ["Short arithmetic drills"],
        "concepts": ["Review the order of operations"],
        "skills": ["Check answers with the inverse operation"],
    },
    MistakeType.STRATEGIC: {
        "actions": ["List two different ways to approach {step}"],
        "explanations": ["Discuss when each strategy works best"],
        "examples": ["Compare two solutions to the same problem"],
        "practice": ["Problems that can be solved more than one way"],
        "concepts": ["Review common problem-solving strategies"],
        "skills": ["Plan before solving"],
    },
    MistakeType.CARELESS: {
        "actions": ["Reread the question and your answer"],
        "explanations": ["Small slips are easy to catch with a quick review"],
        "examples": ["Spot the slip in a sample answer"],
        "practice": ["Timed practice with a review step"],
        "concepts": ["Review the details the question asks for"],
        "skills": ["Use a final check routine"],
    },
    MistakeType.COMMUNICATION: {
        "actions": ["Answer again in complete sentences"],
        "explanations": ["Show how a full explanation connects the steps"],
        "examples": ["Read a model answer with clear reasoning"],
        "practice": ["Explain solutions to a partner"],
        "concepts": ["Review the vocabulary used in {subject}"],
        "skills": ["Use connecting words like because and therefore"],
    },
    MistakeType.PREREQUISITE: {
        "actions": ["Review the prerequisite skill for {step}"],
        "explanations": ["Connect the new idea to something already known"],
        "examples": ["Start from an easier version of the problem"],
        "practice": ["Practice the prerequisite skill"],
        "concepts": ["Fill in the foundational concepts"],
        "skills": ["Strengthen foundational skills"],
    },
    MistakeType.METACOGNITIVE: {
        "actions": ["Explain why your answer makes sense"],
        "explanations": ["Thinking about your own thinking helps catch mistakes"],
        "examples": ["Look at an answer that explains its reasoning"],
        "practice": ["Problems that ask you to justify each step"],
        "concepts": ["Review how to check reasoning"],
        "skills": ["Self-explanation after each step"],
    },
}

_LONG_TERM = {
    "recommendations": ["Regular practice sessions"],
    "resources": ["Additional learning materials on {subject}"],
    "monitoring": ["Track progress on similar {type} problems"],
}

_ADAPTATIONS = {
    Severity.CRITICAL: ["Provide additional scaffolding", "Break down into smaller steps", "Review prerequisites before continuing"],
    Severity.HIGH: ["Provide additional scaffolding", "Break down into smaller steps"],
    Severity.MEDIUM: ["Break down into smaller steps"],
    Severity.LOW: ["Offer a quick self-check prompt"],
}


@dataclass
class RemediationStrategy:
    immediate: Dict[str, List[str]] = field(default_factory=dict)
    short_term: Dict[str, List[str]] = field(default_factory=dict)
    long_term: Dict[str, List[str]] = field(default_factory=dict)
    adaptations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediate": {key: list(value) for key, value in self.immediate.items()},
            "shortTerm": {key: list(value) for key, value in self.short_term.items()},
            "longTerm": {key: list(value) for key, value in self.long_term.items()},
            "adaptations": list(self.adaptations),
        }


class RemediationStrategyBuilder:
    def build(self, classification: MistakeClassification, step: Optional[StepContext] = None) -> RemediationStrategy:
        plan = _PLANS[classification.primary_type]
        fields = {
            "{step}": (step.title if step and step.title else "this step"),
            "{subject}": (step.subject.replace("_", " ") if step else "the topic"),
            "{type}": classification.primary_type.value,
        }

        def fill(items: List[str]) -> List[str]:
            filled = []
            for item in items:
                for placeholder, value in fields.items():
                    item = item.replace(placeholder, value)
                filled.append(item)
            return filled

        adaptations = list(_ADAPTATIONS[classification.severity])
        if step is not None and step.difficulty >= 4:
            adaptations.append("Use visual aids if helpful")
        return RemediationStrategy(
            immediate={key: fill(plan[key]) for key in ("actions", "explanations", "examples")},
            short_term={key: fill(plan[key]) for key in ("practice", "concepts", "skills")},
            long_term={key: fill(values) for key, values in _LONG_TERM.items()},
            adaptations=adaptations,
        )
