"""Closed vocabularies shared by the problem-solving engines."""

from __future__ import annotations

from enum import Enum


class MistakeType(str, Enum):
    CONCEPTUAL = "conceptual"
    PROCEDURAL = "procedural"
    COMPUTATIONAL = "computational"
    STRATEGIC = "strategic"
    CARELESS = "careless"
    COMMUNICATION = "communication"
    PREREQUISITE = "prerequisite"
    METACOGNITIVE = "metacognitive"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Quality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs_improvement"
    INCORRECT = "incorrect"
    INAPPROPRIATE = "inappropriate"
    UNKNOWN = "unknown"

    @property
    def is_passing(self) -> bool:
        return self in (Quality.EXCELLENT, Quality.GOOD)


class Understanding(str, Enum):
    CONFIDENT = "confident"
    PARTIAL = "partial"
    CONFUSED = "confused"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class InterventionType(str, Enum):
    HINT = "hint"
    CORRECTION = "correction"
    CLARIFICATION = "clarification"
    GUIDANCE = "guidance"
    GUIDED_QUESTIONING = "guided_questioning"

    @property
    def counts_as_hint(self) -> bool:
        return self in (InterventionType.HINT, InterventionType.GUIDED_QUESTIONING)


class Trigger(str, Enum):
    STUDENT_REQUESTED = "student_requested"
    MISTAKE_DETECTED = "mistake_detected"
    CONFUSION_DETECTED = "confusion_detected"
    STEP_INTRODUCTION = "step_introduction"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


class HintLevel(str, Enum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    DIRECT = "direct"


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


def coerce_mistake_type(value: object, default: MistakeType = MistakeType.CONCEPTUAL) -> MistakeType:
    if isinstance(value, MistakeType):
        return value
    try:
        return MistakeType(str(value))
    except ValueError:
        return default


def coerce_severity(value: object, default: Severity = Severity.LOW) -> Severity:
    if isinstance(value, Severity):
        return value
    try:
        return Severity(str(value))
    except ValueError:
        return default
