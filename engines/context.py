"""Read-only views of a step and its session handed to the analysis engines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

COMMON_WORDS = {"the", "and", "or", "but", "for", "with", "this", "that", "you", "are", "can", "what", "how"}
_WORD = re.compile(r"\w{3,}")


def extract_keywords(text: str) -> List[str]:
    """Distinct words of three or more letters, minus very common ones."""
    keywords: List[str] = []
    for word in _WORD.findall((text or "").lower()):
        if word not in COMMON_WORDS and word not in keywords:
            keywords.append(word)
    return keywords


@dataclass(frozen=True)
class StepContext:
    step_number: int
    prompt: str
    expected_response: Optional[str] = None
    title: Optional[str] = None
    step_type: str = "execute"
    scaffolding_guidance: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    subject: str = "general"
    difficulty: int = 1

    @classmethod
    def from_records(cls, step: Mapping[str, Any], problem: Mapping[str, Any]) -> "StepContext":
        keywords = step.get("keywords") or extract_keywords(f"{step.get('title') or ''} {step.get('prompt') or ''}")
        return cls(
            step_number=int(step["step_number"]),
            prompt=str(step.get("prompt") or ""),
            expected_response=step.get("expected_response") or None,
            title=step.get("title"),
            step_type=str(step.get("step_type") or step.get("type") or "execute"),
            scaffolding_guidance=step.get("scaffolding_guidance") or None,
            keywords=[str(word) for word in keywords],
            subject=str(problem.get("subject") or "general"),
            difficulty=int(problem.get("difficulty_level") or 1),
        )


@dataclass(frozen=True)
class SessionContext:
    """Counters of the owning session at the time of a submission."""

    session_id: str
    student_id: str
    current_step: int
    total_steps: int
    hints_requested: int = 0
    mistakes_made: int = 0
    emotional_state: str = "neutral"
    problem_title: str = ""

    @classmethod
    def from_session(cls, session: Mapping[str, Any]) -> "SessionContext":
        problem = session.get("problem_instance") or {}
        return cls(
            session_id=str(session["id"]),
            student_id=str(session["student_id"]),
            current_step=int(session["current_step"]),
            total_steps=int(session["total_steps"]),
            hints_requested=int(session.get("hints_requested") or 0),
            mistakes_made=int(session.get("mistakes_made") or 0),
            emotional_state=str(session.get("emotional_state") or "neutral"),
            problem_title=str(problem.get("title") or ""),
        )

    def as_prompt_fields(self) -> Dict[str, Any]:
        return {
            "step": self.current_step,
            "total_steps": self.total_steps,
            "hints_used": self.hints_requested,
            "mistakes": self.mistakes_made,
        }
