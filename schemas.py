"""Pydantic request and response models for the problem-solving API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

__all__ = [
    "StartSessionRequest",
    "StartSessionResponse",
    "StepResponseRequest",
    "StepResponseResult",
    "HintRequest",
    "HintResponse",
    "StudentRequest",
    "SessionTransitionResponse",
    "MistakeAnalysisRequest",
    "GuidedAnswerRequest",
    "GuidedAnswerResponse",
    "MistakeSummary",
    "SessionList",
]


class StartSessionRequest(BaseModel):
    student_id: str = Field(min_length=1)
    template_id: str = Field(min_length=1)
    emotional_state: str = "neutral"


class StartSessionResponse(BaseModel):
    sessionId: str
    problemInstance: Dict[str, Any]
    currentStep: int
    totalSteps: int
    firstStepGuidance: Dict[str, Any]
    startedAt: str


class StepResponseRequest(BaseModel):
    """A student's answer to the current step."""
    student_id: str = Field(min_length=1)
    response: str
    request_help: bool = False


class StepResponseResult(BaseModel):
    sessionId: str
    stepNumber: int
    analysis: Dict[str, Any]
    intervention: Optional[Dict[str, Any]] = None
    guidedQuestioning: Optional[Dict[str, Any]] = None
    stepCompleted: bool
    sessionCompleted: bool
    currentStep: int
    nextStep: Optional[Dict[str, Any]] = None
    completion: Optional[Dict[str, Any]] = None


class HintRequest(BaseModel):
    student_id: str = Field(min_length=1)
    level: Literal["gentle", "moderate", "direct"] = "gentle"


class HintResponse(BaseModel):
    hint: str
    hintLevel: str
    style: str
    totalHintsUsed: int


class StudentRequest(BaseModel):
    student_id: str = Field(min_length=1)


class SessionTransitionResponse(BaseModel):
    sessionId: str
    status: str


class MistakeAnalysisRequest(BaseModel):
    student_id: str = Field(min_length=1)
    response: str


class GuidedAnswerRequest(BaseModel):
    student_id: str = Field(min_length=1)
    answer: str


class GuidedAnswerResponse(BaseModel):
    questioningId: str
    strategy: str
    answered: int
    remaining: int
    completed: bool
    nextQuestion: Optional[Dict[str, Any]] = None


class MistakeSummary(BaseModel):
    student_id: str
    total: int
    corrected: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]


class SessionList(BaseModel):
    sessions: List[Dict[str, Any]]
