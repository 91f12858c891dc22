"""Problem-solving session state machine.

Each mutating operation reads an unlocked snapshot, runs the slow analysis
and text generation against it, and only then opens a unit of work that
re-checks the snapshot and applies every write at once.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from db import ProblemStore, parse_timestamp, utcnow
from engines.activity import safe_log
from engines.base import ActivityLogger
from engines.context import SessionContext, StepContext
from engines.intervention_system import (
    Intervention,
    ScaffoldingInterventionDispatcher,
    decide_trigger,
    pending_questions,
)
from engines.response_analyzer import ResponseAnalysis, ResponseAnalyzer
from engines.taxonomy import SessionStatus
from engines.validation import (
    AccessDeniedError,
    InvalidStateError,
    InvalidStepError,
    NotFoundError,
    RequestValidationError,
    validate_answer,
    validate_hint_level,
    validate_identifier,
    validate_step_submission,
)
from problem_templates import build_problem_instance

logger = logging.getLogger(__name__)

DEFAULT_QUESTIONING_TTL = timedelta(minutes=60)
RECENT_INTERVENTIONS = 5


class _NullActivityLogger(ActivityLogger):
    def log_activity(self, event: Dict[str, Any]) -> None:
        logger.debug("activity %s", event.get("type"))


def _problem_info(problem: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": problem.get("title"),
        "statement": problem.get("statement"),
        "data": problem.get("data") or {},
        "subject": problem.get("subject"),
        "difficultyLevel": problem.get("difficulty_level"),
    }


def _step_view(step: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Public view of a step; the expected response stays server side."""
    if step is None:
        return None
    return {
        "stepNumber": step["step_number"],
        "title": step.get("title"),
        "type": step.get("step_type"),
        "prompt": step.get("prompt"),
        "studentResponse": step.get("student_response"),
        "attempts": step.get("attempts", 0),
        "isCompleted": bool(step.get("is_completed")),
        "responseQuality": step.get("response_quality"),
        "accuracyScore": step.get("accuracy_score"),
        "understandingLevel": step.get("understanding_level"),
        "aiFeedback": step.get("ai_feedback"),
        "misconceptions": step.get("misconceptions") or [],
    }


def session_accuracy(steps: Iterable[Dict[str, Any]]) -> float:
    """Mean per-step accuracy; unscored steps count as zero."""
    scores = [float(step.get("accuracy_score") or 0.0) for step in steps]
    return round(sum(scores) / len(scores), 2) if scores else 0.0


class ProblemSolvingEngine:
    def __init__(
        self,
        store: ProblemStore,
        analyzer: ResponseAnalyzer,
        dispatcher: ScaffoldingInterventionDispatcher,
        activity_logger: Optional[ActivityLogger] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        questioning_ttl: timedelta = DEFAULT_QUESTIONING_TTL,
    ):
        self.store = store
        self.analyzer = analyzer
        self.dispatcher = dispatcher
        self.activity_logger = activity_logger or _NullActivityLogger()
        self.clock = clock
        self.questioning_ttl = questioning_ttl

    # ---- helpers ----
    def _log(self, event_type: str, student_id: str, session_id: Optional[str], **payload: Any) -> None:
        safe_log(
            self.activity_logger,
            {"type": event_type, "student_id": student_id, "session_id": session_id, **payload},
        )

    def _owned_session(self, session_id: str, student_id: str) -> Dict[str, Any]:
        session_id = validate_identifier("session_id", session_id)
        student_id = validate_identifier("student_id", student_id)
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Problem session not found", {"session_id": session_id})
        if session["student_id"] != student_id:
            raise AccessDeniedError("Session does not belong to this student", {"session_id": session_id})
        return session

    @staticmethod
    def _require_active(session: Dict[str, Any]) -> None:
        if session["status"] != SessionStatus.ACTIVE.value:
            raise InvalidStateError(
                "Session is not active", {"session_id": session["id"], "status": session["status"]}
            )

    @staticmethod
    def _require_current_step(session: Dict[str, Any], step_number: int) -> None:
        if step_number != session["current_step"]:
            raise InvalidStepError(
                "Invalid step number",
                {"expected": session["current_step"], "received": step_number},
            )

    def _step_context(self, session: Dict[str, Any], step_number: int) -> StepContext:
        step = self.store.get_step(session["id"], step_number)
        if step is None:
            raise InvalidStepError("Step does not exist", {"received": step_number})
        return StepContext.from_records(step, session.get("problem_instance") or {})

    # ---- lifecycle ----
    def start_session(self, student_id: str, template_id: str, emotional_state: str = "neutral") -> Dict[str, Any]:
        student_id = validate_identifier("student_id", student_id)
        template_id = validate_identifier("template_id", template_id)
        template = self.store.get_template(template_id)
        if template is None or not template.get("is_active"):
            raise NotFoundError("Problem template not found or inactive", {"template_id": template_id})

        problem = build_problem_instance(template)
        now = self.clock()
        session = {
            "id": str(uuid.uuid4()),
            "student_id": student_id,
            "template_id": template_id,
            "problem_instance": problem,
            "current_step": 1,
            "total_steps": len(problem["steps"]),
            "status": SessionStatus.ACTIVE,
            "emotional_state": emotional_state or "neutral",
            "started_at": now,
            "last_activity_at": now,
        }
        with self.store.unit_of_work() as uow:
            uow.insert_session(session)
            uow.insert_steps(session["id"], problem["steps"])

        first_step = StepContext.from_records(problem["steps"][0], problem)
        guidance = self.dispatcher.step_guidance(first_step, SessionContext.from_session(session))
        self._log("problem_session_started", student_id, session["id"], template_id=template_id)
        logger.info("Started problem session %s for template %s", session["id"], template_id)
        return {
            "sessionId": session["id"],
            "problemInstance": problem,
            "currentStep": 1,
            "totalSteps": session["total_steps"],
            "firstStepGuidance": guidance.to_dict(),
            "startedAt": now.isoformat(),
        }

    def get_session_state(self, session_id: str, student_id: str) -> Dict[str, Any]:
        session = self._owned_session(session_id, student_id)
        steps = self.store.get_steps(session["id"])
        current = next((step for step in steps if step["step_number"] == session["current_step"]), None)
        total = session["total_steps"] or 0
        progress = round(session["steps_completed"] / total * 100, 1) if total else 0.0
        questioning = self.store.active_questioning_for_step(session["id"], session["current_step"])
        return {
            "session": session,
            "problemInfo": _problem_info(session.get("problem_instance") or {}),
            "currentStep": _step_view(current),
            "allSteps": [_step_view(step) for step in steps],
            "recentInterventions": self.store.recent_interventions(session["id"], RECENT_INTERVENTIONS),
            "progressPercentage": progress,
            "activeQuestioningId": questioning["id"] if questioning else None,
        }

    def list_sessions(self, student_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        student_id = validate_identifier("student_id", student_id)
        if status is not None:
            try:
                status = SessionStatus(status).value
            except ValueError:
                raise RequestValidationError("Unknown session status", {"field": "status"})
        return self.store.list_sessions(student_id, status)

    def list_templates(self, subject: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.store.list_templates(subject)

    def pause_session(self, session_id: str, student_id: str) -> Dict[str, Any]:
        return self._transition(session_id, student_id, {SessionStatus.ACTIVE}, SessionStatus.PAUSED, "paused_at")

    def resume_session(self, session_id: str, student_id: str) -> Dict[str, Any]:
        return self._transition(session_id, student_id, {SessionStatus.PAUSED}, SessionStatus.ACTIVE, None)

    def abandon_session(self, session_id: str, student_id: str) -> Dict[str, Any]:
        return self._transition(
            session_id,
            student_id,
            {SessionStatus.ACTIVE, SessionStatus.PAUSED},
            SessionStatus.ABANDONED,
            "abandoned_at",
        )

    def _transition(
        self,
        session_id: str,
        student_id: str,
        allowed: set,
        target: SessionStatus,
        stamp: Optional[str],
    ) -> Dict[str, Any]:
        session = self._owned_session(session_id, student_id)
        now = self.clock()
        with self.store.unit_of_work() as uow:
            current = uow.get_session(session["id"])
            if current is None:
                raise NotFoundError("Problem session not found", {"session_id": session["id"]})
            if SessionStatus(current["status"]) not in allowed:
                raise InvalidStateError(
                    f"Cannot move a {current['status']} session to {target.value}",
                    {"session_id": session["id"], "status": current["status"]},
                )
            fields: Dict[str, Any] = {"status": target, "last_activity_at": now}
            if stamp:
                fields[stamp] = now
            uow.update_session(session["id"], **fields)
        self._log(f"problem_session_{target.value}", session["student_id"], session["id"])
        return {"sessionId": session["id"], "status": target.value}

    # ---- submissions ----
    def submit_step_response(
        self,
        session_id: str,
        student_id: str,
        step_number: Any,
        response: Any,
        request_help: bool = False,
    ) -> Dict[str, Any]:
        step_number, response = validate_step_submission(step_number, response)
        snapshot = self._owned_session(session_id, student_id)
        self._require_active(snapshot)
        self._require_current_step(snapshot, step_number)

        step = self._step_context(snapshot, step_number)
        context = SessionContext.from_session(snapshot)
        analysis = self.analyzer.analyze(response, step, context.emotional_state)
        trigger = decide_trigger(bool(request_help), analysis)
        intervention = self.dispatcher.dispatch(trigger, analysis, step, context) if trigger else None
        advance = trigger is None and analysis.quality.is_passing

        now = self.clock()
        questioning_id = None
        completion = None
        with self.store.unit_of_work() as uow:
            current = uow.get_session(snapshot["id"])
            if current is None:
                raise NotFoundError("Problem session not found", {"session_id": snapshot["id"]})
            self._require_active(current)
            self._require_current_step(current, step_number)

            uow.increment_attempts(current["id"], step_number)
            uow.update_step(
                current["id"],
                step_number,
                student_response=response,
                response_quality=analysis.quality,
                accuracy_score=analysis.accuracy,
                understanding_level=analysis.understanding,
                ai_feedback=analysis.feedback,
                misconceptions=analysis.misconceptions,
                updated_at=now,
            )
            self._record_mistakes(uow, current, step_number, response, analysis, now)

            hints = 0
            if intervention is not None:
                if intervention.questions is not None:
                    questioning_id = self._open_questioning(uow, current, step_number, intervention, now)
                    intervention.metadata["questioningId"] = questioning_id
                uow.insert_intervention(
                    current["id"],
                    step_number,
                    intervention_type=intervention.type,
                    content=intervention.content,
                    trigger_reason=intervention.trigger,
                    scaffolding_style=intervention.style,
                    confidence=intervention.confidence,
                    metadata=intervention.metadata,
                    created_at=now,
                )
                hints = 1 if intervention.counts_as_hint else 0
            uow.increment_counters(current["id"], hints_requested=hints, mistakes_made=len(analysis.mistakes))

            if advance:
                completion = self._complete_step(uow, current, step_number, now)
            else:
                uow.update_session(current["id"], last_activity_at=now)

        session_completed = completion is not None and completion.get("completed", False)
        next_step = None
        if advance and not session_completed:
            next_step = self._next_step_view(snapshot, step_number + 1)

        self._log(
            "problem_step_submitted",
            snapshot["student_id"],
            snapshot["id"],
            step_number=step_number,
            quality=analysis.quality.value,
            trigger=trigger.value if trigger else None,
        )
        if session_completed:
            self._log("problem_session_completed", snapshot["student_id"], snapshot["id"], **completion)

        return {
            "sessionId": snapshot["id"],
            "stepNumber": step_number,
            "analysis": analysis.to_dict(),
            "intervention": intervention.to_dict() if intervention else None,
            "guidedQuestioning": self._questioning_view(questioning_id, intervention),
            "stepCompleted": advance,
            "sessionCompleted": session_completed,
            "currentStep": step_number + 1 if advance and not session_completed else step_number,
            "nextStep": next_step,
            "completion": completion if session_completed else None,
        }

    def _record_mistakes(self, uow, session, step_number, response, analysis: ResponseAnalysis, now) -> None:
        for mistake in analysis.mistakes:
            uow.insert_mistake(
                session["id"],
                session["student_id"],
                step_number,
                mistake_type=mistake.type,
                severity=mistake.severity,
                confidence=mistake.confidence,
                root_causes=mistake.root_causes or [mistake.description],
                indicators=mistake.indicators,
                misconceptions=mistake.misconceptions,
                student_response=response,
                created_at=now,
            )

    def _open_questioning(self, uow, session, step_number: int, intervention: Intervention, now: datetime) -> str:
        questioning_id = str(uuid.uuid4())
        uow.replace_questioning(
            {
                "id": questioning_id,
                "session_id": session["id"],
                "student_id": session["student_id"],
                "step_number": step_number,
                "strategy": intervention.strategy or intervention.questions.strategy,
                "questions": pending_questions(intervention.questions),
                "cursor": 0,
                "replies": [],
                "status": "active",
                "created_at": now,
                "expires_at": now + self.questioning_ttl,
            }
        )
        return questioning_id

    @staticmethod
    def _questioning_view(questioning_id: Optional[str], intervention: Optional[Intervention]) -> Optional[Dict[str, Any]]:
        if questioning_id is None or intervention is None or intervention.questions is None:
            return None
        return {
            "questioningId": questioning_id,
            "firstQuestion": intervention.content,
            "strategy": intervention.strategy,
            "totalQuestions": intervention.questions.total_questions,
            "questions": intervention.questions.to_dict(),
        }

    def _complete_step(self, uow, session: Dict[str, Any], step_number: int, now: datetime) -> Dict[str, Any]:
        uow.update_step(session["id"], step_number, is_completed=True, completed_at=now, updated_at=now)
        uow.mark_mistakes_corrected(session["id"], step_number)
        uow.delete_questioning_for_step(session["id"], step_number)

        if step_number < session["total_steps"]:
            uow.update_session(session["id"], current_step=step_number + 1, last_activity_at=now)
            uow.increment_counters(session["id"], steps_completed=1)
            return {"completed": False}

        accuracy = session_accuracy(uow.get_steps(session["id"]))
        started = parse_timestamp(session["started_at"]) or now
        minutes = round((now - started).total_seconds() / 60)
        uow.update_session(
            session["id"],
            status=SessionStatus.COMPLETED,
            steps_completed=session["total_steps"],
            accuracy_score=accuracy,
            completion_time_minutes=minutes,
            completed_at=now,
            last_activity_at=now,
        )
        logger.info("Problem session %s completed (accuracy %.2f)", session["id"], accuracy)
        return {"completed": True, "accuracy": accuracy, "completionTimeMinutes": minutes}

    def _next_step_view(self, session: Dict[str, Any], step_number: int) -> Optional[Dict[str, Any]]:
        step = self.store.get_step(session["id"], step_number)
        if step is None:
            return None
        refreshed = self.store.get_session(session["id"]) or session
        guidance = self.dispatcher.step_guidance(
            StepContext.from_records(step, session.get("problem_instance") or {}),
            SessionContext.from_session(refreshed),
        )
        view = _step_view(step)
        view["guidance"] = guidance.to_dict()
        return view

    # ---- hints ----
    def request_hint(self, session_id: str, student_id: str, level: Any = None) -> Dict[str, Any]:
        hint_level = validate_hint_level(level)
        snapshot = self._owned_session(session_id, student_id)
        self._require_active(snapshot)
        step_number = snapshot["current_step"]
        step = self._step_context(snapshot, step_number)
        intervention = self.dispatcher.hint(hint_level, step, SessionContext.from_session(snapshot))

        now = self.clock()
        with self.store.unit_of_work() as uow:
            current = uow.get_session(snapshot["id"])
            if current is None:
                raise NotFoundError("Problem session not found", {"session_id": snapshot["id"]})
            self._require_active(current)
            uow.insert_intervention(
                current["id"],
                current["current_step"],
                intervention_type=intervention.type,
                content=intervention.content,
                trigger_reason=intervention.trigger,
                scaffolding_style=intervention.style,
                confidence=intervention.confidence,
                metadata=intervention.metadata,
                created_at=now,
            )
            uow.increment_counters(current["id"], hints_requested=1)
            uow.update_session(current["id"], last_activity_at=now)
            total_hints = int(current["hints_requested"]) + 1

        self._log("hint_requested", snapshot["student_id"], snapshot["id"], step_number=step_number, level=hint_level.value)
        return {
            "hint": intervention.content,
            "hintLevel": hint_level.value,
            "style": intervention.style,
            "totalHintsUsed": total_hints,
        }

    # ---- mistake review ----
    def analyze_mistake(self, session_id: str, student_id: str, step_number: Any, response: Any) -> Dict[str, Any]:
        step_number, response = validate_step_submission(step_number, response)
        session = self._owned_session(session_id, student_id)
        step = self._step_context(session, step_number)
        result = self.analyzer.analyze_mistake(response, step, session.get("emotional_state"))
        return {"sessionId": session["id"], "stepNumber": step_number, **result.to_dict()}

    def mistake_summary(self, student_id: str) -> Dict[str, Any]:
        return self.store.mistake_summary(validate_identifier("student_id", student_id))

    # ---- guided questioning ----
    def answer_guided_question(self, questioning_id: str, student_id: str, answer: Any) -> Dict[str, Any]:
        questioning_id = validate_identifier("questioning_id", questioning_id)
        student_id = validate_identifier("student_id", student_id)
        answer = validate_answer(answer)
        now = self.clock()
        with self.store.unit_of_work() as uow:
            record = uow.get_questioning(questioning_id)
            if record is None:
                raise NotFoundError("Guided questioning session not found", {"questioning_id": questioning_id})
            if record["student_id"] != student_id:
                raise AccessDeniedError("Guided questioning belongs to another student")
            expires_at = parse_timestamp(record["expires_at"])
            if expires_at is not None and expires_at <= now:
                raise NotFoundError("Guided questioning session expired", {"questioning_id": questioning_id})
            if record["status"] != "active":
                raise InvalidStateError("Guided questioning already completed", {"questioning_id": questioning_id})

            questions = record["questions"] or []
            cursor = int(record["cursor"])
            asked = questions[cursor] if cursor < len(questions) else {}
            replies = list(record["replies"] or [])
            replies.append(
                {
                    "question": asked.get("question"),
                    "bucket": asked.get("bucket"),
                    "answer": answer,
                    "answeredAt": now.isoformat(),
                }
            )
            cursor += 1
            status = "completed" if cursor >= len(questions) else "active"
            uow.update_questioning(questioning_id, cursor=cursor, replies=replies, status=status)

        self._log(
            "guided_question_answered",
            student_id,
            record["session_id"],
            questioning_id=questioning_id,
            answered=cursor,
        )
        return {
            "questioningId": questioning_id,
            "strategy": record["strategy"],
            "answered": cursor,
            "remaining": max(0, len(questions) - cursor),
            "completed": status == "completed",
            "nextQuestion": questions[cursor] if cursor < len(questions) else None,
        }

    def purge_expired_questioning(self) -> int:
        removed = self.store.purge_expired_questioning(self.clock())
        if removed:
            logger.info("Purged %d expired guided questioning sessions", removed)
        return removed

    # ---- health ----
    def health_check(self) -> Dict[str, Any]:
        store_ok = self.store.ping()
        generator = self.dispatcher.generator
        return {
            "status": "ok" if store_ok else "degraded",
            "store": {"ok": store_ok, "database": self.store.database},
            "textGeneration": {
                "configured": generator is not None,
                "url": getattr(generator, "url", None),
                "model": getattr(generator, "model_id", None),
            },
        }
