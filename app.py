# app.py - problem-solving tutor API
# - Thin FastAPI layer over engines.session_engine.ProblemSolvingEngine
# - Student identity comes from the request body or query string

import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException

import db
from engines.activity import StoreActivityLogger
from engines.base import TextGenerator
from engines.guided_questions import GuidedQuestionGenerator, QuestioningTemplates
from engines.intervention_system import ScaffoldingInterventionDispatcher
from engines.mistake_classifier import MistakeClassifier
from engines.mistake_patterns import MistakePatternRegistry
from engines.remediation import RemediationStrategyBuilder
from engines.response_analyzer import ResponseAnalyzer
from engines.safety import KeywordSafetyGate, StudentResponseValidator
from engines.scaffolding import ScaffoldingEngine
from engines.session_engine import ProblemSolvingEngine
from engines.text_generation import LLMTextGenerator
from engines.validation import (
    AccessDeniedError,
    DependencyError,
    InvalidStateError,
    InvalidStepError,
    NotFoundError,
    ProblemSolvingError,
    RequestValidationError,
)
from env_validation import get_env_bool, get_env_float, get_env_int
from problem_templates import ensure_seed_templates
from schemas import (
    GuidedAnswerRequest,
    GuidedAnswerResponse,
    HintRequest,
    HintResponse,
    MistakeAnalysisRequest,
    MistakeSummary,
    SessionList,
    SessionTransitionResponse,
    StartSessionRequest,
    StartSessionResponse,
    StepResponseRequest,
    StepResponseResult,
    StudentRequest,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (AccessDeniedError, 403),
    (InvalidStateError, 409),
    (InvalidStepError, 409),
    (RequestValidationError, 400),
    (DependencyError, 502),
)

_ENGINE: Optional[ProblemSolvingEngine] = None


def build_engine(
    store: db.ProblemStore,
    generator: Optional[TextGenerator] = None,
    *,
    strict_safety: Optional[bool] = None,
) -> ProblemSolvingEngine:
    """Wire the analysis components around ``store``.

    All components are created here once and shared by reference.
    """
    temperature = get_env_float("LLM_TEMPERATURE", 0.7)
    max_tokens = get_env_int("SCAFFOLD_MAX_TOKENS", 300)
    if strict_safety is None:
        strict_safety = get_env_bool("STRICT_SAFETY", False)

    scaffolding = ScaffoldingEngine()
    analyzer = ResponseAnalyzer(
        KeywordSafetyGate(strict=strict_safety),
        StudentResponseValidator(),
        MistakeClassifier(MistakePatternRegistry()),
        GuidedQuestionGenerator(
            QuestioningTemplates(),
            scaffolding,
            generator,
            temperature=temperature,
            max_tokens=max_tokens,
        ),
        RemediationStrategyBuilder(),
    )
    dispatcher = ScaffoldingInterventionDispatcher(
        scaffolding, generator, temperature=temperature, max_tokens=max_tokens
    )
    return ProblemSolvingEngine(
        store,
        analyzer,
        dispatcher,
        StoreActivityLogger(store),
        questioning_ttl=timedelta(minutes=get_env_int("GUIDED_QUESTIONING_TTL_MINUTES", 60)),
    )


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global _ENGINE
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        store = db.create_store(os.getenv("DB_PATH"), max_connections=get_env_int("DB_MAX_CONNECTIONS", 10))
        ensure_seed_templates(store)
        _ENGINE = build_engine(store, LLMTextGenerator())
        removed = _ENGINE.purge_expired_questioning()
        logger.info("Problem-solving engine ready (db=%s, purged %d stale dialogues)", store.database, removed)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Problem-Solving Tutor", version="1.0.0", lifespan=_lifespan)


def get_engine() -> ProblemSolvingEngine:
    if _ENGINE is None:
        raise HTTPException(status_code=503, detail="engine not initialised")
    return _ENGINE


def _http_error(exc: ProblemSolvingError) -> HTTPException:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())


def _call(operation, *args: Any, **kwargs: Any) -> Dict[str, Any]:
    try:
        return operation(*args, **kwargs)
    except ProblemSolvingError as exc:
        if isinstance(exc, DependencyError):
            logger.error("Dependency failure in %s: %s", operation.__name__, exc.message)
        raise _http_error(exc) from exc


@app.get("/health")
def health(engine: ProblemSolvingEngine = Depends(get_engine)):
    return engine.health_check()


@app.get("/problems/templates")
def list_templates(subject: Optional[str] = None, engine: ProblemSolvingEngine = Depends(get_engine)):
    return {"templates": _call(engine.list_templates, subject)}


@app.post("/problems/sessions", response_model=StartSessionResponse)
def start_session(body: StartSessionRequest, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.start_session, body.student_id, body.template_id, body.emotional_state)


@app.get("/problems/sessions", response_model=SessionList)
def list_sessions(
    student_id: str,
    status: Optional[str] = None,
    engine: ProblemSolvingEngine = Depends(get_engine),
):
    return {"sessions": _call(engine.list_sessions, student_id, status)}


@app.get("/problems/sessions/{session_id}")
def get_session_state(session_id: str, student_id: str, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.get_session_state, session_id, student_id)


@app.post("/problems/sessions/{session_id}/steps/{step_number}/response", response_model=StepResponseResult)
def submit_step_response(
    session_id: str,
    step_number: int,
    body: StepResponseRequest,
    engine: ProblemSolvingEngine = Depends(get_engine),
):
    return _call(
        engine.submit_step_response,
        session_id,
        body.student_id,
        step_number,
        body.response,
        request_help=body.request_help,
    )


@app.post("/problems/sessions/{session_id}/hint", response_model=HintResponse)
def request_hint(session_id: str, body: HintRequest, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.request_hint, session_id, body.student_id, body.level)


@app.post("/problems/sessions/{session_id}/pause", response_model=SessionTransitionResponse)
def pause_session(session_id: str, body: StudentRequest, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.pause_session, session_id, body.student_id)


@app.post("/problems/sessions/{session_id}/resume", response_model=SessionTransitionResponse)
def resume_session(session_id: str, body: StudentRequest, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.resume_session, session_id, body.student_id)


@app.post("/problems/sessions/{session_id}/abandon", response_model=SessionTransitionResponse)
def abandon_session(session_id: str, body: StudentRequest, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.abandon_session, session_id, body.student_id)


@app.post("/problems/sessions/{session_id}/steps/{step_number}/analyze-mistake")
def analyze_mistake(
    session_id: str,
    step_number: int,
    body: MistakeAnalysisRequest,
    engine: ProblemSolvingEngine = Depends(get_engine),
):
    return _call(engine.analyze_mistake, session_id, body.student_id, step_number, body.response)


@app.post("/guided-questioning/{questioning_id}/respond", response_model=GuidedAnswerResponse)
def answer_guided_question(
    questioning_id: str,
    body: GuidedAnswerRequest,
    engine: ProblemSolvingEngine = Depends(get_engine),
):
    return _call(engine.answer_guided_question, questioning_id, body.student_id, body.answer)


@app.get("/problems/students/{student_id}/mistakes", response_model=MistakeSummary)
def mistake_summary(student_id: str, engine: ProblemSolvingEngine = Depends(get_engine)):
    return _call(engine.mistake_summary, student_id)
