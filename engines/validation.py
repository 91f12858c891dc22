"""Error taxonomy and request validation for the problem-solving engine."""

from typing import Any, Dict, Optional

from engines.taxonomy import HintLevel

MAX_RESPONSE_LENGTH = 10000


class ProblemSolvingError(Exception):
    """Base class for errors surfaced to callers of the session engine."""

    type = "PROBLEM_SOLVING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(ProblemSolvingError):
    """Raised when a template, session or questioning dialogue is absent."""

    type = "NOT_FOUND"


class AccessDeniedError(ProblemSolvingError):
    """Raised when a student does not own the requested session."""

    type = "ACCESS_DENIED"


class InvalidStateError(ProblemSolvingError):
    """Raised when a session is not in a state that allows the operation."""

    type = "INVALID_STATE"


class InvalidStepError(ProblemSolvingError):
    """Raised when a submission targets a step other than the current one."""

    type = "INVALID_STEP"


class RequestValidationError(ProblemSolvingError):
    """Raised when a request is malformed."""

    type = "VALIDATION_ERROR"


class DependencyError(ProblemSolvingError):
    """Raised when a collaborator (store, safety gate, generator) fails."""

    type = "DEPENDENCY_ERROR"


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RequestValidationError(f"{name} is required", {"field": name})
    return value.strip()


def validate_identifier(name: str, value: Any) -> str:
    """Return ``value`` stripped, raising if it is not a non-empty string."""
    return _require_text(name, value)


def _require_free_text(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise RequestValidationError(f"{name} must be a string", {"field": name})
    text = value.strip()
    if not text:
        raise RequestValidationError(f"{name} may not be empty", {"field": name})
    if len(text) > MAX_RESPONSE_LENGTH:
        raise RequestValidationError(
            f"{name} exceeds {MAX_RESPONSE_LENGTH} characters", {"field": name}
        )
    return text


def validate_answer(answer: Any) -> str:
    """Validate a free-text answer to a guided question."""
    return _require_free_text("answer", answer)


def validate_step_submission(step_number: Any, response: Any) -> tuple[int, str]:
    """Validate a step submission and return the normalized values.

    Raises RequestValidationError if validation fails.
    """
    if isinstance(step_number, bool) or not isinstance(step_number, int):
        raise RequestValidationError(
            "step_number must be an integer", {"field": "step_number"}
        )
    if step_number < 1:
        raise RequestValidationError(
            "step_number must be at least 1", {"field": "step_number"}
        )
    text = _require_free_text("response", response)
    return step_number, text


def validate_hint_level(level: Any) -> HintLevel:
    if level is None or level == "":
        return HintLevel.GENTLE
    try:
        return HintLevel(str(level).strip().lower())
    except ValueError:
        valid = ", ".join(item.value for item in HintLevel)
        raise RequestValidationError(
            f"Invalid hint level. Must be one of: {valid}", {"field": "level"}
        )
