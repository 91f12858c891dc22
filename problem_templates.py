"""Problem template library loader."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

STEP_TYPES = ("analyze", "plan", "execute", "verify", "reflect")
DEFAULT_STEP_TYPE = "execute"


class TemplateValidationError(ValueError):
    """Raised when ``problem_templates.json`` contains invalid data."""


@dataclass(frozen=True)
class TemplateStep:
    title: Optional[str]
    type: str
    prompt: str
    expected_response: Optional[str] = None
    scaffolding_guidance: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "type": self.type,
            "prompt": self.prompt,
            "expected_response": self.expected_response,
            "scaffolding_guidance": self.scaffolding_guidance,
        }


@dataclass(frozen=True)
class ProblemTemplate:
    """Authored problem content; read-only to the session engine."""

    id: str
    title: str
    subject: str
    problem_statement: str
    steps: Sequence[TemplateStep]
    problem_type: str = "general"
    difficulty_level: int = 1
    problem_data: Dict[str, Any] = field(default_factory=dict)
    keywords: Sequence[str] = ()
    is_active: bool = True

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "subject": self.subject,
            "problem_type": self.problem_type,
            "difficulty_level": self.difficulty_level,
            "problem_statement": self.problem_statement,
            "problem_data": dict(self.problem_data),
            "steps": [step.to_dict() for step in self.steps],
            "keywords": list(self.keywords),
            "is_active": self.is_active,
        }


def build_problem_instance(template: Dict[str, Any]) -> Dict[str, Any]:
    """Snapshot a stored template into the problem a session works from.

    Steps are renumbered from 1; a missing title becomes ``Step n`` and a
    missing type becomes ``execute``.
    """
    steps = []
    for number, step in enumerate(template.get("steps") or [], start=1):
        steps.append(
            {
                "step_number": number,
                "title": step.get("title") or f"Step {number}",
                "type": step.get("type") or DEFAULT_STEP_TYPE,
                "prompt": step.get("prompt") or "",
                "expected_response": step.get("expected_response"),
                "scaffolding_guidance": step.get("scaffolding_guidance"),
            }
        )
    return {
        "template_id": template["id"],
        "title": template["title"],
        "statement": template["problem_statement"],
        "data": template.get("problem_data") or {},
        "subject": template.get("subject") or "general",
        "problem_type": template.get("problem_type") or "general",
        "difficulty_level": int(template.get("difficulty_level") or 1),
        "keywords": list(template.get("keywords") or []),
        "steps": steps,
    }


class ProblemTemplateLibrary:
    """Load authored problem templates from ``data/problem_templates.json``."""

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent / "data"
        self.path = Path(path) if path is not None else base_path / "problem_templates.json"
        self._templates: List[ProblemTemplate] = []
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload templates from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Problem template file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, list):
            raise TemplateValidationError("Problem template file must contain a JSON list")

        templates: List[ProblemTemplate] = []
        seen: set[str] = set()
        for idx, entry in enumerate(raw, start=1):
            template = self._parse_template(idx, entry)
            if template.id in seen:
                raise TemplateValidationError(f"Duplicate problem template id detected: {template.id}")
            seen.add(template.id)
            templates.append(template)

        self._templates = templates

    @staticmethod
    def _parse_template(idx: int, entry: Any) -> ProblemTemplate:
        if not isinstance(entry, dict):
            raise TemplateValidationError(f"Entry #{idx} must be a JSON object")
        for key in ("id", "title", "subject", "problem_statement"):
            if not str(entry.get(key, "")).strip():
                raise TemplateValidationError(f"Entry #{idx} is missing a non-empty '{key}'")
        template_id = str(entry["id"]).strip()

        try:
            difficulty = int(entry.get("difficulty_level", 1))
        except (TypeError, ValueError) as exc:
            raise TemplateValidationError(f"Template {template_id} has non-numeric difficulty_level") from exc
        if not 1 <= difficulty <= 5:
            raise TemplateValidationError(f"Template {template_id} difficulty_level must be within [1, 5]")

        raw_steps = entry.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise TemplateValidationError(f"Template {template_id} needs a non-empty 'steps' list")
        steps = []
        for number, step in enumerate(raw_steps, start=1):
            if not isinstance(step, dict) or not str(step.get("prompt", "")).strip():
                raise TemplateValidationError(f"Template {template_id} step {number} needs a non-empty 'prompt'")
            step_type = str(step.get("type") or DEFAULT_STEP_TYPE)
            if step_type not in STEP_TYPES:
                raise TemplateValidationError(
                    f"Template {template_id} step {number} has unknown type '{step_type}'"
                )
            steps.append(
                TemplateStep(
                    title=step.get("title"),
                    type=step_type,
                    prompt=str(step["prompt"]).strip(),
                    expected_response=step.get("expected_response"),
                    scaffolding_guidance=step.get("scaffolding_guidance"),
                )
            )

        return ProblemTemplate(
            id=template_id,
            title=str(entry["title"]).strip(),
            subject=str(entry["subject"]).strip(),
            problem_statement=str(entry["problem_statement"]).strip(),
            steps=tuple(steps),
            problem_type=str(entry.get("problem_type") or "general"),
            difficulty_level=difficulty,
            problem_data=dict(entry.get("problem_data") or {}),
            keywords=tuple(str(word) for word in entry.get("keywords") or ()),
            is_active=bool(entry.get("is_active", True)),
        )

    # ------------------------------------------------------------------
    @property
    def templates(self) -> List[ProblemTemplate]:
        return list(self._templates)

    def get(self, template_id: str) -> Optional[ProblemTemplate]:
        for template in self._templates:
            if template.id == template_id:
                return template
        return None


def ensure_seed_templates(store, library: Optional[ProblemTemplateLibrary] = None) -> int:
    """Upsert every library template into ``store``; returns the count."""
    library = library or ProblemTemplateLibrary()
    for template in library.templates:
        store.upsert_template(template.to_record())
    logger.info("Synced %d problem templates into %s", len(library.templates), store.database)
    return len(library.templates)
