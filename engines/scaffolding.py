"""Template-based scaffolding prompts.

The templates hold the pedagogical wording; :class:`ScaffoldingEngine` picks
a style from the student's emotional state and the problem difficulty and
assembles a deterministic base text. The dispatcher may ask the text
generator to rephrase that text for the current session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

PROBLEM_SOLVING = "PROBLEM_SOLVING"
MISTAKE_ANALYSIS = "MISTAKE_ANALYSIS"

STRUGGLING_STATES = {"frustrated", "confused", "anxious"}
POSITIVE_STATES = {"confident", "engaged", "excited"}

SCAFFOLDING_TEMPLATES: Dict[str, Dict[str, Dict[str, object]]] = {
    PROBLEM_SOLVING: {
        "SOCRATIC_GUIDED": {
            "introduction": "Let's work through this step by step. I'll help guide your thinking.",
            "question_starters": [
                "What do you notice about this problem first?",
                "Can you break this down into smaller parts?",
                "What strategy might work here?",
                "How is this similar to problems you've solved before?",
            ],
            "encouragement": [
                "You're on the right track! Keep thinking...",
                "Good observation! What comes next?",
                "I can see you're making progress. Continue with that approach.",
            ],
            "hints": {
                "gentle": "Think about what you already know about {subject}.",
                "moderate": "Look again at the prompt: {prompt} Which part can you answer first?",
            },
        },
        "SIMPLE_CONCRETE": {
            "introduction": "Let's solve this together! I'll help you each step.",
            "question_starters": [
                "What numbers or facts do you see in this problem?",
                "What is the problem asking you to find?",
                "Can you show it with a picture or a small example?",
            ],
            "encouragement": [
                "Great job! You're doing wonderful!",
                "You're such a good problem solver!",
            ],
            "hints": {
                "gentle": "Look carefully at each piece of information in the problem.",
                "moderate": "Try one small piece first: {prompt}",
            },
        },
        "SOCRATIC_INDEPENDENT": {
            "introduction": "This is an interesting challenge. Let's explore it together.",
            "question_starters": [
                "What assumptions might we make about this problem?",
                "How could you approach this from multiple angles?",
                "What would happen if we changed one variable?",
            ],
            "encouragement": [
                "Your analytical approach is impressive.",
                "That's a sophisticated way to approach the problem.",
            ],
            "hints": {
                "gentle": "Consider the underlying principles of {subject}.",
                "moderate": "Which relationship in the prompt matters most? {prompt}",
            },
        },
    },
    MISTAKE_ANALYSIS: {
        "SUPPORTIVE": {
            "opening": "I notice something we can improve here. Let's take a look together.",
            "analysis_prompts": [
                "Can you walk me through your thinking on this step?",
                "What made you choose this approach?",
                "How might we verify if this answer makes sense?",
            ],
            "reinforcement": [
                "Mistakes help us learn! You're doing great.",
                "That's how we grow - by trying and improving.",
            ],
        },
        "ANALYTICAL": {
            "opening": "Let's analyze what happened here and strengthen your understanding.",
            "analysis_prompts": [
                "Where do you think the error occurred in your process?",
                "How does this connect to the fundamental concept?",
                "What strategy could prevent this type of error?",
            ],
            "reinforcement": [
                "Careful analysis like this builds real understanding.",
            ],
        },
    },
}

WORD_PROBLEM_STEPS = (
    "First, what is the problem asking us to find?",
    "What information are we given?",
    "What operation(s) do we need to use?",
)

_MATH_SUBJECTS = {"mathematics", "math", "arithmetic", "algebra", "geometry"}


@dataclass
class ScaffoldingPrompt:
    text: str
    style: str
    kind: str


def difficulty_band(difficulty: object) -> str:
    """Map a 1-5 difficulty level (or an easy/medium/hard label) to a band."""
    if isinstance(difficulty, str) and difficulty in {"easy", "medium", "hard"}:
        return difficulty
    try:
        level = int(difficulty)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "medium"
    if level <= 2:
        return "easy"
    if level >= 4:
        return "hard"
    return "medium"


def _pick(items: List[str], seed: int) -> Optional[str]:
    if not items:
        return None
    return items[seed % len(items)]


class ScaffoldingEngine:
    def __init__(self, templates: Optional[Mapping[str, Mapping[str, Mapping[str, object]]]] = None):
        self.templates = templates or SCAFFOLDING_TEMPLATES

    def choose_style(self, kind: str, emotional_state: Optional[str], difficulty: object) -> str:
        state = (emotional_state or "").lower()
        band = difficulty_band(difficulty)
        if kind == MISTAKE_ANALYSIS:
            if state in POSITIVE_STATES and band == "hard":
                return "ANALYTICAL"
            return "SUPPORTIVE"
        if state in STRUGGLING_STATES:
            return "SIMPLE_CONCRETE"
        if state in POSITIVE_STATES:
            return "SOCRATIC_INDEPENDENT" if band == "hard" else "SOCRATIC_GUIDED"
        if band == "easy":
            return "SIMPLE_CONCRETE"
        if band == "hard":
            return "SOCRATIC_INDEPENDENT"
        return "SOCRATIC_GUIDED"

    def build(
        self,
        kind: str,
        *,
        content: str = "",
        subject: str = "general",
        emotional_state: Optional[str] = None,
        difficulty: object = 3,
        seed: int = 0,
    ) -> ScaffoldingPrompt:
        """Assemble the base scaffolding text for ``kind``.

        ``seed`` (usually the step number) selects among the template
        variants so the same step always gets the same wording.
        """
        style = self.choose_style(kind, emotional_state, difficulty)
        template = self.templates.get(kind, {}).get(style)
        if template is None:
            raise KeyError(f"No scaffolding template for {kind}/{style}")

        parts: List[str] = []
        if kind == MISTAKE_ANALYSIS:
            parts.append(str(template["opening"]))
            prompt = _pick(list(template.get("analysis_prompts", [])), seed)
            if prompt:
                parts.append(prompt)
            closing = _pick(list(template.get("reinforcement", [])), seed)
            if closing:
                parts.append(closing)
        else:
            parts.append(str(template["introduction"]))
            starter = _pick(list(template.get("question_starters", [])), seed)
            if starter:
                parts.append(starter)
            if subject.lower() in _MATH_SUBJECTS and "problem" in content.lower():
                parts.append("Let's use our problem-solving strategy:\n" + "\n".join(WORD_PROBLEM_STEPS))
            closing = _pick(list(template.get("encouragement", [])), seed)
            if closing:
                parts.append(closing)
        return ScaffoldingPrompt(text="\n\n".join(parts), style=style, kind=kind)

    def hint_text(self, level: str, *, prompt: str, subject: str, emotional_state: Optional[str], difficulty: object) -> Optional[str]:
        style = self.choose_style(PROBLEM_SOLVING, emotional_state, difficulty)
        hints = self.templates.get(PROBLEM_SOLVING, {}).get(style, {}).get("hints") or {}
        text = hints.get(level) if isinstance(hints, dict) else None
        if not text:
            return None
        return str(text).replace("{subject}", subject.replace("_", " ")).replace("{prompt}", prompt)

    @staticmethod
    def generation_request(base: ScaffoldingPrompt, *, step_prompt: str, session_fields: Mapping[str, object], focus: str = "") -> str:
        """Prompt asking the text generator to rephrase ``base`` for this session."""
        lines = [
            "Rephrase the tutoring guidance below for a student. Keep it to three short sentences,",
            "end with exactly one question, and never state the answer.",
            "",
            f"Current step prompt: {step_prompt}",
            "Session: step {step} of {total_steps}, hints used {hints_used}, mistakes so far {mistakes}.".format(
                **{key: session_fields.get(key, 0) for key in ("step", "total_steps", "hints_used", "mistakes")}
            ),
        ]
        if focus:
            lines.append(f"Focus: {focus}")
        lines.extend(["", "Guidance:", base.text])
        return "\n".join(lines)
