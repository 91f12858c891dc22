import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines.base import GenerationResult, TextGenerator  # noqa: E402

FIVE_STEP_TEMPLATE = {
    "id": "test-five-step",
    "title": "Rectangle Area",
    "subject": "mathematics",
    "problem_type": "word_problem",
    "difficulty_level": 2,
    "problem_statement": "A rectangle is six metres long and four metres wide.",
    "problem_data": {"length": 6, "width": 4},
    "keywords": ["area", "multiply"],
    "steps": [
        {
            "title": "Find the goal",
            "type": "analyze",
            "prompt": "What should we calculate?",
            "expected_response": "The area is twenty four metres",
            "scaffolding_guidance": "Read the question again.",
        },
        {
            "type": "plan",
            "prompt": "Which operation do we use?",
            "expected_response": "Multiply six by four to get twenty four",
        },
        {
            "prompt": "Do the multiplication.",
            "expected_response": "Multiply six by four to get twenty four",
        },
        {
            "type": "verify",
            "prompt": "Check the product.",
            "expected_response": "Multiply six by four to get twenty four",
        },
        {
            "type": "reflect",
            "prompt": "State the final result.",
            "expected_response": "Multiply six by four to get twenty four",
        },
    ],
}

OPEN_TEMPLATE = {
    "id": "test-open",
    "title": "Explain Your Thinking",
    "subject": "general",
    "difficulty_level": 3,
    "problem_statement": "Describe how you would plan a small school event.",
    "steps": [
        {"title": "Plan", "type": "plan", "prompt": "Describe your plan."},
        {"title": "Reflect", "type": "reflect", "prompt": "What would you change next time?"},
    ],
}

INACTIVE_TEMPLATE = dict(OPEN_TEMPLATE, id="test-inactive", is_active=False)

EXACT_ANSWER = "Multiply six by four to get twenty four"


class FakeGenerator(TextGenerator):
    def __init__(self, text="What do you notice about the numbers? Which step comes first?"):
        self.text = text
        self.prompts = []

    def generate(self, prompt, *, temperature=0.7, max_tokens=300):
        self.prompts.append(prompt)
        return GenerationResult(ok=True, text=self.text)


class FailingGenerator(TextGenerator):
    def __init__(self):
        self.calls = 0

    def generate(self, prompt, *, temperature=0.7, max_tokens=300):
        self.calls += 1
        return GenerationResult.failure("LLM-HTTP 503")


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now = self.now + timedelta(minutes=minutes)


@pytest.fixture
def store(tmp_path):
    import db

    problem_store = db.create_store(str(tmp_path / "test.db"), max_connections=4)
    for template in (FIVE_STEP_TEMPLATE, OPEN_TEMPLATE, INACTIVE_TEMPLATE):
        problem_store.upsert_template(template)
    return problem_store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(store, clock):
    from app import build_engine

    def _make(generator=None, **kwargs):
        engine = build_engine(store, generator, strict_safety=False)
        engine.clock = clock
        for key, value in kwargs.items():
            setattr(engine, key, value)
        return engine

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine(FakeGenerator())
