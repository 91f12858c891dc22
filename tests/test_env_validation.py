import os

import pytest

from env_validation import (
    DEFAULT_LLM_URL,
    EnvironmentError,
    get_env_bool,
    get_env_float,
    get_env_int,
    validate_environment,
)

_VARS = (
    "DB_PATH",
    "LLM_URL",
    "GPT4ALL_URL",
    "MODEL_ID",
    "LLM_TIMEOUT",
    "LLM_TEMPERATURE",
    "DB_MAX_CONNECTIONS",
    "SCAFFOLD_MAX_TOKENS",
    "GUIDED_QUESTIONING_TTL_MINUTES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so teardown also removes defaults written by validate_environment
    for var in _VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def test_defaults_are_applied():
    validate_environment()
    assert os.environ["LLM_URL"] == DEFAULT_LLM_URL
    assert os.environ["DB_PATH"] == "data.db"


@pytest.mark.parametrize(
    "var, value",
    [
        ("LLM_URL", "localhost:4891"),
        ("LLM_TIMEOUT", "soon"),
        ("GUIDED_QUESTIONING_TTL_MINUTES", "0"),
        ("DB_MAX_CONNECTIONS", "-2"),
        ("LLM_TEMPERATURE", "3.5"),
        ("LLM_TEMPERATURE", "warm"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_typed_getters(monkeypatch):
    monkeypatch.setenv("FLAG_ON", "Yes")
    monkeypatch.setenv("COUNT", "seven")
    monkeypatch.setenv("RATIO", "0.25")

    assert get_env_bool("FLAG_ON") is True
    assert get_env_bool("FLAG_UNSET", default=True) is True
    assert get_env_int("COUNT", 3) == 3
    assert get_env_float("RATIO", 1.0) == 0.25
    assert get_env_float("RATIO_UNSET", 1.0) == 1.0
