"""Test cases for db operations."""

from datetime import datetime, timedelta, timezone

import pytest

from db import isoformat, parse_timestamp
from engines.validation import DependencyError

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _insert_session(uow, session_id="s-1", student_id="student-1"):
    uow.insert_session(
        {
            "id": session_id,
            "student_id": student_id,
            "template_id": "test-five-step",
            "problem_instance": {"title": "Rectangle Area"},
            "total_steps": 2,
            "started_at": NOW,
        }
    )
    uow.insert_steps(
        session_id,
        [
            {"step_number": 1, "prompt": "First?", "type": "analyze"},
            {"step_number": 2, "prompt": "Second?"},
        ],
    )


def _mistake(uow, step_number, session_id="s-1", mistake_type="computational", severity="medium"):
    uow.insert_mistake(
        session_id,
        "student-1",
        step_number,
        mistake_type=mistake_type,
        severity=severity,
        confidence=0.6,
        root_causes=["Arithmetic calculation errors"],
        indicators=["arithmetic_mistake"],
        misconceptions=[],
        student_response="26",
        created_at=NOW,
    )


def test_templates_are_decoded(store):
    template = store.get_template("test-five-step")

    assert template["problem_data"] == {"length": 6, "width": 4}
    assert len(template["steps"]) == 5
    assert template["keywords"] == ["area", "multiply"]
    assert template["is_active"] is True
    assert store.get_template("missing") is None


def test_list_templates_filters_inactive_and_subject(store):
    ids = [t["id"] for t in store.list_templates()]
    assert "test-inactive" not in ids
    assert "test-inactive" in [t["id"] for t in store.list_templates(active_only=False)]
    assert [t["id"] for t in store.list_templates("mathematics")] == ["test-five-step"]


def test_unit_of_work_commits(store):
    with store.unit_of_work() as uow:
        _insert_session(uow)
        uow.increment_counters("s-1", hints_requested=1, mistakes_made=2)
        # reads inside the unit see its own writes
        assert uow.get_session("s-1")["hints_requested"] == 1

    session = store.get_session("s-1")
    assert session["problem_instance"] == {"title": "Rectangle Area"}
    assert session["status"] == "active"
    assert session["mistakes_made"] == 2
    assert session["started_at"] == isoformat(NOW)
    steps = store.get_steps("s-1")
    assert [step["step_type"] for step in steps] == ["analyze", "execute"]
    assert steps[0]["misconceptions"] == []
    assert steps[0]["is_completed"] is False


def test_unit_of_work_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        with store.unit_of_work() as uow:
            _insert_session(uow)
            raise RuntimeError("analysis failed")

    assert store.get_session("s-1") is None
    assert store.get_steps("s-1") == []


def test_store_errors_become_dependency_errors(store):
    with pytest.raises(DependencyError):
        with store.unit_of_work() as uow:
            _insert_session(uow)
            uow.insert_intervention(
                "s-1",
                1,
                intervention_type="lecture",
                content="x",
                trigger_reason="mistake_detected",
                scaffolding_style=None,
                confidence=0.5,
            )

    assert store.get_session("s-1") is None


def test_update_rejects_unknown_columns(store):
    with pytest.raises(ValueError):
        with store.unit_of_work() as uow:
            _insert_session(uow)
            uow.update_session("s-1", hints_requested=3)

    assert store.get_session("s-1") is None


def test_step_updates_and_attempts(store):
    with store.unit_of_work() as uow:
        _insert_session(uow)
        uow.increment_attempts("s-1", 1)
        uow.update_step("s-1", 1, is_completed=True, misconceptions=["sign"], accuracy_score=0.9)

    step = store.get_step("s-1", 1)
    assert step["attempts"] == 1
    assert step["is_completed"] is True
    assert step["misconceptions"] == ["sign"]
    assert step["accuracy_score"] == 0.9


def test_mistake_summary_counts_corrections(store):
    with store.unit_of_work() as uow:
        _insert_session(uow)
        _mistake(uow, 1)
        _mistake(uow, 1, mistake_type="careless", severity="low")
        _mistake(uow, 2)
        uow.mark_mistakes_corrected("s-1", 1)

    summary = store.mistake_summary("student-1")

    assert summary["total"] == 3
    assert summary["corrected"] == 2
    assert summary["by_type"] == {"computational": 2, "careless": 1}
    assert summary["by_severity"] == {"medium": 2, "low": 1}
    assert store.mistake_summary("nobody")["total"] == 0
    assert store.list_mistakes("s-1")[0]["root_causes"] == ["Arithmetic calculation errors"]


def test_questioning_replace_and_purge(store):
    record = {
        "id": "q-1",
        "session_id": "s-1",
        "student_id": "student-1",
        "step_number": 1,
        "strategy": "socratic_questioning",
        "questions": [{"question": "Why?", "bucket": "immediate"}],
        "created_at": NOW,
        "expires_at": NOW + timedelta(minutes=60),
    }
    with store.unit_of_work() as uow:
        _insert_session(uow)
        uow.replace_questioning(record)
        uow.replace_questioning(dict(record, id="q-2"))

    assert store.get_questioning("q-1") is None
    assert store.active_questioning_for_step("s-1", 1)["id"] == "q-2"
    assert store.purge_expired_questioning(NOW + timedelta(minutes=30)) == 0
    assert store.purge_expired_questioning(NOW + timedelta(minutes=60)) == 1
    assert store.get_questioning("q-2") is None


def test_activity_log_round_trip(store):
    store.log_activity("problem_session_started", {"templateId": "t"}, student_id="student-1", session_id="s-1")
    entries = store.list_activity("student-1")

    assert entries[0]["event_type"] == "problem_session_started"
    assert entries[0]["payload"] == {"templateId": "t"}
    assert store.ping() is True


def test_timestamps_parse_common_formats():
    assert parse_timestamp("2024-03-01T09:00:00Z") == NOW
    assert parse_timestamp("2024-03-01 09:00:00") == NOW
    assert parse_timestamp(None) is None
    assert isoformat(datetime(2024, 3, 1, 9, 0)) == "2024-03-01T09:00:00+00:00"
