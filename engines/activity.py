"""Fire-and-forget activity logging backed by the problem store."""

from __future__ import annotations

import logging
from typing import Any, Dict

from engines.base import ActivityLogger
from engines.validation import DependencyError

logger = logging.getLogger(__name__)


class StoreActivityLogger(ActivityLogger):
    def __init__(self, store):
        self.store = store

    def log_activity(self, event: Dict[str, Any]) -> None:
        event_type = str(event.get("type") or "problem_solving")
        payload = {key: value for key, value in event.items() if key not in {"student_id", "session_id"}}
        try:
            self.store.log_activity(
                event_type,
                payload,
                student_id=event.get("student_id"),
                session_id=event.get("session_id"),
            )
        except (DependencyError, TypeError, ValueError) as exc:
            logger.warning("Activity log write failed for %s: %s", event_type, exc)
        else:
            logger.debug("activity %s %s", event_type, event.get("session_id"))


def safe_log(activity_logger: ActivityLogger, event: Dict[str, Any]) -> None:
    """Forward ``event`` to ``activity_logger``; failures are logged and dropped."""
    try:
        activity_logger.log_activity(event)
    except Exception:
        logger.warning("Activity logger raised for %s", event.get("type"), exc_info=True)
