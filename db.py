"""SQLite persistence for problem templates, sessions and their audit trails."""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from db_pool import SQLiteConnectionPool
from engines.validation import DependencyError

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_SCHEMA = """
PRAGMA foreign_keys = ON;
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS problem_templates (
  id                 TEXT PRIMARY KEY,
  title              TEXT NOT NULL,
  subject            TEXT NOT NULL,
  problem_type       TEXT NOT NULL DEFAULT 'general',
  difficulty_level   INTEGER NOT NULL DEFAULT 1,
  problem_statement  TEXT NOT NULL,
  problem_data       TEXT,
  steps              TEXT NOT NULL,
  keywords           TEXT,
  is_active          INTEGER NOT NULL DEFAULT 1,
  created_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  updated_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_problem_templates_subject ON problem_templates(subject);

CREATE TABLE IF NOT EXISTS problem_sessions (
  id                       TEXT PRIMARY KEY,
  student_id               TEXT NOT NULL,
  template_id              TEXT NOT NULL REFERENCES problem_templates(id),
  problem_instance         TEXT NOT NULL,
  current_step             INTEGER NOT NULL DEFAULT 1,
  total_steps              INTEGER NOT NULL,
  status                   TEXT NOT NULL DEFAULT 'active'
                           CHECK (status IN ('active','paused','completed','abandoned')),
  steps_completed          INTEGER NOT NULL DEFAULT 0,
  hints_requested          INTEGER NOT NULL DEFAULT 0,
  mistakes_made            INTEGER NOT NULL DEFAULT 0,
  accuracy_score           REAL,
  completion_time_minutes  REAL,
  emotional_state          TEXT NOT NULL DEFAULT 'neutral',
  started_at               TEXT NOT NULL,
  last_activity_at         TEXT NOT NULL,
  completed_at             TEXT,
  paused_at                TEXT,
  abandoned_at             TEXT,
  CHECK (current_step >= 1 AND current_step <= total_steps + 1)
);

CREATE INDEX IF NOT EXISTS idx_problem_sessions_student ON problem_sessions(student_id, status);

CREATE TABLE IF NOT EXISTS problem_session_steps (
  id                    INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id            TEXT NOT NULL REFERENCES problem_sessions(id),
  step_number           INTEGER NOT NULL,
  title                 TEXT,
  step_type             TEXT NOT NULL DEFAULT 'execute',
  prompt                TEXT NOT NULL,
  expected_response     TEXT,
  scaffolding_guidance  TEXT,
  student_response      TEXT,
  attempts              INTEGER NOT NULL DEFAULT 0,
  is_completed          INTEGER NOT NULL DEFAULT 0,
  response_quality      TEXT,
  accuracy_score        REAL,
  understanding_level   TEXT,
  ai_feedback           TEXT,
  misconceptions        TEXT,
  completed_at          TEXT,
  updated_at            TEXT,
  UNIQUE (session_id, step_number)
);

CREATE TABLE IF NOT EXISTS scaffolding_interventions (
  id                 INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id         TEXT NOT NULL REFERENCES problem_sessions(id),
  step_number        INTEGER NOT NULL,
  intervention_type  TEXT NOT NULL
                     CHECK (intervention_type IN ('hint','correction','clarification','guidance','guided_questioning')),
  content            TEXT NOT NULL,
  trigger_reason     TEXT NOT NULL,
  scaffolding_style  TEXT,
  confidence         REAL NOT NULL DEFAULT 0.5,
  metadata           TEXT,
  created_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_interventions_session ON scaffolding_interventions(session_id, id);

CREATE TABLE IF NOT EXISTS problem_mistakes (
  id                INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id        TEXT NOT NULL REFERENCES problem_sessions(id),
  student_id        TEXT NOT NULL,
  step_number       INTEGER NOT NULL,
  mistake_type      TEXT NOT NULL,
  severity          TEXT NOT NULL,
  confidence        REAL NOT NULL DEFAULT 0.5,
  root_causes       TEXT,
  indicators        TEXT,
  misconceptions    TEXT,
  student_response  TEXT,
  is_corrected      INTEGER NOT NULL DEFAULT 0,
  created_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_problem_mistakes_session ON problem_mistakes(session_id);
CREATE INDEX IF NOT EXISTS idx_problem_mistakes_student ON problem_mistakes(student_id);

CREATE TABLE IF NOT EXISTS guided_questioning_sessions (
  id           TEXT PRIMARY KEY,
  session_id   TEXT NOT NULL REFERENCES problem_sessions(id),
  student_id   TEXT NOT NULL,
  step_number  INTEGER NOT NULL,
  strategy     TEXT NOT NULL,
  questions    TEXT NOT NULL,
  cursor       INTEGER NOT NULL DEFAULT 0,
  replies      TEXT NOT NULL DEFAULT '[]',
  status       TEXT NOT NULL DEFAULT 'active',
  created_at   TEXT NOT NULL,
  expires_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_guided_questioning_step ON guided_questioning_sessions(session_id, step_number);

CREATE TABLE IF NOT EXISTS activity_log (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id  TEXT,
  session_id  TEXT,
  event_type  TEXT NOT NULL,
  payload     TEXT,
  created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_activity_log_student ON activity_log(student_id);
"""

_SESSION_COLUMNS = {
    "current_step",
    "status",
    "steps_completed",
    "accuracy_score",
    "completion_time_minutes",
    "emotional_state",
    "last_activity_at",
    "completed_at",
    "paused_at",
    "abandoned_at",
}

_STEP_COLUMNS = {
    "student_response",
    "attempts",
    "is_completed",
    "response_quality",
    "accuracy_score",
    "understanding_level",
    "ai_feedback",
    "misconceptions",
    "completed_at",
    "updated_at",
}

_JSON_FIELDS = {
    "problem_instance",
    "problem_data",
    "steps",
    "keywords",
    "misconceptions",
    "metadata",
    "root_causes",
    "indicators",
    "questions",
    "replies",
    "payload",
}

_BOOL_FIELDS = {"is_active", "is_completed", "is_corrected"}


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    item = dict(row)
    for key in _JSON_FIELDS.intersection(item):
        item[key] = _decode_json_field(item[key])
    for key in _BOOL_FIELDS.intersection(item):
        item[key] = bool(item[key])
    return item


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_FIELDS and value is not None and not isinstance(value, str):
        return json_dumps(value)
    if column in _BOOL_FIELDS:
        return 1 if value else 0
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _update_sql(table: str, allowed: set, fields: Mapping[str, Any]) -> tuple[str, list]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown {table} columns: {', '.join(sorted(unknown))}")
    assignments = ", ".join(f"{column} = ?" for column in fields)
    params = [_encode(column, value) for column, value in fields.items()]
    return assignments, params


# -------------- shared row readers --------------
def _fetch_session(con: sqlite3.Connection, session_id: str) -> Optional[Dict[str, Any]]:
    row = con.execute("SELECT * FROM problem_sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_dict(row)


def _fetch_steps(con: sqlite3.Connection, session_id: str) -> List[Dict[str, Any]]:
    rows = con.execute(
        "SELECT * FROM problem_session_steps WHERE session_id = ? ORDER BY step_number",
        (session_id,),
    ).fetchall()
    return [_row_to_dict(row) for row in rows]


def _fetch_step(con: sqlite3.Connection, session_id: str, step_number: int) -> Optional[Dict[str, Any]]:
    row = con.execute(
        "SELECT * FROM problem_session_steps WHERE session_id = ? AND step_number = ?",
        (session_id, int(step_number)),
    ).fetchone()
    return _row_to_dict(row)


def _fetch_questioning(con: sqlite3.Connection, questioning_id: str) -> Optional[Dict[str, Any]]:
    row = con.execute(
        "SELECT * FROM guided_questioning_sessions WHERE id = ?", (questioning_id,)
    ).fetchone()
    return _row_to_dict(row)


class UnitOfWork:
    """Writes for one engine operation, applied inside a single transaction.

    Obtained from :meth:`ProblemStore.unit_of_work`; every method runs on the
    connection that holds the write lock, so reads see earlier writes of the
    same unit.
    """

    def __init__(self, con: sqlite3.Connection):
        self._con = con

    # ---- reads (locked snapshot) ----
    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return _fetch_session(self._con, session_id)

    def get_step(self, session_id: str, step_number: int) -> Optional[Dict[str, Any]]:
        return _fetch_step(self._con, session_id, step_number)

    def get_steps(self, session_id: str) -> List[Dict[str, Any]]:
        return _fetch_steps(self._con, session_id)

    def get_questioning(self, questioning_id: str) -> Optional[Dict[str, Any]]:
        return _fetch_questioning(self._con, questioning_id)

    # ---- sessions ----
    def insert_session(self, session: Mapping[str, Any]) -> None:
        self._con.execute(
            """
            INSERT INTO problem_sessions(
              id, student_id, template_id, problem_instance, current_step, total_steps,
              status, emotional_state, started_at, last_activity_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?)
            """,
            (
                session["id"],
                session["student_id"],
                session["template_id"],
                json_dumps(session["problem_instance"]),
                int(session.get("current_step", 1)),
                int(session["total_steps"]),
                _encode("status", session.get("status", "active")),
                session.get("emotional_state") or "neutral",
                _encode("started_at", session["started_at"]),
                _encode("last_activity_at", session.get("last_activity_at") or session["started_at"]),
            ),
        )

    def insert_steps(self, session_id: str, steps: Iterable[Mapping[str, Any]]) -> None:
        self._con.executemany(
            """
            INSERT INTO problem_session_steps(
              session_id, step_number, title, step_type, prompt, expected_response,
              scaffolding_guidance, misconceptions
            ) VALUES (?,?,?,?,?,?,?, '[]')
            """,
            [
                (
                    session_id,
                    int(step["step_number"]),
                    step.get("title"),
                    step.get("type") or "execute",
                    step["prompt"],
                    step.get("expected_response"),
                    step.get("scaffolding_guidance"),
                )
                for step in steps
            ],
        )

    def update_session(self, session_id: str, **fields: Any) -> None:
        if not fields:
            return
        assignments, params = _update_sql("problem_sessions", _SESSION_COLUMNS, fields)
        self._con.execute(
            f"UPDATE problem_sessions SET {assignments} WHERE id = ?",
            (*params, session_id),
        )

    def increment_counters(
        self,
        session_id: str,
        *,
        hints_requested: int = 0,
        mistakes_made: int = 0,
        steps_completed: int = 0,
    ) -> None:
        self._con.execute(
            """
            UPDATE problem_sessions
            SET hints_requested = hints_requested + ?,
                mistakes_made = mistakes_made + ?,
                steps_completed = steps_completed + ?
            WHERE id = ?
            """,
            (int(hints_requested), int(mistakes_made), int(steps_completed), session_id),
        )

    # ---- steps ----
    def update_step(self, session_id: str, step_number: int, **fields: Any) -> None:
        if not fields:
            return
        assignments, params = _update_sql("problem_session_steps", _STEP_COLUMNS, fields)
        self._con.execute(
            f"UPDATE problem_session_steps SET {assignments} WHERE session_id = ? AND step_number = ?",
            (*params, session_id, int(step_number)),
        )

    def increment_attempts(self, session_id: str, step_number: int) -> None:
        self._con.execute(
            "UPDATE problem_session_steps SET attempts = attempts + 1 WHERE session_id = ? AND step_number = ?",
            (session_id, int(step_number)),
        )

    # ---- append-only logs ----
    def insert_intervention(
        self,
        session_id: str,
        step_number: int,
        *,
        intervention_type: Any,
        content: str,
        trigger_reason: Any,
        scaffolding_style: Optional[str],
        confidence: float,
        metadata: Optional[Mapping[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        cur = self._con.execute(
            """
            INSERT INTO scaffolding_interventions(
              session_id, step_number, intervention_type, content, trigger_reason,
              scaffolding_style, confidence, metadata, created_at
            ) VALUES (?,?,?,?,?,?,?,?,?)
            """,
            (
                session_id,
                int(step_number),
                _encode("intervention_type", intervention_type),
                content,
                _encode("trigger_reason", trigger_reason),
                scaffolding_style,
                float(confidence),
                json_dumps(dict(metadata or {})),
                isoformat(created_at or utcnow()),
            ),
        )
        return int(cur.lastrowid)

    def insert_mistake(
        self,
        session_id: str,
        student_id: str,
        step_number: int,
        *,
        mistake_type: Any,
        severity: Any,
        confidence: float,
        root_causes: Sequence[str],
        indicators: Sequence[str],
        misconceptions: Sequence[str],
        student_response: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> int:
        cur = self._con.execute(
            """
            INSERT INTO problem_mistakes(
              session_id, student_id, step_number, mistake_type, severity, confidence,
              root_causes, indicators, misconceptions, student_response, created_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                session_id,
                student_id,
                int(step_number),
                _encode("mistake_type", mistake_type),
                _encode("severity", severity),
                float(confidence),
                json_dumps(list(root_causes)),
                json_dumps(list(indicators)),
                json_dumps(list(misconceptions)),
                student_response,
                isoformat(created_at or utcnow()),
            ),
        )
        return int(cur.lastrowid)

    def mark_mistakes_corrected(self, session_id: str, step_number: int) -> None:
        self._con.execute(
            "UPDATE problem_mistakes SET is_corrected = 1 WHERE session_id = ? AND step_number = ?",
            (session_id, int(step_number)),
        )

    # ---- guided questioning ----
    def replace_questioning(self, record: Mapping[str, Any]) -> None:
        self._con.execute(
            "DELETE FROM guided_questioning_sessions WHERE session_id = ? AND step_number = ?",
            (record["session_id"], int(record["step_number"])),
        )
        self._con.execute(
            """
            INSERT INTO guided_questioning_sessions(
              id, session_id, student_id, step_number, strategy, questions, cursor,
              replies, status, created_at, expires_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                record["id"],
                record["session_id"],
                record["student_id"],
                int(record["step_number"]),
                record["strategy"],
                json_dumps(record["questions"]),
                int(record.get("cursor", 0)),
                json_dumps(record.get("replies") or []),
                record.get("status") or "active",
                isoformat(record["created_at"]),
                isoformat(record["expires_at"]),
            ),
        )

    def update_questioning(self, questioning_id: str, *, cursor: int, replies: Sequence[Any], status: str) -> None:
        self._con.execute(
            "UPDATE guided_questioning_sessions SET cursor = ?, replies = ?, status = ? WHERE id = ?",
            (int(cursor), json_dumps(list(replies)), status, questioning_id),
        )

    def delete_questioning_for_step(self, session_id: str, step_number: int) -> int:
        cur = self._con.execute(
            "DELETE FROM guided_questioning_sessions WHERE session_id = ? AND step_number = ?",
            (session_id, int(step_number)),
        )
        return cur.rowcount


class ProblemStore:
    """Relational store backing the problem-solving session engine."""

    def __init__(self, pool: SQLiteConnectionPool):
        self._pool = pool

    @property
    def database(self) -> str:
        return self._pool.database

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        try:
            with self._pool.get_connection() as con:
                return con.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            logger.error("Store read failed: %s", exc)
            raise DependencyError("Persistent store read failed") from exc

    def _exec(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        try:
            with self._pool.get_connection() as con:
                return con.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            logger.error("Store write failed: %s", exc)
            raise DependencyError("Persistent store write failed") from exc

    def init(self) -> None:
        if self.database != ":memory:":
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)
        with self._pool.get_connection() as con:
            con.executescript(_SCHEMA)

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Open a write transaction; commit on success, roll back on any error.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so two units
        of work never interleave their read-check-write sequences.
        """
        with self._pool.get_connection() as con:
            try:
                con.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                logger.error("Could not open transaction: %s", exc)
                raise DependencyError("Persistent store unavailable") from exc
            try:
                yield UnitOfWork(con)
                con.execute("COMMIT")
            except sqlite3.Error as exc:
                if con.in_transaction:
                    con.execute("ROLLBACK")
                logger.error("Transaction rolled back after store error: %s", exc, exc_info=True)
                raise DependencyError("Persistent store write failed") from exc
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK")
                raise

    # -------------- templates --------------
    def upsert_template(self, template: Mapping[str, Any]) -> None:
        self._exec(
            """
            INSERT INTO problem_templates(
              id, title, subject, problem_type, difficulty_level, problem_statement,
              problem_data, steps, keywords, is_active, updated_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
              title = excluded.title,
              subject = excluded.subject,
              problem_type = excluded.problem_type,
              difficulty_level = excluded.difficulty_level,
              problem_statement = excluded.problem_statement,
              problem_data = excluded.problem_data,
              steps = excluded.steps,
              keywords = excluded.keywords,
              is_active = excluded.is_active,
              updated_at = CURRENT_TIMESTAMP
            """,
            (
                template["id"],
                template["title"],
                template["subject"],
                template.get("problem_type") or "general",
                int(template.get("difficulty_level", 1)),
                template["problem_statement"],
                json_dumps(template.get("problem_data") or {}),
                json_dumps(list(template["steps"])),
                json_dumps(list(template.get("keywords") or [])),
                1 if template.get("is_active", True) else 0,
            ),
        )

    def get_template(self, template_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT * FROM problem_templates WHERE id = ?", (template_id,))
        return _row_to_dict(rows[0]) if rows else None

    def list_templates(self, subject: Optional[str] = None, *, active_only: bool = True) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM problem_templates"
        clauses = []
        params: list = []
        if active_only:
            clauses.append("is_active = 1")
        if subject:
            clauses.append("subject = ?")
            params.append(subject)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY subject, difficulty_level, id"
        return [_row_to_dict(row) for row in self._query(sql, params)]

    # -------------- sessions --------------
    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._pool.get_connection() as con:
            return _fetch_session(con, session_id)

    def get_steps(self, session_id: str) -> List[Dict[str, Any]]:
        with self._pool.get_connection() as con:
            return _fetch_steps(con, session_id)

    def get_step(self, session_id: str, step_number: int) -> Optional[Dict[str, Any]]:
        with self._pool.get_connection() as con:
            return _fetch_step(con, session_id, step_number)

    def list_sessions(self, student_id: str, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        if status:
            rows = self._query(
                "SELECT * FROM problem_sessions WHERE student_id = ? AND status = ? ORDER BY started_at DESC LIMIT ?",
                (student_id, status, int(limit)),
            )
        else:
            rows = self._query(
                "SELECT * FROM problem_sessions WHERE student_id = ? ORDER BY started_at DESC LIMIT ?",
                (student_id, int(limit)),
            )
        return [_row_to_dict(row) for row in rows]

    def recent_interventions(self, session_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM scaffolding_interventions WHERE session_id = ? ORDER BY id DESC LIMIT ?",
            (session_id, int(limit)),
        )
        return [_row_to_dict(row) for row in rows]

    def list_interventions(self, session_id: str) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM scaffolding_interventions WHERE session_id = ? ORDER BY id",
            (session_id,),
        )
        return [_row_to_dict(row) for row in rows]

    def list_mistakes(self, session_id: str) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM problem_mistakes WHERE session_id = ? ORDER BY id",
            (session_id,),
        )
        return [_row_to_dict(row) for row in rows]

    def mistake_summary(self, student_id: str) -> Dict[str, Any]:
        rows = self._query(
            """
            SELECT mistake_type, severity, COUNT(*) AS total,
                   SUM(CASE WHEN is_corrected = 1 THEN 1 ELSE 0 END) AS corrected
            FROM problem_mistakes
            WHERE student_id = ?
            GROUP BY mistake_type, severity
            """,
            (student_id,),
        )
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        total = 0
        corrected = 0
        for row in rows:
            count = int(row["total"])
            total += count
            corrected += int(row["corrected"] or 0)
            by_type[row["mistake_type"]] = by_type.get(row["mistake_type"], 0) + count
            by_severity[row["severity"]] = by_severity.get(row["severity"], 0) + count
        return {
            "student_id": student_id,
            "total": total,
            "corrected": corrected,
            "by_type": by_type,
            "by_severity": by_severity,
        }

    # -------------- guided questioning --------------
    def get_questioning(self, questioning_id: str) -> Optional[Dict[str, Any]]:
        with self._pool.get_connection() as con:
            return _fetch_questioning(con, questioning_id)

    def active_questioning_for_step(self, session_id: str, step_number: int) -> Optional[Dict[str, Any]]:
        rows = self._query(
            """
            SELECT * FROM guided_questioning_sessions
            WHERE session_id = ? AND step_number = ? AND status = 'active'
            ORDER BY created_at DESC LIMIT 1
            """,
            (session_id, int(step_number)),
        )
        return _row_to_dict(rows[0]) if rows else None

    def purge_expired_questioning(self, now: Optional[datetime] = None) -> int:
        cur = self._exec(
            "DELETE FROM guided_questioning_sessions WHERE expires_at <= ?",
            (isoformat(now or utcnow()),),
        )
        return cur.rowcount

    # -------------- activity log --------------
    def log_activity(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        *,
        student_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._exec(
            "INSERT INTO activity_log(student_id, session_id, event_type, payload) VALUES (?,?,?,?)",
            (student_id, session_id, event_type, json_dumps(dict(payload))),
        )

    def list_activity(self, student_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        if student_id:
            rows = self._query(
                "SELECT * FROM activity_log WHERE student_id = ? ORDER BY id DESC LIMIT ?",
                (student_id, int(limit)),
            )
        else:
            rows = self._query("SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (int(limit),))
        return [_row_to_dict(row) for row in rows]

    def ping(self) -> bool:
        try:
            self._query("SELECT 1")
        except DependencyError:
            logger.warning("Store health check failed", exc_info=True)
            return False
        return True


def create_store(path: Optional[str] = None, max_connections: int = 10) -> ProblemStore:
    """Build a store over a fresh connection pool and make sure the schema exists."""
    store = ProblemStore(SQLiteConnectionPool(path or DB_PATH, max_connections=max_connections))
    store.init()
    return store
