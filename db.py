import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_TARGET_LEVELS = {"core", "remedial", "advanced"}
_MODULE_STATUSES = {"not_started", "in_progress", "completed"}
_DIAGNOSTIC_LEVELS = {"low", "average", "high"}

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


class AttemptLimitError(Exception):
    """Raised when an attempt insert would exceed the evaluation's max_attempts."""


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


def _decode_json_field(value: Optional[str], default: Any = None) -> Any:
    if value in (None, ""):
        return default
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Discarding malformed JSON column value: %.80r", value)
        return default


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS modules (
              module_id    TEXT PRIMARY KEY,
              course_id    TEXT NOT NULL,
              title        TEXT NOT NULL,
              order_index  INTEGER DEFAULT 0,
              created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_modules_course ON modules(course_id, order_index);

            CREATE TABLE IF NOT EXISTS lessons (
              lesson_id    TEXT PRIMARY KEY,
              module_id    TEXT NOT NULL,
              title        TEXT NOT NULL,
              target_level TEXT NOT NULL DEFAULT 'core'
                           CHECK (target_level IN ('core', 'remedial', 'advanced')),
              order_index  INTEGER DEFAULT 0,
              content_url  TEXT,
              created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(module_id) REFERENCES modules(module_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_lessons_module_level
              ON lessons(module_id, target_level, order_index);

            CREATE TABLE IF NOT EXISTS evaluations (
              evaluation_id   TEXT PRIMARY KEY,
              title           TEXT NOT NULL DEFAULT '',
              evaluation_type TEXT NOT NULL DEFAULT 'quiz',
              module_id       TEXT,
              lesson_id       TEXT,
              questions       TEXT NOT NULL DEFAULT '[]',
              max_score       REAL NOT NULL DEFAULT 0,
              passing_score   REAL,
              max_attempts    INTEGER,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(module_id) REFERENCES modules(module_id) ON DELETE CASCADE,
              FOREIGN KEY(lesson_id) REFERENCES lessons(lesson_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS evaluation_attempts (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              evaluation_id   TEXT NOT NULL,
              student_id      TEXT NOT NULL,
              attempt_number  INTEGER NOT NULL,
              answers         TEXT NOT NULL DEFAULT '{}',
              score           REAL NOT NULL,
              max_score       REAL NOT NULL,
              percentage      INTEGER NOT NULL,
              passed          INTEGER NOT NULL,
              started_at      TEXT,
              completed_at    TEXT,
              created_at      TEXT NOT NULL,
              UNIQUE(evaluation_id, student_id, attempt_number),
              FOREIGN KEY(evaluation_id) REFERENCES evaluations(evaluation_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_student
              ON evaluation_attempts(student_id, evaluation_id);

            CREATE TABLE IF NOT EXISTS module_progress (
              student_id       TEXT NOT NULL,
              module_id        TEXT NOT NULL,
              status           TEXT NOT NULL DEFAULT 'not_started',
              diagnostic_level TEXT,
              updated_at       TEXT,
              PRIMARY KEY (student_id, module_id)
            );

            CREATE TABLE IF NOT EXISTS student_progress (
              student_id          TEXT NOT NULL,
              lesson_id           TEXT NOT NULL,
              status              TEXT NOT NULL DEFAULT 'in_progress',
              progress_percentage REAL DEFAULT 0,
              time_spent          REAL DEFAULT 0,
              completed_at        TEXT,
              last_accessed       TEXT,
              PRIMARY KEY (student_id, lesson_id),
              FOREIGN KEY(lesson_id) REFERENCES lessons(lesson_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS course_resources (
              resource_id   TEXT PRIMARY KEY,
              course_id     TEXT NOT NULL,
              title         TEXT NOT NULL,
              resource_type TEXT NOT NULL CHECK (resource_type IN ('pdf', 'url')),
              url           TEXT,
              created_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_course_resources_course ON course_resources(course_id);

            CREATE TABLE IF NOT EXISTS recommendations (
              id                       INTEGER PRIMARY KEY AUTOINCREMENT,
              student_id               TEXT NOT NULL,
              course_id                TEXT,
              evaluation_id            TEXT,
              attempt_id               INTEGER,
              target                   TEXT,
              recommendation_type      TEXT NOT NULL,
              title                    TEXT NOT NULL,
              description              TEXT NOT NULL,
              priority                 TEXT NOT NULL,
              recommended_content_id   TEXT,
              recommended_content_type TEXT,
              action_url               TEXT,
              is_read                  INTEGER NOT NULL DEFAULT 0,
              is_applied               INTEGER NOT NULL DEFAULT 0,
              expires_at               TEXT,
              created_at               TEXT NOT NULL,
              UNIQUE(student_id, evaluation_id, attempt_id, target)
            );

            CREATE INDEX IF NOT EXISTS idx_recommendations_student
              ON recommendations(student_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS performance_states (
              student_id         TEXT NOT NULL,
              course_id          TEXT NOT NULL,
              overall_progress   REAL DEFAULT 0,
              average_score      REAL DEFAULT 0,
              total_time_spent   REAL DEFAULT 0,
              lessons_completed  INTEGER DEFAULT 0,
              evaluations_passed INTEGER DEFAULT 0,
              current_difficulty TEXT,
              learning_pace      TEXT,
              last_activity      TEXT,
              PRIMARY KEY (student_id, course_id)
            );
            """
        )
        con.commit()


# -------------- course structure (authoring helpers) --------------
def upsert_module(module_id: str, course_id: str, title: str, order_index: int = 0):
    _exec(
        """
        INSERT INTO modules(module_id, course_id, title, order_index)
        VALUES (?,?,?,?)
        ON CONFLICT(module_id) DO UPDATE SET
          course_id=excluded.course_id,
          title=excluded.title,
          order_index=excluded.order_index
        """,
        (module_id, course_id, title, int(order_index)),
    )


def upsert_lesson(
    lesson_id: str,
    module_id: str,
    title: str,
    target_level: str = "core",
    order_index: int = 0,
    content_url: Optional[str] = None,
):
    if target_level not in _TARGET_LEVELS:
        raise ValueError(f"target_level must be one of {sorted(_TARGET_LEVELS)}")
    _exec(
        """
        INSERT INTO lessons(lesson_id, module_id, title, target_level, order_index, content_url)
        VALUES (?,?,?,?,?,?)
        ON CONFLICT(lesson_id) DO UPDATE SET
          module_id=excluded.module_id,
          title=excluded.title,
          target_level=excluded.target_level,
          order_index=excluded.order_index,
          content_url=excluded.content_url
        """,
        (lesson_id, module_id, title, target_level, int(order_index), content_url),
    )


def _lesson_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["lesson_id"],
        "module_id": row["module_id"],
        "title": row["title"],
        "target_level": row["target_level"],
        "order_index": row["order_index"],
        "content_url": row["content_url"],
    }


def find_first_lesson_by_level(module_id: str, level: str) -> Optional[Dict[str, Any]]:
    """Return the lowest ``order_index`` lesson of ``module_id`` tagged ``level``."""
    rows = _query(
        """
        SELECT lesson_id, module_id, title, target_level, order_index, content_url
        FROM lessons
        WHERE module_id = ? AND target_level = ?
        ORDER BY order_index ASC, created_at ASC
        LIMIT 1
        """,
        (module_id, level),
    )
    return _lesson_from_row(rows[0]) if rows else None


def count_course_lessons(course_id: str) -> int:
    rows = _query(
        """
        SELECT COUNT(*) AS total
        FROM lessons AS l
        JOIN modules AS m ON m.module_id = l.module_id
        WHERE m.course_id = ?
        """,
        (course_id,),
    )
    return int(rows[0]["total"]) if rows else 0


def add_course_resource(
    resource_id: str,
    course_id: str,
    title: str,
    resource_type: str,
    url: Optional[str] = None,
):
    _exec(
        """
        INSERT INTO course_resources(resource_id, course_id, title, resource_type, url)
        VALUES (?,?,?,?,?)
        ON CONFLICT(resource_id) DO UPDATE SET
          course_id=excluded.course_id,
          title=excluded.title,
          resource_type=excluded.resource_type,
          url=excluded.url
        """,
        (resource_id, course_id, title, resource_type, url),
    )


def list_course_resources(course_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT resource_id, course_id, title, resource_type, url
        FROM course_resources
        WHERE course_id = ?
        ORDER BY created_at ASC, resource_id ASC
        """,
        (course_id,),
    )
    return [
        {
            "id": row["resource_id"],
            "course_id": row["course_id"],
            "title": row["title"],
            "resource_type": row["resource_type"],
            "url": row["url"],
        }
        for row in rows
    ]


# -------------- evaluations --------------
def upsert_evaluation(
    evaluation_id: str,
    *,
    questions: Sequence[Mapping[str, Any]],
    max_score: float,
    title: str = "",
    evaluation_type: str = "quiz",
    module_id: Optional[str] = None,
    lesson_id: Optional[str] = None,
    passing_score: Optional[float] = None,
    max_attempts: Optional[int] = None,
):
    if bool(module_id) == bool(lesson_id):
        raise ValueError("an evaluation is attached to exactly one of module_id or lesson_id")
    _exec(
        """
        INSERT INTO evaluations(
          evaluation_id, title, evaluation_type, module_id, lesson_id,
          questions, max_score, passing_score, max_attempts
        )
        VALUES (?,?,?,?,?,?,?,?,?)
        ON CONFLICT(evaluation_id) DO UPDATE SET
          title=excluded.title,
          evaluation_type=excluded.evaluation_type,
          module_id=excluded.module_id,
          lesson_id=excluded.lesson_id,
          questions=excluded.questions,
          max_score=excluded.max_score,
          passing_score=excluded.passing_score,
          max_attempts=excluded.max_attempts
        """,
        (
            evaluation_id,
            title,
            evaluation_type,
            module_id,
            lesson_id,
            json_dumps(list(questions)),
            float(max_score),
            None if passing_score is None else float(passing_score),
            None if max_attempts is None else int(max_attempts),
        ),
    )


def get_evaluation(evaluation_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT evaluation_id, title, evaluation_type, module_id, lesson_id,
               questions, max_score, passing_score, max_attempts
        FROM evaluations WHERE evaluation_id = ?
        """,
        (evaluation_id,),
    )
    if not rows:
        return None
    row = rows[0]
    return {
        "id": row["evaluation_id"],
        "title": row["title"],
        "evaluation_type": row["evaluation_type"],
        "module_id": row["module_id"],
        "lesson_id": row["lesson_id"],
        "questions": _decode_json_field(row["questions"], []),
        "max_score": row["max_score"],
        "passing_score": row["passing_score"],
        "max_attempts": row["max_attempts"],
    }


def get_evaluation_scope(evaluation_id: str) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(course_id, module_id)`` for a module- or lesson-scoped evaluation."""
    rows = _query(
        """
        SELECT m.course_id AS course_id, m.module_id AS module_id
        FROM evaluations AS e
        LEFT JOIN lessons AS l ON l.lesson_id = e.lesson_id
        JOIN modules AS m ON m.module_id = COALESCE(e.module_id, l.module_id)
        WHERE e.evaluation_id = ?
        """,
        (evaluation_id,),
    )
    if not rows:
        return None, None
    return rows[0]["course_id"], rows[0]["module_id"]


# -------------- attempts --------------
_ATTEMPT_COLUMNS = (
    "id, evaluation_id, student_id, attempt_number, answers, score, max_score, "
    "percentage, passed, started_at, completed_at, created_at"
)


def _attempt_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "evaluation_id": row["evaluation_id"],
        "student_id": row["student_id"],
        "attempt_number": row["attempt_number"],
        "answers": _decode_json_field(row["answers"], {}),
        "score": row["score"],
        "max_score": row["max_score"],
        "percentage": row["percentage"],
        "passed": bool(row["passed"]),
        "started_at": row["started_at"],
        "completed_at": row["completed_at"],
        "created_at": row["created_at"],
    }


def insert_attempt(
    evaluation_id: str,
    student_id: str,
    *,
    answers: Mapping[str, Any],
    score: float,
    max_score: float,
    percentage: int,
    passed: bool,
    max_attempts: Optional[int] = None,
    started_at: Optional[str] = None,
) -> Dict[str, Any]:
    """Check the attempt limit and insert the next attempt in one write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock before counting, so two
    concurrent submissions serialise and the second one sees the first row.
    The unique ``(evaluation_id, student_id, attempt_number)`` constraint backs
    this up for writers that bypass this function.
    """
    completed_at = _now_iso()
    with _conn() as con:
        con.execute("BEGIN IMMEDIATE")
        try:
            row = con.execute(
                """
                SELECT COUNT(*) AS prior, COALESCE(MAX(attempt_number), 0) AS last_number
                FROM evaluation_attempts
                WHERE evaluation_id = ? AND student_id = ?
                """,
                (evaluation_id, student_id),
            ).fetchone()
            prior = int(row["prior"])
            if max_attempts and prior >= int(max_attempts):
                raise AttemptLimitError(
                    f"maximum attempts reached ({prior}/{int(max_attempts)})"
                )
            cur = con.execute(
                """
                INSERT INTO evaluation_attempts(
                  evaluation_id, student_id, attempt_number, answers, score, max_score,
                  percentage, passed, started_at, completed_at, created_at
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    evaluation_id,
                    student_id,
                    int(row["last_number"]) + 1,
                    json_dumps(dict(answers)),
                    float(score),
                    float(max_score),
                    int(percentage),
                    1 if passed else 0,
                    started_at or completed_at,
                    completed_at,
                    completed_at,
                ),
            )
            attempt_id = int(cur.lastrowid)
            con.commit()
        except sqlite3.IntegrityError as exc:
            con.rollback()
            if "UNIQUE" not in str(exc):
                raise
            raise AttemptLimitError("a concurrent submission claimed this attempt number") from exc
        except BaseException:
            con.rollback()
            raise
    attempt = get_attempt(attempt_id)
    if attempt is None:
        raise RuntimeError(f"attempt {attempt_id} vanished after insert")
    return attempt


def get_attempt(attempt_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_ATTEMPT_COLUMNS} FROM evaluation_attempts WHERE id = ?",
        (int(attempt_id),),
    )
    return _attempt_from_row(rows[0]) if rows else None


def list_attempts(evaluation_id: str, student_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        f"""
        SELECT {_ATTEMPT_COLUMNS}
        FROM evaluation_attempts
        WHERE evaluation_id = ? AND student_id = ?
        ORDER BY attempt_number ASC
        """,
        (evaluation_id, student_id),
    )
    return [_attempt_from_row(row) for row in rows]


def list_course_attempts(student_id: str, course_id: str) -> list[Dict[str, Any]]:
    """All attempts by ``student_id`` on evaluations that belong to ``course_id``."""
    rows = _query(
        f"""
        SELECT {", ".join("a." + col.strip() for col in _ATTEMPT_COLUMNS.split(","))}
        FROM evaluation_attempts AS a
        JOIN evaluations AS e ON e.evaluation_id = a.evaluation_id
        LEFT JOIN lessons AS l ON l.lesson_id = e.lesson_id
        JOIN modules AS m ON m.module_id = COALESCE(e.module_id, l.module_id)
        WHERE a.student_id = ? AND m.course_id = ?
        ORDER BY a.created_at ASC
        """,
        (student_id, course_id),
    )
    return [_attempt_from_row(row) for row in rows]


# -------------- progress tracking --------------
def upsert_module_progress(
    student_id: str,
    module_id: str,
    *,
    status: Optional[str] = None,
    diagnostic_level: Optional[str] = None,
) -> Dict[str, Any]:
    if status is not None and status not in _MODULE_STATUSES:
        raise ValueError(f"invalid module status: {status}")
    if diagnostic_level is not None and diagnostic_level not in _DIAGNOSTIC_LEVELS:
        raise ValueError(f"invalid diagnostic level: {diagnostic_level}")
    _exec(
        """
        INSERT INTO module_progress(student_id, module_id, status, diagnostic_level, updated_at)
        VALUES (?,?,COALESCE(?, 'not_started'),?,?)
        ON CONFLICT(student_id, module_id) DO UPDATE SET
          status=COALESCE(?, module_progress.status),
          diagnostic_level=COALESCE(excluded.diagnostic_level, module_progress.diagnostic_level),
          updated_at=excluded.updated_at
        """,
        (student_id, module_id, status, diagnostic_level, _now_iso(), status),
    )
    return get_module_progress(student_id, module_id) or {}


def get_module_progress(student_id: str, module_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT student_id, module_id, status, diagnostic_level, updated_at
        FROM module_progress WHERE student_id = ? AND module_id = ?
        """,
        (student_id, module_id),
    )
    return dict(rows[0]) if rows else None


def mark_lesson_completed(student_id: str, lesson_id: str) -> None:
    now = _now_iso()
    _exec(
        """
        INSERT INTO student_progress(
          student_id, lesson_id, status, progress_percentage, completed_at, last_accessed
        )
        VALUES (?,?,'completed',100,?,?)
        ON CONFLICT(student_id, lesson_id) DO UPDATE SET
          status='completed',
          progress_percentage=100,
          completed_at=excluded.completed_at,
          last_accessed=excluded.last_accessed
        """,
        (student_id, lesson_id, now, now),
    )


def record_lesson_time(student_id: str, lesson_id: str, minutes: float) -> None:
    _exec(
        """
        INSERT INTO student_progress(student_id, lesson_id, status, time_spent, last_accessed)
        VALUES (?,?,'in_progress',?,?)
        ON CONFLICT(student_id, lesson_id) DO UPDATE SET
          time_spent=student_progress.time_spent + excluded.time_spent,
          last_accessed=excluded.last_accessed
        """,
        (student_id, lesson_id, float(minutes), _now_iso()),
    )


def list_course_lesson_progress(student_id: str, course_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT sp.lesson_id, sp.status, sp.progress_percentage, sp.time_spent,
               sp.completed_at, sp.last_accessed
        FROM student_progress AS sp
        JOIN lessons AS l ON l.lesson_id = sp.lesson_id
        JOIN modules AS m ON m.module_id = l.module_id
        WHERE sp.student_id = ? AND m.course_id = ?
        """,
        (student_id, course_id),
    )
    return [dict(row) for row in rows]


def current_module_for_student(student_id: str, course_id: str) -> Optional[str]:
    """First module of the course the student has not completed, else the last one."""
    rows = _query(
        """
        SELECT m.module_id, mp.status
        FROM modules AS m
        LEFT JOIN module_progress AS mp
          ON mp.module_id = m.module_id AND mp.student_id = ?
        WHERE m.course_id = ?
        ORDER BY m.order_index ASC, m.created_at ASC
        """,
        (student_id, course_id),
    )
    if not rows:
        return None
    for row in rows:
        if row["status"] != "completed":
            return row["module_id"]
    return rows[-1]["module_id"]


# -------------- performance states --------------
def upsert_performance_state(state: Mapping[str, Any]) -> None:
    _exec(
        """
        INSERT INTO performance_states(
          student_id, course_id, overall_progress, average_score, total_time_spent,
          lessons_completed, evaluations_passed, current_difficulty, learning_pace, last_activity
        )
        VALUES (?,?,?,?,?,?,?,?,?,?)
        ON CONFLICT(student_id, course_id) DO UPDATE SET
          overall_progress=excluded.overall_progress,
          average_score=excluded.average_score,
          total_time_spent=excluded.total_time_spent,
          lessons_completed=excluded.lessons_completed,
          evaluations_passed=excluded.evaluations_passed,
          current_difficulty=excluded.current_difficulty,
          learning_pace=excluded.learning_pace,
          last_activity=excluded.last_activity
        """,
        (
            state["student_id"],
            state["course_id"],
            float(state.get("overall_progress", 0.0)),
            float(state.get("average_score", 0.0)),
            float(state.get("total_time_spent", 0.0)),
            int(state.get("lessons_completed", 0)),
            int(state.get("evaluations_passed", 0)),
            state.get("current_difficulty"),
            state.get("learning_pace"),
            state.get("last_activity") or _now_iso(),
        ),
    )


def get_performance_state(student_id: str, course_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT student_id, course_id, overall_progress, average_score, total_time_spent,
               lessons_completed, evaluations_passed, current_difficulty, learning_pace,
               last_activity
        FROM performance_states WHERE student_id = ? AND course_id = ?
        """,
        (student_id, course_id),
    )
    return dict(rows[0]) if rows else None


# -------------- recommendations --------------
_RECOMMENDATION_COLUMNS = (
    "id, student_id, course_id, evaluation_id, attempt_id, target, recommendation_type, "
    "title, description, priority, recommended_content_id, recommended_content_type, "
    "action_url, is_read, is_applied, expires_at, created_at"
)


def _recommendation_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["is_read"] = bool(data["is_read"])
    data["is_applied"] = bool(data["is_applied"])
    return data


def insert_recommendation(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Insert one recommendation, returning the stored row.

    Rows that carry an ``attempt_id`` are unique per
    ``(student_id, evaluation_id, attempt_id, target)``; inserting the same
    key again returns the row that is already there.
    """
    with _conn() as con:
        cur = con.execute(
            """
            INSERT INTO recommendations(
              student_id, course_id, evaluation_id, attempt_id, target, recommendation_type,
              title, description, priority, recommended_content_id, recommended_content_type,
              action_url, expires_at, created_at
            )
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(student_id, evaluation_id, attempt_id, target) DO NOTHING
            """,
            (
                fields["student_id"],
                fields.get("course_id"),
                fields.get("evaluation_id"),
                fields.get("attempt_id"),
                fields.get("target"),
                fields["recommendation_type"],
                fields["title"],
                fields["description"],
                fields["priority"],
                fields.get("recommended_content_id"),
                fields.get("recommended_content_type"),
                fields.get("action_url"),
                fields.get("expires_at"),
                fields.get("created_at") or _now_iso(),
            ),
        )
        con.commit()
        if cur.rowcount:
            row = con.execute(
                f"SELECT {_RECOMMENDATION_COLUMNS} FROM recommendations WHERE id = ?",
                (cur.lastrowid,),
            ).fetchone()
        else:
            row = con.execute(
                f"""
                SELECT {_RECOMMENDATION_COLUMNS} FROM recommendations
                WHERE student_id = ? AND evaluation_id = ? AND attempt_id = ? AND target = ?
                """,
                (
                    fields["student_id"],
                    fields.get("evaluation_id"),
                    fields.get("attempt_id"),
                    fields.get("target"),
                ),
            ).fetchone()
    return _recommendation_from_row(row)


def get_recommendation(recommendation_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_RECOMMENDATION_COLUMNS} FROM recommendations WHERE id = ?",
        (int(recommendation_id),),
    )
    return _recommendation_from_row(rows[0]) if rows else None


def list_recommendations(
    student_id: str,
    *,
    page: int = 1,
    limit: int = 10,
    only_unread: bool = False,
) -> Tuple[list[Dict[str, Any]], int]:
    where = "WHERE student_id = ?"
    params: list[Any] = [student_id]
    if only_unread:
        where += " AND is_read = 0"
    total_rows = _query(f"SELECT COUNT(*) AS total FROM recommendations {where}", params)
    offset = (max(1, int(page)) - 1) * int(limit)
    rows = _query(
        f"""
        SELECT {_RECOMMENDATION_COLUMNS} FROM recommendations
        {where}
        ORDER BY created_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        [*params, int(limit), offset],
    )
    return [_recommendation_from_row(row) for row in rows], int(total_rows[0]["total"])


def list_attempt_recommendations(attempt_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_RECOMMENDATION_COLUMNS} FROM recommendations WHERE attempt_id = ? ORDER BY id ASC",
        (int(attempt_id),),
    )
    return [_recommendation_from_row(row) for row in rows]


def set_recommendation_flag(recommendation_id: int, flag: str) -> Optional[Dict[str, Any]]:
    if flag not in {"is_read", "is_applied"}:
        raise ValueError(f"unknown recommendation flag: {flag}")
    _exec(f"UPDATE recommendations SET {flag} = 1 WHERE id = ?", (int(recommendation_id),))
    return get_recommendation(recommendation_id)
