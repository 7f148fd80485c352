import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the global pool reference for each test
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def services(temp_db):
    from services import build_services

    built = build_services(default_passing_score=70, lookup_timeout=2.0, pipeline_enabled=True)
    yield built
    built.close()


@pytest.fixture
def course(temp_db):
    """One course with two modules, tiered lessons, resources and evaluations."""
    import db

    db.upsert_module("mod-1", "course-1", "Foundations", order_index=0)
    db.upsert_module("mod-2", "course-1", "Applications", order_index=1)

    db.upsert_lesson("les-core-2", "mod-1", "Core part two", "core", order_index=2)
    db.upsert_lesson("les-core-1", "mod-1", "Core part one", "core", order_index=1, content_url="https://lms.test/core-1")
    db.upsert_lesson("les-rem-2", "mod-1", "Remedial second", "remedial", order_index=5)
    db.upsert_lesson("les-rem-1", "mod-1", "Remedial first", "remedial", order_index=3)
    db.upsert_lesson("les-adv-1", "mod-1", "Advanced", "advanced", order_index=4)
    db.upsert_lesson("les-m2-core", "mod-2", "Applied core", "core", order_index=0)

    db.add_course_resource("res-1", "course-1", "Cheat sheet", "pdf", "https://lms.test/cheat.pdf")
    db.add_course_resource("res-2", "course-1", "Video walkthrough", "url", "https://lms.test/video")
    db.add_course_resource("res-3", "course-1", "Exercise book", "pdf", "https://lms.test/book.pdf")

    questions = [
        {"id": "q1", "options": ["a", "b", "c"], "correct_options": [0], "points": 1},
        {"id": "q2", "options": ["a", "b", "c"], "correct_options": [1, 2], "points": 1},
        {"id": "q3", "options": ["a", "b"], "correct_option": 1, "points": 2},
    ]
    db.upsert_evaluation(
        "eval-module",
        questions=questions,
        max_score=4,
        title="Module quiz",
        module_id="mod-1",
        max_attempts=3,
    )
    db.upsert_evaluation(
        "eval-diag",
        questions=questions,
        max_score=4,
        title="Diagnostic",
        evaluation_type="diagnostic",
        module_id="mod-1",
    )
    db.upsert_evaluation(
        "eval-lesson",
        questions=questions[:1],
        max_score=1,
        title="Lesson check",
        lesson_id="les-core-1",
    )
    return "course-1"

