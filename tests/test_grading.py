import threading

import pytest

import db
from engines.grading import (
    AttemptGrader,
    EvaluationNotFoundError,
    MaxAttemptsReachedError,
    diagnostic_level,
    percentage_of,
    selected_options,
)
from schemas import Evaluation

ALL_CORRECT = {"q1": 0, "q2": [2, 1], "q3": 1}
ALL_WRONG = {"q1": 2, "q2": [1], "q3": 0}


def _evaluation(**overrides):
    data = {
        "id": "eval-1",
        "module_id": "mod-1",
        "max_score": 4,
        "questions": [
            {"id": "q1", "correct_options": [0], "points": 1},
            {"id": "q2", "correct_options": [1, 2], "points": 1},
            {"id": "q3", "correct_option": 1, "points": 2},
        ],
    }
    data.update(overrides)
    return Evaluation.model_validate(data)


def test_exact_set_match_scores_points():
    result = AttemptGrader().grade(_evaluation(), ALL_CORRECT)
    assert result.score == 4
    assert result.percentage == 100
    assert result.passed is True


def test_subset_and_superset_score_zero():
    grader = AttemptGrader()
    subset = grader.grade(_evaluation(), {"q2": [1]})
    superset = grader.grade(_evaluation(), {"q2": [0, 1, 2]})
    assert subset.score == 0
    assert superset.score == 0


def test_unanswered_questions_score_zero():
    result = AttemptGrader().grade(_evaluation(), {})
    assert result.score == 0
    assert result.percentage == 0
    assert result.passed is False


def test_percentage_rounds_half_up():
    evaluation = _evaluation(
        max_score=8,
        questions=[{"id": f"q{i}", "correct_option": 0, "points": 1} for i in range(8)],
    )
    answers = {f"q{i}": 0 for i in range(5)}
    # 5/8 = 62.5%
    assert AttemptGrader().grade(evaluation, answers).percentage == 63
    assert percentage_of(1, 3) == 33
    assert percentage_of(2, 3) == 67


def test_zero_max_score_gives_zero_percentage():
    result = AttemptGrader().grade(_evaluation(max_score=0), ALL_CORRECT)
    assert result.score == 4
    assert result.percentage == 0
    assert result.passed is False


@pytest.mark.parametrize(
    "passing_score, default, expected",
    [(None, 70, False), (None, 50, True), (40, 70, True), (75, 50, False)],
)
def test_pass_threshold(passing_score, default, expected):
    evaluation = _evaluation(passing_score=passing_score)
    # q3 only: 2/4 = 50%
    result = AttemptGrader(default_passing_score=default).grade(evaluation, {"q3": 1})
    assert result.percentage == 50
    assert result.passed is expected


def test_answer_normalisation():
    assert selected_options(2, "q") == frozenset({2})
    assert selected_options("1", "q") == frozenset({1})
    assert selected_options([0, "2"], "q") == frozenset({0, 2})
    assert selected_options(None, "q") == frozenset()
    with pytest.raises(ValueError):
        selected_options(True, "q")
    with pytest.raises(ValueError):
        selected_options({"a": 1}, "q")


def test_diagnostic_buckets():
    assert diagnostic_level(69) == "low"
    assert diagnostic_level(70) == "average"
    assert diagnostic_level(89) == "average"
    assert diagnostic_level(90) == "high"


def test_submit_persists_attempt(course):
    grader = AttemptGrader(db)
    submission = grader.submit("eval-module", "stu-1", ALL_CORRECT)

    attempt = submission.attempt
    assert attempt.attempt_number == 1
    assert attempt.percentage == 100
    assert attempt.passed is True
    assert submission.course_id == "course-1"
    assert submission.module_id == "mod-1"
    assert db.get_attempt(attempt.id)["score"] == 4


def test_submit_unknown_evaluation(course):
    with pytest.raises(EvaluationNotFoundError):
        AttemptGrader(db).submit("nope", "stu-1", ALL_CORRECT)


def test_submit_rejects_after_max_attempts(course):
    grader = AttemptGrader(db)
    numbers = [grader.submit("eval-module", "stu-1", ALL_WRONG).attempt.attempt_number for _ in range(3)]
    assert numbers == [1, 2, 3]

    with pytest.raises(MaxAttemptsReachedError):
        grader.submit("eval-module", "stu-1", ALL_CORRECT)
    assert len(db.list_attempts("eval-module", "stu-1")) == 3


def test_malformed_answers_write_nothing(course):
    with pytest.raises(ValueError):
        AttemptGrader(db).submit("eval-module", "stu-1", {"q1": "first"})
    assert db.list_attempts("eval-module", "stu-1") == []


def test_passed_module_evaluation_completes_module(course):
    AttemptGrader(db).submit("eval-module", "stu-1", ALL_CORRECT)
    assert db.get_module_progress("stu-1", "mod-1")["status"] == "completed"


def test_failed_module_evaluation_leaves_progress(course):
    AttemptGrader(db).submit("eval-module", "stu-1", ALL_WRONG)
    assert db.get_module_progress("stu-1", "mod-1") is None


def test_diagnostic_sets_level_and_in_progress(course):
    # q1 + q2 = 2/4 = 50%
    AttemptGrader(db).submit("eval-diag", "stu-1", {"q1": 0, "q2": [1, 2]})
    progress = db.get_module_progress("stu-1", "mod-1")
    assert progress["status"] == "in_progress"
    assert progress["diagnostic_level"] == "low"


def test_passed_lesson_evaluation_completes_lesson(course):
    AttemptGrader(db).submit("eval-lesson", "stu-1", {"q1": 0})
    rows = db.list_course_lesson_progress("stu-1", "course-1")
    assert [(row["lesson_id"], row["status"]) for row in rows] == [("les-core-1", "completed")]


def test_progress_failure_does_not_fail_submission(course, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("progress store down")

    monkeypatch.setattr(db, "upsert_module_progress", broken)
    submission = AttemptGrader(db).submit("eval-module", "stu-1", ALL_CORRECT)
    assert submission.attempt.passed is True
    assert len(db.list_attempts("eval-module", "stu-1")) == 1


def test_passed_module_after_diagnostic_keeps_level(course):
    AttemptGrader(db).submit("eval-diag", "stu-1", ALL_CORRECT)
    AttemptGrader(db).submit("eval-module", "stu-1", ALL_CORRECT)
    progress = db.get_module_progress("stu-1", "mod-1")
    assert progress["status"] == "completed"
    assert progress["diagnostic_level"] == "high"


def test_concurrent_submissions_respect_single_attempt(course):
    db.upsert_evaluation(
        "eval-once",
        questions=[{"id": "q1", "correct_options": [0], "points": 1}],
        max_score=1,
        module_id="mod-2",
        max_attempts=1,
    )
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    errors = []
    lock = threading.Lock()

    def submit(index):
        barrier.wait()
        try:
            AttemptGrader(db).submit("eval-once", "stu-1", {"q1": index % 2})
            outcome = "ok"
        except MaxAttemptsReachedError:
            outcome = "limit"
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)
            return
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=submit, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert sorted(outcomes) == ["limit"] * (workers - 1) + ["ok"]
    attempts = db.list_attempts("eval-once", "stu-1")
    assert [a["attempt_number"] for a in attempts] == [1]
