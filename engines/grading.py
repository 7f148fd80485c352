"""Grading of submitted evaluation attempts."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import db
from schemas import Evaluation, EvaluationAttempt, GradeResult, ModuleProgress

_LOGGER = logging.getLogger(__name__)

DEFAULT_PASSING_SCORE = 70.0


class GradingError(ValueError):
    """Validation failure reported back to the submitting student."""


class EvaluationNotFoundError(GradingError):
    pass


class MaxAttemptsReachedError(GradingError):
    pass


@dataclass
class Submission:
    """A persisted attempt plus the course/module it belongs to."""

    attempt: EvaluationAttempt
    evaluation: Evaluation
    course_id: Optional[str]
    module_id: Optional[str]


def _parse_index(value: Any, question_id: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"answer for question {question_id!r} must be an option index")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(f"answer for question {question_id!r} must be an option index")


def selected_options(raw: Any, question_id: str) -> frozenset[int]:
    """Normalise one answer (an index or a list of indexes) into an index set."""
    if raw is None:
        return frozenset()
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(_parse_index(item, question_id) for item in raw)
    return frozenset({_parse_index(raw, question_id)})


def percentage_of(score: float, max_score: float) -> int:
    if max_score <= 0:
        return 0
    # half-up, so 62.5 -> 63
    return int(math.floor(100.0 * score / max_score + 0.5))


def diagnostic_level(percentage: int) -> str:
    if percentage < 70:
        return "low"
    if percentage < 90:
        return "average"
    return "high"


class AttemptGrader:
    """Scores answers against an evaluation and records the attempt.

    A question earns its points only when the selected option set equals the
    correct option set exactly; there is no partial credit.
    """

    def __init__(self, store: Any = db, default_passing_score: float = DEFAULT_PASSING_SCORE) -> None:
        self.store = store
        self.default_passing_score = float(default_passing_score)

    def grade(self, evaluation: Evaluation, answers: Mapping[str, Any]) -> GradeResult:
        score = 0.0
        for question in evaluation.questions:
            chosen = selected_options(answers.get(question.id), question.id)
            if chosen and chosen == question.correct_set():
                score += float(question.points)
        percentage = percentage_of(score, float(evaluation.max_score))
        passing = (
            evaluation.passing_score
            if evaluation.passing_score is not None
            else self.default_passing_score
        )
        return GradeResult(score=score, percentage=percentage, passed=percentage >= passing)

    def submit(self, evaluation_id: str, student_id: str, answers: Mapping[str, Any]) -> Submission:
        """Grade and persist one attempt, then apply progress side effects.

        Raises :class:`EvaluationNotFoundError` or :class:`MaxAttemptsReachedError`
        before anything is written.
        """
        raw = self.store.get_evaluation(evaluation_id)
        if raw is None:
            raise EvaluationNotFoundError(f"evaluation {evaluation_id} not found")
        evaluation = Evaluation.model_validate(raw)

        result = self.grade(evaluation, answers)
        try:
            stored = self.store.insert_attempt(
                evaluation.id,
                student_id,
                answers=answers,
                score=result.score,
                max_score=evaluation.max_score,
                percentage=result.percentage,
                passed=result.passed,
                max_attempts=evaluation.max_attempts,
            )
        except db.AttemptLimitError as exc:
            raise MaxAttemptsReachedError(f"max attempts reached for evaluation {evaluation_id}") from exc

        attempt = EvaluationAttempt.model_validate(stored)
        course_id, module_id = self.store.get_evaluation_scope(evaluation.id)
        _LOGGER.info(
            "Graded attempt %s (#%s) of %s for %s: %s%% passed=%s",
            attempt.id,
            attempt.attempt_number,
            evaluation.id,
            student_id,
            attempt.percentage,
            attempt.passed,
        )
        try:
            self._apply_progress(evaluation, attempt, module_id)
        except Exception:
            # The attempt is already committed; progress can be rebuilt later.
            _LOGGER.exception(
                "Failed to update progress after attempt %s of %s", attempt.id, evaluation.id
            )
        return Submission(attempt=attempt, evaluation=evaluation, course_id=course_id, module_id=module_id)

    def _apply_progress(
        self,
        evaluation: Evaluation,
        attempt: EvaluationAttempt,
        module_id: Optional[str],
    ) -> None:
        student_id = attempt.student_id
        if evaluation.evaluation_type == "diagnostic":
            if module_id:
                self._save_progress(
                    ModuleProgress(
                        student_id=student_id,
                        module_id=module_id,
                        status="in_progress",
                        diagnostic_level=diagnostic_level(attempt.percentage),
                    )
                )
        elif evaluation.module_id and attempt.passed:
            self._save_progress(
                ModuleProgress(student_id=student_id, module_id=evaluation.module_id, status="completed")
            )
        elif evaluation.lesson_id and attempt.passed:
            self.store.mark_lesson_completed(student_id, evaluation.lesson_id)

    def _save_progress(self, progress: ModuleProgress) -> None:
        self.store.upsert_module_progress(
            progress.student_id,
            progress.module_id,
            status=progress.status,
            diagnostic_level=progress.diagnostic_level,
        )
