"""Assemble the data the evaluation decision tree works on."""

from __future__ import annotations

import logging
from typing import Any, Optional

import db
from schemas import Evaluation, EvaluationAttempt, EvaluationContext

_LOGGER = logging.getLogger(__name__)


class EvaluationContextBuilder:
    def __init__(self, store: Any = db) -> None:
        self.store = store

    def build(
        self,
        student_id: str,
        course_id: Optional[str],
        evaluation_id: str,
        attempt_id: int,
    ) -> Optional[EvaluationContext]:
        """Return the context for one graded attempt, or ``None``.

        ``None`` means no recommendations can be produced this time: the
        evaluation or attempt is missing, or the attempt belongs to another
        student. Callers log it and move on.
        """
        raw_evaluation = self.store.get_evaluation(evaluation_id)
        if raw_evaluation is None:
            _LOGGER.warning("No context: evaluation %s not found", evaluation_id)
            return None

        raw_attempt = self.store.get_attempt(attempt_id)
        if raw_attempt is None:
            _LOGGER.warning("No context: attempt %s not found", attempt_id)
            return None
        if raw_attempt["student_id"] != student_id or raw_attempt["evaluation_id"] != evaluation_id:
            _LOGGER.warning(
                "No context: attempt %s does not belong to student %s on evaluation %s",
                attempt_id,
                student_id,
                evaluation_id,
            )
            return None

        history = self.store.list_attempts(evaluation_id, student_id)
        if not history:
            _LOGGER.warning("No context: empty attempt history for %s/%s", evaluation_id, student_id)
            return None

        scope_course, module_id = self.store.get_evaluation_scope(evaluation_id)
        return EvaluationContext(
            student_id=student_id,
            course_id=course_id or scope_course,
            module_id=module_id,
            evaluation=Evaluation.model_validate(raw_evaluation),
            attempt=EvaluationAttempt.model_validate(raw_attempt),
            all_attempts=[EvaluationAttempt.model_validate(item) for item in history],
        )
