"""Post-grading recommendation pipeline.

context build -> evaluation tree -> content resolution -> persistence.
Runs after the grading response has been sent; delivery is at-least-once, so
every step must tolerate being repeated for the same attempt.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from schemas import Recommendation
from engines.content_resolver import ContentResolver
from engines.context_builder import EvaluationContextBuilder
from engines.decision_tree import DecisionEngine
from engines.recommendation_persister import RecommendationPersister

_LOGGER = logging.getLogger(__name__)

_EVENT_LOGGER = logging.getLogger("aec.pipeline")
if not _EVENT_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _EVENT_LOGGER.addHandler(_handler)
_EVENT_LOGGER.setLevel(logging.INFO)
_EVENT_LOGGER.propagate = False


def _log_json(record: Dict[str, Any]) -> None:
    try:
        _EVENT_LOGGER.info(json.dumps(record, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        _EVENT_LOGGER.info(record)


class RecommendationPipeline:
    def __init__(
        self,
        context_builder: EvaluationContextBuilder,
        engine: DecisionEngine,
        resolver: ContentResolver,
        persister: RecommendationPersister,
    ) -> None:
        self.context_builder = context_builder
        self.engine = engine
        self.resolver = resolver
        self.persister = persister

    def run(
        self,
        student_id: str,
        course_id: Optional[str],
        evaluation_id: str,
        attempt_id: int,
    ) -> List[Recommendation]:
        """Produce and store the recommendations for one graded attempt.

        Returns an empty list when no context can be built for the attempt.
        Store errors propagate; see :meth:`run_safely` for the background
        variant.
        """
        started = time.perf_counter()
        context = self.context_builder.build(student_id, course_id, evaluation_id, attempt_id)
        if context is None:
            _log_json(
                {
                    "event": "recommendation_pipeline",
                    "status": "skipped",
                    "student_id": student_id,
                    "evaluation_id": evaluation_id,
                    "attempt_id": attempt_id,
                }
            )
            return []

        actions = self.engine.recommend_for_evaluation(context)
        persisted: List[Recommendation] = []
        for action in actions:
            resolved = self.resolver.resolve(action, context.module_id, context.course_id)
            persisted.append(
                self.persister.persist(
                    student_id,
                    context.course_id,
                    resolved,
                    evaluation_id=evaluation_id,
                    attempt_id=attempt_id,
                )
            )

        _log_json(
            {
                "event": "recommendation_pipeline",
                "status": "ok",
                "student_id": student_id,
                "course_id": context.course_id,
                "evaluation_id": evaluation_id,
                "attempt_id": attempt_id,
                "actions": [action.id for action in actions],
                "persisted": len(persisted),
                "latency_ms": int((time.perf_counter() - started) * 1000),
            }
        )
        return persisted

    def run_safely(
        self,
        student_id: str,
        course_id: Optional[str],
        evaluation_id: str,
        attempt_id: int,
    ) -> List[Recommendation]:
        try:
            return self.run(student_id, course_id, evaluation_id, attempt_id)
        except Exception:
            # The attempt is already committed; a failed run only loses recommendations.
            _LOGGER.error(
                "Recommendation pipeline failed for attempt %s of %s (student %s)",
                attempt_id,
                evaluation_id,
                student_id,
                exc_info=True,
            )
            return []
