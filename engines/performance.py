"""Per-course performance snapshots and the recommendations derived from them."""

from __future__ import annotations

import logging
from typing import Any, Optional

import db
from schemas import PerformanceState, Recommendation
from engines.content_resolver import ContentResolver
from engines.decision_tree import DecisionEngine
from engines.recommendation_persister import RecommendationPersister

_LOGGER = logging.getLogger(__name__)


def difficulty_for(average_score: float) -> str:
    if average_score >= 80:
        return "advanced"
    if average_score >= 60:
        return "intermediate"
    return "beginner"


def pace_for(total_minutes: float) -> str:
    if total_minutes > 180:
        return "fast"
    if total_minutes < 60:
        return "slow"
    return "normal"


class PerformanceAnalyzer:
    def __init__(
        self,
        engine: DecisionEngine,
        resolver: ContentResolver,
        persister: RecommendationPersister,
        store: Any = db,
    ) -> None:
        self.engine = engine
        self.resolver = resolver
        self.persister = persister
        self.store = store

    def compute_performance_state(self, student_id: str, course_id: str) -> PerformanceState:
        """Recompute and store the student's snapshot for ``course_id``.

        ``overall_progress`` is the share of the course's lessons completed,
        ``average_score`` the mean percentage over every attempt on the
        course's evaluations and ``evaluations_passed`` the number of passing
        attempts.
        """
        total_lessons = self.store.count_course_lessons(course_id)
        progress = self.store.list_course_lesson_progress(student_id, course_id)
        attempts = self.store.list_course_attempts(student_id, course_id)

        lessons_completed = sum(1 for row in progress if row["status"] == "completed")
        total_time = sum(float(row["time_spent"] or 0) for row in progress)
        overall = (100.0 * lessons_completed / total_lessons) if total_lessons else 0.0
        average = (sum(a["percentage"] for a in attempts) / len(attempts)) if attempts else 0.0

        state = PerformanceState(
            student_id=student_id,
            course_id=course_id,
            overall_progress=overall,
            average_score=average,
            total_time_spent=total_time,
            lessons_completed=lessons_completed,
            evaluations_passed=sum(1 for a in attempts if a["passed"]),
            current_difficulty=difficulty_for(average),
            learning_pace=pace_for(total_time),
        )
        self.store.upsert_performance_state(state.model_dump())
        stored = self.store.get_performance_state(student_id, course_id)
        return PerformanceState.model_validate(stored) if stored else state

    def load_state(self, student_id: str, course_id: str) -> PerformanceState:
        stored = self.store.get_performance_state(student_id, course_id)
        if stored is None:
            return self.compute_performance_state(student_id, course_id)
        return PerformanceState.model_validate(stored)

    def generate_for_student(self, student_id: str, course_id: str) -> Optional[Recommendation]:
        """Run the performance tree and persist its action, if it yields one."""
        state = self.load_state(student_id, course_id)
        action = self.engine.recommend_for_performance(state)
        if action is None:
            _LOGGER.info("Performance tree produced no action for %s in %s", student_id, course_id)
            return None
        module_id = self.store.current_module_for_student(student_id, course_id)
        resolved = self.resolver.resolve(action, module_id, course_id)
        return self.persister.persist(student_id, course_id, resolved)
