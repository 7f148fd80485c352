"""Write resolved recommendations to the store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import db
from schemas import Recommendation, ResolvedRecommendation

_LOGGER = logging.getLogger(__name__)

RECOMMENDATION_TYPES: Dict[str, str] = {
    "content": "content",
    "review": "content",
    "pace": "study_plan",
    "difficulty": "difficulty_adjustment",
    "remedial": "support_material",
    "support": "support_material",
    "advance": "advancement",
    "praise": "praise",
}

EXPIRY_DAYS: Dict[str, int] = {"high": 3, "medium": 7, "low": 14}


class RecommendationPersister:
    """Stores one row per resolved action.

    Rows tied to an attempt are keyed by
    ``(student_id, evaluation_id, attempt_id, target)``; persisting the same
    key twice returns the existing row, so a pipeline re-run is harmless.
    """

    def __init__(self, store: Any = db) -> None:
        self.store = store

    def persist(
        self,
        student_id: str,
        course_id: Optional[str],
        resolved: ResolvedRecommendation,
        *,
        evaluation_id: Optional[str] = None,
        attempt_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Recommendation:
        now = now or datetime.now(timezone.utc)
        action = resolved.action
        expires_at = now + timedelta(days=EXPIRY_DAYS.get(resolved.priority, 7))
        row = self.store.insert_recommendation(
            {
                "student_id": student_id,
                "course_id": course_id,
                "evaluation_id": evaluation_id,
                "attempt_id": attempt_id,
                "target": action.target,
                "recommendation_type": RECOMMENDATION_TYPES.get(action.type, "content"),
                "title": resolved.title,
                "description": resolved.description,
                "priority": resolved.priority,
                "recommended_content_id": resolved.recommended_content_id,
                "recommended_content_type": resolved.recommended_content_type,
                "action_url": resolved.action_url,
                "expires_at": expires_at.isoformat(),
                "created_at": now.isoformat(),
            }
        )
        _LOGGER.debug("Persisted recommendation %s (%s) for %s", row["id"], action.id, student_id)
        return Recommendation.model_validate(row)
