"""Resolve symbolic recommendation targets into concrete content."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as LookupTimeout
from typing import Any, Callable, Optional, TypeVar

import db
from schemas import CourseResource, Lesson, RecommendationAction, ResolvedRecommendation

_LOGGER = logging.getLogger(__name__)

GENERAL_RESOURCES_TARGET = "MODULE_GENERAL_RESOURCES"

T = TypeVar("T")


def level_for_target(target: str) -> Optional[str]:
    """Map a lesson slot such as ``FIRST_REMEDIAL_LESSON`` to a target level."""
    if "LESSON" not in target:
        return None
    if "REMEDIAL" in target:
        return "remedial"
    if "ADVANCED" in target:
        return "advanced"
    return "core"


class ContentResolver:
    """Turns a :class:`RecommendationAction` into persistable recommendation fields.

    Every store lookup is bounded by ``lookup_timeout`` seconds. A lookup that
    fails or times out is treated like "nothing found": the recommendation is
    still produced, only without a content link.
    """

    def __init__(self, store: Any = db, lookup_timeout: float = 2.0, max_workers: int = 4) -> None:
        self.store = store
        self.lookup_timeout = lookup_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="content-lookup")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _lookup(self, description: str, fn: Callable[..., T], *args: Any) -> Optional[T]:
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.lookup_timeout)
        except LookupTimeout:
            future.cancel()
            _LOGGER.warning("Lookup of %s timed out after %.1fs", description, self.lookup_timeout)
        except Exception:
            _LOGGER.warning("Lookup of %s failed", description, exc_info=True)
        return None

    def resolve(
        self,
        action: RecommendationAction,
        module_id: Optional[str],
        course_id: Optional[str],
    ) -> ResolvedRecommendation:
        resolved = ResolvedRecommendation(
            action=action,
            title=action.title,
            description=action.message,
            priority=action.priority,
        )

        level = level_for_target(action.target)
        if level is not None:
            return self._resolve_lesson(resolved, module_id, level)
        if action.target == GENERAL_RESOURCES_TARGET:
            return self._resolve_resources(resolved, course_id)
        return resolved

    def _resolve_lesson(
        self,
        resolved: ResolvedRecommendation,
        module_id: Optional[str],
        level: str,
    ) -> ResolvedRecommendation:
        if not module_id:
            _LOGGER.warning("No module to resolve %s against", resolved.action.target)
            return resolved
        row = self._lookup(
            f"{level} lesson in module {module_id}",
            self.store.find_first_lesson_by_level,
            module_id,
            level,
        )
        if row is None:
            _LOGGER.warning("No %s lesson in module %s for action %s", level, module_id, resolved.action.id)
            return resolved
        lesson = Lesson.model_validate(row)
        return resolved.model_copy(
            update={
                "recommended_content_id": lesson.id,
                "recommended_content_type": "lesson",
                "action_url": lesson.content_url or f"/lessons/{lesson.id}",
            }
        )

    def _resolve_resources(
        self,
        resolved: ResolvedRecommendation,
        course_id: Optional[str],
    ) -> ResolvedRecommendation:
        if not course_id:
            return resolved
        rows = self._lookup(
            f"resources of course {course_id}",
            self.store.list_course_resources,
            course_id,
        )
        resources = [CourseResource.model_validate(item) for item in rows or []]
        pdf_titles = [item.title for item in resources if item.resource_type == "pdf"]
        if not pdf_titles:
            return resolved
        listing = "\n".join(f"- {title}" for title in pdf_titles)
        return resolved.model_copy(update={"description": f"{resolved.description}\n\n{listing}"})
