"""Pydantic schemas for evaluations, attempts and recommendations."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Question",
    "Evaluation",
    "EvaluationAttempt",
    "GradeResult",
    "EvaluationContext",
    "ModuleProgress",
    "Lesson",
    "CourseResource",
    "PerformanceState",
    "RecommendationAction",
    "ResolvedRecommendation",
    "Recommendation",
    "RecommendationPage",
    "SubmitAttemptRequest",
    "GenerateForEvaluationRequest",
    "PerformanceUpdateRequest",
    "EvaluationWebhookRequest",
]

EvaluationType = Literal["quiz", "diagnostic", "assignment", "project"]
TargetLevel = Literal["core", "remedial", "advanced"]
Priority = Literal["low", "medium", "high"]
ActionType = Literal[
    "content",
    "difficulty",
    "pace",
    "review",
    "remedial",
    "support",
    "advance",
    "praise",
]


class Question(BaseModel):
    id: str
    question_text: str = ""
    question_type: Literal["multiple_choice", "true_false", "short_answer"] = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_options: Optional[List[int]] = Field(
        default=None,
        description="Indexes into ``options`` that together form the only accepted answer.",
    )
    correct_option: Optional[int] = Field(
        default=None,
        description="Single-answer shorthand used when ``correct_options`` is absent.",
    )
    points: float = 1.0

    def correct_set(self) -> frozenset[int]:
        if self.correct_options is not None:
            return frozenset(int(idx) for idx in self.correct_options)
        if self.correct_option is not None:
            return frozenset({int(self.correct_option)})
        return frozenset()


class Evaluation(BaseModel):
    id: str
    title: str = ""
    evaluation_type: EvaluationType = "quiz"
    module_id: Optional[str] = None
    lesson_id: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    max_score: float = 0.0
    passing_score: Optional[float] = None
    max_attempts: Optional[int] = Field(
        default=None,
        description="Null or 0 leaves the number of attempts unlimited.",
    )


class EvaluationAttempt(BaseModel):
    id: int
    evaluation_id: str
    student_id: str
    attempt_number: int
    answers: Dict[str, Any] = Field(default_factory=dict)
    score: float
    max_score: float
    percentage: int
    passed: bool
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None


class GradeResult(BaseModel):
    score: float
    percentage: int
    passed: bool


class EvaluationContext(BaseModel):
    """Everything the evaluation tree needs to decide on one attempt."""

    student_id: str
    course_id: Optional[str] = None
    module_id: Optional[str] = None
    evaluation: Evaluation
    attempt: EvaluationAttempt
    all_attempts: List[EvaluationAttempt] = Field(default_factory=list)


class ModuleProgress(BaseModel):
    student_id: str
    module_id: str
    status: Literal["not_started", "in_progress", "completed"] = "not_started"
    diagnostic_level: Optional[Literal["low", "average", "high"]] = None
    updated_at: Optional[str] = None


class Lesson(BaseModel):
    id: str
    module_id: str
    title: str
    target_level: TargetLevel = "core"
    order_index: int = 0
    content_url: Optional[str] = None


class CourseResource(BaseModel):
    id: str
    course_id: str
    title: str
    resource_type: Literal["pdf", "url"]
    url: Optional[str] = None


class PerformanceState(BaseModel):
    student_id: str
    course_id: str
    overall_progress: float = 0.0
    average_score: float = 0.0
    total_time_spent: float = 0.0
    lessons_completed: int = 0
    evaluations_passed: int = 0
    current_difficulty: Literal["beginner", "intermediate", "advanced"] = "beginner"
    learning_pace: Literal["slow", "normal", "fast"] = "normal"
    last_activity: Optional[str] = None


class RecommendationAction(BaseModel):
    """An abstract suggestion produced by a decision tree, before resolution."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: ActionType
    target: str
    priority: Priority
    title: str
    message: str


class ResolvedRecommendation(BaseModel):
    """Recommendation fields after the action target has been resolved."""

    action: RecommendationAction
    title: str
    description: str
    priority: Priority
    recommended_content_id: Optional[str] = None
    recommended_content_type: Optional[Literal["lesson", "course", "evaluation", "resource"]] = None
    action_url: Optional[str] = None


class Recommendation(BaseModel):
    id: int
    student_id: str
    course_id: Optional[str] = None
    evaluation_id: Optional[str] = None
    attempt_id: Optional[int] = None
    target: Optional[str] = None
    recommendation_type: str
    title: str
    description: str
    priority: Priority
    recommended_content_id: Optional[str] = None
    recommended_content_type: Optional[str] = None
    action_url: Optional[str] = None
    is_read: bool = False
    is_applied: bool = False
    expires_at: Optional[str] = None
    created_at: Optional[str] = None


class RecommendationPage(BaseModel):
    data: List[Recommendation]
    total: int
    page: int
    limit: int


class SubmitAttemptRequest(BaseModel):
    student_id: str = Field(min_length=1)
    answers: Dict[str, Any]


class GenerateForEvaluationRequest(BaseModel):
    evaluation_id: str
    attempt_id: int


class PerformanceUpdateRequest(BaseModel):
    student_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)


class EvaluationWebhookRequest(BaseModel):
    student_id: str
    course_id: str
    evaluation_id: str
    attempt_id: int
