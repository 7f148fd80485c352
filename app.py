# app.py - adaptive evaluation & recommendation service
# - graded submissions answer immediately, recommendations are produced in the background
# - decision-tree driven recommendations, persisted per attempt

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request

import db
from engines.grading import EvaluationNotFoundError, MaxAttemptsReachedError
from schemas import (
    EvaluationAttempt,
    EvaluationWebhookRequest,
    GenerateForEvaluationRequest,
    PerformanceUpdateRequest,
    Recommendation,
    RecommendationPage,
    SubmitAttemptRequest,
)
from services import Services, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
        app_.state.services = build_services()
        logger.info(
            "Recommendation pipeline enabled: %s", app_.state.services.pipeline_enabled
        )
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    try:
        yield
    finally:
        app_.state.services.close()


app = FastAPI(title="Adaptive Evaluation Core", version="1.0.0", lifespan=_lifespan)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services


def _recommendation_payload(recommendation: Optional[Recommendation]) -> Optional[Dict[str, Any]]:
    return recommendation.model_dump() if recommendation is not None else None


# -------------- evaluations --------------
@app.post("/evaluations/{evaluation_id}/submit")
def submit_attempt(
    evaluation_id: str,
    body: SubmitAttemptRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    try:
        submission = services.grader.submit(evaluation_id, body.student_id, body.answers)
    except EvaluationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except MaxAttemptsReachedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    attempt = submission.attempt
    if services.pipeline_enabled:
        background_tasks.add_task(
            services.pipeline.run_safely,
            body.student_id,
            submission.course_id,
            evaluation_id,
            attempt.id,
        )
    return {"attempt": attempt.model_dump()}


@app.get("/evaluations/{evaluation_id}/attempts")
def list_attempts(evaluation_id: str, student_id: str = Query(..., min_length=1)):
    if db.get_evaluation(evaluation_id) is None:
        raise HTTPException(status_code=404, detail=f"evaluation {evaluation_id} not found")
    attempts = [
        EvaluationAttempt.model_validate(row).model_dump()
        for row in db.list_attempts(evaluation_id, student_id)
    ]
    return {"attempts": attempts}


# -------------- recommendations --------------
@app.post("/recommendations/generate/student/{student_id}/course/{course_id}")
def generate_for_evaluation(
    student_id: str,
    course_id: str,
    body: GenerateForEvaluationRequest,
    services: Services = Depends(get_services),
):
    recommendations = services.pipeline.run(student_id, course_id, body.evaluation_id, body.attempt_id)
    return {"recommendations": [item.model_dump() for item in recommendations]}


@app.post("/recommendations/generate/{student_id}")
def generate_for_performance(
    student_id: str,
    course_id: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    recommendation = services.performance.generate_for_student(student_id, course_id)
    return {"recommendation": _recommendation_payload(recommendation)}


@app.post("/recommendations/performance")
def update_performance(body: PerformanceUpdateRequest, services: Services = Depends(get_services)):
    state = services.performance.compute_performance_state(body.student_id, body.course_id)
    return {"performance_state": state.model_dump()}


@app.get("/recommendations/student/{student_id}", response_model=RecommendationPage)
def list_student_recommendations(
    student_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    only_unread: bool = False,
):
    rows, total = db.list_recommendations(student_id, page=page, limit=limit, only_unread=only_unread)
    return RecommendationPage(
        data=[Recommendation.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
    )


def _set_flag(recommendation_id: int, flag: str) -> Dict[str, Any]:
    row = db.set_recommendation_flag(recommendation_id, flag)
    if row is None:
        raise HTTPException(status_code=404, detail="recommendation not found")
    return {"recommendation": Recommendation.model_validate(row).model_dump()}


@app.patch("/recommendations/{recommendation_id}/read")
def mark_read(recommendation_id: int):
    return _set_flag(recommendation_id, "is_read")


@app.patch("/recommendations/{recommendation_id}/applied")
def mark_applied(recommendation_id: int):
    return _set_flag(recommendation_id, "is_applied")


@app.get("/recommendations/tree/stats")
def tree_stats(services: Services = Depends(get_services)):
    return services.engine.get_tree_stats()


# -------------- internal --------------
def _require_internal_key(request: Request) -> None:
    expected = os.getenv("INTERNAL_API_KEY")
    if not expected:
        raise HTTPException(status_code=503, detail="internal API key not configured")
    supplied = request.headers.get("x-internal-api-key") or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="invalid internal API key")


@app.post("/internal/recommendations/evaluation", dependencies=[Depends(_require_internal_key)])
def evaluation_webhook(body: EvaluationWebhookRequest, services: Services = Depends(get_services)):
    recommendations = services.pipeline.run_safely(
        body.student_id, body.course_id, body.evaluation_id, body.attempt_id
    )
    return {"recommendations": [item.model_dump() for item in recommendations]}
