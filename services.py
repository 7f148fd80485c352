"""Wiring of the grading and recommendation components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import db
from engines.content_resolver import ContentResolver
from engines.context_builder import EvaluationContextBuilder
from engines.decision_tree import DecisionEngine, DecisionTrees, build_default_trees
from engines.grading import AttemptGrader
from engines.performance import PerformanceAnalyzer
from engines.pipeline import RecommendationPipeline
from engines.recommendation_persister import RecommendationPersister
from env_validation import get_env_bool, get_env_float


@dataclass
class Services:
    grader: AttemptGrader
    engine: DecisionEngine
    resolver: ContentResolver
    persister: RecommendationPersister
    pipeline: RecommendationPipeline
    performance: PerformanceAnalyzer
    pipeline_enabled: bool = True

    def close(self) -> None:
        self.resolver.close()


def build_services(
    store: Any = db,
    *,
    trees: Optional[DecisionTrees] = None,
    default_passing_score: Optional[float] = None,
    lookup_timeout: Optional[float] = None,
    pipeline_enabled: Optional[bool] = None,
) -> Services:
    """Construct every component once; unspecified settings come from the environment."""
    if default_passing_score is None:
        default_passing_score = get_env_float("DEFAULT_PASSING_SCORE", 70.0)
    if lookup_timeout is None:
        lookup_timeout = get_env_float("CONTENT_LOOKUP_TIMEOUT", 2.0)
    if pipeline_enabled is None:
        pipeline_enabled = get_env_bool("RECOMMENDATION_PIPELINE_ENABLED", True)

    engine = DecisionEngine(trees or build_default_trees())
    resolver = ContentResolver(store, lookup_timeout=lookup_timeout)
    persister = RecommendationPersister(store)
    pipeline = RecommendationPipeline(
        EvaluationContextBuilder(store),
        engine,
        resolver,
        persister,
    )
    return Services(
        grader=AttemptGrader(store, default_passing_score=default_passing_score),
        engine=engine,
        resolver=resolver,
        persister=persister,
        pipeline=pipeline,
        performance=PerformanceAnalyzer(engine, resolver, persister, store),
        pipeline_enabled=pipeline_enabled,
    )
