"""Static decision trees that turn learner signals into recommendation actions.

Hand-authored binary trees drive the recommendations:

* the *performance* tree reads a numeric :class:`~schemas.PerformanceState`
  snapshot and yields at most one action, the one stored on the first node
  that carries an action;
* the *evaluation* tree reads an :class:`~schemas.EvaluationContext` (the
  graded attempt plus its history) and collects the action of every node it
  visits along the single path taken;
* the *diagnostic* tree is walked the same way for attempts on diagnostic
  evaluations.

Trees are immutable values built by the ``build_*_tree`` functions.
:class:`DecisionEngine` holds them behind one reference that :meth:`DecisionEngine.update_tree`
replaces wholesale, so a traversal always sees either the old tree or the new one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Literal, Optional, Union

from schemas import EvaluationContext, PerformanceState, RecommendationAction

_LOGGER = logging.getLogger(__name__)

MAX_TREE_DEPTH = 5

TreeKind = Literal["performance", "evaluation", "diagnostic"]
_TREE_KINDS = ("performance", "evaluation", "diagnostic")


class PerformanceMetric(str, Enum):
    """Numeric signals a performance-tree branch compares against its threshold."""

    OVERALL_PROGRESS = "overall_progress"
    AVERAGE_SCORE = "average_score"
    TOTAL_TIME_SPENT = "total_time_spent"
    EVALUATIONS_PASSED = "evaluations_passed"
    LESSONS_COMPLETED = "lessons_completed"


class OutcomePredicate(str, Enum):
    """Boolean questions an evaluation-tree branch asks about the attempt."""

    DID_PASS_DIAGNOSTIC = "did_pass_diagnostic"
    DID_PASS_MODULE_EVAL = "did_pass_module_eval"
    SCORE_BETWEEN_50_70 = "score_between_50_70"
    REPEATED_EVAL_ONCE = "repeated_eval_once"
    FAILED_EVAL_TWICE = "failed_eval_twice"
    COMPLETED_60_PERCENT_INTRO = "completed_60_percent_intro"


def _completed_intro(context: EvaluationContext) -> bool:
    # Placeholder: intro-resource viewing is not tracked yet, so every learner
    # counts as having completed 60% of the intro.
    return True


_METRIC_READERS: Dict[PerformanceMetric, Callable[[PerformanceState], float]] = {
    PerformanceMetric.OVERALL_PROGRESS: lambda state: float(state.overall_progress),
    PerformanceMetric.AVERAGE_SCORE: lambda state: float(state.average_score),
    PerformanceMetric.TOTAL_TIME_SPENT: lambda state: float(state.total_time_spent),
    PerformanceMetric.EVALUATIONS_PASSED: lambda state: float(state.evaluations_passed),
    PerformanceMetric.LESSONS_COMPLETED: lambda state: float(state.lessons_completed),
}

_OUTCOME_PREDICATES: Dict[OutcomePredicate, Callable[[EvaluationContext], bool]] = {
    OutcomePredicate.DID_PASS_DIAGNOSTIC: lambda ctx: bool(ctx.attempt.passed),
    OutcomePredicate.DID_PASS_MODULE_EVAL: lambda ctx: bool(ctx.attempt.passed),
    OutcomePredicate.SCORE_BETWEEN_50_70: lambda ctx: 50 <= ctx.attempt.percentage <= 70,
    OutcomePredicate.REPEATED_EVAL_ONCE: lambda ctx: len(ctx.all_attempts) > 1,
    OutcomePredicate.FAILED_EVAL_TWICE: lambda ctx: sum(
        1 for attempt in ctx.all_attempts if not attempt.passed
    ) >= 2,
    OutcomePredicate.COMPLETED_60_PERCENT_INTRO: _completed_intro,
}


@dataclass(frozen=True)
class Leaf:
    """Terminal node: the branch ends with ``action``."""

    id: str
    action: RecommendationAction


@dataclass(frozen=True)
class Branch:
    """Inner node testing ``condition``.

    Performance branches compare ``metric >= threshold`` (threshold defaults
    to 0); evaluation branches ask a boolean predicate. An evaluation branch
    may also carry an ``action`` which is recorded before descending.
    """

    id: str
    condition: Union[PerformanceMetric, OutcomePredicate]
    true_child: Optional["Node"] = None
    false_child: Optional["Node"] = None
    threshold: Optional[float] = None
    action: Optional[RecommendationAction] = None


Node = Union[Branch, Leaf]


@dataclass(frozen=True)
class DecisionTrees:
    performance: Node
    evaluation: Node
    diagnostic: Node


# ----- traversal ---------------------------------------------------------
def traverse_performance(root: Optional[Node], state: PerformanceState) -> Optional[RecommendationAction]:
    """Walk the performance tree and return the first action met, if any."""
    node = root
    while node is not None:
        if node.action is not None:
            return node.action
        if isinstance(node, Leaf):
            return None
        value = _METRIC_READERS[PerformanceMetric(node.condition)](state)
        threshold = node.threshold if node.threshold is not None else 0.0
        node = node.true_child if value >= threshold else node.false_child
    return None


def traverse_evaluation(root: Optional[Node], context: EvaluationContext) -> List[RecommendationAction]:
    """Walk the evaluation tree, collecting every visited node's action in order."""
    actions: List[RecommendationAction] = []
    node = root
    while node is not None:
        if node.action is not None:
            actions.append(node.action)
        if isinstance(node, Leaf):
            break
        outcome = _OUTCOME_PREDICATES[OutcomePredicate(node.condition)](context)
        node = node.true_child if outcome else node.false_child
    return actions


# ----- statistics & validation --------------------------------------------
def tree_depth(node: Optional[Node]) -> int:
    if node is None:
        return 0
    if isinstance(node, Leaf):
        return 1
    return 1 + max(tree_depth(node.true_child), tree_depth(node.false_child))


def count_nodes(node: Optional[Node]) -> int:
    if node is None:
        return 0
    if isinstance(node, Leaf):
        return 1
    return 1 + count_nodes(node.true_child) + count_nodes(node.false_child)


def validate_tree(root: Node, kind: TreeKind) -> None:
    """Reject trees that mix condition kinds, have childless branches or grow too deep."""
    expected = PerformanceMetric if kind == "performance" else OutcomePredicate
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, Leaf):
            continue
        if not isinstance(node.condition, expected):
            raise ValueError(
                f"node {node.id!r}: condition {node.condition!r} is not valid in a {kind} tree"
            )
        children = [child for child in (node.true_child, node.false_child) if child is not None]
        if not children:
            raise ValueError(f"node {node.id!r}: a branch needs at least one child")
        stack.extend(children)
    depth = tree_depth(root)
    if depth > MAX_TREE_DEPTH:
        raise ValueError(f"{kind} tree depth {depth} exceeds {MAX_TREE_DEPTH}")


# ----- engine --------------------------------------------------------------
class DecisionEngine:
    """Read-mostly holder of the decision trees.

    Diagnostic attempts are routed to their own tree; every other evaluation
    type uses the evaluation tree.
    """

    def __init__(self, trees: DecisionTrees) -> None:
        for kind in _TREE_KINDS:
            validate_tree(getattr(trees, kind), kind)
        self._trees = trees
        self._swap_lock = threading.Lock()

    @property
    def trees(self) -> DecisionTrees:
        return self._trees

    def recommend_for_performance(self, state: PerformanceState) -> Optional[RecommendationAction]:
        return traverse_performance(self._trees.performance, state)

    def recommend_for_evaluation(self, context: EvaluationContext) -> List[RecommendationAction]:
        trees = self._trees
        if context.evaluation.evaluation_type == "diagnostic":
            return traverse_evaluation(trees.diagnostic, context)
        return traverse_evaluation(trees.evaluation, context)

    def update_tree(self, root: Node, kind: TreeKind = "performance") -> None:
        """Install a new tree root; concurrent traversals keep the tree they started with."""
        if kind not in _TREE_KINDS:
            raise ValueError(f"unknown tree kind: {kind}")
        validate_tree(root, kind)
        with self._swap_lock:
            self._trees = replace(self._trees, **{kind: root})
        _LOGGER.info("Installed new %s decision tree root %r", kind, root.id)

    def get_tree_stats(self) -> Dict[str, Dict[str, int]]:
        trees = self._trees
        stats = {
            kind: {
                "depth": tree_depth(getattr(trees, kind)),
                "node_count": count_nodes(getattr(trees, kind)),
            }
            for kind in _TREE_KINDS
        }
        stats["combined"] = {
            "depth": max(item["depth"] for item in stats.values()),
            "node_count": sum(item["node_count"] for item in stats.values()),
        }
        return stats


# ----- hand-authored trees ---------------------------------------------------
def build_performance_tree() -> Node:
    start_here = RecommendationAction(
        id="start_here",
        type="content",
        target="FIRST_CORE_LESSON",
        priority="high",
        title="Start here",
        message="Welcome to the course! Begin with the first lesson of the module to get going.",
    )
    keep_going = RecommendationAction(
        id="keep_going",
        type="content",
        target="MODULE_GENERAL_RESOURCES",
        priority="medium",
        title="Keep the momentum",
        message="You have made a start. The course reference material will help you through the next lessons.",
    )
    review_weak_topics = RecommendationAction(
        id="review_weak_topics",
        type="review",
        target="FIRST_REMEDIAL_LESSON",
        priority="medium",
        title="Review the trickier topics",
        message="Your scores are close to the passing mark. A short review lesson will help consolidate them.",
    )
    remedial_path = RecommendationAction(
        id="remedial_path",
        type="remedial",
        target="FIRST_REMEDIAL_LESSON",
        priority="high",
        title="Reinforcement lessons",
        message="Let's reinforce the fundamentals before moving on. Start with this reinforcement lesson.",
    )
    tutor_support = RecommendationAction(
        id="performance_tutor_support",
        type="support",
        target="TUTOR_SUPPORT",
        priority="high",
        title="Get help from a tutor",
        message="You have not passed an evaluation yet. Contact a tutor to work through your questions.",
    )
    advance_next_level = RecommendationAction(
        id="advance_next_level",
        type="advance",
        target="FIRST_ADVANCED_LESSON",
        priority="medium",
        title="Ready for advanced material",
        message="Excellent results and great progress. Take on the advanced lessons of this module.",
    )
    increase_difficulty = RecommendationAction(
        id="increase_difficulty",
        type="difficulty",
        target="FIRST_ADVANCED_LESSON",
        priority="low",
        title="Raise the challenge",
        message="Your scores are excellent. Mix some advanced lessons into your study plan.",
    )
    steady_pace = RecommendationAction(
        id="steady_pace",
        type="pace",
        target="NONE",
        priority="low",
        title="Good, steady work",
        message="You are passing comfortably and putting in the time. Keep up this pace.",
    )
    schedule_study_time = RecommendationAction(
        id="schedule_study_time",
        type="pace",
        target="NONE",
        priority="medium",
        title="Plan regular study time",
        message="You are doing well. Setting aside regular study sessions will help you keep improving.",
    )

    return Branch(
        id="performance_root",
        condition=PerformanceMetric.OVERALL_PROGRESS,
        threshold=10,
        false_child=Branch(
            id="getting_started",
            condition=PerformanceMetric.LESSONS_COMPLETED,
            threshold=1,
            true_child=Leaf(id="keep_going", action=keep_going),
            false_child=Leaf(id="start_here", action=start_here),
        ),
        true_child=Branch(
            id="passing_average",
            condition=PerformanceMetric.AVERAGE_SCORE,
            threshold=70,
            false_child=Branch(
                id="near_passing_average",
                condition=PerformanceMetric.AVERAGE_SCORE,
                threshold=50,
                true_child=Leaf(id="review_weak_topics", action=review_weak_topics),
                false_child=Branch(
                    id="has_passed_any",
                    condition=PerformanceMetric.EVALUATIONS_PASSED,
                    threshold=1,
                    true_child=Leaf(id="remedial_path", action=remedial_path),
                    false_child=Leaf(id="performance_tutor_support", action=tutor_support),
                ),
            ),
            true_child=Branch(
                id="excellent_average",
                condition=PerformanceMetric.AVERAGE_SCORE,
                threshold=90,
                true_child=Branch(
                    id="advanced_progress",
                    condition=PerformanceMetric.OVERALL_PROGRESS,
                    threshold=80,
                    true_child=Leaf(id="advance_next_level", action=advance_next_level),
                    false_child=Leaf(id="increase_difficulty", action=increase_difficulty),
                ),
                false_child=Branch(
                    id="study_time",
                    condition=PerformanceMetric.TOTAL_TIME_SPENT,
                    threshold=180,
                    true_child=Leaf(id="steady_pace", action=steady_pace),
                    false_child=Leaf(id="schedule_study_time", action=schedule_study_time),
                ),
            ),
        ),
    )


def build_evaluation_tree() -> Node:
    review_intro_resources = RecommendationAction(
        id="review_intro_resources",
        type="content",
        target="MODULE_GENERAL_RESOURCES",
        priority="medium",
        title="Finish the introduction first",
        message="Before going further, review the general course resources.",
    )
    reinforce_core = RecommendationAction(
        id="reinforce_core",
        type="review",
        target="FIRST_CORE_LESSON",
        priority="medium",
        title="Consolidate the core lessons",
        message="You passed, but your score is still close to the limit. Go over the core lessons once more.",
    )
    suggest_retry = RecommendationAction(
        id="suggest_retry",
        type="review",
        target="RETRY_EVALUATION",
        priority="medium",
        title="Try once more",
        message="You passed! A second attempt after a quick review can lift your score well above the passing mark.",
    )
    advance_module = RecommendationAction(
        id="advance_module",
        type="advance",
        target="FIRST_ADVANCED_LESSON",
        priority="low",
        title="Module passed",
        message="Congratulations on passing! Continue with the advanced lessons of this module.",
    )
    remedial_lesson = RecommendationAction(
        id="remedial_lesson",
        type="remedial",
        target="FIRST_REMEDIAL_LESSON",
        priority="high",
        title="Key reinforcement material",
        message="Don't be discouraged. Work through this reinforcement lesson before trying again.",
    )
    tutor_support = RecommendationAction(
        id="tutor_support",
        type="support",
        target="TUTOR_SUPPORT",
        priority="high",
        title="Look for extra support",
        message="This evaluation has been difficult for you. We strongly recommend contacting a tutor.",
    )
    general_resources = RecommendationAction(
        id="general_resources",
        type="content",
        target="MODULE_GENERAL_RESOURCES",
        priority="medium",
        title="Course reference material",
        message="Review the general course resources before your next attempt.",
    )

    return Branch(
        id="evaluation_root",
        condition=OutcomePredicate.COMPLETED_60_PERCENT_INTRO,
        false_child=Leaf(id="review_intro_resources", action=review_intro_resources),
        true_child=Branch(
            id="evaluation_passed",
            condition=OutcomePredicate.DID_PASS_MODULE_EVAL,
            true_child=Branch(
                id="narrow_pass",
                condition=OutcomePredicate.SCORE_BETWEEN_50_70,
                true_child=Branch(
                    id="narrow_pass_repeated",
                    condition=OutcomePredicate.REPEATED_EVAL_ONCE,
                    true_child=Leaf(id="reinforce_core", action=reinforce_core),
                    false_child=Leaf(id="suggest_retry", action=suggest_retry),
                ),
                false_child=Leaf(id="advance_module", action=advance_module),
            ),
            false_child=Branch(
                id="evaluation_failed",
                condition=OutcomePredicate.FAILED_EVAL_TWICE,
                action=remedial_lesson,
                true_child=Leaf(id="tutor_support", action=tutor_support),
                false_child=Leaf(id="general_resources", action=general_resources),
            ),
        ),
    )


def build_diagnostic_tree() -> Node:
    diagnostic_completed = RecommendationAction(
        id="diagnostic_completed",
        type="content",
        target="MODULE_GENERAL_RESOURCES",
        priority="medium",
        title="Diagnostic completed",
        message=(
            "Good job! We have set up a starting path based on your result. "
            "Before you begin, review the general course resources."
        ),
    )
    start_core_path = RecommendationAction(
        id="start_core_path",
        type="content",
        target="FIRST_CORE_LESSON",
        priority="medium",
        title="Your starting lesson",
        message="Your result shows a solid base. Start with the core lessons of this module.",
    )
    start_remedial_path = RecommendationAction(
        id="start_remedial_path",
        type="remedial",
        target="FIRST_REMEDIAL_LESSON",
        priority="high",
        title="Your reinforcement lesson",
        message="Start with this reinforcement lesson to strengthen the basics of the module.",
    )

    return Branch(
        id="diagnostic_root",
        condition=OutcomePredicate.DID_PASS_DIAGNOSTIC,
        action=diagnostic_completed,
        true_child=Leaf(id="start_core_path", action=start_core_path),
        false_child=Leaf(id="start_remedial_path", action=start_remedial_path),
    )


def build_default_trees() -> DecisionTrees:
    return DecisionTrees(
        performance=build_performance_tree(),
        evaluation=build_evaluation_tree(),
        diagnostic=build_diagnostic_tree(),
    )
