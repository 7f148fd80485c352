import threading

import pytest

from engines.decision_tree import (
    Branch,
    DecisionEngine,
    Leaf,
    OutcomePredicate,
    PerformanceMetric,
    build_default_trees,
    count_nodes,
    traverse_evaluation,
    traverse_performance,
    tree_depth,
)
from schemas import (
    Evaluation,
    EvaluationAttempt,
    EvaluationContext,
    PerformanceState,
    RecommendationAction,
)


def _state(**values):
    return PerformanceState(student_id="stu-1", course_id="course-1", **values)


def _attempt(number, percentage, passed):
    return EvaluationAttempt(
        id=number,
        evaluation_id="eval-1",
        student_id="stu-1",
        attempt_number=number,
        score=percentage / 25,
        max_score=4,
        percentage=percentage,
        passed=passed,
    )


def _context(history, evaluation_type="quiz"):
    return EvaluationContext(
        student_id="stu-1",
        course_id="course-1",
        module_id="mod-1",
        evaluation=Evaluation(id="eval-1", module_id="mod-1", max_score=4, evaluation_type=evaluation_type),
        attempt=history[-1],
        all_attempts=history,
    )


def _action(action_id, target="NONE"):
    return RecommendationAction(
        id=action_id, type="content", target=target, priority="low", title=action_id, message=action_id
    )


@pytest.fixture
def engine():
    return DecisionEngine(build_default_trees())


def test_new_student_gets_start_here(engine):
    action = engine.recommend_for_performance(_state(overall_progress=5, lessons_completed=0))
    assert action.id == "start_here"
    assert action.target == "FIRST_CORE_LESSON"


@pytest.mark.parametrize(
    "values, expected",
    [
        ({"overall_progress": 5, "lessons_completed": 1}, "keep_going"),
        ({"overall_progress": 40, "average_score": 55}, "review_weak_topics"),
        ({"overall_progress": 40, "average_score": 30, "evaluations_passed": 1}, "remedial_path"),
        ({"overall_progress": 40, "average_score": 30}, "performance_tutor_support"),
        ({"overall_progress": 85, "average_score": 95}, "advance_next_level"),
        ({"overall_progress": 40, "average_score": 95}, "increase_difficulty"),
        ({"overall_progress": 40, "average_score": 75, "total_time_spent": 200}, "steady_pace"),
        ({"overall_progress": 40, "average_score": 75, "total_time_spent": 20}, "schedule_study_time"),
    ],
)
def test_performance_paths(engine, values, expected):
    assert engine.recommend_for_performance(_state(**values)).id == expected


def test_performance_missing_child_yields_nothing():
    root = Branch(
        id="root",
        condition=PerformanceMetric.AVERAGE_SCORE,
        threshold=50,
        true_child=Leaf(id="ok", action=_action("ok")),
    )
    assert traverse_performance(root, _state(average_score=10)) is None
    assert traverse_performance(root, _state(average_score=60)).id == "ok"


def test_threshold_defaults_to_zero():
    root = Branch(
        id="root",
        condition=PerformanceMetric.LESSONS_COMPLETED,
        true_child=Leaf(id="always", action=_action("always")),
    )
    assert traverse_performance(root, _state()).id == "always"


def test_narrow_first_pass_suggests_retry(engine):
    actions = engine.recommend_for_evaluation(_context([_attempt(1, 65, True)]))
    assert [action.id for action in actions] == ["suggest_retry"]


def test_narrow_repeated_pass_reinforces_core(engine):
    history = [_attempt(1, 40, False), _attempt(2, 65, True)]
    actions = engine.recommend_for_evaluation(_context(history))
    assert [action.id for action in actions] == ["reinforce_core"]


def test_clear_pass_advances(engine):
    actions = engine.recommend_for_evaluation(_context([_attempt(1, 90, True)]))
    assert [action.id for action in actions] == ["advance_module"]


def test_first_failure_collects_inner_and_leaf_actions(engine):
    actions = engine.recommend_for_evaluation(_context([_attempt(1, 25, False)]))
    assert [action.id for action in actions] == ["remedial_lesson", "general_resources"]


def test_second_failure_escalates_to_tutor(engine):
    history = [_attempt(1, 25, False), _attempt(2, 40, False)]
    actions = engine.recommend_for_evaluation(_context(history))
    assert [action.id for action in actions] == ["remedial_lesson", "tutor_support"]


def test_passed_diagnostic_starts_core_path(engine):
    actions = engine.recommend_for_evaluation(_context([_attempt(1, 100, True)], "diagnostic"))
    assert [action.id for action in actions] == ["diagnostic_completed", "start_core_path"]
    assert actions[0].target == "MODULE_GENERAL_RESOURCES"


def test_failed_diagnostic_starts_remedial_path(engine):
    actions = engine.recommend_for_evaluation(_context([_attempt(1, 40, False)], "diagnostic"))
    assert [action.id for action in actions] == ["diagnostic_completed", "start_remedial_path"]


def test_update_diagnostic_tree_leaves_evaluation_tree(engine):
    engine.update_tree(Leaf(id="only", action=_action("only")), "diagnostic")
    diagnostic = engine.recommend_for_evaluation(_context([_attempt(1, 90, True)], "diagnostic"))
    quiz = engine.recommend_for_evaluation(_context([_attempt(1, 90, True)]))
    assert [a.id for a in diagnostic] == ["only"]
    assert [a.id for a in quiz] == ["advance_module"]


def test_update_tree_rejects_unknown_kind(engine):
    with pytest.raises(ValueError):
        engine.update_tree(Leaf(id="x", action=_action("x")), "placement")


def test_evaluation_missing_child_keeps_collected_actions():
    root = Branch(
        id="root",
        condition=OutcomePredicate.DID_PASS_MODULE_EVAL,
        action=_action("first"),
        true_child=Leaf(id="passed", action=_action("passed")),
    )
    assert [a.id for a in traverse_evaluation(root, _context([_attempt(1, 10, False)]))] == ["first"]


def test_tree_stats(engine):
    stats = engine.get_tree_stats()
    trees = engine.trees
    assert stats["performance"] == {
        "depth": tree_depth(trees.performance),
        "node_count": count_nodes(trees.performance),
    }
    assert stats["combined"]["node_count"] == (
        stats["performance"]["node_count"]
        + stats["evaluation"]["node_count"]
        + stats["diagnostic"]["node_count"]
    )
    assert stats["performance"]["depth"] <= 5
    assert stats["evaluation"]["depth"] <= 5
    assert stats["performance"]["node_count"] <= 20
    assert stats["evaluation"]["node_count"] <= 20


def test_depth_and_count_rules():
    leaf = Leaf(id="leaf", action=_action("leaf"))
    assert tree_depth(None) == 0
    assert tree_depth(leaf) == 1
    branch = Branch(id="b", condition=PerformanceMetric.AVERAGE_SCORE, false_child=leaf)
    assert tree_depth(branch) == 2
    assert count_nodes(branch) == 2


def test_update_tree_swaps_root(engine):
    replacement = Leaf(id="only", action=_action("only"))
    engine.update_tree(replacement)
    assert engine.recommend_for_performance(_state()).id == "only"
    assert engine.get_tree_stats()["performance"] == {"depth": 1, "node_count": 1}


def test_update_tree_rejects_wrong_condition_kind(engine):
    bad = Branch(
        id="bad",
        condition=OutcomePredicate.DID_PASS_MODULE_EVAL,
        true_child=Leaf(id="x", action=_action("x")),
    )
    with pytest.raises(ValueError):
        engine.update_tree(bad, "performance")
    assert engine.recommend_for_performance(_state(overall_progress=5)).id == "start_here"


def test_update_tree_rejects_childless_branch(engine):
    with pytest.raises(ValueError):
        engine.update_tree(Branch(id="empty", condition=PerformanceMetric.AVERAGE_SCORE))


def test_concurrent_reads_see_whole_trees(engine):
    replacement = Leaf(id="swapped", action=_action("swapped"))
    seen = set()
    errors = []

    def reader():
        try:
            for _ in range(200):
                seen.add(engine.recommend_for_performance(_state(overall_progress=5)).id)
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    engine.update_tree(replacement)
    for thread in threads:
        thread.join()

    assert not errors
    assert seen <= {"start_here", "swapped"}
