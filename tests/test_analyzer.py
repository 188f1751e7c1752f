from __future__ import annotations

from pick_core.analyzer import AggregateAnalyzer, report_to_dict
from pick_core.stats import OptimisticStatsEngine
from pick_core.types import AggregateSnapshot, Answer
from tests.conftest import build_poll_test


def _analyzer(counts: dict, questions: int = 4, popular_limit: int | None = None) -> tuple[AggregateAnalyzer, object]:
    test = build_poll_test(questions=questions)
    stats = OptimisticStatsEngine(test.questions)
    stats.initialize(AggregateSnapshot(test_id=test.id, counts=counts))
    return AggregateAnalyzer(stats, popular_limit), test


def test_controversial_and_overwhelming():
    analyzer, test = _analyzer({
        "p1": {"p1a": 6, "p1b": 4},
        "p2": {"p2a": 1, "p2b": 9},
        "p3": {"p3a": 5, "p3b": 5},
    })
    assert analyzer.most_controversial(test.questions).question_id == "p3"
    top = analyzer.most_overwhelming(test.questions)
    assert top.question_id == "p2"
    assert top.leader.choice_id == "p2b" and top.leader.percentage == 90


def test_ties_go_to_lowest_order():
    analyzer, test = _analyzer({
        "p2": {"p2a": 5, "p2b": 5},
        "p1": {"p1a": 3, "p1b": 3},
        "p3": {"p3a": 0, "p3b": 8},
        "p4": {"p4a": 4, "p4b": 0},
    })
    assert analyzer.most_controversial(test.questions).question_id == "p1"
    assert analyzer.most_overwhelming(test.questions).question_id == "p3"


def test_no_responses_means_no_candidate():
    analyzer, test = _analyzer({})
    report = analyzer.analyze(test.questions)
    assert report.controversial is None
    assert report.overwhelming is None
    assert report.popular == []
    assert report.total_responses == 0


def test_popular_questions_top_three_by_total():
    analyzer, test = _analyzer({
        "p1": {"p1a": 1, "p1b": 1},
        "p2": {"p2a": 10, "p2b": 0},
        "p3": {"p3a": 3, "p3b": 3},
        "p4": {"p4a": 2, "p4b": 4},
    })
    assert [s.question_id for s in analyzer.popular_questions(test.questions)] == ["p2", "p3", "p4"]


def test_comparison_counts_minority_picks():
    analyzer, test = _analyzer({
        "p1": {"p1a": 2, "p1b": 8},
        "p2": {"p2a": 7, "p2b": 3},
    })
    answers = [Answer("p1", "p1a", answered_at=1), Answer("p2", "p2a", answered_at=2)]
    analyzer.stats.record_local_choice("p1", "p1a")
    analyzer.stats.record_local_choice("p2", "p2a")

    report = analyzer.analyze(test.questions, answers)
    by_q = {c.question_id: c for c in report.comparisons}
    assert by_q["p1"].percentage == 27 and by_q["p1"].minority
    assert by_q["p2"].percentage == 73 and not by_q["p2"].minority
    assert report.minority_picks == 1

    body = report_to_dict(report)
    assert body["minorityPicks"] == 1
    assert body["totalResponses"] == 22
    assert body["controversial"]["questionId"] == "p1"
