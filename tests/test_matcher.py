from __future__ import annotations

import pytest

from pick_core.errors import ResultNotFoundError
from pick_core.matcher import MatchInputs, ResultMatcher, dominant_code, rule_matches, total_score
from pick_core.types import Answer, ResultRule, SessionState
from tests.conftest import build_coded_test


def _answers(codes: list[str]) -> list[Answer]:
    return [Answer(f"q{i}", f"c{i}", code=c, answered_at=i) for i, c in enumerate(codes, start=1)]


def test_score_bands_pick_the_containing_range():
    rules = [
        ResultRule("R1", priority=1, score_min=0, score_max=20),
        ResultRule("R2", priority=2, score_min=21, score_max=50),
        ResultRule("R3", priority=3, score_min=51, score_max=80),
        ResultRule("R4", priority=4, score_min=81, score_max=100),
    ]
    matcher = ResultMatcher(rules)
    assert matcher.match_inputs(MatchInputs(score=55, code=None, gender=None)).result_id == "R3"
    assert matcher.match_inputs(MatchInputs(score=20, code=None, gender=None)).result_id == "R1"
    assert matcher.match_inputs(MatchInputs(score=21, code=None, gender=None)).result_id == "R2"


def test_dominant_code_and_code_rule():
    codes = ["E", "I", "S", "E", "E"]
    assert dominant_code(_answers(codes)) == "E"

    test = build_coded_test(
        [["E", "I", "S"]] * 5,
        [ResultRule("introvert", priority=1, code="I"), ResultRule("extravert", priority=2, code="E")],
    )
    state = SessionState(session_id="s", test_id=test.id)
    for q, code in zip(test.questions, codes):
        ch = next(c for c in q.choices if c.code == code)
        state.answers[q.id] = Answer(q.id, ch.id, code=ch.code, answered_at=len(state.answers) + 1)
    assert ResultMatcher(test.rules).match(test.questions, state).result_id == "extravert"


def test_dominant_code_ties_go_to_first_seen():
    assert dominant_code(_answers(["S", "E", "E", "S"])) == "S"
    assert dominant_code(_answers([])) is None


def test_gender_rule_skipped_without_gender():
    rules = [
        ResultRule("spark-male", priority=1, code="E", gender="male"),
        ResultRule("spark", priority=2, code="E"),
    ]
    matcher = ResultMatcher(rules)
    assert matcher.match_inputs(MatchInputs(score=0, code="E", gender=None)).result_id == "spark"
    assert matcher.match_inputs(MatchInputs(score=0, code="E", gender="male")).result_id == "spark-male"
    assert matcher.match_inputs(MatchInputs(score=0, code="E", gender="female")).result_id == "spark"


@pytest.mark.parametrize("gender", [None, "all", "ALL", "any"])
def test_unrestricted_gender_values(gender):
    rule = ResultRule("r", gender=gender)
    assert rule_matches(rule, MatchInputs(score=0, code=None, gender=None))


def test_default_rule_is_the_fallback():
    rules = [
        ResultRule("fallback", priority=0, is_default=True),
        ResultRule("high", priority=5, score_min=90),
    ]
    matcher = ResultMatcher(rules)
    hit = matcher.match_inputs(MatchInputs(score=95, code=None, gender=None))
    assert hit.result_id == "high" and not hit.fallback
    miss = matcher.match_inputs(MatchInputs(score=10, code=None, gender=None))
    assert miss.result_id == "fallback" and miss.fallback


def test_no_match_without_default_raises():
    matcher = ResultMatcher([ResultRule("high", score_min=90)])
    with pytest.raises(ResultNotFoundError):
        matcher.match_inputs(MatchInputs(score=10, code=None, gender=None))


def test_equal_priority_keeps_declaration_order_and_is_deterministic():
    rules = [ResultRule("first", priority=1), ResultRule("second", priority=1), ResultRule("zero", priority=0, code="X")]
    matcher = ResultMatcher(rules)
    inputs = MatchInputs(score=3, code="E", gender="female")
    results = {matcher.match_inputs(inputs).result_id for _ in range(20)}
    assert results == {"first"}


def test_total_score_ignores_unweighted_and_unknown(energy_test):
    answers = [
        Answer("e1", "e1a", code="E", answered_at=1),
        Answer("e2", "e2c", code="S", answered_at=2),
        Answer("zz", "zz1", answered_at=3),
    ]
    assert total_score(energy_test.questions, answers) == 30


def test_energy_sample_results(energy_test):
    matcher = ResultMatcher(energy_test.rules)
    assert matcher.match_inputs(MatchInputs(0, "E", "female")).result_id == "spark-female"
    assert matcher.match_inputs(MatchInputs(0, "I", None)).result_id == "lantern"
    assert matcher.match_inputs(MatchInputs(0, None, None)).result_id == "balanced"


def test_concrete_gender_ignores_case():
    rule = ResultRule("r", gender="Male")
    assert rule_matches(rule, MatchInputs(score=0, code=None, gender="male"))
    assert not rule_matches(rule, MatchInputs(score=0, code=None, gender="female"))
