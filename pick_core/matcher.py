from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .errors import ResultNotFoundError
from .types import Answer, Question, ResultRule, SessionState

log = logging.getLogger(__name__)

_ANY_GENDER = {"all", "any"}


def total_score(questions: Iterable[Question], answers: Iterable[Answer]) -> int:
    """Sum of the weights of the selected choices; unweighted picks add nothing."""
    by_id = {q.id: q for q in questions}
    score = 0
    for ans in answers:
        q = by_id.get(ans.question_id)
        if q is None or not q.takes_choice:
            continue
        ch = q.choice(ans.selection)
        if ch is not None and ch.weight is not None:
            score += int(ch.weight)
    return score


def dominant_code(answers: Sequence[Answer]) -> Optional[str]:
    """Most frequent code; ties go to the code seen first in answer order."""
    codes = [a.code for a in answers if a.code]
    if not codes:
        return None
    counts = Counter(codes)
    first_seen = {}
    for idx, code in enumerate(codes):
        first_seen.setdefault(code, idx)
    return min(counts, key=lambda c: (-counts[c], first_seen[c]))


@dataclass(frozen=True)
class MatchInputs:
    score: int
    code: Optional[str]
    gender: Optional[str]


@dataclass(frozen=True)
class MatchOutcome:
    rule: ResultRule
    inputs: MatchInputs
    fallback: bool = False

    @property
    def result_id(self) -> str:
        return self.rule.result_id


def rule_matches(rule: ResultRule, inputs: MatchInputs) -> bool:
    if rule.score_min is not None and inputs.score < rule.score_min:
        return False
    if rule.score_max is not None and inputs.score > rule.score_max:
        return False
    if rule.code is not None and inputs.code != rule.code:
        return False
    if rule.gender is not None and rule.gender.lower() not in _ANY_GENDER:
        if inputs.gender is None or inputs.gender.lower() != rule.gender.lower():
            return False
    return True


class ResultMatcher:
    """Picks the single result for a finished session.

    Rules are tried in ascending ``priority`` (declaration order breaks ties)
    and the first rule whose present conditions all hold wins. Default rules
    sit out of that pass and only catch sessions nothing else matched.
    """

    def __init__(self, rules: Iterable[ResultRule]):
        indexed = list(enumerate(rules))
        indexed.sort(key=lambda pair: (pair[1].priority, pair[0]))
        self.rules: List[ResultRule] = [r for _, r in indexed if not r.is_default]
        self.defaults: List[ResultRule] = [r for _, r in indexed if r.is_default]

    def inputs_for(self, questions: Iterable[Question], answers: Sequence[Answer], gender: Optional[str]) -> MatchInputs:
        return MatchInputs(score=total_score(questions, answers), code=dominant_code(answers), gender=gender)

    def match_inputs(self, inputs: MatchInputs) -> MatchOutcome:
        for rule in self.rules:
            if rule_matches(rule, inputs):
                log.debug("rule %s matched score=%s code=%s", rule.result_id, inputs.score, inputs.code)
                return MatchOutcome(rule=rule, inputs=inputs)
        if self.defaults:
            return MatchOutcome(rule=self.defaults[0], inputs=inputs, fallback=True)
        raise ResultNotFoundError(
            f"no result for score={inputs.score} code={inputs.code} gender={inputs.gender}"
        )

    def match(self, questions: Iterable[Question], session: SessionState) -> MatchOutcome:
        answers = list(session.answers.values())
        return self.match_inputs(self.inputs_for(questions, answers, session.gender))
