from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from . import config
from .stats import OptimisticStatsEngine
from .types import Answer, ChoiceStat, Question

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionSplit:
    question_id: str
    order: int
    text: str
    choices: tuple[ChoiceStat, ...]
    total: int

    @property
    def gap(self) -> int:
        pcts = [c.percentage for c in self.choices]
        return max(pcts) - min(pcts) if pcts else 0

    @property
    def leader(self) -> ChoiceStat:
        # first choice wins a tie
        return max(self.choices, key=lambda c: c.percentage)


@dataclass(frozen=True)
class PickComparison:
    question_id: str
    choice_id: str
    percentage: int
    minority: bool


@dataclass
class AnalysisReport:
    controversial: Optional[QuestionSplit] = None
    overwhelming: Optional[QuestionSplit] = None
    popular: List[QuestionSplit] = field(default_factory=list)
    comparisons: List[PickComparison] = field(default_factory=list)
    total_responses: int = 0

    @property
    def minority_picks(self) -> int:
        return sum(1 for c in self.comparisons if c.minority)


class AggregateAnalyzer:
    """Cross-question statistics over the merged poll distributions.

    Only questions with exactly two choices and at least one response take
    part in the controversial/overwhelming contest. Ties go to the question
    with the lowest ``order``. A metric with no candidate is ``None``.
    """

    def __init__(self, stats: OptimisticStatsEngine, popular_limit: int | None = None):
        self.stats = stats
        self.popular_limit = config.POPULAR_QUESTIONS_LIMIT if popular_limit is None else int(popular_limit)

    def _splits(self, questions: Iterable[Question]) -> List[QuestionSplit]:
        out: List[QuestionSplit] = []
        for q in sorted(questions, key=lambda q: q.order):
            if not q.is_poll:
                continue
            dist = self.stats.distribution_for(q.id)
            out.append(QuestionSplit(q.id, q.order, q.text, tuple(dist), sum(c.count for c in dist)))
        return out

    def most_controversial(self, questions: Iterable[Question]) -> Optional[QuestionSplit]:
        best: Optional[QuestionSplit] = None
        for split in self._splits(questions):
            if len(split.choices) != 2 or split.total <= 0:
                continue
            if best is None or split.gap < best.gap:
                best = split
        return best

    def most_overwhelming(self, questions: Iterable[Question]) -> Optional[QuestionSplit]:
        best: Optional[QuestionSplit] = None
        for split in self._splits(questions):
            if len(split.choices) != 2 or split.total <= 0:
                continue
            if best is None or split.leader.percentage > best.leader.percentage:
                best = split
        return best

    def popular_questions(self, questions: Iterable[Question]) -> List[QuestionSplit]:
        ranked = [s for s in self._splits(questions) if s.total > 0]
        ranked.sort(key=lambda s: (-s.total, s.order))
        return ranked[: max(0, self.popular_limit)]

    def compare(self, questions: Iterable[Question], answers: Iterable[Answer]) -> List[PickComparison]:
        by_id = {q.id: q for q in questions if q.is_poll}
        out: List[PickComparison] = []
        for ans in answers:
            if ans.question_id not in by_id:
                continue
            stat = next((c for c in self.stats.distribution_for(ans.question_id) if c.choice_id == ans.selection), None)
            if stat is None:
                continue
            out.append(PickComparison(ans.question_id, ans.selection, stat.percentage, stat.percentage < 50))
        return out

    def analyze(self, questions: Iterable[Question], answers: Iterable[Answer] = ()) -> AnalysisReport:
        qs = list(questions)
        splits = self._splits(qs)
        report = AnalysisReport(
            controversial=self.most_controversial(qs),
            overwhelming=self.most_overwhelming(qs),
            popular=self.popular_questions(qs),
            comparisons=self.compare(qs, answers),
            total_responses=sum(s.total for s in splits),
        )
        log.info(
            "analysis: %d poll questions, controversial=%s overwhelming=%s",
            len(splits),
            report.controversial.question_id if report.controversial else None,
            report.overwhelming.question_id if report.overwhelming else None,
        )
        return report


def split_to_dict(split: Optional[QuestionSplit]) -> Optional[Dict[str, object]]:
    if split is None:
        return None
    return {
        "questionId": split.question_id,
        "order": split.order,
        "text": split.text,
        "total": split.total,
        "gap": split.gap,
        "choices": [{"choiceId": c.choice_id, "count": c.count, "percentage": c.percentage} for c in split.choices],
    }


def report_to_dict(report: AnalysisReport) -> Dict[str, object]:
    return {
        "controversial": split_to_dict(report.controversial),
        "overwhelming": split_to_dict(report.overwhelming),
        "popular": [split_to_dict(s) for s in report.popular],
        "comparisons": [
            {"questionId": c.question_id, "choiceId": c.choice_id, "percentage": c.percentage, "minority": c.minority}
            for c in report.comparisons
        ],
        "minorityPicks": report.minority_picks,
        "totalResponses": report.total_responses,
    }
