"""Optimistic per-choice statistics for poll questions.

The engine keeps the server snapshot fetched at session start as an immutable
base and layers this session's own picks on top as a delta, so the
participant sees "X% picked this" immediately after answering without a
round trip per answer.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from .errors import StatsEngineError
from .types import AggregateSnapshot, Answer, ChoiceStat, Question


Counts = Dict[str, Dict[str, int]]


def percent(count: int, total: int) -> int:
    """``round(100 * count / total)`` with halves rounded up; 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * int(count) + int(total)) // (2 * int(total))


def merge(base: Mapping[str, Mapping[str, int]], delta: Mapping[str, Mapping[str, int]]) -> Counts:
    """Return ``base + delta`` as a fresh nested dict; neither input is modified."""
    out: Counts = {qid: dict(choices) for qid, choices in base.items()}
    for qid, choices in delta.items():
        row = out.setdefault(qid, {})
        for cid, inc in choices.items():
            row[cid] = row.get(cid, 0) + int(inc)
    return out


def distribution(counts: Mapping[str, int], order: Optional[Iterable[str]] = None) -> List[ChoiceStat]:
    ids: List[str] = list(order) if order is not None else []
    for cid in counts:
        if cid not in ids:
            ids.append(cid)
    total = sum(int(counts.get(cid, 0)) for cid in ids)
    return [ChoiceStat(choice_id=cid, count=int(counts.get(cid, 0)), percentage=percent(counts.get(cid, 0), total)) for cid in ids]


class OptimisticStatsEngine:
    """Snapshot + local delta, recomputed synchronously on every read."""

    def __init__(self, questions: Iterable[Question] = ()):
        self._order: Dict[str, List[str]] = {q.id: [c.id for c in q.choices] for q in questions}
        self._base: Optional[AggregateSnapshot] = None
        self._delta: Counts = {}
        self._selected: Dict[str, str] = {}

    @property
    def initialized(self) -> bool:
        return self._base is not None

    @property
    def snapshot(self) -> Optional[AggregateSnapshot]:
        return self._base

    def initialize(self, snapshot: AggregateSnapshot) -> None:
        if self._base is not None:
            raise StatsEngineError(f"snapshot for {self._base.test_id} already initialized")
        counts = {qid: {cid: max(0, int(n)) for cid, n in row.items()} for qid, row in snapshot.counts.items()}
        self._base = AggregateSnapshot(test_id=snapshot.test_id, counts=counts)

    def record_local_choice(self, question_id: str, choice_id: str) -> None:
        previous = self._selected.get(question_id)
        if previous == choice_id:
            return
        row = self._delta.setdefault(question_id, {})
        if previous is not None and row.get(previous, 0) > 0:
            row[previous] -= 1
        row[choice_id] = row.get(choice_id, 0) + 1
        self._selected[question_id] = choice_id

    def rebuild(self, answers: Iterable[Answer], poll_ids: Iterable[str]) -> None:
        """Re-derive the delta from persisted answers after a reload."""
        polls = set(poll_ids)
        self._delta = {}
        self._selected = {}
        for ans in answers:
            if ans.question_id in polls:
                self.record_local_choice(ans.question_id, ans.selection)

    def clear_delta(self) -> None:
        self._delta = {}
        self._selected = {}

    def delta(self) -> Counts:
        return {qid: dict(row) for qid, row in self._delta.items()}

    def merged(self) -> Counts:
        if self._base is None:
            raise StatsEngineError("stats engine used before initialize()")
        return merge(self._base.counts, self._delta)

    def distribution_for(self, question_id: str) -> List[ChoiceStat]:
        if self._base is None:
            raise StatsEngineError("stats engine used before initialize()")
        counts = dict(self._base.counts.get(question_id, {}))
        for cid, inc in self._delta.get(question_id, {}).items():
            counts[cid] = counts.get(cid, 0) + inc
        return distribution(counts, self._order.get(question_id))
