from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .config import grade_thresholds
from .stats import percent
from .types import Answer, Question


def _normalize(text: str) -> str:
    return str(text or "").strip().casefold()


def _grade_choice(question: Question, selection: str) -> Tuple[bool, str]:
    ch = question.choice(selection)
    correct = next((c for c in question.choices if c.is_correct), None)
    return bool(ch is not None and ch.is_correct), (correct.text if correct else "")


def _grade_short(question: Question, text: str) -> Tuple[bool, str]:
    got = _normalize(text)
    ok = bool(got) and any(_normalize(a) == got for a in question.correct_answers)
    return ok, (question.correct_answers[0] if question.correct_answers else "")


def is_gradable(question: Question) -> bool:
    if question.kind == "short_answer":
        return bool(question.correct_answers)
    return any(c.is_correct is not None for c in question.choices)


def grade_for(score: int, thresholds: Mapping[str, int]) -> str:
    # thresholds are scanned high to low; the lowest band catches the rest
    ranked = sorted(thresholds.items(), key=lambda kv: kv[1], reverse=True)
    for label, floor in ranked:
        if score >= floor:
            return label
    return ranked[-1][0] if ranked else ""


@dataclass(frozen=True)
class GradedAnswer:
    question_id: str
    user_answer: str
    is_correct: bool
    correct_answer: str


@dataclass
class QuizGrade:
    answers: List[GradedAnswer] = field(default_factory=list)
    correct_count: int = 0
    total: int = 0
    score: int = 0
    grade: str = ""


def grade(questions: Iterable[Question], answers: Mapping[str, Answer], cfg: Optional[Dict] = None) -> QuizGrade:
    """
    Grade a quiz attempt.
      - single_choice / two_choice_poll: correct when the picked choice has is_correct.
      - short_answer: trimmed, case-folded match against correct_answers.
    Unanswered gradable questions count as wrong; ungradable ones are skipped.
    """
    graded: List[GradedAnswer] = []
    for q in sorted(questions, key=lambda q: q.order):
        if not is_gradable(q):
            continue
        ans = answers.get(q.id)
        given = ans.selection if ans else ""
        if q.kind == "short_answer":
            ok, expected = _grade_short(q, given)
        else:
            ok, expected = _grade_choice(q, given)
        graded.append(GradedAnswer(q.id, given, ok, expected))
    correct = sum(1 for g in graded if g.is_correct)
    score = percent(correct, len(graded))
    return QuizGrade(
        answers=graded,
        correct_count=correct,
        total=len(graded),
        score=score,
        grade=grade_for(score, grade_thresholds(cfg)),
    )
