from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Literal

QuestionKind = Literal["single_choice", "two_choice_poll", "short_answer"]
TestKind = Literal["balance", "psychology", "quiz"]
SessionStatus = Literal["in_progress", "completed", "committed", "commit_failed"]
Gender = Literal["male", "female"]

QUESTION_KINDS = ("single_choice", "two_choice_poll", "short_answer")
TEST_KINDS = ("balance", "psychology", "quiz")
GENDERS = ("male", "female")
SESSION_STATUSES = ("in_progress", "completed", "committed", "commit_failed")


@dataclass(frozen=True)
class Choice:
    id: str; text: str = ""
    weight: Optional[int] = None
    code: Optional[str] = None
    is_correct: Optional[bool] = None


@dataclass(frozen=True)
class Question:
    id: str; order: int; kind: QuestionKind
    choices: tuple[Choice, ...] = ()
    text: str = ""
    required: bool = True
    correct_answers: tuple[str, ...] = ()

    def choice(self, choice_id: str) -> Optional[Choice]:
        for ch in self.choices:
            if ch.id == choice_id:
                return ch
        return None

    @property
    def is_poll(self) -> bool:
        return self.kind == "two_choice_poll"

    @property
    def takes_choice(self) -> bool:
        return self.kind != "short_answer"


@dataclass(frozen=True)
class ResultRule:
    result_id: str
    priority: int = 0
    score_min: Optional[int] = None
    score_max: Optional[int] = None
    code: Optional[str] = None
    gender: Optional[str] = None
    is_default: bool = False
    title: str = ""


@dataclass(frozen=True)
class TestDefinition:
    id: str; title: str; kind: TestKind
    questions: tuple[Question, ...]
    rules: tuple[ResultRule, ...] = ()
    allow_back: bool = True

    __test__ = False  # keep pytest from collecting this as a test class

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    @property
    def poll_questions(self) -> List[Question]:
        return [q for q in self.questions if q.is_poll]


@dataclass
class Answer:
    question_id: str; selection: str
    code: Optional[str] = None
    answered_at: int = 0


@dataclass
class SessionState:
    session_id: str
    test_id: str
    answers: Dict[str, Answer] = field(default_factory=dict)
    current_index: int = 0
    gender: Optional[Gender] = None
    status: SessionStatus = "in_progress"
    clock: int = 0

    def next_tick(self) -> int:
        self.clock += 1
        return self.clock


@dataclass(frozen=True)
class AggregateSnapshot:
    test_id: str
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def count(self, question_id: str, choice_id: str) -> int:
        return int(self.counts.get(question_id, {}).get(choice_id, 0))

    def total(self, question_id: str) -> int:
        return sum(self.counts.get(question_id, {}).values())


@dataclass(frozen=True)
class ChoiceStat:
    choice_id: str
    count: int
    percentage: int


@dataclass(frozen=True)
class CommitAck:
    session_id: str
    duplicate: bool = False
    applied: int = 0


@dataclass
class CommitResult:
    ok: bool
    duplicate: bool = False
    attempts: int = 0
    error: Optional[Exception] = None
