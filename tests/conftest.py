from __future__ import annotations

import pytest

from pick_core.backend import InMemoryAggregateBackend
from pick_core.catalog import load_test
from pick_core.session_store import InMemorySessionRepository
from pick_core.types import Choice, Question, ResultRule, TestDefinition


def build_poll_test(
    *,
    test_id: str = "poll",
    questions: int = 3,
    allow_back: bool = True,
) -> TestDefinition:
    """Deterministic balance test with ``questions`` two-choice polls (p1..pN, choices pNa/pNb)."""

    qs = []
    for idx in range(1, questions + 1):
        qs.append(
            Question(
                id=f"p{idx}",
                order=idx,
                kind="two_choice_poll",
                text=f"Poll {idx}",
                choices=(Choice(id=f"p{idx}a", text="A"), Choice(id=f"p{idx}b", text="B")),
            )
        )
    return TestDefinition(id=test_id, title="Poll test", kind="balance", questions=tuple(qs), allow_back=allow_back)


def build_coded_test(
    codes: list[list[str]],
    rules: list[ResultRule],
    *,
    test_id: str = "coded",
    weights: list[list[int]] | None = None,
) -> TestDefinition:
    """Psychology test where question ``i`` offers one choice per entry of ``codes[i]``."""

    qs = []
    for qi, row in enumerate(codes, start=1):
        choices = []
        for ci, code in enumerate(row):
            weight = weights[qi - 1][ci] if weights else None
            choices.append(Choice(id=f"c{qi}{code.lower()}{ci}", text=code, weight=weight, code=code))
        qs.append(Question(id=f"c{qi}", order=qi, kind="single_choice", text=f"Q{qi}", choices=tuple(choices)))
    return TestDefinition(id=test_id, title="Coded test", kind="psychology", questions=tuple(qs), rules=tuple(rules))


@pytest.fixture
def poll_test() -> TestDefinition:
    return build_poll_test()


@pytest.fixture
def balance_test() -> TestDefinition:
    return load_test("balance-sample")


@pytest.fixture
def energy_test() -> TestDefinition:
    return load_test("energy-sample")


@pytest.fixture
def quiz_test() -> TestDefinition:
    return load_test("quiz-sample")


@pytest.fixture
def repo() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def backend(poll_test, balance_test, energy_test, quiz_test) -> InMemoryAggregateBackend:
    return InMemoryAggregateBackend([poll_test, balance_test, energy_test, quiz_test])
