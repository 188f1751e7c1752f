"""Per-session answer state machine.

Phases::

    intro -> in_progress(index) -> completed -> submitted

``submitted`` covers both ``committed`` and ``commit_failed``. Every accepted
answer is written through the session repository before the call returns.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Literal, Optional

from . import config
from .committer import advance_status
from .errors import (
    IncompleteSessionError,
    InvalidAnswerError,
    MalformedSessionDataError,
    NavigationError,
    SessionStateError,
)
from .session_store import SessionRepository
from .stats import OptimisticStatsEngine
from .types import GENDERS, Answer, Question, SessionState, TestDefinition

log = logging.getLogger(__name__)

Phase = Literal["intro", "in_progress", "completed", "submitted"]


def new_session_id() -> str:
    return uuid.uuid4().hex


class AnswerCollector:
    def __init__(
        self,
        test: TestDefinition,
        repo: SessionRepository,
        stats: Optional[OptimisticStatsEngine] = None,
        *,
        id_factory: Callable[[], str] = new_session_id,
    ):
        self.test = test
        self.repo = repo
        self.stats = stats
        self._id_factory = id_factory
        self.state: Optional[SessionState] = None
        # set once the answers have been handed to a committer
        self.sealed = False

    @property
    def phase(self) -> Phase:
        if self.state is None:
            return "intro"
        if self.state.status in ("committed", "commit_failed"):
            return "submitted"
        return self.state.status  # type: ignore[return-value]

    @property
    def questions(self) -> tuple[Question, ...]:
        return self.test.questions

    @property
    def current_question(self) -> Optional[Question]:
        if self.phase != "in_progress":
            return None
        idx = self.state.current_index  # type: ignore[union-attr]
        return self.questions[idx] if 0 <= idx < len(self.questions) else None

    def _require_state(self) -> SessionState:
        if self.state is None:
            raise SessionStateError("session not started")
        return self.state

    def missing_required(self) -> List[str]:
        answered = self.state.answers if self.state else {}
        return [q.id for q in self.questions if q.required and q.id not in answered]

    def _first_unanswered(self) -> int:
        answered = self.state.answers if self.state else {}
        for idx, q in enumerate(self.questions):
            if q.id not in answered:
                return idx
        return len(self.questions)

    def start(self, gender: Optional[str] = None) -> SessionState:
        if self.state is not None:
            raise SessionStateError(f"session {self.state.session_id} already started")
        if gender is not None and gender not in GENDERS:
            raise InvalidAnswerError(f"unknown gender {gender!r}")
        self.state = SessionState(session_id=self._id_factory(), test_id=self.test.id, gender=gender)  # type: ignore[arg-type]
        self.repo.save(self.state)
        log.info("started session %s for test %s", self.state.session_id, self.test.id)
        return self.state

    def resume(self, state: SessionState) -> SessionState:
        """Adopt a persisted session after a reload."""
        if state.test_id != self.test.id:
            raise SessionStateError(f"session {state.session_id} belongs to test {state.test_id}")
        for qid in list(state.answers):
            if self.test.question(qid) is None:
                raise MalformedSessionDataError(f"stored answer for unknown question {qid!r}")
        state.current_index = min(max(0, state.current_index), max(0, len(self.questions) - 1))
        self.state = state
        if self.stats is not None:
            if state.status == "committed":
                self.stats.clear_delta()
            else:
                self.stats.rebuild(state.answers.values(), [q.id for q in self.test.poll_questions])
        log.info("resumed session %s at index %d (%s)", state.session_id, state.current_index, state.status)
        return state

    def _validate(self, question: Question, selection: str) -> tuple[str, Optional[str]]:
        if question.takes_choice:
            ch = question.choice(str(selection))
            if ch is None:
                raise InvalidAnswerError(f"choice {selection!r} does not belong to question {question.id!r}")
            return ch.id, ch.code
        text = str(selection or "").strip()
        if not text:
            raise InvalidAnswerError(f"blank answer for question {question.id!r}")
        return text, None

    def answer(self, question_id: str, selection: str) -> Answer:
        state = self._require_state()
        if self.phase == "submitted" or self.sealed:
            raise SessionStateError(f"session {state.session_id} already submitted")
        question = self.test.question(question_id)
        if question is None:
            raise InvalidAnswerError(f"unknown question {question_id!r}")
        value, code = self._validate(question, selection)

        ans = Answer(question_id=question.id, selection=value, code=code, answered_at=state.next_tick())
        # reassigning an existing key keeps the answer's original position
        state.answers[question.id] = ans

        if not self.missing_required():
            if state.status == "in_progress":
                advance_status(state, "completed")
        else:
            nxt = min(self._first_unanswered(), len(self.questions) - 1)
            state.current_index = max(state.current_index, nxt)
        self.repo.save(state)

        if question.is_poll and self.stats is not None:
            self.stats.record_local_choice(question.id, value)
        if config.DEBUG_TRACE:
            log.debug("answer %s=%s code=%s tick=%d index=%d", question.id, value, code, ans.answered_at, state.current_index)
        return ans

    def previous(self) -> Optional[Question]:
        state = self._require_state()
        if self.phase != "in_progress":
            raise NavigationError(f"cannot go back while {self.phase}")
        if not self.test.allow_back:
            raise NavigationError(f"test {self.test.id} does not allow going back")
        if state.current_index <= 0:
            raise NavigationError("already at the first question")
        state.current_index -= 1
        self.repo.save(state)
        return self.current_question

    def complete(self) -> SessionState:
        state = self._require_state()
        if state.status != "in_progress":
            return state
        missing = self.missing_required()
        if missing:
            raise IncompleteSessionError(f"unanswered required questions: {', '.join(missing)}")
        advance_status(state, "completed")
        self.repo.save(state)
        return state

    def seal(self) -> SessionState:
        """Refuse further edits; the current answers are what gets committed."""
        state = self._require_state()
        if state.status == "in_progress":
            raise IncompleteSessionError(f"session {state.session_id} is not completed")
        self.sealed = True
        return state
