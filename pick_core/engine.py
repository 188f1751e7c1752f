from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Dict, List, Optional

from .analyzer import AggregateAnalyzer, AnalysisReport
from .backend import AggregateBackend
from .collector import AnswerCollector, Phase
from .committer import BatchCommitter, advance_status
from .dispatch import RetryPolicy, TaskDispatcher
from .errors import MalformedSessionDataError, PickError, ResultNotFoundError, SnapshotFetchError
from .grading import QuizGrade, grade
from .matcher import MatchOutcome, ResultMatcher
from .session_store import SessionRepository
from .stats import OptimisticStatsEngine
from .types import AggregateSnapshot, Answer, ChoiceStat, CommitResult, Question, ResultRule, SessionState, TestDefinition

log = logging.getLogger(__name__)


@dataclass
class FinalView:
    session_id: str
    analysis: Optional[AnalysisReport] = None
    match: Optional[MatchOutcome] = None
    grade: Optional[QuizGrade] = None
    result_error: Optional[ResultNotFoundError] = None

    def require_result(self) -> MatchOutcome:
        if self.match is None:
            raise self.result_error or ResultNotFoundError(f"session {self.session_id} has no result")
        return self.match


class PickSession:
    """One participant's attempt at one test.

    Wires the collector, the optimistic stats, the analyzer, the matcher and
    the committer together. The snapshot is fetched once when the session
    begins (or resumes) and the commit runs on ``dispatcher`` so ``finish``
    returns as soon as the final view is computed.
    """

    def __init__(
        self,
        test: TestDefinition,
        backend: AggregateBackend,
        repo: SessionRepository,
        *,
        dispatcher: Optional[TaskDispatcher] = None,
        cfg: Optional[Dict] = None,
    ):
        self.test = test
        self.backend = backend
        self.repo = repo
        self.cfg = cfg or {}
        self.dispatcher = dispatcher or TaskDispatcher()
        # persistence of the committed state happens in _commit_in_background
        self.committer = BatchCommitter(backend, policy=RetryPolicy.from_cfg(self.cfg))
        self._lock = threading.Lock()
        self._build()

    def _build(self) -> None:
        self.stats = OptimisticStatsEngine(self.test.questions)
        self.collector = AnswerCollector(self.test, self.repo, self.stats)
        self.analyzer = AggregateAnalyzer(self.stats, self.cfg.get("POPULAR_QUESTIONS_LIMIT"))
        self.view: Optional[FinalView] = None
        self._commit: Optional[Future] = None

    @classmethod
    def open(cls, test: TestDefinition, backend: AggregateBackend, repo: SessionRepository, **kwargs) -> "PickSession":
        """Resume the stored session for ``test`` if there is a readable one."""
        session = cls(test, backend, repo, **kwargs)
        try:
            stored = repo.load(test.id)
            if stored is not None:
                session.collector.resume(stored)
        except MalformedSessionDataError as e:
            log.warning("stored session for %s discarded: %s", test.id, e)
            repo.clear(test.id)
            session._build()
            stored = None
        if stored is not None:
            session._reconcile()
            session._load_snapshot()
        return session

    def _reconcile(self) -> None:
        """Settle a finished session whose commit may have landed without an ack.

        If the server already counted this session the local picks are part of
        the snapshot, so the delta is dropped and the session is marked
        committed. When the server cannot be asked the delta is kept.
        """
        state = self.state
        if state is None or state.status not in ("completed", "commit_failed"):
            return
        try:
            applied = self.backend.is_committed(self.test.id, state.session_id)
        except PickError as e:
            log.warning("could not check commit of session %s, keeping local picks: %s", state.session_id, e)
            return
        if applied:
            advance_status(state, "committed")
            self.repo.save(state)
            self.stats.clear_delta()
            log.info("session %s was already committed on the server", state.session_id)

    # --- state -------------------------------------------------------------
    @property
    def state(self) -> Optional[SessionState]:
        return self.collector.state

    @property
    def phase(self) -> Phase:
        return self.collector.phase

    @property
    def current_question(self) -> Optional[Question]:
        return self.collector.current_question

    # --- lifecycle ---------------------------------------------------------
    def _load_snapshot(self) -> None:
        try:
            snap = self.backend.get_snapshot(self.test.id)
        except SnapshotFetchError as e:
            log.warning("snapshot for %s unavailable, starting from zero counts: %s", self.test.id, e)
            snap = AggregateSnapshot(test_id=self.test.id, counts={})
        self.stats.initialize(snap)

    def begin(self, gender: Optional[str] = None) -> Optional[Question]:
        self.collector.start(gender)
        self._load_snapshot()
        self.dispatcher.submit(f"start {self.test.id}", self.backend.record_start, self.test.id)
        return self.current_question

    def answer(self, question_id: str, selection: str) -> Answer:
        return self.collector.answer(question_id, selection)

    def previous(self) -> Optional[Question]:
        return self.collector.previous()

    def distribution_for(self, question_id: str) -> List[ChoiceStat]:
        return self.stats.distribution_for(question_id)

    def _rules(self) -> List[ResultRule]:
        try:
            return list(self.backend.get_result_rules(self.test.id))
        except PickError as e:
            raise ResultNotFoundError(f"rules for {self.test.id} unavailable: {e}") from e

    def _final_view(self, state: SessionState) -> FinalView:
        view = FinalView(session_id=state.session_id)
        answers = list(state.answers.values())
        if self.test.poll_questions:
            view.analysis = self.analyzer.analyze(self.test.questions, answers)
        if self.test.kind == "quiz":
            view.grade = grade(self.test.questions, state.answers, self.cfg)
        if self.test.kind in ("psychology", "quiz"):
            try:
                view.match = ResultMatcher(self._rules()).match(self.test.questions, state)
            except ResultNotFoundError as e:
                log.warning("no result for session %s: %s", state.session_id, e)
                view.result_error = e
        return view

    def finish(self) -> FinalView:
        """Complete the session, compute what the participant sees, then dispatch the commit.

        Once the commit is dispatched the answers are sealed; a second call
        while it is still running returns the same view.
        """
        if self._commit is not None and not self._commit.done():
            return self.view  # type: ignore[return-value]
        state = self.collector.complete()
        self.view = self._final_view(state)
        if state.status != "committed":
            self.collector.seal()
            self._commit = self.dispatcher.submit(f"commit {state.session_id}", self._commit_in_background, state)
        return self.view

    def _commit_in_background(self, state: SessionState) -> CommitResult:
        result = self.committer.commit(state)
        with self._lock:
            # a retake in the meantime owns the repository slot now
            if self.collector.state is state:
                self.repo.save(state)
            else:
                log.info("session %s was reset before its commit finished", state.session_id)
        return result

    def commit_outcome(self, timeout: Optional[float] = None) -> Optional[CommitResult]:
        if self._commit is None:
            return None
        result: CommitResult = self._commit.result(timeout=timeout)
        if result.ok:
            self.stats.clear_delta()
        return result

    def reset(self) -> None:
        """Forget the stored session so the test can be taken again.

        A commit still in flight keeps running against the server but no
        longer writes the old session back.
        """
        with self._lock:
            self.repo.clear(self.test.id)
            self._build()
