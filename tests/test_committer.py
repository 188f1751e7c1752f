from __future__ import annotations

import pytest

from pick_core.committer import BatchCommitter, advance_status
from pick_core.dispatch import RetryPolicy
from pick_core.errors import CommitConflictError, IncompleteSessionError, SessionStateError, TransportError
from pick_core.types import Answer, SessionState


class FlakyBackend:
    """Applies the commit, then loses the response ``lose`` times."""

    def __init__(self, inner, lose: int = 1, before_apply: bool = False):
        self.inner = inner
        self.lose = lose
        self.before_apply = before_apply
        self.calls = 0

    def commit_answers(self, session_id, test_id, answers):
        self.calls += 1
        if self.lose > 0 and self.before_apply:
            self.lose -= 1
            raise TransportError("connection reset")
        ack = self.inner.commit_answers(session_id, test_id, answers)
        if self.lose > 0:
            self.lose -= 1
            raise TransportError("response lost")
        return ack


def _completed(session_id: str = "s-1") -> SessionState:
    state = SessionState(session_id=session_id, test_id="poll", status="completed")
    for idx in (1, 2, 3):
        state.answers[f"p{idx}"] = Answer(f"p{idx}", f"p{idx}a", answered_at=idx)
    state.clock = 3
    return state


def _committer(backend, repo=None, attempts: int = 2) -> tuple[BatchCommitter, list]:
    sleeps: list = []
    policy = RetryPolicy(max_attempts=attempts, delay_sec=0.25)
    return BatchCommitter(backend, repo, policy=policy, sleep=sleeps.append), sleeps


def test_retry_after_lost_response_counts_once(backend, repo):
    flaky = FlakyBackend(backend, lose=1)
    committer, sleeps = _committer(flaky, repo)
    state = _completed()

    result = committer.commit(state)

    assert result.ok and result.attempts == 2 and result.duplicate
    assert sleeps == [0.25]
    assert [backend.count("poll", f"p{i}", f"p{i}a") for i in (1, 2, 3)] == [1, 1, 1]
    assert state.status == "committed"
    assert repo.load("poll").status == "committed"


def test_retry_after_connect_failure_applies_once(backend):
    committer, _ = _committer(FlakyBackend(backend, lose=1, before_apply=True))
    result = committer.commit(_completed())
    assert result.ok and not result.duplicate and result.attempts == 2
    assert backend.count("poll", "p1", "p1a") == 1


def test_replaying_a_commit_never_double_counts(backend):
    committer, _ = _committer(backend)
    first = _completed()
    again = _completed()
    assert committer.commit(first).ok
    second = committer.commit(again)
    assert second.ok and second.duplicate
    assert backend.count("poll", "p2", "p2a") == 1


def test_committed_session_short_circuits(backend):
    flaky = FlakyBackend(backend, lose=0)
    committer, _ = _committer(flaky)
    state = _completed()
    state.status = "committed"
    result = committer.commit(state)
    assert result.ok and result.duplicate and result.attempts == 0
    assert flaky.calls == 0


def test_in_progress_session_is_never_committed(backend):
    committer, _ = _committer(backend)
    state = _completed()
    state.status = "in_progress"
    with pytest.raises(IncompleteSessionError):
        committer.commit(state)
    assert backend.count("poll", "p1", "p1a") == 0


def test_exhausted_retries_mark_commit_failed(backend, repo, caplog):
    flaky = FlakyBackend(backend, lose=5, before_apply=True)
    committer, sleeps = _committer(flaky, repo)
    state = _completed()

    with caplog.at_level("WARNING"):
        result = committer.commit(state)

    assert not result.ok
    assert isinstance(result.error, TransportError)
    assert result.attempts == 2 and flaky.calls == 2 and len(sleeps) == 1
    assert state.status == "commit_failed"
    assert repo.load("poll").status == "commit_failed"
    assert "failed" in caplog.text

    # a later retry of the same idempotent commit may still succeed
    flaky.lose = 0
    assert committer.commit(state).ok
    assert state.status == "committed"


def test_conflicting_payload_is_not_retried(backend):
    committer, sleeps = _committer(backend)
    assert committer.commit(_completed("dup")).ok

    changed = _completed("dup")
    changed.answers["p1"] = Answer("p1", "p1b", answered_at=1)
    result = committer.commit(changed)

    assert not result.ok
    assert isinstance(result.error, CommitConflictError)
    assert result.attempts == 1 and sleeps == []
    assert changed.status == "commit_failed"


def test_status_never_moves_backwards():
    state = _completed()
    advance_status(state, "committed")
    with pytest.raises(SessionStateError):
        advance_status(state, "in_progress")
    with pytest.raises(SessionStateError):
        advance_status(state, "commit_failed")
