from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from .backend import AggregateBackend
from .dispatch import RetryPolicy, run_with_retry
from .errors import IncompleteSessionError, PickError, SessionStateError
from .session_store import SessionRepository
from .types import CommitResult, SessionState, SessionStatus

log = logging.getLogger(__name__)

# allowed status moves; anything else is a regression
_TRANSITIONS: Dict[SessionStatus, Tuple[SessionStatus, ...]] = {
    "in_progress": ("completed",),
    "completed": ("committed", "commit_failed"),
    "commit_failed": ("committed", "commit_failed"),
    "committed": (),
}


def advance_status(state: SessionState, target: SessionStatus) -> None:
    if state.status == target and target != "commit_failed":
        return
    if target not in _TRANSITIONS.get(state.status, ()):
        raise SessionStateError(f"session {state.session_id}: {state.status} -> {target} not allowed")
    state.status = target


class BatchCommitter:
    """Flushes a finished session's answers to the aggregate store exactly once.

    ``session_id`` is the idempotency key, so a retry after a lost response
    is acknowledged as a duplicate by the store instead of counting twice.
    Transport failures are retried per ``policy``; whatever still fails is
    logged, the session is marked ``commit_failed`` and the error is handed
    back in the result instead of being raised.
    """

    def __init__(
        self,
        backend: AggregateBackend,
        repo: Optional[SessionRepository] = None,
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.repo = repo
        self.policy = policy or RetryPolicy.from_cfg()
        self._sleep = sleep

    def _persist(self, state: SessionState) -> None:
        if self.repo is not None:
            self.repo.save(state)

    def commit(self, state: SessionState) -> CommitResult:
        if state.status == "in_progress":
            raise IncompleteSessionError(f"session {state.session_id} is not completed")
        if state.status == "committed":
            return CommitResult(ok=True, duplicate=True, attempts=0)

        answers = list(state.answers.values())
        calls = 0

        def send():
            nonlocal calls
            calls += 1
            return self.backend.commit_answers(state.session_id, state.test_id, answers)

        try:
            ack, attempts = run_with_retry(
                self.policy,
                send,
                label=f"commit {state.session_id}",
                sleep=self._sleep,
            )
        except PickError as e:
            advance_status(state, "commit_failed")
            self._persist(state)
            log.error("commit for session %s failed: %s", state.session_id, e)
            return CommitResult(ok=False, attempts=calls, error=e)

        advance_status(state, "committed")
        self._persist(state)
        log.info(
            "committed session %s (%d answers, duplicate=%s, attempts=%d)",
            state.session_id, len(answers), ack.duplicate, attempts,
        )
        return CommitResult(ok=True, duplicate=ack.duplicate, attempts=attempts)
