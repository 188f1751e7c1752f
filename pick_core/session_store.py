"""Crash-recoverable storage for one participant's in-progress sessions.

Sessions are keyed by test id, so a participant can have independent
in-flight attempts at several tests. The persisted shape is::

    {"sessionId", "testId", "gender"?, "answers": [{"questionId", "selection",
     "code"?, "answeredAt"}], "currentIndex", "status"}

Anything that does not parse back into that shape is treated as corrupt: the
entry is dropped and ``MalformedSessionDataError`` is raised so the caller
starts a fresh session.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .errors import MalformedSessionDataError
from .types import Answer, SessionState, GENDERS, SESSION_STATUSES

log = logging.getLogger(__name__)


class SessionRepository(Protocol):
    def load(self, test_id: str) -> Optional[SessionState]: ...

    def save(self, state: SessionState) -> None: ...

    def clear(self, test_id: str) -> None: ...


def session_to_payload(state: SessionState) -> Dict[str, Any]:
    answers = []
    for ans in state.answers.values():
        row: Dict[str, Any] = {"questionId": ans.question_id, "selection": ans.selection, "answeredAt": ans.answered_at}
        if ans.code is not None:
            row["code"] = ans.code
        answers.append(row)
    payload: Dict[str, Any] = {
        "sessionId": state.session_id,
        "testId": state.test_id,
        "answers": answers,
        "currentIndex": state.current_index,
        "status": state.status,
    }
    if state.gender is not None:
        payload["gender"] = state.gender
    return payload


def session_from_payload(payload: Any) -> SessionState:
    if not isinstance(payload, dict):
        raise MalformedSessionDataError("session payload is not an object")
    try:
        session_id = payload["sessionId"]
        test_id = payload["testId"]
        status = payload.get("status", "in_progress")
        gender = payload.get("gender")
        index = int(payload.get("currentIndex", 0))
        rows = payload.get("answers") or []
        if not isinstance(session_id, str) or not session_id:
            raise MalformedSessionDataError("missing sessionId")
        if not isinstance(test_id, str) or not test_id:
            raise MalformedSessionDataError("missing testId")
        if status not in SESSION_STATUSES:
            raise MalformedSessionDataError(f"unknown status {status!r}")
        if gender is not None and gender not in GENDERS:
            raise MalformedSessionDataError(f"unknown gender {gender!r}")
        if index < 0 or not isinstance(rows, list):
            raise MalformedSessionDataError("bad index or answers")

        answers: Dict[str, Answer] = {}
        clock = 0
        for pos, row in enumerate(rows, start=1):
            qid = row["questionId"]
            if qid in answers:
                raise MalformedSessionDataError(f"duplicate answer for {qid!r}")
            tick = int(row.get("answeredAt", pos))
            code = row.get("code")
            answers[str(qid)] = Answer(
                question_id=str(qid),
                selection=str(row["selection"]),
                code=None if code is None else str(code),
                answered_at=tick,
            )
            clock = max(clock, tick)
    except MalformedSessionDataError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedSessionDataError(f"unreadable session payload: {e}") from e

    return SessionState(
        session_id=session_id,
        test_id=test_id,
        answers=answers,
        current_index=index,
        gender=gender,
        status=status,
        clock=clock,
    )


class InMemorySessionRepository:
    """Dict-backed repository; stores serialized payloads so round-trips match the file store."""

    def __init__(self) -> None:
        self._rows: Dict[str, Any] = {}

    def load(self, test_id: str) -> Optional[SessionState]:
        raw = self._rows.get(test_id)
        if raw is None:
            return None
        try:
            return session_from_payload(json.loads(raw) if isinstance(raw, str) else raw)
        except (MalformedSessionDataError, ValueError) as e:
            self._rows.pop(test_id, None)
            log.warning("discarded corrupt session for test %s: %s", test_id, e)
            raise MalformedSessionDataError(str(e)) from e

    def save(self, state: SessionState) -> None:
        self._rows[state.test_id] = json.dumps(session_to_payload(state))

    def clear(self, test_id: str) -> None:
        self._rows.pop(test_id, None)

    def put_raw(self, test_id: str, raw: Any) -> None:
        self._rows[test_id] = raw


class JsonFileSessionRepository:
    """All of a device's sessions in one JSON document, replaced atomically on write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("session file %s unreadable, starting over: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def load(self, test_id: str) -> Optional[SessionState]:
        with self._lock:
            rows = self._read_all()
            if test_id not in rows:
                return None
            try:
                state = session_from_payload(rows[test_id])
                if state.test_id != test_id:
                    raise MalformedSessionDataError(f"entry for {test_id!r} belongs to {state.test_id!r}")
                return state
            except MalformedSessionDataError as e:
                rows.pop(test_id, None)
                self._write_all(rows)
                log.warning("discarded corrupt session for test %s: %s", test_id, e)
                raise

    def save(self, state: SessionState) -> None:
        with self._lock:
            rows = self._read_all()
            rows[state.test_id] = session_to_payload(state)
            self._write_all(rows)

    def clear(self, test_id: str) -> None:
        with self._lock:
            rows = self._read_all()
            if test_id in rows:
                rows.pop(test_id, None)
                self._write_all(rows)
