"""Aggregate store contract and its implementations.

``AggregateBackend`` is everything a session needs from the server: the
snapshot read once at session start, the idempotent answer commit, the result
rules and the start counter. ``apply_commit`` holds the server-side
exactly-once rule and is shared by every store that keeps counts.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from . import config
from .catalog import parse_rule
from .errors import (
    CommitConflictError,
    CommitError,
    InvalidAnswerError,
    SnapshotFetchError,
    TransportError,
    UnknownTestError,
)
from .types import AggregateSnapshot, Answer, CommitAck, ResultRule, TestDefinition

log = logging.getLogger(__name__)

HTTP_STATUS_OK = 200
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_CONFLICT = 409


class AggregateBackend(Protocol):
    def get_snapshot(self, test_id: str) -> AggregateSnapshot: ...

    def commit_answers(self, session_id: str, test_id: str, answers: List[Answer]) -> CommitAck: ...

    def get_result_rules(self, test_id: str) -> List[ResultRule]: ...

    def record_start(self, test_id: str) -> int: ...

    def is_committed(self, test_id: str, session_id: str) -> bool: ...


def answers_digest(answers: Iterable[Answer]) -> str:
    """Order-independent fingerprint of a commit payload."""
    rows = sorted([a.question_id, a.selection] for a in answers)
    return hashlib.sha256(json.dumps(rows, ensure_ascii=False).encode("utf-8")).hexdigest()


def blank_document() -> Dict[str, Any]:
    return {"counts": {}, "commits": {}, "starts": 0, "responses": 0}


def validate_answers(test: TestDefinition, answers: Iterable[Answer]) -> None:
    seen: set[str] = set()
    for ans in answers:
        q = test.question(ans.question_id)
        if q is None:
            raise InvalidAnswerError(f"unknown question {ans.question_id!r} for test {test.id!r}")
        if ans.question_id in seen:
            raise InvalidAnswerError(f"duplicate answer for question {ans.question_id!r}")
        seen.add(ans.question_id)
        if q.takes_choice and q.choice(ans.selection) is None:
            raise InvalidAnswerError(f"choice {ans.selection!r} does not belong to question {q.id!r}")


def apply_commit(doc: Dict[str, Any], session_id: str, test: TestDefinition, answers: List[Answer]) -> CommitAck:
    """Apply one session's answers to ``doc`` at most once.

    ``doc`` holds the per-choice counts and the ledger of committed session
    ids. A replay with the same payload is acknowledged as a duplicate and
    changes nothing; a replay with a different payload is a conflict. Callers
    must persist ``doc`` atomically together with the ledger entry.
    """
    if not session_id:
        raise CommitError("missing session id")
    digest = answers_digest(answers)
    ledger = doc.setdefault("commits", {})
    prior = ledger.get(session_id)
    if prior is not None:
        if prior.get("digest") != digest:
            raise CommitConflictError(f"session {session_id} already committed with a different payload")
        return CommitAck(session_id=session_id, duplicate=True, applied=0)

    validate_answers(test, answers)
    counts = doc.setdefault("counts", {})
    applied = 0
    for ans in answers:
        q = test.question(ans.question_id)
        if q is None or not q.takes_choice:
            continue
        row = counts.setdefault(ans.question_id, {})
        row[ans.selection] = int(row.get(ans.selection, 0)) + 1
        applied += 1
    ledger[session_id] = {"digest": digest, "applied": applied}
    doc["responses"] = int(doc.get("responses", 0)) + 1
    return CommitAck(session_id=session_id, duplicate=False, applied=applied)


def snapshot_from_document(test: TestDefinition, doc: Dict[str, Any]) -> AggregateSnapshot:
    stored = doc.get("counts", {})
    counts: Dict[str, Dict[str, int]] = {}
    for q in test.questions:
        if not q.takes_choice:
            continue
        row = stored.get(q.id, {})
        counts[q.id] = {c.id: int(row.get(c.id, 0)) for c in q.choices}
    return AggregateSnapshot(test_id=test.id, counts=counts)


class InMemoryAggregateBackend:
    """Process-local aggregate store with the same exactly-once semantics as the API."""

    def __init__(self, tests: Iterable[TestDefinition]):
        self.tests: Dict[str, TestDefinition] = {t.id: t for t in tests}
        self.docs: Dict[str, Dict[str, Any]] = {t.id: blank_document() for t in self.tests.values()}
        self._lock = threading.Lock()

    def _test(self, test_id: str) -> TestDefinition:
        test = self.tests.get(test_id)
        if test is None:
            raise UnknownTestError(test_id)
        return test

    def get_snapshot(self, test_id: str) -> AggregateSnapshot:
        test = self._test(test_id)
        with self._lock:
            return snapshot_from_document(test, self.docs[test_id])

    def commit_answers(self, session_id: str, test_id: str, answers: List[Answer]) -> CommitAck:
        test = self._test(test_id)
        with self._lock:
            return apply_commit(self.docs[test_id], session_id, test, list(answers))

    def get_result_rules(self, test_id: str) -> List[ResultRule]:
        return list(self._test(test_id).rules)

    def record_start(self, test_id: str) -> int:
        self._test(test_id)
        with self._lock:
            doc = self.docs[test_id]
            doc["starts"] = int(doc.get("starts", 0)) + 1
            return doc["starts"]

    def is_committed(self, test_id: str, session_id: str) -> bool:
        self._test(test_id)
        with self._lock:
            return session_id in self.docs[test_id].get("commits", {})

    def count(self, test_id: str, question_id: str, choice_id: str) -> int:
        return int(self.docs[test_id]["counts"].get(question_id, {}).get(choice_id, 0))


def answers_to_rows(answers: Iterable[Answer]) -> List[Dict[str, Any]]:
    return [{"questionId": a.question_id, "selection": a.selection, "code": a.code} for a in answers]


class HttpAggregateBackend:
    """Talks to the bundled FastAPI service.

    Connection problems, timeouts, unreadable bodies and 5xx responses surface as
    ``TransportError`` so the committer can retry them; a 409 is a
    ``CommitConflictError`` and is never retried.

    Attributes:
        base_url: Root of the API, e.g. ``http://localhost:8000``
        timeout: Per-request timeout in seconds
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None, client: Optional[httpx.Client] = None):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.timeout = config.HTTP_TIMEOUT_SEC if timeout is None else timeout
        self._client = client
        log.debug("HttpAggregateBackend initialized with base_url: %s", self.base_url)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                return self._client.request(method, url, **kwargs)
            with httpx.Client(timeout=self.timeout) as client:
                return client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"timeout calling {method} {path}: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"connection error calling {method} {path}: {e}") from e

    @staticmethod
    def _body(resp: httpx.Response, what: str) -> Dict[str, Any]:
        # a 200 carrying a proxy page or a truncated body is a transport fault
        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError(f"{what}: unreadable response body: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(f"{what}: unexpected response body {body!r}")
        return body

    def get_snapshot(self, test_id: str) -> AggregateSnapshot:
        try:
            resp = self._request("GET", f"/tests/{test_id}/snapshot")
        except TransportError as e:
            raise SnapshotFetchError(str(e)) from e
        if resp.status_code != HTTP_STATUS_OK:
            raise SnapshotFetchError(f"snapshot for {test_id}: HTTP {resp.status_code}")
        try:
            body = resp.json()
            counts = {str(q): {str(c): int(n) for c, n in row.items()} for q, row in body["counts"].items()}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SnapshotFetchError(f"snapshot for {test_id}: bad payload: {e}") from e
        return AggregateSnapshot(test_id=test_id, counts=counts)

    def commit_answers(self, session_id: str, test_id: str, answers: List[Answer]) -> CommitAck:
        resp = self._request(
            "POST",
            f"/tests/{test_id}/commits",
            json={"sessionId": session_id, "answers": answers_to_rows(answers)},
            headers={"Idempotency-Key": session_id},
        )
        if resp.status_code == HTTP_STATUS_OK:
            body = self._body(resp, f"commit for {session_id}")
            try:
                applied = int(body.get("applied", 0))
            except (TypeError, ValueError) as e:
                raise TransportError(f"commit for {session_id}: bad ack {body!r}") from e
            return CommitAck(session_id=session_id, duplicate=bool(body.get("duplicate")), applied=applied)
        if resp.status_code == HTTP_STATUS_CONFLICT:
            raise CommitConflictError(f"session {session_id}: {resp.text}")
        if resp.status_code >= 500:
            raise TransportError(f"commit for {session_id}: HTTP {resp.status_code}")
        raise CommitError(f"commit for {session_id} rejected: HTTP {resp.status_code} - {resp.text}")

    def get_result_rules(self, test_id: str) -> List[ResultRule]:
        resp = self._request("GET", f"/tests/{test_id}/rules")
        if resp.status_code == HTTP_STATUS_NOT_FOUND:
            raise UnknownTestError(test_id)
        if resp.status_code != HTTP_STATUS_OK:
            raise TransportError(f"rules for {test_id}: HTTP {resp.status_code}")
        return [parse_rule(r) for r in self._body(resp, f"rules for {test_id}").get("rules", [])]

    def record_start(self, test_id: str) -> int:
        resp = self._request("POST", f"/tests/{test_id}/start")
        if resp.status_code != HTTP_STATUS_OK:
            raise TransportError(f"start for {test_id}: HTTP {resp.status_code}")
        return int(self._body(resp, f"start for {test_id}").get("starts", 0))

    def is_committed(self, test_id: str, session_id: str) -> bool:
        resp = self._request("GET", f"/tests/{test_id}/commits/{session_id}")
        if resp.status_code == HTTP_STATUS_NOT_FOUND:
            raise UnknownTestError(test_id)
        if resp.status_code != HTTP_STATUS_OK:
            raise TransportError(f"commit lookup for {session_id}: HTTP {resp.status_code}")
        return bool(self._body(resp, f"commit lookup for {session_id}").get("committed"))


__all__ = [
    "AggregateBackend",
    "HttpAggregateBackend",
    "InMemoryAggregateBackend",
    "answers_digest",
    "answers_to_rows",
    "apply_commit",
    "blank_document",
    "snapshot_from_document",
    "validate_answers",
]
