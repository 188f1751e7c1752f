"""Utility helpers for persisting aggregate counts.

One JSON document per test under ``DATA_DIR/aggregates`` holds the per-choice
counts, the ledger of committed session ids and the start/response counters.
Every read-modify-write happens under ``_LOCK`` and the document is replaced
atomically, so a commit's count increments and its ledger entry land together.
A production deployment would swap this for a database with the same
per-document transaction.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from pick_core.backend import apply_commit, blank_document, snapshot_from_document
from pick_core.types import AggregateSnapshot, Answer, CommitAck, TestDefinition

log = logging.getLogger(__name__)

DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
AGGREGATES_DIR = DATA_ROOT / "aggregates"

_LOCK = threading.Lock()


def _ensure_dirs() -> None:
    AGGREGATES_DIR.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("unreadable aggregate file %s: %s", path, e)
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _aggregate_path(test_id: str) -> Path:
    return AGGREGATES_DIR / f"{test_id}.json"


def load_aggregate(test_id: str) -> Dict[str, Any]:
    doc = _read_json(_aggregate_path(test_id), None)
    if not isinstance(doc, dict):
        return blank_document()
    for key, value in blank_document().items():
        doc.setdefault(key, value)
    return doc


def load_snapshot(test: TestDefinition) -> AggregateSnapshot:
    return snapshot_from_document(test, load_aggregate(test.id))


def commit_answers(test: TestDefinition, session_id: str, answers: List[Answer]) -> CommitAck:
    """Apply a session's answers once; replays come back as duplicates."""
    _ensure_dirs()
    with _LOCK:
        doc = load_aggregate(test.id)
        ack = apply_commit(doc, session_id, test, answers)
        if not ack.duplicate:
            doc["lastCommitAt"] = utcnow_iso()
            _write_json(_aggregate_path(test.id), doc)
    log.info("commit %s on %s: applied=%d duplicate=%s", session_id, test.id, ack.applied, ack.duplicate)
    return ack


def record_start(test_id: str) -> int:
    _ensure_dirs()
    with _LOCK:
        doc = load_aggregate(test_id)
        doc["starts"] = int(doc.get("starts", 0)) + 1
        _write_json(_aggregate_path(test_id), doc)
        return doc["starts"]


def counters(test_id: str) -> Dict[str, int]:
    doc = load_aggregate(test_id)
    return {"starts": int(doc.get("starts", 0)), "responses": int(doc.get("responses", 0))}


def is_committed(test_id: str, session_id: str) -> bool:
    return session_id in load_aggregate(test_id).get("commits", {})
