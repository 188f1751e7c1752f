from __future__ import annotations

import json

import pytest

from pick_core.errors import MalformedSessionDataError
from pick_core.session_store import (
    InMemorySessionRepository,
    JsonFileSessionRepository,
    session_from_payload,
    session_to_payload,
)
from pick_core.types import Answer, SessionState


def _state(test_id: str = "poll") -> SessionState:
    state = SessionState(session_id="abc", test_id=test_id, gender="male", current_index=2)
    state.answers["p1"] = Answer("p1", "p1a", answered_at=1)
    state.answers["c1"] = Answer("c1", "c1e0", code="E", answered_at=4)
    state.clock = 4
    return state


def test_payload_uses_the_stored_field_names():
    payload = session_to_payload(_state())
    assert set(payload) == {"sessionId", "testId", "gender", "answers", "currentIndex", "status"}
    assert payload["answers"][1] == {"questionId": "c1", "selection": "c1e0", "code": "E", "answeredAt": 4}
    assert "code" not in payload["answers"][0]

    back = session_from_payload(payload)
    assert back.clock == 4
    assert list(back.answers) == ["p1", "c1"]


@pytest.mark.parametrize(
    "payload",
    [
        "not a dict",
        {"testId": "poll"},
        {"sessionId": "x", "testId": "poll", "status": "finished"},
        {"sessionId": "x", "testId": "poll", "gender": "robot"},
        {"sessionId": "x", "testId": "poll", "answers": [{"selection": "a"}]},
        {"sessionId": "x", "testId": "poll", "answers": [{"questionId": "p1", "selection": "a"}] * 2},
        {"sessionId": "x", "testId": "poll", "currentIndex": -1},
    ],
)
def test_malformed_payloads_are_rejected(payload):
    with pytest.raises(MalformedSessionDataError):
        session_from_payload(payload)


def test_in_memory_repo_discards_corrupt_entry():
    repo = InMemorySessionRepository()
    repo.put_raw("poll", "{not json")
    with pytest.raises(MalformedSessionDataError):
        repo.load("poll")
    assert repo.load("poll") is None


def test_file_repo_keeps_tests_apart(tmp_path):
    repo = JsonFileSessionRepository(tmp_path / "sessions.json")
    repo.save(_state("poll"))
    repo.save(_state("energy"))
    assert repo.load("poll").test_id == "poll"
    repo.clear("poll")
    assert repo.load("poll") is None
    assert repo.load("energy").gender == "male"
    assert not (tmp_path / "sessions.json.tmp").exists()


def test_file_repo_discards_corrupt_entry(tmp_path, caplog):
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps({"poll": {"sessionId": "", "testId": "poll"}, "energy": session_to_payload(_state("energy"))}))
    repo = JsonFileSessionRepository(path)

    with pytest.raises(MalformedSessionDataError):
        repo.load("poll")
    assert "discarded corrupt session" in caplog.text
    assert "poll" not in json.loads(path.read_text())
    assert repo.load("energy") is not None


def test_file_repo_rejects_entry_filed_under_another_test(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps({"poll": session_to_payload(_state("energy"))}))
    with pytest.raises(MalformedSessionDataError):
        JsonFileSessionRepository(path).load("poll")
