from __future__ import annotations
from fastapi import FastAPI, HTTPException, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
import os, typing as t

# ---- Engine imports ----
from pick_core.analyzer import AggregateAnalyzer, report_to_dict
from pick_core.catalog import definition_to_dict, list_test_ids, load_test, rule_to_dict
from pick_core.config import load_config
from pick_core.errors import CommitConflictError, InvalidAnswerError, ResultNotFoundError, UnknownTestError
from pick_core.backend import validate_answers
from pick_core.grading import grade
from pick_core.matcher import ResultMatcher
from pick_core.stats import OptimisticStatsEngine
from pick_core.types import Answer, TestDefinition, GENDERS
from . import storage

app = FastAPI(title="Pick Analyzer API")


@app.get("/")
def root():
    return {"status": "ok", "service": "pick-analyzer-api"}


ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",  # dev
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,  # keep False unless you use cookies
)


# ---- Schemas ----
class AnswerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId")
    selection: str
    code: str | None = None


class CommitReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    answers: list[AnswerIn] = []


class MatchReq(BaseModel):
    answers: list[AnswerIn] = []
    gender: str | None = None


# ---- Helpers ----
def _test_or_404(test_id: str) -> TestDefinition:
    try:
        return load_test(test_id)
    except UnknownTestError:
        raise HTTPException(404, f"test {test_id} not found")


def _to_answers(test: TestDefinition, rows: list[AnswerIn]) -> list[Answer]:
    out: list[Answer] = []
    for tick, row in enumerate(rows, start=1):
        q = test.question(row.question_id)
        ch = q.choice(row.selection) if q is not None else None
        # the code always comes from the definition, never from the client
        out.append(Answer(row.question_id, row.selection, ch.code if ch else None, tick))
    return out


# ---- Health ----
@app.get("/health")
def health():
    return {"status": "ok", "tests": len(list_test_ids()), "data_dir": str(storage.DATA_ROOT)}


# ---- Catalog ----
@app.get("/tests")
def list_tests():
    out: list[dict[str, t.Any]] = []
    for test_id in list_test_ids():
        test = load_test(test_id)
        out.append({"id": test.id, "title": test.title, "kind": test.kind, "questions": len(test.questions)})
    return {"tests": out}


@app.get("/tests/{test_id}")
def get_test(test_id: str):
    return definition_to_dict(_test_or_404(test_id))


@app.get("/tests/{test_id}/rules")
def get_rules(test_id: str):
    test = _test_or_404(test_id)
    return {"testId": test.id, "rules": [rule_to_dict(r) for r in test.rules]}


# ---- Aggregates ----
@app.get("/tests/{test_id}/snapshot")
def get_snapshot(test_id: str):
    test = _test_or_404(test_id)
    snap = storage.load_snapshot(test)
    return {"testId": snap.test_id, "counts": snap.counts}


@app.post("/tests/{test_id}/start")
def start(test_id: str):
    test = _test_or_404(test_id)
    return {"testId": test.id, "starts": storage.record_start(test.id)}


@app.post("/tests/{test_id}/commits")
def commit(test_id: str, req: CommitReq, idempotency_key: str | None = Header(None, alias="Idempotency-Key")):
    test = _test_or_404(test_id)
    if idempotency_key is not None and idempotency_key != req.session_id:
        raise HTTPException(422, "Idempotency-Key must equal sessionId")
    try:
        ack = storage.commit_answers(test, req.session_id, _to_answers(test, req.answers))
    except CommitConflictError as e:
        raise HTTPException(409, str(e))
    except InvalidAnswerError as e:
        raise HTTPException(422, str(e))
    return {"ok": True, "sessionId": ack.session_id, "duplicate": ack.duplicate, "applied": ack.applied}


@app.get("/tests/{test_id}/commits/{session_id}")
def commit_status(test_id: str, session_id: str):
    test = _test_or_404(test_id)
    return {"testId": test.id, "sessionId": session_id, "committed": storage.is_committed(test.id, session_id)}


@app.get("/tests/{test_id}/stats")
def get_stats(test_id: str):
    test = _test_or_404(test_id)
    stats = OptimisticStatsEngine(test.questions)
    stats.initialize(storage.load_snapshot(test))
    cfg = load_config()
    report = AggregateAnalyzer(stats, cfg.get("POPULAR_QUESTIONS_LIMIT")).analyze(test.questions)
    return {"testId": test.id, **storage.counters(test.id), "analysis": report_to_dict(report)}


@app.post("/tests/{test_id}/match")
def match(test_id: str, req: MatchReq):
    test = _test_or_404(test_id)
    if req.gender is not None and req.gender not in GENDERS:
        raise HTTPException(422, f"unknown gender {req.gender!r}")
    answers = _to_answers(test, req.answers)
    try:
        validate_answers(test, answers)
    except InvalidAnswerError as e:
        raise HTTPException(422, str(e))

    matcher = ResultMatcher(test.rules)
    body: dict[str, t.Any] = {"testId": test.id}
    if test.kind == "quiz":
        graded = grade(test.questions, {a.question_id: a for a in answers}, load_config())
        body["grade"] = {"score": graded.score, "grade": graded.grade, "correct": graded.correct_count, "total": graded.total}
    try:
        outcome = matcher.match_inputs(matcher.inputs_for(test.questions, answers, req.gender))
    except ResultNotFoundError as e:
        raise HTTPException(404, str(e))
    body.update({
        "resultId": outcome.result_id,
        "title": outcome.rule.title,
        "fallback": outcome.fallback,
        "score": outcome.inputs.score,
        "code": outcome.inputs.code,
    })
    return body


def main() -> None:
    import uvicorn
    from pick_core.config import _env_int
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=_env_int("PORT", 8000))


if __name__ == "__main__":
    main()
