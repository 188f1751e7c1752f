# autoplay.py
from __future__ import annotations
import argparse, json, logging, random
from typing import Any, Dict, Optional
from pick_core.backend import AggregateBackend, HttpAggregateBackend, InMemoryAggregateBackend
from pick_core.analyzer import AggregateAnalyzer, report_to_dict
from pick_core.catalog import load_test
from pick_core.dispatch import InlineDispatcher
from pick_core.engine import PickSession
from pick_core.session_store import InMemorySessionRepository
from pick_core.stats import OptimisticStatsEngine
from pick_core.types import Question, TestDefinition

# short answers typed by simulated quiz takers
SHORT_ANSWERS = ["rome", "  Roma ", "Paris", "I don't know"]

def _selection_for(q: Question, profile: str, rng: random.Random) -> str:
    if not q.takes_choice:
        if profile == "perfect" and q.correct_answers: return q.correct_answers[0]
        return rng.choice(SHORT_ANSWERS)
    if profile == "perfect":
        correct = [c for c in q.choices if c.is_correct]
        if correct: return correct[0].id
    if profile == "first": return q.choices[0].id
    if profile == "skewed":
        # roughly 70/30 towards the first choice
        return q.choices[0].id if rng.random() < 0.7 else q.choices[-1].id
    return rng.choice(q.choices).id

def play_one(test: TestDefinition, backend: AggregateBackend, profile: str, rng: random.Random) -> Dict[str, Any]:
    session = PickSession(test, backend, InMemorySessionRepository(), dispatcher=InlineDispatcher())
    session.begin(rng.choice([None, "male", "female"]))
    while session.phase == "in_progress":
        q = session.current_question
        if q is None: break
        session.answer(q.id, _selection_for(q, profile, rng))
    view = session.finish()
    outcome = session.commit_outcome()
    return {
        "sessionId": view.session_id,
        "result": view.match.result_id if view.match else None,
        "grade": view.grade.grade if view.grade else None,
        "committed": bool(outcome and outcome.ok),
    }

def run(test_id: str, players: int, profile: str, seed: Optional[int], api: Optional[str]) -> Dict[str, Any]:
    rng = random.Random(seed or 1234)
    test = load_test(test_id)
    backend: AggregateBackend = HttpAggregateBackend(api) if api else InMemoryAggregateBackend([test])
    if players <= 0: raise ValueError("need at least one player")
    results: Dict[str, int] = {}
    failed = 0
    for _ in range(players):
        row = play_one(test, backend, profile, rng)
        key = row["result"] or row["grade"] or "-"
        results[key] = results.get(key, 0) + 1
        if not row["committed"]: failed += 1
    summary: Dict[str, Any] = {"testId": test.id, "players": players, "results": results, "commitFailures": failed}
    if test.poll_questions:
        stats = OptimisticStatsEngine(test.questions)
        stats.initialize(backend.get_snapshot(test.id))
        summary["analysis"] = report_to_dict(AggregateAnalyzer(stats).analyze(test.questions))
    return summary

def main(argv=None):
    ap = argparse.ArgumentParser()
    ap.add_argument("test_id", nargs="?", default="balance-sample")
    ap.add_argument("--players", type=int, default=20)
    ap.add_argument("--profile", choices=["random", "first", "skewed", "perfect"], default="random")
    ap.add_argument("--seed", type=int, default=1337)
    ap.add_argument("--api", default=None, help="base URL of a running API; in-memory counts when omitted")
    a = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    summary = run(a.test_id, a.players, a.profile, a.seed, a.api)
    print(json.dumps(summary, indent=2))
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
