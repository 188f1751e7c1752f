from __future__ import annotations
import json, logging, importlib.resources as ir
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .errors import UnknownTestError
from .types import (
    Choice, Question, ResultRule, TestDefinition,
    QUESTION_KINDS, TEST_KINDS,
)

log = logging.getLogger(__name__)


def _opt_int(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return int(raw)


def _opt_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def parse_choice(raw: Dict[str, Any]) -> Choice:
    flag = raw.get("isCorrect", raw.get("is_correct"))
    return Choice(
        id=str(raw["id"]),
        text=str(raw.get("text", "")),
        weight=_opt_int(raw.get("weight")),
        code=_opt_str(raw.get("code")),
        is_correct=None if flag is None else bool(flag),
    )


def parse_question(raw: Dict[str, Any], fallback_order: int = 0) -> Question:
    kind = str(raw.get("kind", "single_choice"))
    if kind not in QUESTION_KINDS:
        raise ValueError(f"question {raw.get('id')!r}: unknown kind {kind!r}")
    choices = tuple(parse_choice(c) for c in raw.get("choices") or [])
    if kind == "two_choice_poll" and len(choices) != 2:
        raise ValueError(f"question {raw.get('id')!r}: a poll needs exactly two choices")
    accepted = raw.get("correctAnswers", raw.get("correct_answers")) or []
    return Question(
        id=str(raw["id"]),
        order=int(raw.get("order", fallback_order)),
        kind=kind,  # type: ignore[arg-type]
        choices=choices,
        text=str(raw.get("text", "")),
        required=bool(raw.get("required", True)),
        correct_answers=tuple(str(a) for a in accepted),
    )


def parse_rule(raw: Dict[str, Any]) -> ResultRule:
    return ResultRule(
        result_id=str(raw.get("resultId", raw.get("id"))),
        priority=int(raw.get("priority", 0)),
        score_min=_opt_int(raw.get("scoreMin", raw.get("score_min"))),
        score_max=_opt_int(raw.get("scoreMax", raw.get("score_max"))),
        code=_opt_str(raw.get("code")),
        gender=_opt_str(raw.get("gender")),
        is_default=bool(raw.get("isDefault", raw.get("is_default", False))),
        title=str(raw.get("title", "")),
    )


def parse_test(raw: Dict[str, Any]) -> TestDefinition:
    kind = str(raw.get("kind", "balance"))
    if kind not in TEST_KINDS:
        raise ValueError(f"test {raw.get('id')!r}: unknown kind {kind!r}")
    questions = [parse_question(q, idx) for idx, q in enumerate(raw.get("questions") or [])]
    questions.sort(key=lambda q: q.order)
    seen: set[str] = set()
    for q in questions:
        if q.id in seen:
            raise ValueError(f"test {raw.get('id')!r}: duplicate question id {q.id!r}")
        seen.add(q.id)
    rules = sorted((parse_rule(r) for r in raw.get("results") or []), key=lambda r: r.priority)
    allow_back = raw.get("allowBack", raw.get("allow_back"))
    return TestDefinition(
        id=str(raw["id"]),
        title=str(raw.get("title", "")),
        kind=kind,  # type: ignore[arg-type]
        questions=tuple(questions),
        rules=tuple(rules),
        allow_back=config.ALLOW_BACK_DEFAULT if allow_back is None else bool(allow_back),
    )


def definition_to_dict(test: TestDefinition) -> Dict[str, Any]:
    """JSON shape served to clients; mirrors what ``parse_test`` reads."""
    return {
        "id": test.id,
        "title": test.title,
        "kind": test.kind,
        "allowBack": test.allow_back,
        "questions": [
            {
                "id": q.id,
                "order": q.order,
                "kind": q.kind,
                "text": q.text,
                "required": q.required,
                "correctAnswers": list(q.correct_answers),
                "choices": [
                    {"id": c.id, "text": c.text, "weight": c.weight, "code": c.code, "isCorrect": c.is_correct}
                    for c in q.choices
                ],
            }
            for q in test.questions
        ],
        "results": [rule_to_dict(r) for r in test.rules],
    }


def rule_to_dict(rule: ResultRule) -> Dict[str, Any]:
    return {
        "resultId": rule.result_id,
        "priority": rule.priority,
        "scoreMin": rule.score_min,
        "scoreMax": rule.score_max,
        "code": rule.code,
        "gender": rule.gender,
        "isDefault": rule.is_default,
        "title": rule.title,
    }


def _tests_dir() -> Optional[Path]:
    return Path(config.TESTS_DIR) if config.TESTS_DIR else None


def _read_raw(test_id: str) -> Dict[str, Any]:
    local = _tests_dir()
    if local is not None:
        path = local / f"{test_id}.json"
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    res = ir.files(__package__) / "data" / "tests" / f"{test_id}.json"
    if not res.is_file():
        raise UnknownTestError(test_id)
    return json.loads(res.read_text(encoding="utf-8"))


def load_test(test_id: str) -> TestDefinition:
    if not test_id or "/" in test_id or "\\" in test_id or test_id.startswith("."):
        raise UnknownTestError(test_id)
    test = parse_test(_read_raw(test_id))
    log.debug("loaded test %s (%s, %d questions, %d rules)", test.id, test.kind, len(test.questions), len(test.rules))
    return test


def list_test_ids() -> List[str]:
    ids: set[str] = set()
    local = _tests_dir()
    if local is not None and local.is_dir():
        ids.update(p.stem for p in local.glob("*.json"))
    packaged = ir.files(__package__) / "data" / "tests"
    if packaged.is_dir():
        ids.update(r.name[:-5] for r in packaged.iterdir() if r.name.endswith(".json"))
    return sorted(ids)
