from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from .catalog import list_test_ids, load_test
from .types import TestDefinition


def _blank_test() -> dict[str, object]:
    return {
        "questions": {"single_choice": 0, "two_choice_poll": 0, "short_answer": 0},
        "rules": 0,
        "defaults": 0,
    }


def audit_definition(test: TestDefinition) -> tuple[dict[str, object], list[str]]:
    """Coverage counts plus human-readable warnings for one test definition."""
    data = _blank_test()
    warnings: list[str] = []
    kinds: dict[str, int] = data["questions"]  # type: ignore[assignment]

    for q in test.questions:
        kinds[q.kind] = kinds.get(q.kind, 0) + 1
        ids = [c.id for c in q.choices]
        if len(set(ids)) != len(ids):
            warnings.append(f"{test.id}/{q.id} has duplicate choice ids")
        if q.kind == "short_answer" and test.kind == "quiz" and not q.correct_answers:
            warnings.append(f"{test.id}/{q.id} short answer without accepted answers")
        if test.kind == "psychology" and q.takes_choice and not any(c.code or c.weight is not None for c in q.choices):
            warnings.append(f"{test.id}/{q.id} carries neither codes nor weights")
        if test.kind == "quiz" and q.takes_choice and not any(c.is_correct for c in q.choices):
            warnings.append(f"{test.id}/{q.id} has no correct choice")

    defaults = [r for r in test.rules if r.is_default]
    data["rules"] = len(test.rules)
    data["defaults"] = len(defaults)
    if test.kind in ("psychology", "quiz") and not test.rules:
        warnings.append(f"{test.id} has no result rules")
    if len(defaults) > 1:
        warnings.append(f"{test.id} declares {len(defaults)} default rules; only the first is used")
    for r in test.rules:
        if r.score_min is not None and r.score_max is not None and r.score_min > r.score_max:
            warnings.append(f"{test.id} rule {r.result_id} has an empty score range {r.score_min}..{r.score_max}")
    if test.kind == "balance" and not test.poll_questions:
        warnings.append(f"{test.id} is a balance test without poll questions")

    return data, warnings


def audit_tests(tests: Iterable[TestDefinition]) -> dict[str, object]:
    coverage: dict[str, dict[str, object]] = {}
    warnings: list[str] = []
    totals = {"tests": 0, "questions": 0, "rules": 0}
    for test in tests:
        data, found = audit_definition(test)
        coverage[test.id] = data
        warnings.extend(found)
        totals["tests"] += 1
        totals["questions"] += len(test.questions)
        totals["rules"] += len(test.rules)
    return {"coverage": coverage, "warnings": warnings, "totals": totals}


def print_report(summary: dict[str, object]) -> None:
    coverage: dict[str, dict[str, object]] = summary["coverage"]  # type: ignore[assignment]
    print("=== Catalog Audit ===")
    for test_id in sorted(coverage):
        data = coverage[test_id]
        kinds = data["questions"]  # type: ignore[index]
        parts = "  ".join(f"{k}:{v:3d}" for k, v in kinds.items())  # type: ignore[union-attr]
        print(f"\nTest: {test_id}")
        print(f"  {parts}")
        print(f"  rules: {data['rules']}  defaults: {data['defaults']}")

    warnings: list[str] = summary["warnings"]  # type: ignore[assignment]
    if warnings:
        print("\nWarnings:")
        for msg in warnings:
            print(f" - {msg}")
    else:
        print("\nNo warnings.")
    print("\nTotals:", summary["totals"])


def write_summary(summary: dict[str, object], path: Path) -> str:
    text = json.dumps(summary, indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    return text


def main(argv: list[str] | None = None) -> int:
    args = list(argv or [])
    out = None
    if "--out" in args:
        i = args.index("--out")
        out = Path(args[i + 1])
        del args[i : i + 2]
    ids = args or list_test_ids()
    summary = audit_tests(load_test(t) for t in ids)
    print_report(summary)
    if out is not None:
        write_summary(summary, out)
    return 2 if summary["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
