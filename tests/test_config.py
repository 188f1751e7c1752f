from __future__ import annotations

import json

from pick_core.config import grade_thresholds, load_config


def test_load_config_merges_file_and_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.json").write_text(json.dumps({"POPULAR_QUESTIONS_LIMIT": 2}), encoding="utf-8")
    monkeypatch.setenv("COMMIT_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("SEED", "7")

    cfg = load_config()

    assert cfg["POPULAR_QUESTIONS_LIMIT"] == 2
    assert cfg["COMMIT_MAX_ATTEMPTS"] == 4
    assert "SEED" not in cfg


def test_bad_thresholds_fall_back_to_defaults():
    assert grade_thresholds({"QUIZ_GRADE_THRESHOLDS": {"S": "high"}}) == grade_thresholds()
