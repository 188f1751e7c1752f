from __future__ import annotations
import os, json, pathlib


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


DATA_DIR: str = "data"
TESTS_DIR: str | None = None

COMMIT_MAX_ATTEMPTS: int = 2
COMMIT_RETRY_DELAY_SEC: float = 0.5
DISPATCH_WORKERS: int = 2

ALLOW_BACK_DEFAULT: bool = True

HTTP_TIMEOUT_SEC: float = 10.0
API_BASE_URL: str = "http://localhost:8000"

POPULAR_QUESTIONS_LIMIT: int = 3
QUIZ_GRADE_THRESHOLDS: dict[str, int] = {"S": 95, "A": 85, "B": 70, "C": 50, "D": 0}

DEBUG_TRACE: bool = False

# // env overrides for staging/ops; defaults remain conservative.
DATA_DIR = os.getenv("DATA_DIR", DATA_DIR)
TESTS_DIR = os.getenv("TESTS_DIR") or None
COMMIT_MAX_ATTEMPTS = max(1, _env_int("COMMIT_MAX_ATTEMPTS", COMMIT_MAX_ATTEMPTS))
COMMIT_RETRY_DELAY_SEC = max(0.0, _env_float("COMMIT_RETRY_DELAY_SEC", COMMIT_RETRY_DELAY_SEC))
DISPATCH_WORKERS = max(1, _env_int("DISPATCH_WORKERS", DISPATCH_WORKERS))
ALLOW_BACK_DEFAULT = _env_bool("ALLOW_BACK_DEFAULT", ALLOW_BACK_DEFAULT)
HTTP_TIMEOUT_SEC = _env_float("HTTP_TIMEOUT_SEC", HTTP_TIMEOUT_SEC)
API_BASE_URL = os.getenv("API_BASE_URL", API_BASE_URL)
POPULAR_QUESTIONS_LIMIT = _env_int("POPULAR_QUESTIONS_LIMIT", POPULAR_QUESTIONS_LIMIT)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", False)


def load_config() -> dict:
    """Merge ``config.json`` (if present) with environment overrides."""
    cfg = {}
    p = pathlib.Path("config.json")
    if p.exists():
        try: cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError): cfg = {}
    e = os.environ
    if e.get("API_BASE_URL"): cfg["API_BASE_URL"] = e.get("API_BASE_URL")
    if e.get("DATA_DIR"): cfg["DATA_DIR"] = e.get("DATA_DIR")
    if e.get("TESTS_DIR"): cfg["TESTS_DIR"] = e.get("TESTS_DIR")
    if e.get("COMMIT_MAX_ATTEMPTS"): cfg["COMMIT_MAX_ATTEMPTS"] = _env_int("COMMIT_MAX_ATTEMPTS", COMMIT_MAX_ATTEMPTS)
    if e.get("COMMIT_RETRY_DELAY_SEC"): cfg["COMMIT_RETRY_DELAY_SEC"] = _env_float("COMMIT_RETRY_DELAY_SEC", COMMIT_RETRY_DELAY_SEC)
    cfg.setdefault("API_BASE_URL", API_BASE_URL)
    cfg.setdefault("DATA_DIR", DATA_DIR)
    cfg.setdefault("COMMIT_MAX_ATTEMPTS", COMMIT_MAX_ATTEMPTS)
    cfg.setdefault("COMMIT_RETRY_DELAY_SEC", COMMIT_RETRY_DELAY_SEC)
    return cfg


def grade_thresholds(cfg: dict | None = None) -> dict[str, int]:
    raw = (cfg or {}).get("QUIZ_GRADE_THRESHOLDS")
    if isinstance(raw, dict):
        try:
            return {str(k): int(v) for k, v in raw.items()}
        except (TypeError, ValueError):
            pass
    return dict(QUIZ_GRADE_THRESHOLDS)
