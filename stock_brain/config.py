from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"

DEFAULT_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    "standard": {"limit": 100, "window_seconds": 60},
    "ai": {"limit": 20, "window_seconds": 60},
    "auth": {"limit": 10, "window_seconds": 60},
}

# -1 means unlimited
DEFAULT_PLANS: Dict[str, Dict[str, int]] = {
    "free": {"items": 50, "ai_requests": 50},
    "starter": {"items": 500, "ai_requests": 500},
    "growth": {"items": 2000, "ai_requests": 2000},
    "pro": {"items": 10000, "ai_requests": 10000},
    "enterprise": {"items": -1, "ai_requests": -1},
}


@dataclass(frozen=True)
class ActionPolicy:
    confidence_threshold: float = 0.7
    delete_cap: int = 5
    summary_limit: int = 100
    name_filter_max_length: int = 100
    cas_retries: int = 3
    sample_size: int = 5


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    db_path = os.getenv("STOCK_BRAIN_DB_PATH")
    if db_path:
        overrides.setdefault("memory", {})["db_path"] = db_path

    ollama_url = os.getenv("OLLAMA_URL")
    if ollama_url:
        overrides.setdefault("ollama", {})["base_url"] = ollama_url

    ollama_model = os.getenv("OLLAMA_MODEL")
    if ollama_model:
        overrides.setdefault("ollama", {})["model"] = ollama_model

    threshold = os.getenv("STOCK_BRAIN_CONFIDENCE_THRESHOLD", "").strip()
    if threshold:
        try:
            overrides.setdefault("actions", {})["confidence_threshold"] = float(threshold)
        except ValueError:
            pass

    delete_cap = os.getenv("STOCK_BRAIN_DELETE_CAP", "").strip()
    if delete_cap:
        try:
            overrides.setdefault("actions", {})["delete_cap"] = int(delete_cap)
        except ValueError:
            pass

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    # Load .env once through a single interface.
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("STOCK_BRAIN_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(data, _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def get_db_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    db_path = str(cfg.get("memory", {}).get("db_path", "data/stock.db"))
    return resolve_path(db_path)


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    log_path = str(cfg.get("paths", {}).get("log_file", "logs/stock-brain.log"))
    return resolve_path(log_path)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_action_policy(config: Optional[Dict[str, Any]] = None) -> ActionPolicy:
    cfg = config if config is not None else load_config()
    raw = cfg.get("actions") or {}
    if not isinstance(raw, dict):
        raw = {}
    defaults = ActionPolicy()
    threshold = _as_float(raw.get("confidence_threshold"), defaults.confidence_threshold)
    if not 0.0 <= threshold <= 1.0:
        threshold = defaults.confidence_threshold
    return ActionPolicy(
        confidence_threshold=threshold,
        delete_cap=max(0, _as_int(raw.get("delete_cap"), defaults.delete_cap)),
        summary_limit=max(1, _as_int(raw.get("summary_limit"), defaults.summary_limit)),
        name_filter_max_length=max(
            1, _as_int(raw.get("name_filter_max_length"), defaults.name_filter_max_length)
        ),
        cas_retries=max(0, _as_int(raw.get("cas_retries"), defaults.cas_retries)),
        sample_size=max(1, _as_int(raw.get("sample_size"), defaults.sample_size)),
    )


def get_rate_limits(config: Optional[Dict[str, Any]] = None) -> Dict[str, Dict[str, int]]:
    cfg = config if config is not None else load_config()
    configured = cfg.get("rate_limits") or {}
    if not isinstance(configured, dict):
        configured = {}
    return _deep_merge(DEFAULT_RATE_LIMITS, configured)


def get_plans(config: Optional[Dict[str, Any]] = None) -> Dict[str, Dict[str, int]]:
    cfg = config if config is not None else load_config()
    configured = cfg.get("plans") or {}
    if not isinstance(configured, dict):
        configured = {}
    return _deep_merge(DEFAULT_PLANS, configured)
