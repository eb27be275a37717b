from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "READINGS_STORE_PATH"
_LLM_API_KEY_ENV = "LLM_API_KEY"
_OPENROUTER_API_KEY_ENV = "OPENROUTER_API_KEY"
_LLM_BASE_URL_ENV = "LLM_BASE_URL"
_LLM_MODEL_ENV = "LLM_MODEL"
_LLM_TEMPERATURE_ENV = "LLM_TEMPERATURE"
_LLM_MAX_TOKENS_ENV = "LLM_MAX_TOKENS"
_LLM_TIMEOUT_ENV = "LLM_TIMEOUT_SECONDS"
_ANALYZE_ON_INSERT_ENV = "ANALYZE_ON_INSERT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_LLM_MODEL = "qwen/qwen-2.5-72b-instruct"


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_model: str
    llm_temperature: float
    llm_max_tokens: int
    llm_timeout_seconds: float
    analyze_on_insert: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float(name: str, default: float, minimum: float = 0.0) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    api_key = _read_optional_env(_LLM_API_KEY_ENV, None) or _read_optional_env(
        _OPENROUTER_API_KEY_ENV, None
    )
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.json"),
        llm_api_key=api_key,
        llm_base_url=_read_str_env(_LLM_BASE_URL_ENV, DEFAULT_LLM_BASE_URL).rstrip("/"),
        llm_model=_read_str_env(_LLM_MODEL_ENV, DEFAULT_LLM_MODEL),
        llm_temperature=_read_float(_LLM_TEMPERATURE_ENV, 0.3),
        llm_max_tokens=_read_positive_int(_LLM_MAX_TOKENS_ENV, 1500),
        llm_timeout_seconds=_read_float(_LLM_TIMEOUT_ENV, 30.0, minimum=0.1),
        analyze_on_insert=_read_bool(_ANALYZE_ON_INSERT_ENV, True),
        log_level=_read_log_level("INFO"),
    )
