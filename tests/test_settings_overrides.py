from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pytest

from datastore.readings_store import build_default_store
from services.analysis import LLMConfig, build_default_orchestrator
from services.processor import build_default_processor
from settings import DEFAULT_LLM_BASE_URL, DEFAULT_LLM_MODEL, get_settings

_ENV_VARS = (
    "READINGS_STORE_PATH",
    "LLM_API_KEY",
    "OPENROUTER_API_KEY",
    "LLM_BASE_URL",
    "LLM_MODEL",
    "LLM_TEMPERATURE",
    "LLM_MAX_TOKENS",
    "LLM_TIMEOUT_SECONDS",
    "ANALYZE_ON_INSERT",
    "LOG_LEVEL",
)


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    _clear_caches((get_settings, build_default_store, build_default_processor))


def test_defaults_without_environment() -> None:
    settings = get_settings()

    assert settings.store_path == "./tmp/readings.json"
    assert settings.llm_api_key is None
    assert settings.llm_base_url == DEFAULT_LLM_BASE_URL
    assert settings.llm_model == DEFAULT_LLM_MODEL
    assert settings.llm_temperature == 0.3
    assert settings.llm_max_tokens == 1500
    assert settings.llm_timeout_seconds == 30.0
    assert settings.analyze_on_insert is True
    assert settings.log_level == "INFO"


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "data" / "readings.json"

    monkeypatch.setenv("READINGS_STORE_PATH", str(store_path))
    monkeypatch.setenv("LLM_API_KEY", "key-123")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.internal/v1/")
    monkeypatch.setenv("LLM_MODEL", "custom/model")
    monkeypatch.setenv("LLM_TEMPERATURE", "0.7")
    monkeypatch.setenv("LLM_MAX_TOKENS", "800")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("ANALYZE_ON_INSERT", "off")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    _clear_caches((get_settings, build_default_store, build_default_processor))

    settings = get_settings()
    store = build_default_store()
    processor = build_default_processor()
    orchestrator = build_default_orchestrator()

    try:
        assert store.persistence_path == Path(store_path)
        assert store_path.parent.is_dir()
        assert processor.store is store
        assert settings.analyze_on_insert is False
        assert settings.log_level == "DEBUG"
        assert orchestrator.config == LLMConfig(
            base_url="https://llm.internal/v1",
            model="custom/model",
            api_key="key-123",
            temperature=0.7,
            max_tokens=800,
            timeout_seconds=12.5,
        )
    finally:
        orchestrator.close()


def test_openrouter_key_is_accepted_as_fallback(monkeypatch) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")

    assert get_settings().llm_api_key == "or-key"


@pytest.mark.parametrize(
    ("name", "value", "attribute", "expected"),
    [
        ("LLM_MAX_TOKENS", "-5", "llm_max_tokens", 1500),
        ("LLM_MAX_TOKENS", "lots", "llm_max_tokens", 1500),
        ("LLM_TIMEOUT_SECONDS", "0", "llm_timeout_seconds", 30.0),
        ("LLM_TEMPERATURE", "warm", "llm_temperature", 0.3),
        ("ANALYZE_ON_INSERT", "maybe", "analyze_on_insert", True),
        ("LLM_MODEL", "   ", "llm_model", DEFAULT_LLM_MODEL),
    ],
)
def test_invalid_values_fall_back_to_defaults(monkeypatch, name, value, attribute, expected) -> None:
    monkeypatch.setenv(name, value)

    assert getattr(get_settings(), attribute) == expected


def test_blank_store_path_disables_persistence(monkeypatch) -> None:
    monkeypatch.setenv("READINGS_STORE_PATH", "")
    build_default_store.cache_clear()

    assert get_settings().store_path is None
    assert build_default_store().persistence_path is None
