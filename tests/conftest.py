"""Shared fixtures for routebench tests."""

from collections.abc import Callable

import pytest

from routebench.config import get_settings
from routebench.records import ResponseRecord

_ENV_VARS = (
    "COHERE_API_KEY",
    "ANTHROPIC_API_KEY",
    "CLAUDE_API_KEY",
    "DEEPSEEK_API_KEY",
    "LOG_LEVEL",
    "ENVIRONMENT",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep real API keys and any local .env out of the tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_record() -> Callable[..., ResponseRecord]:
    """Factory for records with sensible defaults."""

    def _make(
        iteration_index: int = 0,
        *,
        prompt_version: str = "v1",
        provider: str = "claude",
        matched_endpoint: str | None = "analyze_candidate_fit",
        latency_ms: int | None = 100,
        tokens_in: int | None = 50,
        tokens_out: int | None = 20,
        error=None,
        completion_pct: float | None = None,
        **parameters: str | None,
    ) -> ResponseRecord:
        return ResponseRecord(
            prompt_version=prompt_version,
            provider=provider,
            iteration_index=iteration_index,
            matched_endpoint=matched_endpoint,
            extracted_parameters=parameters,
            latency_ms=latency_ms,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            error=error,
            completion_pct=completion_pct,
        )

    return _make
