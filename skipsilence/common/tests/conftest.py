"""Test fixtures for common helpers."""

from collections.abc import Generator

import pytest
import structlog


@pytest.fixture
def isolated_structlog() -> Generator[None, None, None]:
    """Reset structlog configuration between tests."""
    original_config = structlog.get_config()
    yield
    structlog.configure(**original_config)
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every environment variable the config classes read."""
    for name in (
        "LOG_LEVEL",
        "LOG_JSON",
        "SERVICE_NAME",
        "SKIPSILENCE_FPS",
        "SKIPSILENCE_DISCOVERY_TIMEOUT_S",
        "SKIPSILENCE_READY_TIMEOUT_S",
        "SKIPSILENCE_READY_POLL_S",
        "SKIPSILENCE_RETRY_INITIAL_S",
        "SKIPSILENCE_RETRY_MAX_S",
        "SKIPSILENCE_RETRY_ATTEMPTS",
        "SKIPSILENCE_LOG_EVERY_TICKS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
