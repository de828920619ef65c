"""Test fixtures for simulated host and CLI tests."""

from collections.abc import Callable, Generator
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
import structlog

from skipsilence.hosts.simulated import tone


@pytest.fixture
def isolated_structlog() -> Generator[None, None, None]:
    """Reset structlog configuration between tests."""
    original_config = structlog.get_config()
    yield
    structlog.configure(**original_config)


@pytest.fixture
def write_talk(tmp_path: Path) -> Callable[..., Path]:
    """Write a wav file made of (duration_s, amplitude) tone and silence pieces."""

    def _write(*parts: tuple[float, float], sample_rate: int = 16000, name: str = "talk.wav") -> Path:
        signal = np.concatenate(
            [tone(duration, sample_rate, amplitude) for duration, amplitude in parts]
        )
        path = tmp_path / name
        sf.write(str(path), signal, sample_rate)
        return path

    return _write
