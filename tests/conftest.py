from __future__ import annotations

import pytest

from vibeflow.ai.client import AIConfig
from vibeflow.ai.retry import RetryPolicy


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def ai_config() -> AIConfig:
    return AIConfig(
        base_url="https://generativelanguage.googleapis.com",
        model="gemini-2.0-flash",
        timeout_seconds=10,
        temperature=0.7,
        retry=RetryPolicy(),
    )
