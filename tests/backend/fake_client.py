"""
In-process generation client and clock used by the scheduler, session and API tests.
"""

import asyncio
import os
import sys
from typing import Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from generation_client import GenerationClient, GenerationConfig, GenerationOutcome, ServiceError
from settings import AssistantSettings


def fast_settings(**overrides) -> AssistantSettings:
    """Settings with millisecond-scale delays so timer tests finish quickly."""
    values = dict(
        completion_batch_delay_ms=5,
        min_settle_ms=20,
        batch_followup_delay_ms=5,
        countdown_interval_ms=5,
        api_key="test-key",
    )
    values.update(overrides)
    return AssistantSettings(**values)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGenerationClient(GenerationClient):
    """
    Echoes prompts back as feedback.

    Prompts containing a key of `failures` raise the mapped ServiceError.
    When `gate` is set to an asyncio.Event, every call waits on it.
    """

    def __init__(self, failures: Optional[Dict[str, ServiceError]] = None):
        self.failures = failures or {}
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.configs: List[GenerationConfig] = []
        self.active = 0
        self.max_active = 0

    async def call(self, prompt_text: str, config: GenerationConfig) -> GenerationOutcome:
        self.calls.append(prompt_text)
        self.configs.append(config)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            for marker, error in self.failures.items():
                if marker in prompt_text:
                    raise error
            return GenerationOutcome(
                content=f"feedback for: {prompt_text}", usage={"total_tokens": len(prompt_text)}
            )
        finally:
            self.active -= 1
