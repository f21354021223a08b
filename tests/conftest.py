import asyncio

import pytest

from common.schemas import Language, TranscriptionResult
from transcriber.errors import EngineInvocationError


class FakeEngine:
    """In-process stand-in for the recognition bridge.

    The segment's audio bytes pick the outcome: b"fail" raises, b"blank"
    returns whitespace, anything else is echoed back as the text.
    """

    def __init__(self, confidences=None, init_error=None, gated=False):
        self.calls = []
        self.init_count = 0
        self.init_error = init_error
        self.active = 0
        self.max_active = 0
        self.release = asyncio.Event() if gated else None
        self._confidences = list(confidences or [])

    async def initialize(self):
        self.init_count += 1
        if self.init_error is not None:
            raise self.init_error

    async def invoke(self, segment, prompt):
        self.calls.append((segment, prompt))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            if self.release is not None:
                await self.release.wait()
        finally:
            self.active -= 1

        if segment.audio == b"fail":
            raise EngineInvocationError("Engine process failed (code 1): boom", exit_code=1, stderr="boom")
        text = "   " if segment.audio == b"blank" else segment.audio.decode()
        confidence = self._confidences.pop(0) if self._confidences else 0.9
        return TranscriptionResult(
            text=text,
            confidence=confidence,
            language=Language.en,
            latency_ms=100.0,
        )


@pytest.fixture
def fake_engine():
    return FakeEngine()
