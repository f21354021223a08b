"""Internal models for the transcription queue."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from common.schemas import TranscriptionResult


@dataclass(frozen=True)
class AudioSegment:
    audio: bytes
    context_hint: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class TranscriptionJob:
    segment: AudioSegment
    future: asyncio.Future

    def resolve(self, result: TranscriptionResult) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)
