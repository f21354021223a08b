from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ENGINE_SCHEMA_VERSION = 1


class Language(str, Enum):
    ru = "ru"
    en = "en"
    mixed = "mixed"


class WordTimestamp(BaseModel):
    model_config = ConfigDict(frozen=True)

    word: str
    start: float
    end: float


# --- Engine stdout record ---

class EngineOutput(BaseModel):
    """One JSON record printed by the recognition engine on stdout."""

    schema_version: int = ENGINE_SCHEMA_VERSION
    success: bool = True
    text: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    language: Optional[str] = None
    word_timestamps: list[WordTimestamp] = []
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_record(self) -> "EngineOutput":
        if self.schema_version != ENGINE_SCHEMA_VERSION:
            raise ValueError(f"unsupported engine schema version {self.schema_version}")
        if self.success:
            missing = [
                name for name in ("text", "confidence", "language")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"missing required fields: {', '.join(missing)}")
        return self


# --- Caller-facing records ---

class TranscriptionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    word_timestamps: tuple[WordTimestamp, ...] = ()
    language: Language
    latency_ms: float


class StatsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_processed: int
    average_confidence: float
    average_latency_ms: float
    language_distribution: dict[str, int]
    queue_size: int
    is_processing: bool
    context_size: int
    is_initialized: bool


class EventType(str, Enum):
    final = "final"


class TranscriptEvent(BaseModel):
    type: EventType = EventType.final
    text: str
    confidence: float
    language: Language
    timestamp: float
