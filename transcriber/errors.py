from __future__ import annotations

from typing import Optional


class TranscriptionError(Exception):
    """Base class for everything the transcription pipeline raises."""


class EngineEnvironmentError(TranscriptionError):
    """The recognition engine runtime is missing or cannot load its model."""


class EngineInvocationError(TranscriptionError):
    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class EngineTimeoutError(EngineInvocationError):
    pass


class EngineOutputError(TranscriptionError):
    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class AudioStorageError(TranscriptionError):
    pass


class ServiceShuttingDown(TranscriptionError):
    def __init__(self, message: str = "Service shutting down"):
        super().__init__(message)


class TranscriptionCancelled(TranscriptionError):
    def __init__(self, message: str = "Transcription cancelled"):
        super().__init__(message)
