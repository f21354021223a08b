from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from common.config import EngineSettings
from common.schemas import EngineOutput, Language, TranscriptionResult
from transcriber.capture import silent_wav
from transcriber.errors import (
    AudioStorageError,
    EngineEnvironmentError,
    EngineInvocationError,
    EngineOutputError,
    EngineTimeoutError,
    TranscriptionError,
)
from transcriber.models import AudioSegment
from transcriber.prompts import CANARY_PROMPT

logger = logging.getLogger(__name__)

_LANGUAGE_ALIASES = {
    "ru": Language.ru,
    "russian": Language.ru,
    "en": Language.en,
    "english": Language.en,
}


def normalize_language(tag: str | None) -> Language:
    """Map a free-text engine language tag onto ru / en / mixed."""
    return _LANGUAGE_ALIASES.get((tag or "").strip().lower(), Language.mixed)


class RecognitionEngine(Protocol):
    """Anything the queue can hand a segment to. One call at a time."""

    async def initialize(self) -> None: ...

    async def invoke(self, segment: AudioSegment, prompt: str) -> TranscriptionResult: ...


class RecognitionBridge:
    """Runs the external recognition engine as one subprocess per segment."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        self._counter = itertools.count()

    async def initialize(self) -> None:
        await self.validate_environment()
        await self.run_canary()
        logger.info("Recognition engine ready (%s)", self.settings.model_size)

    async def validate_environment(self) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.settings.python_path,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise EngineEnvironmentError(f"Engine runtime not found: {exc}") from exc
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise EngineEnvironmentError(
                f"Engine runtime validation failed (code {proc.returncode}): {stderr.decode(errors='replace')}"
            )
        version = (stdout or stderr).decode(errors="replace").strip()
        logger.info("Engine runtime: %s", version)

        if not Path(self.settings.script_path).is_file():
            raise EngineEnvironmentError(f"Engine script not found: {self.settings.script_path}")

    async def run_canary(self) -> None:
        """Transcribe one second of silence to make sure the model loads."""
        canary = AudioSegment(audio=silent_wav())
        try:
            await self.invoke(canary, CANARY_PROMPT)
        except TranscriptionError as exc:
            raise EngineEnvironmentError(f"Engine canary transcription failed: {exc}") from exc
        logger.info("Engine canary transcription succeeded")

    async def invoke(self, segment: AudioSegment, prompt: str) -> TranscriptionResult:
        started = time.perf_counter()
        path = self._write_temp_file(segment.audio)
        try:
            output = await self._run_engine(path, prompt)
        finally:
            self._remove_temp_file(path)

        latency_ms = (time.perf_counter() - started) * 1000.0
        result = TranscriptionResult(
            text=output.text,
            confidence=output.confidence,
            word_timestamps=tuple(output.word_timestamps),
            language=normalize_language(output.language),
            latency_ms=latency_ms,
        )
        logger.info(
            "Transcribed %.0fms: %r (%.1f%%, %s)",
            latency_ms, result.text[:50], result.confidence * 100, result.language.value,
        )
        return result

    def build_command(self, audio_path: Path, prompt: str) -> list[str]:
        cmd = [
            self.settings.python_path,
            self.settings.script_path,
            str(audio_path),
            "--model", self.settings.model_size,
        ]
        if self.settings.engine_variant:
            cmd.append(self.settings.engine_variant)
        cmd += ["--context", prompt]
        return cmd

    def _temp_path(self) -> Path:
        name = f"segment_{time.time_ns()}_{next(self._counter)}_{uuid.uuid4().hex[:8]}.wav"
        return self.settings.scratch_dir / name

    def _write_temp_file(self, audio: bytes) -> Path:
        path = self._temp_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio)
        except OSError as exc:
            raise AudioStorageError(f"Failed to write temp audio file {path}: {exc}") from exc
        return path

    def _remove_temp_file(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete temp file: %s", path, exc_info=True)

    async def _run_engine(self, audio_path: Path, prompt: str) -> EngineOutput:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(audio_path, prompt),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise EngineInvocationError(f"Failed to spawn engine process: {exc}") from exc

        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout=self.settings.timeout_s
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise EngineTimeoutError(
                f"Engine process timed out after {self.settings.timeout_s:.1f}s",
                exit_code=proc.returncode,
            )
        stdout = stdout_b.decode(errors="replace")
        stderr = stderr_b.decode(errors="replace")

        if proc.returncode != 0:
            raise EngineInvocationError(
                f"Engine process failed (code {proc.returncode}): {stderr.strip()}",
                exit_code=proc.returncode,
                stderr=stderr,
            )

        output = parse_engine_output(stdout)
        if not output.success:
            raise EngineInvocationError(
                f"Engine reported failure: {output.error or 'unknown error'}",
                exit_code=0,
                stderr=stderr,
            )
        return output


def parse_engine_output(stdout: str) -> EngineOutput:
    """Parse the last non-empty stdout line as an engine record."""
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        raise EngineOutputError("Engine produced no output", raw=stdout)
    try:
        return EngineOutput.model_validate_json(lines[-1])
    except ValidationError as exc:
        raise EngineOutputError(f"Failed to parse engine output: {exc}", raw=stdout) from exc
