from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Optional

from common.config import ServiceSettings
from common.schemas import StatsSnapshot, TranscriptEvent, TranscriptionResult
from transcriber.bridge import RecognitionEngine
from transcriber.context import ContextWindow
from transcriber.errors import ServiceShuttingDown, TranscriptionCancelled
from transcriber.events import TranscriptBus
from transcriber.models import AudioSegment, TranscriptionJob
from transcriber.prompts import DOMAIN_PREAMBLE, build_context_prompt
from transcriber.stats import StatisticsAggregator

logger = logging.getLogger(__name__)


class TranscriptionQueue:
    """Serializes transcription jobs through a single drain loop.

    Jobs start in submission order and at most one engine invocation runs at a
    time. Each caller's future settles independently: a failed job rejects only
    its own caller and the loop moves on to the next job.

    All state is owned by the event loop thread. Callers on other threads must
    go through ``asyncio.run_coroutine_threadsafe(queue.submit(...), loop)``.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        settings: ServiceSettings | None = None,
        events: TranscriptBus | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings or ServiceSettings()
        self.events = events or TranscriptBus(max_pending=self.settings.event_buffer)
        self.context = ContextWindow(max_size=self.settings.context_size)
        self.stats = StatisticsAggregator()

        self._pending: deque[TranscriptionJob] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._closing = False
        self._init_lock = asyncio.Lock()

    @property
    def queue_size(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._drain_task is not None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            logger.info("Initializing recognition engine...")
            await self.engine.initialize()
            self._initialized = True
            logger.info("Transcription queue initialized")

    async def submit(self, segment: AudioSegment) -> TranscriptionResult:
        if self._closing:
            raise ServiceShuttingDown()
        if not self._initialized:
            await self.initialize()
            if self._closing:
                raise ServiceShuttingDown()

        loop = asyncio.get_running_loop()
        job = TranscriptionJob(segment=segment, future=loop.create_future())
        self._pending.append(job)
        if self._drain_task is None:
            self._drain_task = asyncio.create_task(self._drain())
        return await job.future

    async def transcribe(self, audio: bytes, context_hint: Optional[str] = None) -> TranscriptionResult:
        return await self.submit(AudioSegment(audio=audio, context_hint=context_hint))

    def get_stats(self) -> StatsSnapshot:
        return self.stats.snapshot(
            queue_size=self.queue_size,
            is_processing=self.is_processing,
            context_size=len(self.context),
            is_initialized=self._initialized,
        )

    def clear_context(self) -> None:
        self.context.clear()
        logger.info("Transcription context cleared")

    async def shutdown(self) -> None:
        logger.info("Shutting down transcription queue (%d queued)", len(self._pending))
        self._closing = True
        try:
            if self._drain_task is not None:
                # The loop stops after the in-flight job because _closing is set.
                # Shielded so cancelling shutdown never cancels that job.
                await asyncio.shield(self._drain_task)
        finally:
            rejected = 0
            while self._pending:
                self._pending.popleft().reject(ServiceShuttingDown())
                rejected += 1
            if rejected:
                logger.info("Rejected %d queued jobs", rejected)

            self.context.clear()
            self._initialized = False
            self._closing = False
        logger.info("Transcription queue shutdown completed")

    async def _drain(self) -> None:
        logger.debug("Drain loop started: %d queued", len(self._pending))
        try:
            while self._pending and not self._closing:
                job = self._pending.popleft()
                if job.future.done():
                    continue
                await self._process(job)
        finally:
            # No await between the emptiness check and this reset.
            self._drain_task = None
        logger.debug("Drain loop finished")

    async def _process(self, job: TranscriptionJob) -> None:
        prompt = build_context_prompt(
            self.context.snapshot(self.settings.prompt_context_entries),
            job.segment.context_hint,
            preamble=self.settings.prompt_preamble or DOMAIN_PREAMBLE,
        )
        try:
            result = await self.engine.invoke(job.segment, prompt)
        except asyncio.CancelledError:
            job.reject(TranscriptionCancelled())
            raise
        except Exception as exc:
            logger.warning("Transcription job failed: %s", exc)
            job.reject(exc)
            return

        self.context.append(result.text)
        self.stats.record(result)
        job.resolve(result)

        if result.text.strip():
            self.events.publish(
                TranscriptEvent(
                    text=result.text,
                    confidence=result.confidence,
                    language=result.language,
                    timestamp=time.time(),
                )
            )
