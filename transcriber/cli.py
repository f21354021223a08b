"""Transcribe WAV files or a microphone recording through the job queue.

    python -m transcriber.cli --file a.wav --file b.wav
    python -m transcriber.cli --seconds 10 --context "system design round"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from common.config import CaptureSettings, EngineSettings
from transcriber.bridge import RecognitionBridge
from transcriber.capture import AudioRecorder
from transcriber.errors import TranscriptionError
from transcriber.job_queue import TranscriptionQueue
from transcriber.models import AudioSegment

logger = logging.getLogger(__name__)


async def record_segment(seconds: float, context_hint: str | None) -> AudioSegment:
    recorder = AudioRecorder(CaptureSettings())
    recorder.start()
    try:
        await asyncio.sleep(seconds)
    finally:
        segment = recorder.stop(context_hint=context_hint)
    return segment


async def run(args: argparse.Namespace) -> int:
    queue = TranscriptionQueue(RecognitionBridge(EngineSettings()))
    try:
        await queue.initialize()
        if args.file:
            try:
                segments = [
                    AudioSegment(audio=Path(p).read_bytes(), context_hint=args.context)
                    for p in args.file
                ]
            except OSError as exc:
                logger.error("Cannot read audio file: %s", exc)
                return 2
        else:
            print(f"Recording {args.seconds:.1f}s...", file=sys.stderr)
            segments = [await record_segment(args.seconds, args.context)]

        results = await asyncio.gather(
            *(queue.submit(s) for s in segments), return_exceptions=True
        )
        failed = 0
        for result in results:
            if isinstance(result, Exception):
                failed += 1
                print(f"error: {result}", file=sys.stderr)
            else:
                print(result.model_dump_json())
        print(queue.get_stats().model_dump_json(), file=sys.stderr)
        return 1 if failed else 0
    except TranscriptionError as exc:
        logger.error("Transcription setup failed: %s", exc)
        return 2
    finally:
        await queue.shutdown()


def main() -> None:
    p = argparse.ArgumentParser(description="Transcribe audio with the local recognition engine")
    p.add_argument("-f", "--file", action="append", help="WAV file to transcribe (repeatable)")
    p.add_argument("-s", "--seconds", type=float, default=5.0, help="Microphone recording length")
    p.add_argument("-c", "--context", default=None, help="Extra context hint for the engine")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
