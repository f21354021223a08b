"""faster-whisper recognition engine, invoked once per audio file.

Prints exactly one JSON record on stdout; logs go to stderr.

    python engine/whisper_bridge.py segment.wav --model large-v3 --faster --context "..."
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from typing import Iterable

from faster_whisper import WhisperModel

logger = logging.getLogger("whisper_bridge")

SCHEMA_VERSION = 1

_model: WhisperModel | None = None


def get_model(model_size: str, device: str = "auto", compute_type: str = "auto") -> WhisperModel:
    global _model
    if _model is None:
        logger.info("Loading faster-whisper model: %s", model_size)
        _model = WhisperModel(model_size, device=device, compute_type=compute_type)
        logger.info("Model loaded")
    return _model


def summarize(segments: Iterable, language: str | None) -> dict:
    """Build the engine record from faster-whisper segments."""
    texts: list[str] = []
    probs: list[float] = []
    words: list[dict] = []
    for seg in segments:
        text = seg.text.strip()
        if text:
            texts.append(text)
        if seg.avg_logprob is not None:
            probs.append(math.exp(seg.avg_logprob))
        for w in seg.words or []:
            words.append({
                "word": w.word.strip(),
                "start": round(w.start, 3),
                "end": round(w.end, 3),
            })

    confidence = sum(probs) / len(probs) if probs else 0.0
    return {
        "schema_version": SCHEMA_VERSION,
        "success": True,
        "text": " ".join(texts),
        "confidence": round(min(max(confidence, 0.0), 1.0), 4),
        "language": language or "unknown",
        "word_timestamps": words,
    }


def transcribe_file(args: argparse.Namespace) -> dict:
    model = get_model(args.model, args.device, args.compute_type)
    segments, info = model.transcribe(
        args.audio_path,
        language=args.language,
        initial_prompt=args.context or None,
        word_timestamps=True,
        vad_filter=True,
        vad_parameters={"min_silence_duration_ms": 300},
        beam_size=5,
        temperature=0.0,
    )
    return summarize(segments, info.language)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Transcribe one audio file with faster-whisper")
    p.add_argument("audio_path", help="WAV file to transcribe")
    p.add_argument("--model", default="large-v3", help="Model size or path")
    p.add_argument("--faster", action="store_true", help="Use the faster-whisper backend (the only one available)")
    p.add_argument("--context", default="", help="Initial prompt for the decoder")
    p.add_argument("--device", default="auto")
    p.add_argument("--compute-type", default="auto")
    p.add_argument("--language", default=None, help="Force a language instead of auto-detection")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args(argv)
    try:
        record = transcribe_file(args)
    except Exception as exc:
        logger.exception("Transcription failed for %s", args.audio_path)
        print(json.dumps({"schema_version": SCHEMA_VERSION, "success": False, "error": str(exc)}))
        return 1
    # ASCII-only so the record survives any stdout encoding.
    print(json.dumps(record))
    return 0


if __name__ == "__main__":
    sys.exit(main())
