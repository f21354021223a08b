from __future__ import annotations

from common.schemas import StatsSnapshot, TranscriptionResult


class StatisticsAggregator:
    """Running averages over completed jobs. Failed jobs are never recorded."""

    def __init__(self) -> None:
        self.total_processed = 0
        self.average_confidence = 0.0
        self.average_latency_ms = 0.0
        self.language_distribution: dict[str, int] = {}

    def record(self, result: TranscriptionResult) -> None:
        self.total_processed += 1
        n = self.total_processed
        self.average_confidence = (self.average_confidence * (n - 1) + result.confidence) / n
        self.average_latency_ms = (self.average_latency_ms * (n - 1) + result.latency_ms) / n

        language = result.language.value
        self.language_distribution[language] = self.language_distribution.get(language, 0) + 1

    def snapshot(
        self,
        queue_size: int = 0,
        is_processing: bool = False,
        context_size: int = 0,
        is_initialized: bool = False,
    ) -> StatsSnapshot:
        return StatsSnapshot(
            total_processed=self.total_processed,
            average_confidence=self.average_confidence,
            average_latency_ms=self.average_latency_ms,
            language_distribution=dict(self.language_distribution),
            queue_size=queue_size,
            is_processing=is_processing,
            context_size=context_size,
            is_initialized=is_initialized,
        )
