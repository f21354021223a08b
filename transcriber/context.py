from __future__ import annotations

from collections import deque
from typing import Optional


class ContextWindow:
    """Rolling history of recently recognized utterances, oldest first."""

    def __init__(self, max_size: int = 5) -> None:
        self.max_size = max_size
        self._entries: deque[str] = deque(maxlen=max_size)

    def append(self, text: str) -> None:
        text = text.strip()
        if text:
            self._entries.append(text)

    def snapshot(self, n: Optional[int] = None) -> list[str]:
        entries = list(self._entries)
        if n is None:
            return entries
        if n <= 0:
            return []
        return entries[-n:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
