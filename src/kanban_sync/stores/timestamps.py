# src/kanban_sync/stores/timestamps.py

"""
Store-native timestamp values.

These types only live on the store side of the normalization boundary
(tasks/task_codec.py). Everything else works with epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True, order=True)
class StoreTimestamp:
    seconds: int
    nanos: int = 0

    @classmethod
    def from_millis(cls, ms: int | float) -> StoreTimestamp:
        whole = int(ms)
        seconds, rem_ms = divmod(whole, 1000)
        return cls(seconds=seconds, nanos=rem_ms * 1_000_000)

    def to_millis(self) -> int:
        return self.seconds * 1000 + self.nanos // 1_000_000


class _ServerTimestamp:
    """Write-side sentinel: the store assigns the time when the write lands."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()
