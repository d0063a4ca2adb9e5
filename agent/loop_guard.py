"""Repetition guard for tool invocations."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 3
DEFAULT_WINDOW = 30.0

Fingerprint = Tuple[str, str]


@dataclass
class LoopGuardEntry:
    count: int
    first_seen_at: float


def canonical_params(params: Optional[Dict[str, Any]]) -> str:
    return json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)


def fingerprint(name: str, params: Optional[Dict[str, Any]]) -> Fingerprint:
    return name, canonical_params(params)


class LoopGuard:
    """Counts identical ``(name, params)`` invocations inside a time window.

    Entries expire ``window`` seconds after their first sighting. Expiry is
    checked lazily on access against ``clock`` (monotonic seconds), so tests
    can drive time by hand.
    """

    def __init__(
        self,
        threshold: int = DEFAULT_THRESHOLD,
        window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.window = window
        self._clock = clock
        self._entries: Dict[Fingerprint, LoopGuardEntry] = {}

    def _live_entry(self, key: Fingerprint) -> Optional[LoopGuardEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.first_seen_at >= self.window:
            del self._entries[key]
            return None
        return entry

    def count(self, name: str, params: Optional[Dict[str, Any]]) -> int:
        entry = self._live_entry(fingerprint(name, params))
        return entry.count if entry else 0

    def is_tripped(self, name: str, params: Optional[Dict[str, Any]]) -> bool:
        return self.count(name, params) >= self.threshold

    def record(self, name: str, params: Optional[Dict[str, Any]]) -> int:
        """Count one more run; returns the new count."""
        key = fingerprint(name, params)
        entry = self._live_entry(key)
        if entry is None:
            entry = LoopGuardEntry(count=0, first_seen_at=self._clock())
            self._entries[key] = entry
        entry.count += 1
        return entry.count

    def reset(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        for key in list(self._entries):
            self._live_entry(key)
        return len(self._entries)
