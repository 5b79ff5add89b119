"""
Thread-safe store of published facet values for the dashboard.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Mapping, Optional

from ..publisher import FACET_RANGES, Facet, Publisher


@dataclass(frozen=True)
class Sample:
    """One published value with its arrival time (epoch seconds)."""

    timestamp: float
    value: float


class DashboardPublisher(Publisher):
    """Publisher keeping current values and a bounded history per facet.

    The session driver publishes from the monitor thread while Dash callbacks
    read from the web server thread, so every access goes through one lock.
    """

    def __init__(self, history_size: int = 500):
        self._lock = threading.Lock()
        self._current: dict[str, float] = {}
        self._history: dict[str, deque[Sample]] = {}
        self._history_size = history_size
        self._updates = 0
        self._last_update: Optional[float] = None

    def publish(self, facet: Facet, values: Mapping[str, float]) -> None:
        now = time.time()
        bounds = FACET_RANGES[facet]
        with self._lock:
            for key, value in values.items():
                if key == facet.value:
                    value = min(max(value, bounds.min_value), bounds.max_value)
                self._current[key] = float(value)
                history = self._history.setdefault(
                    key, deque(maxlen=self._history_size)
                )
                history.append(Sample(now, float(value)))
            self._updates += 1
            self._last_update = now

    def current(self) -> dict[str, float]:
        with self._lock:
            return dict(self._current)

    def history(self, key: str) -> list[Sample]:
        with self._lock:
            return list(self._history.get(key, ()))

    @property
    def updates(self) -> int:
        with self._lock:
            return self._updates

    @property
    def last_update(self) -> Optional[float]:
        with self._lock:
            return self._last_update
