"""Scoreboard: lock-guarded distance-to-goal tracking while cubes pulse.

Pulse workers never write here.  A single Monitor thread samples every
cube's last refreshed position on a fixed interval and records the
distance, so the shared map has one writer and any number of readers.
"""

from __future__ import annotations

import math
import threading
import time
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np
from loguru import logger

if TYPE_CHECKING:
    from construct.cube import Cube


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance; mismatched lengths are infinitely far apart."""
    if len(a) != len(b):
        return math.inf
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


class Scoreboard:
    """Thread-safe map of cube name -> latest score (lower is better)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scores: dict[str, float] = {}

    def record(self, name: str, score: float) -> None:
        with self._lock:
            self._scores[name] = score

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._scores)

    def best(self) -> tuple[str, float] | None:
        """Return (name, score) with the lowest score, or None when empty."""
        with self._lock:
            if not self._scores:
                return None
            name = min(self._scores, key=self._scores.__getitem__)
            return name, self._scores[name]

    def clear(self) -> None:
        with self._lock:
            self._scores.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._scores)


class Monitor:
    """Samples cube positions into a Scoreboard on a background thread.

    Runs for ``duration`` seconds (or until stop()), sampling every
    ``interval`` seconds.  The first sample is taken after one interval.
    """

    def __init__(
        self,
        cubes: Iterable[Cube],
        goal: Sequence[float],
        scoreboard: Scoreboard | None = None,
        interval: float = 0.5,
        duration: float = 5.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._cubes = list(cubes)
        self.goal = list(goal)
        self.scoreboard = scoreboard if scoreboard is not None else Scoreboard()
        self.interval = interval
        self.duration = duration
        self.samples = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sample(self) -> None:
        """Record one distance per cube."""
        for cube in self._cubes:
            self.scoreboard.record(cube.name, distance(cube.position, self.goal))
        self.samples += 1

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="construct-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self.join()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self._thread = None

    def _run(self) -> None:
        end = time.monotonic() + self.duration
        while not self._stop.wait(self.interval):
            if time.monotonic() > end:
                break
            self.sample()
        logger.debug(f"Monitor stopped after {self.samples} samples")
