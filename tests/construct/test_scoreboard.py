"""Unit tests for the Scoreboard and Monitor."""
from __future__ import annotations

import math
import threading
import time

import pytest

from construct.scoreboard import Monitor, Scoreboard, distance


class PositionOnly:
    def __init__(self, name, position):
        self.name = name
        self.position = list(position)


@pytest.mark.unit
class TestDistance:

    def test_euclidean(self):
        assert distance([0, 0, 0], [3, 4, 0]) == pytest.approx(5.0)

    def test_mismatched_lengths(self):
        assert distance([0, 0], [0, 0, 0]) == math.inf


@pytest.mark.unit
class TestScoreboard:

    def test_record_and_snapshot(self):
        board = Scoreboard()
        board.record("a", 3.0)
        board.record("b", 1.0)
        board.record("a", 2.0)
        assert board.snapshot() == {"a": 2.0, "b": 1.0}
        assert len(board) == 2

    def test_snapshot_is_a_copy(self):
        board = Scoreboard()
        board.record("a", 1.0)
        board.snapshot()["a"] = 99.0
        assert board.snapshot() == {"a": 1.0}

    def test_best(self):
        board = Scoreboard()
        assert board.best() is None
        board.record("far", 100.0)
        board.record("near", 4.5)
        assert board.best() == ("near", 4.5)

    def test_clear(self):
        board = Scoreboard()
        board.record("a", 1.0)
        board.clear()
        assert len(board) == 0

    def test_concurrent_writers(self):
        board = Scoreboard()

        def writer(prefix):
            for i in range(500):
                board.record(f"{prefix}-{i % 50}", float(i))

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(board) == 200


@pytest.mark.unit
@pytest.mark.timeout(10)
class TestMonitor:

    def test_sample_records_every_cube(self):
        cubes = [PositionOnly("a", [100, 0, 0]), PositionOnly("b", [100, 3, 4])]
        monitor = Monitor(cubes, [100, 0, 0])
        monitor.sample()
        assert monitor.scoreboard.snapshot() == {"a": 0.0, "b": pytest.approx(5.0)}
        assert monitor.samples == 1

    def test_runs_for_duration(self):
        cube = PositionOnly("a", [0, 0, 0])
        monitor = Monitor([cube], [0, 0, 1], interval=0.02, duration=0.2)
        monitor.start()
        cube.position = [0, 0, 0.5]
        monitor.join(timeout=2.0)
        assert 3 <= monitor.samples <= 11
        assert monitor.scoreboard.snapshot()["a"] == pytest.approx(0.5)

    def test_stop_early(self):
        monitor = Monitor([PositionOnly("a", [0, 0, 0])], [0, 0, 0], interval=0.01, duration=60)
        monitor.start()
        time.sleep(0.05)
        start = time.monotonic()
        monitor.stop()
        assert time.monotonic() - start < 1.0

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            Monitor([], [0, 0, 0], interval=0)
