"""Construct: batch orchestration and fixed-rate pulsing over a set of cubes.

Batch operations (list, unfreeze, destroy) each open one short-lived,
authenticated session and never touch a cube's owned connection.  They are
best-effort: per-cube failures are logged and iteration continues.

The list-driven retry loops keep two stopping conditions apart:

  attempt budget         -- fixed number of passes (UNFREEZE_ATTEMPTS,
                            DESTROY_ATTEMPTS); running out means "gave up"
  convergence predicate  -- the server reports an empty cube list; seeing it
                            means "done"

BatchResult records which of the two ended the loop.

Pulsing runs on a wall-clock tick.  Each tick fans out one pulse per cube
on a thread pool and joins all of them before waiting for the next tick, so
a slow cube delays the whole batch (ticks run late, none are skipped).
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Sequence

from loguru import logger

from construct.config import Settings
from construct.cube import Cube
from construct.errors import CubeError
from construct.network import DecisionFunction
from construct.protocol import (
    CONNECT_TIMEOUT,
    READ_TIMEOUT,
    FramedConnection,
    decode_message,
    open_session,
    read_response,
    send_message,
    to_string_list,
)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class BatchResult:
    """Outcome of a list-driven batch operation."""

    operation: str
    budget: int
    attempts: int = 0
    converged: bool = False
    processed: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        """True when the attempt budget ran out without convergence."""
        return not self.converged and self.attempts >= self.budget


@dataclass
class PulseStats:
    """Counters from one start_pulsing() run."""

    ticks: int = 0
    pulses: int = 0
    errors: int = 0
    late_ticks: int = 0
    elapsed: float = 0.0


class Construct:
    """Ordered set of cubes plus the shared server parameters."""

    UNFREEZE_ATTEMPTS = 3
    DESTROY_ATTEMPTS = 5
    UNFREEZE_PAUSE = 0.2  # seconds between unfreeze passes
    DESTROY_PAUSE = 0.5  # seconds between destroy passes

    def __init__(
        self,
        server_addr: str,
        auth_pass: str,
        delimiter: str,
        clamp_min: float = -20.0,
        clamp_max: float = 20.0,
        cubes: Sequence[Cube] | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        self.server_addr = server_addr
        self.auth_pass = auth_pass
        self.delimiter = delimiter
        self.clamp_min = clamp_min
        self.clamp_max = clamp_max
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.cubes: list[Cube] = list(cubes or [])

        self._scheduler_lock = threading.Lock()
        self._scheduler_state = SchedulerState.IDLE

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> Construct:
        if cfg is None:
            from construct.config import settings as cfg
        return cls(
            server_addr=cfg.server_addr,
            auth_pass=cfg.auth_pass,
            delimiter=cfg.delimiter,
            clamp_min=cfg.clamp_min,
            clamp_max=cfg.clamp_max,
            connect_timeout=cfg.connect_timeout,
            read_timeout=cfg.read_timeout,
        )

    @property
    def scheduler_state(self) -> SchedulerState:
        return self._scheduler_state

    # -- Membership ---------------------------------------------------------

    def add_cube(self, cube: Cube) -> Cube:
        self.cubes.append(cube)
        return cube

    def new_cube(
        self,
        name: str,
        position: Sequence[float],
        model: DecisionFunction,
        unit_name: str = "",
        debug: bool = False,
    ) -> Cube:
        """Create a cube with this construct's server parameters and add it."""
        return self.add_cube(Cube(
            name=name,
            position=position,
            model=model,
            server_addr=self.server_addr,
            auth_pass=self.auth_pass,
            delimiter=self.delimiter,
            unit_name=unit_name,
            clamp_min=self.clamp_min,
            clamp_max=self.clamp_max,
            debug=debug,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        ))

    # -- Lifecycle over every cube -----------------------------------------

    def spawn_all(self) -> list[tuple[Cube, CubeError]]:
        """Spawn every cube in order.  Returns the (cube, error) failures."""
        failures: list[tuple[Cube, CubeError]] = []
        for cube in self.cubes:
            try:
                cube.spawn()
            except CubeError as e:
                logger.warning(f"[SpawnAll] {e}")
                failures.append((cube, e))
        logger.info(f"[SpawnAll] Spawned {len(self.cubes) - len(failures)}/{len(self.cubes)} cubes")
        return failures

    def despawn_all(self) -> list[tuple[Cube, CubeError]]:
        """Despawn every local cube by name and release its owned connection."""
        failures: list[tuple[Cube, CubeError]] = []
        for cube in self.cubes:
            try:
                cube.despawn()
            except CubeError as e:
                logger.warning(f"[DespawnAll] {e}")
                failures.append((cube, e))
            finally:
                cube.close()
        return failures

    # -- Server-list operations --------------------------------------------

    def _session(self) -> FramedConnection:
        return open_session(
            self.server_addr, self.auth_pass, self.delimiter,
            self.connect_timeout, self.read_timeout,
        )

    def _request_cube_list(self, conn: FramedConnection) -> list[str]:
        send_message(conn, {"type": "get_cube_list"}, self.delimiter)
        raw = read_response(conn, self.delimiter, self.read_timeout)
        data = decode_message(raw, "get_cube_list")
        return to_string_list(data.get("cubes"))

    def get_all_cube_names(self) -> list[str]:
        """Ask the server for every cube name it knows.

        Raises:
            CubeError: connect, send, read or parse failure.
        """
        with self._session() as conn:
            return self._request_cube_list(conn)

    def unfreeze_all(self) -> BatchResult:
        """Send freeze_cube(freeze=False) for every listed cube, up to 3 passes.

        Stops early when the server lists no cubes.
        """
        result = BatchResult("UnfreezeAll", self.UNFREEZE_ATTEMPTS)
        self._list_then_act(
            result,
            lambda name: {"type": "freeze_cube", "cube_name": name, "freeze": False},
            self.UNFREEZE_PAUSE,
        )
        if result.converged:
            logger.info("[UnfreezeAll] No cubes to unfreeze.")
        return result

    def destroy_all_cubes(self) -> BatchResult:
        """Despawn every listed cube until the server reports none, up to 5 passes."""
        result = BatchResult("Nuke", self.DESTROY_ATTEMPTS)
        self._list_then_act(
            result,
            lambda name: {"type": "despawn_cube", "cube_name": name},
            self.DESTROY_PAUSE,
        )
        if result.converged:
            logger.info("[Nuke] All cubes cleared.")
        elif result.exhausted:
            logger.warning(
                f"[Nuke] Gave up after {result.attempts} passes with cubes remaining"
            )
        logger.info("[Nuke] Finished.")
        return result

    def _list_then_act(
        self,
        result: BatchResult,
        build: Callable[[str], dict],
        pause: float,
    ) -> None:
        """Shared attempt loop: list, stop on empty, else send one command per name."""
        op = result.operation
        try:
            conn = self._session()
        except CubeError as e:
            logger.warning(f"[{op}] Failed to connect: {e}")
            result.failures.append(str(e))
            return

        with conn:
            for attempt in range(1, result.budget + 1):
                try:
                    names = self._request_cube_list(conn)
                except CubeError as e:
                    logger.warning(f"[{op}] Failed to get cube list: {e}")
                    result.failures.append(str(e))
                    return
                result.attempts = attempt

                if not names:
                    result.converged = True
                    break

                for name in names:
                    try:
                        send_message(conn, build(name), self.delimiter, cube_name=name)
                    except CubeError as e:
                        logger.warning(f"[{op}] {e}")
                        result.failures.append(str(e))
                    else:
                        result.processed += 1

                logger.info(f"[{op}] Handled {len(names)} cubes (pass {attempt})")
                if attempt < result.budget and pause > 0:
                    time.sleep(pause)

    # -- Pulsing ------------------------------------------------------------

    def start_pulsing(
        self,
        actions_per_second: float,
        duration: float | timedelta,
        on_tick: Callable[[int], None] | None = None,
    ) -> PulseStats:
        """Pulse every cube at ``actions_per_second`` for ``duration``.

        Blocks until the duration has elapsed.  Each tick waits for all of
        its pulses to finish before the next tick boundary is considered.
        Pulse failures are counted, never raised.  ``on_tick`` is called
        with the 1-based tick number after each barrier.
        """
        if actions_per_second <= 0:
            raise ValueError(f"actions_per_second must be positive, got {actions_per_second}")
        if isinstance(duration, timedelta):
            duration = duration.total_seconds()

        with self._scheduler_lock:
            if self._scheduler_state is SchedulerState.RUNNING:
                raise RuntimeError("pulsing already running on this construct")
            self._scheduler_state = SchedulerState.RUNNING

        interval = 1.0 / actions_per_second
        stats = PulseStats()
        cubes = list(self.cubes)
        logger.info(
            f"Pulsing {len(cubes)} cubes at {actions_per_second}/s for {duration:.2f}s"
        )
        start = time.monotonic()
        end = start + duration
        next_tick = start + interval
        try:
            with ThreadPoolExecutor(
                max_workers=max(1, len(cubes)), thread_name_prefix="pulse"
            ) as pool:
                while time.monotonic() < end:
                    delay = next_tick - time.monotonic()
                    if delay > 0:
                        time.sleep(delay)

                    futures = [pool.submit(self._pulse_one, cube) for cube in cubes]
                    wait(futures)
                    stats.pulses += len(futures)
                    stats.errors += sum(1 for f in futures if not f.result())
                    stats.ticks += 1
                    if on_tick is not None:
                        on_tick(stats.ticks)

                    # An overrun tick fires the next one at once, then the
                    # schedule restarts from there
                    next_tick += interval
                    now = time.monotonic()
                    if now > next_tick:
                        stats.late_ticks += 1
                        next_tick = now
        finally:
            stats.elapsed = time.monotonic() - start
            with self._scheduler_lock:
                self._scheduler_state = SchedulerState.IDLE

        logger.info(
            f"Pulsing finished: {stats.ticks} ticks, {stats.pulses} pulses, "
            f"{stats.errors} errors in {stats.elapsed:.2f}s"
        )
        return stats

    @staticmethod
    def _pulse_one(cube: Cube) -> bool:
        try:
            cube.pulse()
        except CubeError as e:
            logger.debug(f"Pulse failed: {e}")
            return False
        return True
