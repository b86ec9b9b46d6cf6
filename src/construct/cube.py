"""Cube: handle for one remotely simulated cube.

Lifecycle: unspawned -> (spawn) -> active -> (despawn / close / socket
failure) -> terminated.  There is no way back to unspawned.

An active cube owns exactly one connection, opened by spawn() and used only
for its own pulse/refresh traffic.  A per-cube lock keeps two threads from
driving the same cube at once.  despawn() talks over a separate short-lived
session and leaves the owned connection for close() to release.
"""

from __future__ import annotations

import math
import threading
from enum import Enum
from typing import Sequence

from loguru import logger

from construct.errors import (
    CubeError,
    CubeStateError,
    DecisionOutputError,
    NoConnectionError,
    ReceiveError,
    SendError,
    ShapeError,
)
from construct.network import DecisionFunction
from construct.protocol import (
    CONNECT_TIMEOUT,
    READ_TIMEOUT,
    FramedConnection,
    Message,
    clamp,
    decode_message,
    is_number,
    is_oversized_int,
    open_session,
    read_response,
    send_message,
)


class CubeState(Enum):
    UNSPAWNED = "unspawned"
    ACTIVE = "active"
    TERMINATED = "terminated"


class Cube:
    """One controllable cube and its owned server connection."""

    # The server registers spawned base cubes under this suffix
    RENAME_SUFFIX = "_BASE"

    def __init__(
        self,
        name: str,
        position: Sequence[float],
        model: DecisionFunction,
        server_addr: str,
        auth_pass: str,
        delimiter: str,
        unit_name: str = "",
        clamp_min: float = -20.0,
        clamp_max: float = 20.0,
        debug: bool = False,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        if len(position) != 3:
            raise ValueError(f"position must have 3 components, got {len(position)}")
        if clamp_min > clamp_max:
            raise ValueError(f"clamp_min ({clamp_min}) exceeds clamp_max ({clamp_max})")
        self.name = name
        self.unit_name = unit_name
        self.model = model
        self.server_addr = server_addr
        self.auth_pass = auth_pass
        self.delimiter = delimiter
        self.clamp_min = float(clamp_min)
        self.clamp_max = float(clamp_max)
        self.debug = debug
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

        self._position = [float(v) for v in position]
        self._last_force: list[float] | None = None
        self._state = CubeState.UNSPAWNED
        self._conn: FramedConnection | None = None
        self._lock = threading.Lock()

    # -- Introspection ------------------------------------------------------

    @property
    def state(self) -> CubeState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    @property
    def position(self) -> list[float]:
        """Last server-reported position (spawn position until refreshed)."""
        return list(self._position)

    @property
    def last_force(self) -> list[float] | None:
        return None if self._last_force is None else list(self._last_force)

    def __repr__(self) -> str:
        return f"Cube({self.name!r}, {self._state.value}, pos={self._position})"

    # -- Lifecycle ----------------------------------------------------------

    def spawn(self) -> None:
        """Open the owned connection and spawn the cube on the server.

        On success the cube is active and renamed with RENAME_SUFFIX.  On
        failure the connection is closed and the cube stays unspawned.
        """
        with self._lock:
            if self._state is not CubeState.UNSPAWNED:
                raise CubeStateError("spawn_cube", f"cube is {self._state.value}", self.name)
            conn = open_session(
                self.server_addr, self.auth_pass, self.delimiter,
                self.connect_timeout, self.read_timeout, cube_name=self.name,
            )
            cmd: Message = {
                "type": "spawn_cube",
                "cube_name": self.name,
                "position": list(self._position),
                "rotation": [0.0, 0.0, 0.0],
                "is_base": True,
            }
            try:
                send_message(conn, cmd, self.delimiter, cube_name=self.name)
            except SendError:
                conn.close()
                raise
            self._conn = conn
            self._state = CubeState.ACTIVE
            self.name += self.RENAME_SUFFIX
        x, y, z = self._position
        logger.info(f"Spawned cube {self.name} at [{x:.2f}, {y:.2f}, {z:.2f}]")

    def despawn(self) -> None:
        """Despawn by name over a separate session.

        The cube is terminated afterwards.  Its owned connection is left
        untouched; call close() to release it.
        """
        with open_session(
            self.server_addr, self.auth_pass, self.delimiter,
            self.connect_timeout, self.read_timeout, cube_name=self.name,
        ) as conn:
            send_message(
                conn, {"type": "despawn_cube", "cube_name": self.name},
                self.delimiter, cube_name=self.name,
            )
        with self._lock:
            self._state = CubeState.TERMINATED
        logger.info(f"Despawned cube {self.name}")

    def close(self) -> None:
        """Release the owned connection.  Idempotent."""
        with self._lock:
            self._release()

    def _release(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._state is CubeState.ACTIVE:
            self._state = CubeState.TERMINATED

    def _require_conn(self, operation: str) -> FramedConnection:
        if self._state is not CubeState.ACTIVE or self._conn is None or self._conn.closed:
            raise NoConnectionError(operation, "no connection", self.name)
        return self._conn

    def _fail_connection(self, err: CubeError) -> None:
        logger.warning(f"{err}; dropping connection for {self.name}")
        self._release()

    # -- Control ------------------------------------------------------------

    def pulse(self) -> None:
        """One control cycle: decide, clamp, apply_force, refresh.

        Raises the first failure; never retries.
        """
        with self._lock:
            conn = self._require_conn("apply_force")
            force = self._decide()
            try:
                send_message(
                    conn, {"type": "apply_force", "force": force},
                    self.delimiter, cube_name=self.name,
                )
            except SendError as e:
                self._fail_connection(e)
                raise
            self._last_force = force
            self._refresh(conn)
        if self.debug:
            logger.debug(f"{self.name} force={force} position={self._position}")

    def _decide(self) -> list[float]:
        try:
            output = list(self.model(list(self._position)))
        except Exception as e:
            raise DecisionOutputError("decide", f"decision function raised {e!r}", self.name) from e
        if len(output) < 3:
            raise DecisionOutputError(
                "decide", f"model output too short ({len(output)} < 3)", self.name
            )
        force = []
        for v in output[:3]:
            try:
                v = float(v)
            except (TypeError, ValueError) as e:
                raise DecisionOutputError("decide", f"non-numeric output {v!r}", self.name) from e
            if math.isnan(v):
                raise DecisionOutputError("decide", "model produced NaN", self.name)
            force.append(clamp(v, self.clamp_min, self.clamp_max))
        return force

    def refresh_position(self) -> None:
        """Request get_cube_state and overwrite the local position.

        Socket failures terminate the cube; ParseError and ShapeError leave
        it active (see CubeError.transient).
        """
        with self._lock:
            conn = self._require_conn("get_cube_state")
            self._refresh(conn)

    def _refresh(self, conn: FramedConnection) -> None:
        try:
            send_message(conn, {"type": "get_cube_state"}, self.delimiter, cube_name=self.name)
            raw = read_response(conn, self.delimiter, self.read_timeout, cube_name=self.name)
        except (SendError, ReceiveError) as e:
            self._fail_connection(e)
            raise
        state = decode_message(raw, "get_cube_state", self.name)
        pos = state.get("position")
        if not isinstance(pos, list) or len(pos) != 3:
            raise ShapeError("get_cube_state", f"invalid position format: {pos!r}", self.name)
        if any(is_oversized_int(v) for v in pos):
            raise ShapeError("get_cube_state", "position component out of float range", self.name)
        # Non-numeric components keep their previous value
        self._position = [
            float(new) if is_number(new) else old
            for new, old in zip(pos, self._position)
        ]
