"""Shared fixtures for construct tests.

FakeCubeServer is an in-process, threaded TCP server speaking the cube
protocol: secret handshake, then delimiter-framed JSON commands.  It keeps
real server-side cube state so spawn/pulse/destroy flows can be exercised
end to end, and exposes knobs for scripted or broken replies.
"""

from __future__ import annotations

import json
import socketserver
import threading
from collections import deque

import pytest

from loguru import logger

DELIM = "<???DONE???---"
SECRET = "test-secret"


class _Handler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        server: FakeCubeServer = self.server.owner  # type: ignore[attr-defined]
        token = server.delimiter.encode()
        buf = b""
        authed = False
        session: dict = {"cube": None}
        while True:
            try:
                chunk = self.request.recv(4096)
            except OSError:
                return
            if not chunk:
                return
            buf += chunk
            while token in buf:
                frame, buf = buf.split(token, 1)
                text = frame.decode("utf-8").strip()
                if not authed:
                    authed = True
                    server.auth_attempts.append(text)
                    if server.auth_reply is not None:
                        self.request.sendall(server.auth_reply.encode() + token)
                    continue
                reply = server.dispatch(json.loads(text), session)
                if reply is not None:
                    self.request.sendall(reply)


class _TCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class FakeCubeServer:
    """Stateful stand-in for the cube simulation server."""

    def __init__(self, delimiter: str = DELIM, force_gain: float = 0.1) -> None:
        self.delimiter = delimiter
        self.force_gain = force_gain
        self._lock = threading.Lock()
        self.cubes: dict[str, list[float]] = {}
        self.frozen: dict[str, bool] = {}
        self.commands: list[dict] = []
        self.auth_attempts: list[str] = []
        self.auth_reply: str | None = "auth_ok"
        # Scripted get_cube_list answers, consumed in order before real state
        self.list_script: deque[list] = deque()
        # Raw bytes sent instead of the real get_cube_state reply
        self.state_override: bytes | None = None
        self.ignore_despawn = False
        self.list_calls = 0
        self._tcp = _TCPServer(("127.0.0.1", 0), _Handler)
        self._tcp.owner = self  # type: ignore[attr-defined]
        self._thread: threading.Thread | None = None

    @property
    def addr(self) -> str:
        host, port = self._tcp.server_address[:2]
        return f"{host}:{port}"

    def start(self) -> None:
        self._thread = threading.Thread(target=self._tcp.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._tcp.shutdown()
        self._tcp.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)

    def commands_of(self, cmd_type: str) -> list[dict]:
        with self._lock:
            return [c for c in self.commands if c.get("type") == cmd_type]

    def _frame(self, payload: dict) -> bytes:
        return json.dumps(payload).encode() + self.delimiter.encode()

    def dispatch(self, msg: dict, session: dict) -> bytes | None:
        kind = msg.get("type")
        with self._lock:
            self.commands.append(msg)
            if kind == "spawn_cube":
                name = msg["cube_name"] + "_BASE"
                self.cubes[name] = list(msg["position"])
                self.frozen[name] = True
                session["cube"] = name
                return None
            if kind == "despawn_cube":
                if not self.ignore_despawn:
                    self.cubes.pop(msg["cube_name"], None)
                return None
            if kind == "freeze_cube":
                if msg["cube_name"] in self.cubes:
                    self.frozen[msg["cube_name"]] = msg["freeze"]
                return None
            if kind == "apply_force":
                pos = self.cubes.get(session["cube"])
                if pos is not None:
                    for i, f in enumerate(msg["force"]):
                        pos[i] += f * self.force_gain
                return None
            if kind == "get_cube_state":
                if self.state_override is not None:
                    return self.state_override
                pos = self.cubes.get(session["cube"])
                if pos is None:
                    return self._frame({"error": "no cube bound to this connection"})
                return self._frame({"position": list(pos)})
            if kind == "get_cube_list":
                self.list_calls += 1
                if self.list_script:
                    return self._frame({"cubes": self.list_script.popleft()})
                return self._frame({"cubes": sorted(self.cubes)})
        return None


@pytest.fixture
def cube_server():
    server = FakeCubeServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def log_messages():
    """Capture loguru output as a list of formatted messages."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def make_construct(cube_server):
    """Factory for a Construct pointed at the fake server, with no batch pauses."""
    from construct.construct import Construct

    def _make(**overrides) -> Construct:
        params = dict(
            server_addr=cube_server.addr,
            auth_pass=SECRET,
            delimiter=cube_server.delimiter,
            clamp_min=-20.0,
            clamp_max=20.0,
            read_timeout=1.0,
            connect_timeout=1.0,
        )
        params.update(overrides)
        construct = Construct(**params)
        construct.UNFREEZE_PAUSE = 0.0
        construct.DESTROY_PAUSE = 0.0
        return construct

    return _make


@pytest.fixture
def closed_port_addr():
    """host:port where nothing is listening."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"127.0.0.1:{port}"


@pytest.fixture
def wait_for():
    """Poll ``predicate`` until true; fire-and-forget commands land asynchronously."""
    import time

    def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
