"""Framed transport and session handshake for the cube server protocol.

Wire format
-----------
Every connection starts with the raw shared secret followed by the delimiter.
After that, each message is a JSON object immediately followed by the same
delimiter.  The delimiter is an opaque multi-character token; it is neither
escaped nor length-prefixed, so payloads must never contain it.

Reads are best-effort: if the delimiter has not arrived when the read
deadline expires, whatever was accumulated is returned as if it were a
complete message.  A truncated reply surfaces downstream as a ParseError.
"""

from __future__ import annotations

import json
import math
import socket
import time
from typing import Any

from loguru import logger

from construct.errors import (
    AuthError,
    ConnectError,
    ParseError,
    ReceiveError,
    ReceiveTimeout,
    SendError,
)

Message = dict[str, Any]

READ_TIMEOUT = 3.0
CONNECT_TIMEOUT = 5.0
RECV_CHUNK = 4096


def parse_addr(server_addr: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into a (host, port) tuple."""
    host, sep, port = server_addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid server address: {server_addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


class FramedConnection:
    """A TCP socket plus the handshake flag the protocol requires.

    Owns the socket: ``close()`` releases it.  Usable as a context manager
    so short-lived batch sessions are always closed.
    """

    def __init__(
        self,
        sock: socket.socket,
        server_addr: str = "",
        io_timeout: float | None = None,
    ) -> None:
        self._sock = sock
        self.server_addr = server_addr
        # Deadline for writes; reads set their own and restore this one
        self.io_timeout = io_timeout
        self.authenticated = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def sendall(self, data: bytes) -> None:
        self._sock.sendall(data)

    def recv(self, size: int) -> bytes:
        return self._sock.recv(size)

    def settimeout(self, timeout: float | None) -> None:
        self._sock.settimeout(timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Socket close error on {self.server_addr}: {e}")

    def __enter__(self) -> FramedConnection:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"FramedConnection({self.server_addr!r}, {state})"


def dial(
    server_addr: str,
    timeout: float = CONNECT_TIMEOUT,
    cube_name: str | None = None,
) -> FramedConnection:
    """Open a TCP connection to ``server_addr``.

    Raises:
        ConnectError: address invalid or connect failed.
    """
    try:
        host, port = parse_addr(server_addr)
        sock = socket.create_connection((host, port), timeout=timeout)
    except (OSError, ValueError) as e:
        raise ConnectError("connect", e, cube_name) from e
    return FramedConnection(sock, server_addr, io_timeout=timeout)


def send_message(
    conn: FramedConnection,
    message: Message,
    delimiter: str,
    cube_name: str | None = None,
) -> None:
    """Serialize ``message`` as JSON and write it followed by the delimiter.

    Raises:
        SendError: message not serializable or the socket write failed.
        RuntimeError: the connection has not completed the handshake.
    """
    operation = str(message.get("type", "send"))
    if not conn.authenticated:
        raise RuntimeError(f"{operation} sent before handshake on {conn!r}")
    try:
        data = json.dumps(message).encode("utf-8") + delimiter.encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SendError(operation, e, cube_name) from e
    try:
        conn.sendall(data)
    except OSError as e:
        raise SendError(operation, e, cube_name) from e


def read_response(
    conn: FramedConnection,
    delimiter: str,
    timeout: float = READ_TIMEOUT,
    strict: bool = False,
    cube_name: str | None = None,
) -> str:
    """Read until the delimiter shows up in the accumulated buffer.

    Returns the accumulated text with every delimiter occurrence removed and
    surrounding whitespace trimmed.  If the deadline passes (or the peer
    closes) first, the partial buffer is returned unless ``strict`` is set,
    in which case ReceiveTimeout is raised.

    Raises:
        ReceiveError: socket failure other than a timeout.
        ReceiveTimeout: strict read ended before the delimiter.
    """
    token = delimiter.encode("utf-8")
    buf = bytearray()
    deadline = time.monotonic() + timeout
    complete = False
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            conn.settimeout(remaining)
            try:
                chunk = conn.recv(RECV_CHUNK)
            except (socket.timeout, TimeoutError):
                break
            if not chunk:
                break
            buf.extend(chunk)
            if token in buf:
                complete = True
                break
    except OSError as e:
        raise ReceiveError("read", e, cube_name) from e
    finally:
        if not conn.closed:
            conn.settimeout(conn.io_timeout)

    if not complete:
        if strict:
            raise ReceiveTimeout(
                "read", f"delimiter not seen within {timeout:.1f}s ({len(buf)} bytes)", cube_name
            )
        logger.debug(
            f"Read on {conn.server_addr} ended without delimiter, "
            f"returning {len(buf)} partial bytes"
        )
    text = buf.decode("utf-8", errors="replace")
    return text.replace(delimiter, "").strip()


def decode_message(
    raw: str,
    operation: str = "parse",
    cube_name: str | None = None,
) -> Message:
    """Parse a framed response as a JSON object.

    Raises:
        ParseError: invalid JSON (often a truncated read) or not an object.
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ParseError(operation, f"invalid JSON: {e}", cube_name) from e
    if not isinstance(data, dict):
        raise ParseError(operation, f"expected object, got {type(data).__name__}", cube_name)
    return data


def authenticate(
    conn: FramedConnection,
    secret: str,
    delimiter: str,
    timeout: float = READ_TIMEOUT,
    cube_name: str | None = None,
) -> None:
    """Write ``secret + delimiter`` and discard one response.

    The server sends no explicit failure signal, so any reply (including a
    truncated one or none) is accepted.  A wrong secret only shows up later
    as failing commands.

    Raises:
        AuthError: the secret could not be written.
        RuntimeError: the handshake already ran on this connection.
    """
    if conn.authenticated:
        raise RuntimeError(f"handshake already performed on {conn!r}")
    try:
        conn.sendall((secret + delimiter).encode("utf-8"))
    except OSError as e:
        raise AuthError("auth", e, cube_name) from e
    try:
        read_response(conn, delimiter, timeout, cube_name=cube_name)
    except ReceiveError as e:
        logger.warning(f"Handshake reply from {conn.server_addr} unreadable: {e}")
    conn.authenticated = True


def open_session(
    server_addr: str,
    secret: str,
    delimiter: str,
    connect_timeout: float = CONNECT_TIMEOUT,
    read_timeout: float = READ_TIMEOUT,
    cube_name: str | None = None,
) -> FramedConnection:
    """Dial and authenticate; the socket is closed if the handshake fails."""
    conn = dial(server_addr, connect_timeout, cube_name)
    try:
        authenticate(conn, secret, delimiter, read_timeout, cube_name)
    except AuthError:
        conn.close()
        raise
    return conn


def to_string_list(value: Any) -> list[str]:
    """Keep the string entries of a JSON array; anything else yields []."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def clamp(value: float, lo: float, hi: float) -> float:
    v = float(value)
    if v > hi:
        return hi
    if v < lo:
        return lo
    return v


def is_number(value: Any) -> bool:
    """True for JSON numbers (bool excluded) that are finite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def is_oversized_int(value: Any) -> bool:
    """True for a JSON integer too large to convert to a float."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    try:
        float(value)
    except OverflowError:
        return True
    return False
