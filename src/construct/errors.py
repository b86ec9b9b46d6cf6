"""Error taxonomy for cube and batch operations.

Every error carries the failing ``operation`` and, where one applies, the
``cube_name`` so log lines can be correlated with the command that failed.
``transient`` marks failures that leave the owned connection usable
(malformed or short server replies); socket-level failures are not transient.
"""

from __future__ import annotations


class CubeError(Exception):
    """Base class for every controller failure."""

    transient = False

    def __init__(self, operation: str, cause: object = "", cube_name: str | None = None):
        self.operation = operation
        self.cube_name = cube_name
        self.cause = cause
        label = cube_name if cube_name is not None else operation
        text = f"[{label}] {operation} failed"
        if cause != "":
            text = f"{text}: {cause}"
        super().__init__(text)


class ConnectError(CubeError):
    """TCP connect to the server failed."""


class SendError(CubeError):
    """Writing a framed message failed."""


class AuthError(SendError):
    """Writing the shared-secret handshake failed."""


class ReceiveError(CubeError):
    """Reading a framed response failed at the socket level."""


class ReceiveTimeout(ReceiveError):
    """Strict read ended before the delimiter arrived."""


class ParseError(CubeError):
    """Response was not a JSON object (often a truncated read)."""

    transient = True


class ShapeError(CubeError):
    """Response parsed but lacked the expected fields or arity."""

    transient = True


class NoConnectionError(CubeError):
    """Operation needs an owned connection and the cube has none."""


class DecisionOutputError(CubeError):
    """Decision function returned fewer than three outputs."""


class CubeStateError(CubeError):
    """Lifecycle transition not allowed from the cube's current state."""
