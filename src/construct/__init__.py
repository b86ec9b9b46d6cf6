"""construct: client-side controller for remotely simulated cubes."""

from construct.construct import BatchResult, Construct, PulseStats, SchedulerState
from construct.cube import Cube, CubeState
from construct.errors import (
    AuthError,
    ConnectError,
    CubeError,
    CubeStateError,
    DecisionOutputError,
    NoConnectionError,
    ParseError,
    ReceiveError,
    ReceiveTimeout,
    SendError,
    ShapeError,
)
from construct.network import DecisionFunction, DenseNetwork
from construct.scoreboard import Monitor, Scoreboard, distance

__all__ = [
    "AuthError",
    "BatchResult",
    "ConnectError",
    "Construct",
    "Cube",
    "CubeError",
    "CubeState",
    "CubeStateError",
    "DecisionFunction",
    "DecisionOutputError",
    "DenseNetwork",
    "Monitor",
    "NoConnectionError",
    "ParseError",
    "PulseStats",
    "ReceiveError",
    "ReceiveTimeout",
    "SchedulerState",
    "Scoreboard",
    "SendError",
    "ShapeError",
    "distance",
]
