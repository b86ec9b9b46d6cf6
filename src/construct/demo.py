#!/usr/bin/env python3
"""Hello-world driver: spawn cubes, pulse them toward a goal, clean up.

Each cube gets its own small DenseNetwork as decision function.  While the
cubes pulse, a Monitor samples their distance to the goal into a
Scoreboard; the final distances and the best cube are printed at the end.

Usage:
    python -m construct.demo --server localhost:14000 --cubes 5 \
        --rate 100 --duration 5
"""

from __future__ import annotations

import argparse
import sys
import time

from loguru import logger

from construct.config import Settings
from construct.construct import Construct
from construct.errors import CubeError
from construct.network import DenseNetwork
from construct.scoreboard import Monitor, Scoreboard


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Construct cube controller demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m construct.demo
  python -m construct.demo --server 10.0.0.5:14000 --cubes 8 --rate 50 --duration 10
  CONSTRUCT_AUTH_PASS=secret python -m construct.demo --log-level DEBUG
""",
    )
    parser.add_argument("--server", default=None, help="Server host:port")
    parser.add_argument("--password", default=None, help="Shared secret")
    parser.add_argument("--cubes", type=int, default=None, help="Number of cubes")
    parser.add_argument("--rate", type=int, default=None, help="Pulses per second")
    parser.add_argument("--duration", type=float, default=None, help="Pulsing duration (seconds)")
    parser.add_argument("--seed", type=int, default=0, help="Base seed for the cube networks")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment settings with command-line overrides applied."""
    overrides = {
        "server_addr": args.server,
        "auth_pass": args.password,
        "cube_count": args.cubes,
        "actions_per_second": args.rate,
        "pulse_duration": args.duration,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def build_construct(cfg: Settings, seed: int = 0) -> Construct:
    construct = Construct.from_settings(cfg)
    for i in range(cfg.cube_count):
        model = DenseNetwork(
            [(3, 1), (4, 1), (3, 1)],
            ["leakyrelu", "relu", "linear"],
            seed=seed + i,
        )
        construct.new_cube(
            f"cube_hello_{i}",
            [float(i * 5), 120.0, 10.0],
            model,
            unit_name="HelloUnit",
        )
    return construct


def run(cfg: Settings, seed: int = 0) -> Scoreboard:
    construct = build_construct(cfg, seed)

    print("Spawning cubes...")
    construct.spawn_all()
    time.sleep(1.0)

    print("Unfreezing cubes...")
    construct.unfreeze_all()

    print("Fetching cube names from server...")
    try:
        names = construct.get_all_cube_names()
    except CubeError as e:
        print(f"  Failed to fetch cube names: {e}")
    else:
        print("  Cube names on server:")
        for name in names:
            print(f"   - {name}")

    print("Starting pulse + monitor loop...")
    monitor = Monitor(construct.cubes, cfg.goal, duration=cfg.pulse_duration)
    monitor.start()
    construct.start_pulsing(cfg.actions_per_second, cfg.pulse_duration)
    monitor.join()

    print("Final distances to goal:")
    for name, score in monitor.scoreboard.snapshot().items():
        print(f"  - {name}: {score:.2f}")
    best = monitor.scoreboard.best()
    if best is not None:
        print(f"  Best performing cube: {best[0]} (distance {best[1]:.2f})")

    print("Despawning cubes...")
    construct.destroy_all_cubes()
    for cube in construct.cubes:
        cube.close()
    return monitor.scoreboard


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    cfg = build_settings(args)
    print(f"{'=' * 50}")
    print("  Construct Cube Controller")
    print(f"  Server: {cfg.server_addr}")
    print(f"  Cubes: {cfg.cube_count}")
    print(f"  Clamp: [{cfg.clamp_min}, {cfg.clamp_max}]")
    print(f"  Rate: {cfg.actions_per_second}/s for {cfg.pulse_duration}s")
    print(f"{'=' * 50}")
    run(cfg, args.seed)


if __name__ == "__main__":
    main()
