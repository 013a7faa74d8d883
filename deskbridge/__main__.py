"""Command line interface for the deskbridge package."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import List

from .config import Config
from .desk import DeskModel
from .engine import TransactionEngine
from .errors import DeskBridgeError
from .models import DeskState, Direction
from .supervisor import ConnectionSupervisor
from .transport import make_transport

DEFAULT_CONFIG = "deskbridge.yaml"

logger = logging.getLogger("deskbridge")


def _load_config(path: str | None) -> Config:
    path = path or os.getenv("DESKBRIDGE_CONFIG")
    if path is None and os.path.exists(DEFAULT_CONFIG):
        path = DEFAULT_CONFIG
    if path:
        return Config.from_yaml(path)
    return Config.from_env()


def _wait_until_idle(desk: DeskModel, cfg: Config) -> DeskState:
    """Keep polling (and holding the button) until the desk settles."""
    state = desk.state
    deadline = time.monotonic() + cfg.max_move_seconds + cfg.move_poll_interval * (cfg.stable_reads + 2)
    while state.moving and time.monotonic() < deadline:
        time.sleep(cfg.move_poll_interval)
        state = desk.refresh().result() or desk.state
        print(f"height: {state.height}")
    if state.moving:
        state = desk.stop().result() or desk.state
    return state


def _run_command(args: argparse.Namespace, cfg: Config) -> int:
    transport = make_transport(cfg.serial, [p.button for p in cfg.presets])
    transport.open()
    desk = DeskModel(TransactionEngine(transport, cfg.serial.slave_id, cfg.max_discard), cfg)
    try:
        if args.cmd == "height":
            state = desk.refresh().result()
            if state is None:
                print("no valid response from the desk", file=sys.stderr)
                return 1
            print(state.height)
            return 0
        if args.cmd == "preset":
            future = desk.press_preset(args.number)
        else:
            future = desk.move(Direction(args.cmd))
        if future.result() is None:
            print("desk did not accept the command", file=sys.stderr)
            return 1
        state = _wait_until_idle(desk, cfg)
        print(f"stopped at {state.height}")
        return 0
    finally:
        desk.close()
        transport.close()


def main(argv: List[str] | None = None) -> int:
    """Run the deskbridge command line interface."""
    parser = argparse.ArgumentParser(description="Bridge a Modbus desk controller to MQTT")
    parser.add_argument("-c", "--config", help="YAML settings file [env DESKBRIDGE_CONFIG]")
    parser.add_argument("-p", "--port", help="serial port the desk is connected to [env DESKBRIDGE_PORT]")
    parser.add_argument(
        "--log-level",
        default=os.getenv("DESKBRIDGE_LOG_LEVEL", "INFO"),
        help="logging level [env DESKBRIDGE_LOG_LEVEL]",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="run the MQTT bridge")
    sub.add_parser("height", help="print the current height")
    sub.add_parser("up", help="move up until the desk stops")
    sub.add_parser("down", help="move down until the desk stops")
    preset = sub.add_parser("preset", help="trigger a preset")
    preset.add_argument("number", type=int, choices=range(1, 5), help="preset number")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        cfg = _load_config(args.config)
        if args.port:
            cfg.serial.port = args.port
        if args.cmd == "run":
            ConnectionSupervisor(cfg).run_forever()
            return 0
        return _run_command(args, cfg)
    except DeskBridgeError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
