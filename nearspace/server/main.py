"""Server entry point."""

import argparse
import asyncio
import logging

from ..common.constants import DEFAULT_HOST, DEFAULT_PORT, POSITION_LIMIT
from .presence_server import PresenceServer
from .roster import Roster


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="nearspace presence server")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Host to bind to")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help="Port to bind to"
    )
    parser.add_argument(
        "--position-limit",
        type=float,
        default=POSITION_LIMIT,
        help=f"Clamp each axis to [-limit, limit] (default: {POSITION_LIMIT})",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    server = PresenceServer(args.host, args.port, Roster(limit=args.position_limit))
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
