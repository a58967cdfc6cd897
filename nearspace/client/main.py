"""Client entry point."""

import argparse
import asyncio
import logging

from ..common.constants import DEFAULT_HOST, DEFAULT_PORT
from .presence_client import PresenceClient


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# RTP packet spam at debug level
QUIET_LOGGERS = ("aiortc", "aioice", "libav")


def setup_logging(log_file: str, level: str = "debug") -> logging.Handler:
    """Log to a file only: console output would corrupt the terminal UI.

    Returns the installed handler.
    """
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
    return handler


def main() -> None:
    parser = argparse.ArgumentParser(description="nearspace client")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Server host")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
    parser.add_argument(
        "--log", help="Log file path (logging disabled if not specified)"
    )
    parser.add_argument(
        "--log-level",
        default="debug",
        choices=["debug", "info", "warning", "error"],
        help="Log level for --log (default: debug)",
    )
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Do not open the microphone (calls still connect and play)",
    )
    args = parser.parse_args()

    if args.log:
        setup_logging(args.log, args.log_level)
    else:
        logging.getLogger().addHandler(logging.NullHandler())

    client = PresenceClient(args.host, args.port, audio_enabled=not args.no_audio)

    async def run_client() -> None:
        if await client.connect():
            await client.run()
        else:
            print("Failed to connect to server")

    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
