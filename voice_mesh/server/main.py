"""Server entry point."""

import argparse
import asyncio
import logging
import os

from ..common.constants import (
    DEFAULT_BIND_HOST,
    DEFAULT_PORT,
    PING_INTERVAL,
    PING_TIMEOUT,
    SEND_TIMEOUT,
)
from .signaling_server import SignalingServer


def setup_logging(log_file: str | None) -> None:
    """Log to the console, and to a file as well when one is given."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Voice Mesh signaling server")
    parser.add_argument("--host", default=DEFAULT_BIND_HOST, help="Host to bind to")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help=f"Port to bind to (default: $PORT or {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=PING_INTERVAL,
        help="Seconds between keepalive pings",
    )
    parser.add_argument(
        "--ping-timeout",
        type=float,
        default=PING_TIMEOUT,
        help="Drop participants that have not answered a ping for this long",
    )
    parser.add_argument(
        "--send-timeout",
        type=float,
        default=SEND_TIMEOUT,
        help="Drop participants whose connection accepts no data for this long",
    )
    parser.add_argument("--log", help="Also write logs to this file")
    args = parser.parse_args()

    setup_logging(args.log)

    server = SignalingServer(
        args.host,
        args.port,
        ping_interval=args.ping_interval,
        ping_timeout=args.ping_timeout,
        send_timeout=args.send_timeout,
    )
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
