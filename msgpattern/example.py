"""A small demo server answering the ``ping`` pattern."""

from __future__ import annotations

import argparse
import sys
import time

from .config import Config
from .registry import ServerWrapper
from .server import Server


def build_server(addr: str = ":4069") -> Server:
    """Create a server on ``addr`` with a ``ping`` handler registered."""
    server = Server(Config(addr=addr, timeout=30.0))
    wrapper = ServerWrapper(server)
    wrapper.message_pattern("ping", lambda data: "pong")
    return server


def main(argv: list[str] | None = None) -> int:
    """Run the demo server for a while, then shut it down."""
    parser = argparse.ArgumentParser(description="Run a demo message-pattern server.")
    parser.add_argument("--addr", default=":4069", help="listen address, host:port")
    parser.add_argument(
        "--duration", type=float, default=100.0, help="seconds to keep serving"
    )
    args = parser.parse_args(argv)

    server = build_server(args.addr)
    try:
        server.start()
    except OSError as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"RPC Server started on {args.addr}")

    try:
        time.sleep(args.duration)
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())