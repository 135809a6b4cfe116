import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from .errors import EchoNodeError, TransportError
from .node import EchoNode, serve
from .transport import DEFAULT_HOST, DEFAULT_PORT, LineStream, StdioStream, TcpStream

"""
run_node.py — single entry point to run one echo node.

What you can do here:
- stdio:  read requests on stdin, write replies on stdout (default)
- tcp:    accept one connection on host:port and talk over that instead

Every flag falls back to an ECHONODE_* environment variable, so a harness
that can only set env vars can still pick the transport.

Logs always go to stderr; stdout belongs to the protocol.

Exit status: 0 on clean end of input after init, 1 on any node error.
"""

log = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "tcp")


# -------------------------
# Logging
# -------------------------

def configure_logging(level: str) -> None:
    """Send log records to stderr at the given level name (e.g. DEBUG)."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise SystemExit(f"Unknown log level: {level}")
    logging.basicConfig(
        level=numeric,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def open_stream(transport: str, host: str, port: int) -> LineStream:
    if transport == "tcp":
        return await TcpStream.accept(host, port)
    return StdioStream()


async def run(transport: str, host: str, port: int) -> int:
    """Open the chosen transport, serve one node over it, then close it."""
    stream = await open_stream(transport, host, port)
    try:
        return await serve(EchoNode(), stream)
    finally:
        try:
            await stream.close()
        except TransportError as exc:
            # Replies are flushed per write; a failed close must not mask
            # whatever ended serve().
            log.warning("closing %s stream failed: %s", transport, exc)


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse flags, defaulting each one from the environment.

    Quick examples:
      stdio:  python -m echonode.run_node
      tcp:    python -m echonode.run_node --transport tcp --port 8080
      debug:  ECHONODE_LOG_LEVEL=DEBUG python -m echonode.run_node
    """
    env_port = os.environ.get("ECHONODE_PORT", str(DEFAULT_PORT))
    try:
        default_port = int(env_port)
    except ValueError:
        raise SystemExit(f"ECHONODE_PORT must be an integer, got {env_port!r}")

    p = argparse.ArgumentParser(prog="echonode", description="Run a single echo node.")
    p.add_argument("--transport", choices=TRANSPORTS,
                   default=os.environ.get("ECHONODE_TRANSPORT", "stdio"))
    p.add_argument("--host", default=os.environ.get("ECHONODE_HOST", DEFAULT_HOST))
    p.add_argument("--port", type=int, default=default_port)
    p.add_argument("--log-level", default=os.environ.get("ECHONODE_LOG_LEVEL", "WARNING"))

    args = p.parse_args(argv)
    # argparse doesn't validate defaults against choices.
    if args.transport not in TRANSPORTS:
        raise SystemExit(f"Unknown transport {args.transport!r}; expected one of {', '.join(TRANSPORTS)}")
    return args


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        handled = asyncio.run(run(args.transport, args.host, args.port))
    except EchoNodeError as exc:
        raise SystemExit(f"echonode: {exc}")
    except KeyboardInterrupt:
        raise SystemExit(130)

    log.info("done, %d messages handled", handled)


if __name__ == "__main__":
    main()
