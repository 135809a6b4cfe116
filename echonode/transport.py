import asyncio
import functools
import logging
import os
import sys
import threading
from typing import BinaryIO, Callable, Iterable, List, Optional, Protocol, Tuple, Union, runtime_checkable

from .errors import FramingError, TransportError

"""
transport.py — byte streams a node can run over.

The node core only needs two things from a transport: "give me the next line"
and "write these bytes and flush them". LineStream names that capability.

Providers:
- StdioStream:  the process's stdin/stdout pair (the usual way a test harness
                drives a node).
- TcpStream:    exactly one accepted connection on a local listener
                (default 127.0.0.1:8080). Only one session per process.
- MemoryStream: scripted input and captured output, for tests and embedding.

Any OSError from the underlying stream is re-raised as TransportError.
"""

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
MAX_LINE_SIZE = 4 * 1024 * 1024  # 4 MiB hard limit per record
READ_CHUNK_SIZE = 64 * 1024


@runtime_checkable
class LineStream(Protocol):
    """Ordered line-delimited reads and ordered, flushed writes."""

    async def readline(self) -> bytes:
        """Next line including its "\\n"; partial data at EOF; b"" once exhausted."""
        ...

    async def write(self, data: bytes) -> None:
        """Write all of `data` and flush before returning."""
        ...

    async def close(self) -> None: ...


# -------------------------
# stdin / stdout
# -------------------------

class StdioStream:
    """
    Line stream over a pair of binary file objects (stdin/stdout by default).

    A daemon thread pulls raw chunks off stdin, splits them into lines and
    hands them to the event loop through a queue. Being a daemon, a thread
    still blocked in a read never holds up shutdown (Ctrl-C included).
    """
    def __init__(self, stdin: Optional[BinaryIO] = None, stdout: Optional[BinaryIO] = None) -> None:
        if stdin is None:
            # os.read on the descriptor skips the buffered reader's lock.
            self._read_chunk = functools.partial(os.read, sys.stdin.fileno(), READ_CHUNK_SIZE)
        else:
            self._read_chunk = functools.partial(stdin.read1, READ_CHUNK_SIZE)
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self._queue: Optional[asyncio.Queue] = None
        self._eof = False

    async def readline(self) -> bytes:
        if self._eof:
            return b""
        if self._queue is None:
            self._queue = asyncio.Queue()
            reader = threading.Thread(
                target=self._pump,
                args=(asyncio.get_running_loop(), self._queue),
                name="echonode-stdin",
                daemon=True,
            )
            reader.start()

        item = await self._queue.get()
        if isinstance(item, OSError):
            self._eof = True
            raise TransportError(f"stdin read failed: {item}") from item
        if not item:
            self._eof = True
        return item

    def _pump(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        """Reader thread: push each complete line, any trailing partial, then b""."""
        def deliver(item) -> bool:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed; nobody is listening any more.
                return False
            return True

        pending = bytearray()
        try:
            while True:
                chunk = self._read_chunk()
                if not chunk:
                    break
                start = len(pending)
                pending += chunk
                nl = pending.find(b"\n", start)
                while nl >= 0:
                    if not deliver(bytes(pending[:nl + 1])):
                        return
                    del pending[:nl + 1]
                    nl = pending.find(b"\n")
                if len(pending) > MAX_LINE_SIZE:
                    # Framing rejects the oversized record; stop reading.
                    break
        except OSError as exc:
            deliver(exc)
            return

        if pending and not deliver(bytes(pending)):
            return
        deliver(b"")

    async def write(self, data: bytes) -> None:
        try:
            self.stdout.write(data)
            self.stdout.flush()
        except OSError as exc:
            raise TransportError(f"stdout write failed: {exc}") from exc

    async def close(self) -> None:
        # The process owns stdin/stdout; flushing is all we do here.
        try:
            self.stdout.flush()
        except OSError as exc:
            raise TransportError(f"stdout flush failed: {exc}") from exc


# -------------------------
# One accepted TCP connection
# -------------------------

class TcpStream:
    """Tiny wrapper around one asyncio reader/writer pair."""
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 server: Optional[asyncio.AbstractServer] = None) -> None:
        self.reader = reader
        self.writer = writer
        self.server = server

    @classmethod
    async def accept(cls, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                     on_listening: Optional[Callable[[Tuple[str, int]], None]] = None) -> "TcpStream":
        """
        Listen on host:port, wait for the first connection, then stop listening.

        Args:
            host, port:    local address to bind (port 0 picks a free port).
            on_listening:  optional callback given the bound (host, port) once
                           the listener is up; handy when port is 0.

        Returns:
            TcpStream over the accepted connection.
        """
        loop = asyncio.get_running_loop()
        accepted: asyncio.Future = loop.create_future()

        async def handle_conn(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            if accepted.done():
                # Only one session per process; turn away latecomers.
                writer.close()
                return
            accepted.set_result((reader, writer))

        try:
            server = await asyncio.start_server(handle_conn, host, port, limit=MAX_LINE_SIZE)
        except OSError as exc:
            raise TransportError(f"cannot listen on {host}:{port}: {exc}") from exc

        bound = server.sockets[0].getsockname()[:2] if server.sockets else (host, port)
        log.info("listening on %s:%s", bound[0], bound[1])
        if on_listening is not None:
            on_listening(bound)

        try:
            reader, writer = await accepted
        finally:
            # Stop listening right away; wait_closed() also waits for the
            # accepted connection, so that happens in close().
            server.close()

        log.info("accepted connection from %s", writer.get_extra_info("peername"))
        return cls(reader, writer, server)

    async def readline(self) -> bytes:
        try:
            return await self.reader.readline()
        except ValueError as exc:
            # StreamReader drops an over-limit line and raises ValueError.
            raise FramingError(f"record exceeds {MAX_LINE_SIZE} bytes") from exc
        except OSError as exc:
            raise TransportError(f"socket read failed: {exc}") from exc

    async def write(self, data: bytes) -> None:
        try:
            self.writer.write(data)
            await self.writer.drain()
        except OSError as exc:
            raise TransportError(f"socket write failed: {exc}") from exc

    async def close(self) -> None:
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except OSError as exc:
            log.debug("ignoring error while closing socket: %s", exc)
        if self.server is not None:
            await self.server.wait_closed()


# -------------------------
# In-memory
# -------------------------

class MemoryStream:
    """Feeds pre-scripted input lines and records every write."""
    def __init__(self, lines: Iterable[Union[str, bytes]] = ()) -> None:
        self._pending: List[bytes] = [
            line.encode("utf-8") if isinstance(line, str) else line for line in lines
        ]
        self.written: List[bytes] = []
        self.closed = False

    async def readline(self) -> bytes:
        if not self._pending:
            return b""
        return self._pending.pop(0)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("write on closed stream")
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True

    def output_lines(self) -> List[str]:
        return [chunk.decode("utf-8") for chunk in self.written]
