from typing import Optional

from .errors import FramingError
from .messages import Envelope, decode, encode
from .transport import MAX_LINE_SIZE, LineStream

"""
framing.py — newline-delimited JSON framing over a LineStream.

Protocol (simple on purpose):
- Each message = one UTF-8 JSON object followed by a single "\n".
- Hard cap at 4 MiB per line so a buggy peer can't make us buffer forever.
- JSON is compact (no extra spaces).

End of input:
- Nothing read at all  -> clean EOF, read_message() returns None.
- Some bytes, then EOF with no "\n" -> FramingError (the record was cut off).
"""


async def read_message(stream: LineStream) -> Optional[Envelope]:
    """
    Read one framed message and return it as an Envelope.

    Raises:
        FramingError: line cut off by EOF, too large, or not UTF-8 JSON.
        SchemaError:  JSON that is not a known envelope.

    Returns:
        Envelope, or None on a clean end of input.
    """
    line = await stream.readline()
    if not line:
        return None

    if len(line) > MAX_LINE_SIZE:
        raise FramingError(f"record exceeds {MAX_LINE_SIZE} bytes")
    if not line.endswith(b"\n"):
        raise FramingError("input ended in the middle of a record", line)

    return decode(line[:-1])


async def write_message(stream: LineStream, env: Envelope) -> None:
    """Encode one envelope and write it; returns once the line is flushed."""
    await stream.write(encode(env).encode("utf-8"))
