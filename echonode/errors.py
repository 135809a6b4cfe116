from typing import Any, Optional

"""
errors.py — every way a node run can fail.

- DecodeError:        a line could not be turned into an Envelope.
    - FramingError:   stream ended mid-line, or bytes are not UTF-8 JSON.
    - SchemaError:    JSON is fine but matches none of the four payload shapes.
- ProtocolViolation:  valid envelope, wrong moment (echo before init, init twice...).
- TransportError:     the byte stream itself failed to read, write or accept.

Nothing here is retried. A clean end of input after the handshake is the only
way a node stops without raising one of these.
"""


class EchoNodeError(Exception):
    """Base class for all node failures."""


class DecodeError(EchoNodeError):
    """A record could not be decoded; keeps the offending line for diagnostics."""
    def __init__(self, message: str, line: Any = None) -> None:
        super().__init__(message)
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        if self.line is None:
            return base
        return f"{base} (line: {self.line!r})"


class FramingError(DecodeError):
    pass


class SchemaError(DecodeError):
    pass


class ProtocolViolation(EchoNodeError):
    """A payload that is not legal in the node's current state."""
    def __init__(self, message: str, envelope: Optional[Any] = None) -> None:
        super().__init__(message)
        self.envelope = envelope

    def __str__(self) -> str:
        base = super().__str__()
        if self.envelope is None:
            return base
        return f"{base}: {self.envelope.body!r}"


class TransportError(EchoNodeError):
    pass
