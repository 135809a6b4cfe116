"""
echonode — one participant in a line-delimited JSON echo protocol.

A node reads one JSON envelope per line, learns its identity from a single
`init` handshake, then answers every `echo` request with an `echo_ok` that
carries the same text, a back-reference to the request, and its own
sequential msg_id.

Modules:
- messages:   envelope + payload types and the JSON line codec
- framing:    read-one / write-one over a line stream
- transport:  stdio, single-connection TCP and in-memory line streams
- node:       the handshake/echo state machine and its serve loop
- run_node:   command-line entry point
"""
from .errors import (
    DecodeError,
    EchoNodeError,
    FramingError,
    ProtocolViolation,
    SchemaError,
    TransportError,
)
from .messages import Echo, EchoOk, Envelope, Init, InitOk, decode, encode
from .node import EchoNode, NodeState, serve

__all__ = [
    "errors", "messages", "framing", "transport", "node", "run_node",
    "DecodeError", "EchoNodeError", "FramingError", "ProtocolViolation",
    "SchemaError", "TransportError",
    "Echo", "EchoOk", "Envelope", "Init", "InitOk", "decode", "encode",
    "EchoNode", "NodeState", "serve",
]
