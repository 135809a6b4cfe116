import enum
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ProtocolViolation
from .framing import read_message, write_message
from .messages import Echo, EchoOk, Envelope, Init, InitOk, Payload
from .transport import LineStream

"""
node.py — the echo node: handshake, then answer echo requests.

Two states:
- UNINITIALIZED: only `init` is legal. It fixes our identity and is answered
  with `init_ok`. Anything else (or EOF) is fatal.
- READY: only `echo` is legal. Each one is answered with `echo_ok` carrying the
  next value of our own outbound counter. Anything else is fatal; EOF is a
  normal stop.

Notes:
- EchoNode.handle() is plain synchronous code with no I/O, so it can be
  driven directly from tests. serve() is the async loop that feeds it from a
  LineStream and writes replies back, one message at a time, in order.
- All mutable state lives in one NodeState owned by the EchoNode.
"""

log = logging.getLogger(__name__)


class Phase(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


@dataclass
class NodeState:
    """Identity (fixed once by init) and the outbound msg_id counter."""
    node_id: Optional[str] = None
    node_ids: Tuple[str, ...] = ()
    next_msg_id: int = 0

    def take_msg_id(self) -> int:
        """Return the current counter value and advance it by one."""
        msg_id = self.next_msg_id
        self.next_msg_id += 1
        return msg_id


class EchoNode:
    def __init__(self, state: Optional[NodeState] = None) -> None:
        self.state = state if state is not None else NodeState()
        self.phase = Phase.UNINITIALIZED

    @property
    def node_id(self) -> Optional[str]:
        return self.state.node_id

    def handle(self, env: Envelope) -> Envelope:
        """
        Advance the state machine by one inbound envelope.

        Returns:
            The single reply envelope to send back.

        Raises:
            ProtocolViolation: payload is not legal in the current phase.
        """
        body = env.body
        if self.phase is Phase.UNINITIALIZED:
            if isinstance(body, Init):
                return self._handle_init(env, body)
            raise ProtocolViolation("expected init before any other message", env)

        if isinstance(body, Echo):
            return self._handle_echo(env, body)
        raise ProtocolViolation(f"unexpected {body.TYPE} payload after init", env)

    def finish(self) -> None:
        """Called at end of input; only legal once the handshake is done."""
        if self.phase is Phase.UNINITIALIZED:
            raise ProtocolViolation("input ended before init was received")
        log.info("end of input after %d echo replies", self.state.next_msg_id)

    def _handle_init(self, env: Envelope, body: Init) -> Envelope:
        self.state.node_id = body.node_id
        self.state.node_ids = body.node_ids
        self.phase = Phase.READY
        log.info("initialized as %s (cluster: %s)", body.node_id, ", ".join(body.node_ids))
        return self._reply(env, InitOk(in_reply_to=body.msg_id))

    def _handle_echo(self, env: Envelope, body: Echo) -> Envelope:
        return self._reply(env, EchoOk(
            msg_id=self.state.take_msg_id(),
            in_reply_to=body.msg_id,
            echo=body.echo,
        ))

    def _reply(self, request: Envelope, body: Payload) -> Envelope:
        # Replies always go back the way the request came.
        return Envelope(src=self.state.node_id, dest=request.src, body=body)


async def serve(node: EchoNode, stream: LineStream) -> int:
    """
    Run `node` over `stream` until clean end of input.

    Each message is read, handled and answered (flushed) before the next one
    is read. Errors propagate to the caller unchanged.

    Returns:
        Number of requests answered.
    """
    handled = 0
    while True:
        env = await read_message(stream)
        if env is None:
            break
        log.debug("recv %s", env)
        reply = node.handle(env)
        await write_message(stream, reply)
        log.debug("sent %s", reply)
        handled += 1

    node.finish()
    return handled
