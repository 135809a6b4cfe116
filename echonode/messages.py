import json
from dataclasses import dataclass, fields
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple, Type, Union

from .errors import FramingError, SchemaError

"""
messages.py — the envelope, its four payload variants, and the JSON codec.

What this module does:
- Models the wire envelope {"src", "dest", "body"} as a frozen dataclass.
- Models the body as a closed union of four frozen dataclasses, one per
  "type" tag: init, init_ok, echo, echo_ok. Anything else is rejected.
- decode(): one line of text (or bytes) -> Envelope, all-or-nothing.
- encode(): Envelope -> one compact JSON line ending in exactly one "\n".

Shape rules:
- msg_id / in_reply_to are unsigned: JSON integers >= 0 (booleans rejected).
- Strings must round-trip through UTF-8 (lone surrogates are rejected).
- Unknown extra keys are ignored; missing or mistyped known keys are not.
"""


# -----------------------
# Payload variants
# -----------------------

@dataclass(frozen=True)
class Init:
    """Handshake request: tells the node who it is and who else exists."""
    TYPE: ClassVar[str] = "init"
    msg_id: int
    node_id: str
    node_ids: Tuple[str, ...]

    def __post_init__(self) -> None:
        # Accept any sequence from callers but always hold a tuple.
        object.__setattr__(self, "node_ids", tuple(self.node_ids))


@dataclass(frozen=True)
class InitOk:
    TYPE: ClassVar[str] = "init_ok"
    in_reply_to: int


@dataclass(frozen=True)
class Echo:
    TYPE: ClassVar[str] = "echo"
    msg_id: int
    echo: str


@dataclass(frozen=True)
class EchoOk:
    TYPE: ClassVar[str] = "echo_ok"
    msg_id: int
    in_reply_to: int
    echo: str


Payload = Union[Init, InitOk, Echo, EchoOk]

PAYLOAD_TYPES: Dict[str, Type[Any]] = {
    cls.TYPE: cls for cls in (Init, InitOk, Echo, EchoOk)
}


@dataclass(frozen=True)
class Envelope:
    """One message unit: who sent it, who it is for, and what it says."""
    src: str
    dest: str
    body: Payload


# -----------------------
# Field checks
# -----------------------

def _string(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise SchemaError(f"field {name!r} must be a string, got {type(value).__name__}")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise SchemaError(f"field {name!r} is not valid unicode: {exc}") from exc
    return value


def _uint(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SchemaError(f"field {name!r} must be an unsigned integer, got {value!r}")
    return value


def _string_list(name: str, value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        raise SchemaError(f"field {name!r} must be a list of strings, got {type(value).__name__}")
    return tuple(_string(f"{name}[{i}]", item) for i, item in enumerate(value))


_FIELD_CHECKS: Dict[Any, Callable[[str, Any], Any]] = {
    int: _uint,
    str: _string,
    Tuple[str, ...]: _string_list,
}


# -----------------------
# dict <-> dataclass
# -----------------------

def payload_from_dict(body: Any) -> Payload:
    """Pick the variant named by body["type"] and check every field it needs."""
    if not isinstance(body, dict):
        raise SchemaError(f"body must be an object, got {type(body).__name__}")

    tag = body.get("type")
    if tag is None:
        raise SchemaError("body is missing field 'type'")
    cls = PAYLOAD_TYPES.get(tag) if isinstance(tag, str) else None
    if cls is None:
        raise SchemaError(f"unknown payload type {tag!r}")

    values = {}
    for f in fields(cls):
        if f.name not in body:
            raise SchemaError(f"{tag} body is missing field {f.name!r}")
        values[f.name] = _FIELD_CHECKS[f.type](f.name, body[f.name])
    return cls(**values)


def payload_to_dict(body: Payload) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": body.TYPE}
    for f in fields(body):
        value = getattr(body, f.name)
        out[f.name] = list(value) if isinstance(value, tuple) else value
    return out


def envelope_from_dict(obj: Any, line: Optional[Any] = None) -> Envelope:
    """
    Build an Envelope from an already-parsed JSON value.

    Raises:
        SchemaError: carrying `line` when the value is not a valid envelope.
    """
    try:
        if not isinstance(obj, dict):
            raise SchemaError(f"envelope must be an object, got {type(obj).__name__}")
        for key in ("src", "dest", "body"):
            if key not in obj:
                raise SchemaError(f"envelope is missing field {key!r}")
        return Envelope(
            src=_string("src", obj["src"]),
            dest=_string("dest", obj["dest"]),
            body=payload_from_dict(obj["body"]),
        )
    except SchemaError as exc:
        if exc.line is None:
            exc.line = line
        raise


def envelope_to_dict(env: Envelope) -> Dict[str, Any]:
    return {"src": env.src, "dest": env.dest, "body": payload_to_dict(env.body)}


# -----------------------
# Line codec
# -----------------------

def decode(line: Union[str, bytes]) -> Envelope:
    """
    Decode one record (no embedded newline; a trailing one is tolerated).

    Raises:
        FramingError: bytes are not UTF-8, or text is not JSON.
        SchemaError:  JSON does not match any of the four payload shapes.
    """
    # 1) Bytes -> text.
    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FramingError(f"record is not valid UTF-8: {exc}", line) from exc
    else:
        text = line

    # 2) Text -> JSON value.
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FramingError(f"record is not valid JSON: {exc}", line) from exc

    # 3) JSON value -> typed envelope.
    return envelope_from_dict(obj, line=line)


def encode(env: Envelope) -> str:
    """Compact JSON for one envelope, followed by exactly one newline."""
    return json.dumps(envelope_to_dict(env), separators=(",", ":"), ensure_ascii=False) + "\n"
