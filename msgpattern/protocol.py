"""Wire types and length-prefixed framing for the message-pattern protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

_MISSING = object()

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class Pattern:
    """The routing part of a request."""

    cmd: str = ""


@dataclass
class Request:
    """A decoded request: its id, pattern and JSON payload."""

    id: str = ""
    pattern: Pattern = field(default_factory=Pattern)
    data: Any = None


@dataclass
class Response:
    """A reply sent back to a client; empty fields are left out on the wire."""

    id: str = ""
    response: Any = None
    is_disposed: bool = False
    status: str = ""
    err: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object for this response, omitting empty fields."""
        result: dict[str, Any] = {}
        if self.id:
            result["id"] = self.id
        if self.response is not None:
            result["response"] = self.response
        if self.is_disposed:
            result["isDisposed"] = True
        if self.status:
            result["status"] = self.status
        if self.err:
            result["err"] = self.err
        return result

    def to_json(self) -> bytes:
        """Serialise to compact UTF-8 JSON with HTML-sensitive characters escaped."""
        text = json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
        text = "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)
        return text.encode("utf-8")


def _lookup(obj: dict[str, Any], key: str, default: Any = None) -> Any:
    """Find ``key`` case-insensitively; the last matching key wins."""
    result = default
    for name, value in obj.items():
        if name.lower() == key:
            result = value
    return result


def _pattern_from_object(value: Any) -> Pattern | None:
    if value is None:
        return Pattern()
    if not isinstance(value, dict):
        return None
    cmd = _lookup(value, "cmd")
    if cmd is None:
        return Pattern()
    if not isinstance(cmd, str):
        return None
    return Pattern(cmd=cmd)


def _decode_pattern(value: Any) -> Pattern:
    if value is not _MISSING:
        pattern = _pattern_from_object(value)
        if pattern is not None:
            return pattern
        if isinstance(value, str):
            try:
                inner = json.loads(value)
            except ValueError:
                inner = _MISSING
            if inner is not _MISSING:
                pattern = _pattern_from_object(inner)
                if pattern is not None:
                    return pattern
    raise ValueError("invalid pattern format")


def parse_request(msg_bytes: bytes | str) -> Request:
    """Decode a request body.

    The pattern may be a JSON object or a string holding a JSON object.
    Raises ValueError on malformed JSON or an unusable pattern.
    """
    raw = json.loads(msg_bytes)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"cannot decode JSON {type(raw).__name__} into a request")

    req_id = _lookup(raw, "id")
    if req_id is None:
        req_id = ""
    elif not isinstance(req_id, str):
        raise ValueError("request id must be a string")

    data = _lookup(raw, "data")
    pattern = _decode_pattern(_lookup(raw, "pattern", _MISSING))
    return Request(id=req_id, pattern=pattern, data=data)


def encode_frame(payload: bytes | str) -> bytes:
    """Frame a payload as ``<byte length>#<payload>``."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return f"{len(payload)}#".encode("ascii") + payload