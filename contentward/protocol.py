"""JSON-RPC 2.0 message model for intercepted MCP traffic.

Every message crossing the proxy is wrapped in an immutable ``Message``
that remembers which side sent it (client or server).  The wrapper exposes
the one payload that is semantically active for the message:

  - Request / notification:  has "method"          -> ``params``
  - Response:                has "id", no "method" -> ``result``
  - Error response:          has "error"           -> ``error``

Content policies read a slightly different field, ``content``: client
messages always offer ``params``, server messages offer ``result`` or
``error`` only when they answer a request, and ``params`` otherwise.

Replacing a payload never mutates the original message; a new ``Message``
is returned instead, so the same inbound message can be safely evaluated
by many policies.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class MessageOrigin(str, Enum):
    """Which side of the proxy produced a message."""

    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True)
class ErrorData:
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass(frozen=True)
class Message:
    """A single JSON-RPC 2.0 message and the side that sent it.

    Attributes:
        origin: The sending side (client or server).
        id: The JSON-RPC id, or None for notifications.
        method: The method name (requests and notifications only).
        params: Request payload.
        result: Successful response payload.
        error: Error response payload.
    """

    origin: MessageOrigin
    id: int | str | None = None
    method: str | None = None
    params: Any | None = None
    result: Any | None = None
    error: ErrorData | None = None

    @property
    def correlation_id(self) -> str | None:
        """The id as a string, used to pair requests with their responses."""
        if self.id is None:
            return None
        return str(self.id)

    @property
    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    @property
    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    @property
    def is_response(self) -> bool:
        return self.method is None and (self.id is not None or self.error is not None)

    @property
    def payload_key(self) -> str:
        """Name of the active payload field: "params", "result", or "error"."""
        if self.is_response:
            return "error" if self.error is not None else "result"
        return "params"

    @property
    def payload(self) -> Any | None:
        """The active payload as plain JSON data."""
        return self._payload_value(self.payload_key)

    @property
    def content_key(self) -> str:
        """Name of the payload field that content policies scan and rewrite.

        Client messages expose ``params``.  Server messages that carry an id
        expose ``result``, or ``error`` when there is no result; server
        notifications expose ``params``.
        """
        if self.origin == MessageOrigin.SERVER and self.correlation_id is not None:
            if self.result is None and self.error is not None:
                return "error"
            return "result"
        return "params"

    @property
    def content(self) -> Any | None:
        """The payload named by ``content_key`` as plain JSON data."""
        return self._payload_value(self.content_key)

    def _payload_value(self, key: str) -> Any | None:
        if key == "error":
            return self.error.to_dict() if self.error is not None else None
        return getattr(self, key)

    def with_payload(self, key: str, value: Any) -> Message:
        """Return a copy of this message with one payload field replaced.

        Args:
            key: "params", "result", or "error".
            value: The new payload.  Deep-copied so the returned message
                   never shares mutable state with the caller.

        Raises:
            ValueError: If ``key`` is not a payload field.
            ProtocolError: If an error payload is not a valid error object.
        """
        if key == "error":
            return replace(self, error=_error_from_dict(value))
        if key not in ("params", "result"):
            raise ValueError(f"Unknown payload field '{key}'. Expected params, result, or error.")
        return replace(self, **{key: copy.deepcopy(value)})

    def with_replacement(self, payload: dict[str, Any]) -> Message:
        """Return the message that stands in for this one after a full replacement.

        A replacement carrying an ``error`` object turns the message into an
        error response that keeps the original id, so the caller that is
        waiting on this id receives the error.  Any other replacement
        substitutes the active payload wholesale.
        """
        if "error" in payload:
            return Message(
                origin=self.origin,
                id=self.id,
                error=_error_from_dict(payload["error"]),
            )
        return self.with_payload(self.payload_key, payload)

    def to_dict(self) -> dict[str, Any]:
        """Render the message as a JSON-RPC 2.0 object."""
        data: dict[str, Any] = {"jsonrpc": "2.0"}
        if self.error is not None:
            data["id"] = self.id
            data["error"] = self.error.to_dict()
            return data
        if self.id is not None:
            data["id"] = self.id
        if self.method is not None:
            data["method"] = self.method
            if self.params is not None:
                data["params"] = self.params
        else:
            data["result"] = self.result
        return data


class ProtocolError(Exception):
    """Raised when a JSON-RPC message cannot be parsed or validated."""


def parse_message(origin: MessageOrigin | str, data: Any) -> Message:
    """Validate a decoded JSON-RPC object and wrap it as a ``Message``.

    Args:
        origin: The side that sent the message.
        data: The decoded JSON value.

    Returns:
        The validated message.

    Raises:
        ProtocolError: If the value is not a valid JSON-RPC 2.0 message.
    """
    try:
        origin = MessageOrigin(origin)
    except ValueError:
        raise ProtocolError(f"Invalid origin {origin!r}: expected 'client' or 'server'") from None

    if not isinstance(data, dict):
        raise ProtocolError(f"JSON-RPC message must be an object, got {type(data).__name__}")

    if data.get("jsonrpc") != "2.0":
        raise ProtocolError(
            f"Expected jsonrpc version '2.0', got {data.get('jsonrpc')!r}"
        )

    msg_id = data.get("id")
    if msg_id is not None and (isinstance(msg_id, bool) or not isinstance(msg_id, (int, str))):
        raise ProtocolError(f"Message id must be a string or number, got {type(msg_id).__name__}")

    if "error" in data:
        return Message(origin=origin, id=msg_id, error=_error_from_dict(data["error"]))

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str):
            raise ProtocolError(f"'method' must be a string, got {type(method).__name__}")
        params = data.get("params")
        if params is not None and not isinstance(params, (dict, list)):
            raise ProtocolError(f"'params' must be an object, array or null, got {type(params).__name__}")
        return Message(origin=origin, id=msg_id, method=method, params=params)

    if "result" in data:
        if msg_id is None:
            raise ProtocolError("Response with 'result' must have an 'id' field")
        return Message(origin=origin, id=msg_id, result=data["result"])

    raise ProtocolError(
        "Cannot determine message type: must have 'method' (request/notification), "
        "'result' (response), or 'error' (error response)"
    )


def parse_message_line(origin: MessageOrigin | str, line: bytes | str) -> Message:
    """Parse one line of newline-delimited JSON into a ``Message``.

    Raises:
        ProtocolError: If the line is empty, not JSON, or not JSON-RPC 2.0.
    """
    stripped = line.strip()
    if not stripped:
        raise ProtocolError("Empty message line")

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    return parse_message(origin, data)


def serialize_message(msg: Message) -> bytes:
    """Serialize a message to newline-terminated UTF-8 JSON bytes."""
    return json.dumps(msg.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


def make_error_response(
    request: Message, code: int, message: str
) -> Message:
    """Create an error response answering ``request``.

    The response originates from the opposite side of the request.
    """
    origin = MessageOrigin.SERVER if request.origin == MessageOrigin.CLIENT else MessageOrigin.CLIENT
    return Message(origin=origin, id=request.id, error=ErrorData(code=code, message=message))


def _error_from_dict(value: Any) -> ErrorData:
    if not isinstance(value, dict):
        raise ProtocolError("'error' field must be an object")
    code = value.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        raise ProtocolError("Error code must be a number")
    message = value.get("message")
    if not isinstance(message, str):
        raise ProtocolError("Error message must be a string")
    return ErrorData(code=code, message=message, data=value.get("data"))


# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# ContentWard-specific error codes (in the -32000 to -32099 range)
POLICY_BLOCKED = -32050
