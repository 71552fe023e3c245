"""
Real-time wire protocol

Frames are JSON text:
    inbound   {"event": <name>, "data": <object|null>, "ack": <id|absent>}
    outbound  {"event": <name>, "data": <object|null>}
    ack       {"event": "ack", "ack": <id>, "data": {"ok": bool, "message"?: str}}
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Client -> server
SESSION_JOIN = "session:join"
SESSION_LEAVE = "session:leave"
CHAT_MESSAGE = "chat:message"
CODE_UPDATE = "code:update"
CODE_RUN = "code:run"
PERMISSIONS_UPDATE = "permissions:update"

# Server -> client
SESSION_JOINED = "session:joined"
SESSION_LEFT = "session:left"
SESSION_KICKED = "session:kicked"
SESSION_ERROR = "session:error"
CODE_RUN_RESULT = "code:run-result"
ACK = "ack"

# Relayed opaquely to every other room member
RELAY_EVENTS = frozenset({
    "webrtc:ready",
    "webrtc:offer",
    "webrtc:answer",
    "webrtc:ice-candidate",
    "webrtc:end",
    "media:state",
})


class ProtocolError(Exception):
    """Frame could not be understood. ack carries the id when one was readable."""

    def __init__(self, message: str, ack: Any = None):
        self.message = message
        self.ack = ack
        super().__init__(message)


@dataclass
class InboundFrame:
    event: str
    data: Dict[str, Any]
    ack: Any = None


def parse_frame(raw: str) -> InboundFrame:
    """
    Decode one inbound text frame.

    Raises:
        ProtocolError: Not JSON, not an object, missing event name, or
            data that is neither an object nor null
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        raise ProtocolError("Malformed frame: expected JSON")

    if not isinstance(message, dict):
        raise ProtocolError("Malformed frame: expected an object")

    ack = message.get("ack")
    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise ProtocolError("Malformed frame: event is required", ack=ack)

    data = message.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("Malformed frame: data must be an object", ack=ack)

    return InboundFrame(event=event, data=data, ack=ack)


def encode_event(event: str, data: Optional[Dict[str, Any]]) -> str:
    return json.dumps({"event": event, "data": data}, sort_keys=True, default=str)


def encode_ack(ack: Any, ok: bool, message: Optional[str] = None) -> str:
    payload: Dict[str, Any] = {"ok": ok}
    if message is not None:
        payload["message"] = message
    return json.dumps({"event": ACK, "ack": ack, "data": payload}, sort_keys=True, default=str)
