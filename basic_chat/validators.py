"""
Validation of client WebSocket frames
"""

import json
from typing import Dict, Any
from .constants import MAX_FRAME_SIZE_BYTES, ERROR_MESSAGES
from .errors import InvalidPayloadError
from .logger import log_security_event

# Event type -> required string field
CLIENT_EVENTS = {
    "username": "username",
    "new message": "text",
}


def parse_client_frame(raw: str) -> Dict[str, Any]:
    """
    Decode and validate a text frame sent by a client

    Args:
        raw: Frame content

    Returns:
        The decoded payload

    Raises:
        InvalidPayloadError: the frame is too large, not JSON, or malformed
    """
    size = len(raw.encode("utf-8"))
    if size > MAX_FRAME_SIZE_BYTES:
        log_security_event("frame_too_large", {"size": size, "max_size": MAX_FRAME_SIZE_BYTES})
        raise InvalidPayloadError(ERROR_MESSAGES["frame_too_large"])

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidPayloadError(ERROR_MESSAGES["invalid_json"])

    validate_event_payload(payload)
    return payload


def validate_event_payload(payload: Any):
    """
    Check that a decoded payload is a known client event

    Raises:
        InvalidPayloadError: unknown type or missing/non-string field
    """
    if not isinstance(payload, dict):
        log_security_event("invalid_payload_type", {"payload_type": type(payload).__name__})
        raise InvalidPayloadError(ERROR_MESSAGES["invalid_payload"])

    event_type = payload.get("type")
    if event_type not in CLIENT_EVENTS:
        log_security_event("unknown_event_type", {"event_type": event_type})
        raise InvalidPayloadError(f"Unknown message type: {event_type}")

    field = CLIENT_EVENTS[event_type]
    if not isinstance(payload.get(field), str):
        log_security_event("missing_required_field", {
            "event_type": event_type,
            "missing_field": field
        })
        raise InvalidPayloadError(ERROR_MESSAGES["invalid_payload"])
