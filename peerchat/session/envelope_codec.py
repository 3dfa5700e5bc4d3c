"""
Encoding and decoding of the tagged envelopes exchanged over a channel.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from peerchat.common.exceptions import EnvelopeError
from peerchat.common.models import (
    ChatMessage,
    Envelope,
    KeyAnnounce,
    TypingStart,
    TypingStop,
    UserInfo,
)

ENVELOPE_TYPES: dict[str, type] = {
    "key": KeyAnnounce,
    "user-info": UserInfo,
    "message": ChatMessage,
    "typing": TypingStart,
    "stop-typing": TypingStop,
}

_ENVELOPE_ADAPTER: TypeAdapter[Envelope] = TypeAdapter(Envelope)


class EnvelopeCodec:
    """Maps envelopes to the JSON objects carried on the wire and back."""

    @staticmethod
    def encode(envelope: Envelope) -> dict[str, Any]:
        """Return the wire object for an envelope."""
        return envelope.model_dump(by_alias=True)

    @staticmethod
    def decode(payload: Any) -> Envelope | None:
        """
        Parse a wire object.

        Returns None for objects whose ``type`` tag is not a known envelope,
        so newer peers can add message kinds without breaking older ones.

        Raises:
            EnvelopeError: the payload is not an object, or a known envelope
                is missing fields or carries invalid values.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                msg = "Envelope is not valid JSON"
                raise EnvelopeError(msg) from e
        if not isinstance(payload, dict):
            msg = f"Envelope must be an object, got {type(payload).__name__}"
            raise EnvelopeError(msg)
        tag = payload.get("type")
        if not isinstance(tag, str) or tag not in ENVELOPE_TYPES:
            return None
        try:
            return _ENVELOPE_ADAPTER.validate_python(payload)
        except PydanticValidationError as e:
            msg = f"Malformed {tag!r} envelope: {e.error_count()} invalid field(s)"
            raise EnvelopeError(msg) from e
