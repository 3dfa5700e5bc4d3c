"""
Pydantic models for wire envelopes, session settings and relay requests.
"""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, PlainValidator


def _decode_b64(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        msg = "expected base64 text"
        raise ValueError(msg)  # noqa: TRY004
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        msg = "invalid base64 data"
        raise ValueError(msg) from e


def _encode_b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


# Raw bytes in Python, standard base64 text on the wire
B64Bytes = Annotated[
    bytes,
    PlainValidator(_decode_b64),
    PlainSerializer(_encode_b64, return_type=str),
]


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class KeyAnnounce(_Envelope):
    type: Literal["key"] = "key"
    key: B64Bytes


class UserInfo(_Envelope):
    type: Literal["user-info"] = "user-info"
    name: str


class ChatMessage(_Envelope):
    type: Literal["message"] = "message"
    nonce: B64Bytes = Field(alias="iv")
    ciphertext: B64Bytes = Field(alias="encrypted")


class TypingStart(_Envelope):
    type: Literal["typing"] = "typing"
    name: str = Field(default="", alias="user")


class TypingStop(_Envelope):
    type: Literal["stop-typing"] = "stop-typing"


Envelope = Annotated[
    Union[KeyAnnounce, UserInfo, ChatMessage, TypingStart, TypingStop],
    Field(discriminator="type"),
]


class SessionConfig(BaseModel):
    display_name: str | None = None
    typing_stop_delay: float | None = Field(default=None, gt=0)
    decryption_placeholder: str | None = None
    default_remote_name: str | None = None
    timestamp_format: str | None = None
    log_level: int | None = None


class RegisterRequest(BaseModel):
    peer_id: str | None = Field(default=None, min_length=1, max_length=64)


class RegisterResponse(BaseModel):
    peer_id: str
    token: str  # Bearer secret for every /peers/{peer_id}/... call


class OpenChannelRequest(BaseModel):
    remote_id: str = Field(min_length=1, max_length=64)


class OpenChannelResponse(BaseModel):
    channel_id: str


class RelayMessage(BaseModel):
    data: dict[str, Any]


class RelayEvent(BaseModel):
    event: Literal["incoming", "open", "data", "close"]
    channel_id: str
    remote_id: str | None = None
    data: dict[str, Any] | None = None


class EventBatch(BaseModel):
    events: list[RelayEvent] = Field(default_factory=list)
