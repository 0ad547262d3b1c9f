# backend/protocol/convai.py
"""
JSON message codec for the conversational voice channel.

Inbound messages are parsed at the boundary into a closed set of frozen
dataclasses. Nothing past this module touches raw dicts.

Server -> Client kinds handled:
    conversation_initiation_metadata   -> ConversationInitiated
    audio                              -> AudioChunkReceived
    mode_change                        -> ModeChanged
    agent_response / user_transcript   -> TranscriptFragment
    interruption                       -> Interruption
    ping                               -> Ping
    error                              -> RemoteError
    anything else                      -> Ignored

Client -> Server kinds built here:
    conversation_initiation_client_data, user_message, pong, user_audio_chunk

Usage example:

    try:
        message = parse_inbound(raw)
    except ChannelProtocolError as e:
        log_event({"event_type": "CHANNEL_MESSAGE_DROPPED", "error": str(e)})
        return

    if isinstance(message, Ping):
        await channel.send(encode_pong(message.event_id))
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Mapping, Union

from orchestrator.enums.mode import Mode
from session.errors import ChannelProtocolError


# -------------------------
# Inbound messages
# -------------------------

@dataclass(frozen=True)
class ConversationInitiated:
    """Handshake acknowledgement carrying the remote conversation id."""
    conversation_id: str
    agent_output_audio_format: str | None = None
    user_input_audio_format: str | None = None


@dataclass(frozen=True)
class AudioChunkReceived:
    """One chunk of agent audio. event_id is the ordering key."""
    event_id: int
    audio: bytes


@dataclass(frozen=True)
class ModeChanged:
    mode: Mode


@dataclass(frozen=True)
class TranscriptFragment:
    """Text for one speaker. role is 'agent' or 'user'."""
    role: str
    text: str


@dataclass(frozen=True)
class Interruption:
    reason: str | None = None


@dataclass(frozen=True)
class Ping:
    event_id: int
    ping_ms: int | None = None


@dataclass(frozen=True)
class RemoteError:
    message: str
    fatal: bool = False


@dataclass(frozen=True)
class Ignored:
    """A well-formed message of a kind the session does not use."""
    kind: str


InboundMessage = Union[
    ConversationInitiated,
    AudioChunkReceived,
    ModeChanged,
    TranscriptFragment,
    Interruption,
    Ping,
    RemoteError,
    Ignored,
]


# -------------------------
# Low-level helpers
# -------------------------

def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if not isinstance(value, Mapping):
        raise ChannelProtocolError(f"missing '{key}' object")
    return value


def _require_str(section: Mapping[str, Any], key: str) -> str:
    value = section.get(key)
    if not isinstance(value, str):
        raise ChannelProtocolError(f"'{key}' must be a string")
    return value


def _require_int(section: Mapping[str, Any], key: str) -> int:
    value = section.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ChannelProtocolError(f"'{key}' must be an integer")
    return value


def _decode_audio(b64: str) -> bytes:
    try:
        return base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ChannelProtocolError(f"invalid base64 audio: {e}") from e


def _parse_mode(value: Any) -> Mode:
    try:
        return Mode(value)
    except ValueError as e:
        raise ChannelProtocolError(f"unknown mode {value!r}") from e


# -------------------------
# Public API
# -------------------------

def parse_inbound(raw: str | bytes) -> InboundMessage:
    """
    Parse one inbound text frame.

    Raises:
        ChannelProtocolError: payload is not JSON, has no type, or a known
        kind is missing required fields.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ChannelProtocolError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ChannelProtocolError("message is not an object")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise ChannelProtocolError("message has no type")

    if kind == "conversation_initiation_metadata":
        meta = _section(data, "conversation_initiation_metadata_event")
        return ConversationInitiated(
            conversation_id=_require_str(meta, "conversation_id"),
            agent_output_audio_format=meta.get("agent_output_audio_format"),
            user_input_audio_format=meta.get("user_input_audio_format"),
        )

    if kind == "audio":
        event = _section(data, "audio_event")
        return AudioChunkReceived(
            event_id=_require_int(event, "event_id"),
            audio=_decode_audio(_require_str(event, "audio_base_64")),
        )

    if kind == "mode_change":
        nested = data.get("mode_change_event")
        source = nested if isinstance(nested, Mapping) else data
        return ModeChanged(mode=_parse_mode(source.get("mode")))

    if kind == "agent_response":
        event = _section(data, "agent_response_event")
        return TranscriptFragment(role="agent", text=_require_str(event, "agent_response"))

    if kind == "user_transcript":
        event = _section(data, "user_transcription_event")
        return TranscriptFragment(role="user", text=_require_str(event, "user_transcript"))

    if kind == "interruption":
        event = data.get("interruption_event")
        reason = event.get("reason") if isinstance(event, Mapping) else None
        return Interruption(reason=reason if isinstance(reason, str) else None)

    if kind == "ping":
        event = _section(data, "ping_event")
        ping_ms = event.get("ping_ms")
        return Ping(
            event_id=_require_int(event, "event_id"),
            ping_ms=ping_ms if isinstance(ping_ms, int) else None,
        )

    if kind == "error":
        message = data.get("message")
        if not isinstance(message, str):
            event = data.get("error_event")
            message = event.get("message") if isinstance(event, Mapping) else None
        text = message if isinstance(message, str) else "unknown remote error"
        fatal = data.get("fatal")
        if not isinstance(fatal, bool):
            fatal = "fatal" in text.lower()
        return RemoteError(message=text, fatal=fatal)

    return Ignored(kind=kind)


def encode_initiation(overrides: Mapping[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {"type": "conversation_initiation_client_data"}
    if overrides:
        payload["conversation_config_override"] = dict(overrides)
    return json.dumps(payload)


def encode_user_message(text: str) -> str:
    return json.dumps({"type": "user_message", "text": text})


def encode_pong(event_id: int) -> str:
    return json.dumps({"type": "pong", "event_id": event_id})


def encode_user_audio(pcm_bytes: bytes) -> str:
    return json.dumps({"user_audio_chunk": base64.b64encode(pcm_bytes).decode("ascii")})
