# pylint: disable=missing-module-docstring,missing-function-docstring
import base64
import json

import pytest

from orchestrator.enums.mode import Mode
from protocol.convai import (
    AudioChunkReceived,
    ConversationInitiated,
    Ignored,
    Interruption,
    ModeChanged,
    Ping,
    RemoteError,
    TranscriptFragment,
    encode_initiation,
    encode_pong,
    encode_user_audio,
    encode_user_message,
    parse_inbound,
)
from session.errors import ChannelProtocolError


def test_parses_handshake():
    msg = parse_inbound(json.dumps({
        "type": "conversation_initiation_metadata",
        "conversation_initiation_metadata_event": {
            "conversation_id": "conv_123",
            "agent_output_audio_format": "pcm_16000",
        },
    }))

    assert msg == ConversationInitiated(
        conversation_id="conv_123",
        agent_output_audio_format="pcm_16000",
    )


def test_parses_audio_chunk():
    payload = base64.b64encode(b"\x01\x02").decode()
    msg = parse_inbound(json.dumps({
        "type": "audio",
        "audio_event": {"event_id": 7, "audio_base_64": payload},
    }))

    assert msg == AudioChunkReceived(event_id=7, audio=b"\x01\x02")


def test_parses_transcripts_and_mode():
    assert parse_inbound(json.dumps({
        "type": "agent_response",
        "agent_response_event": {"agent_response": "Hello"},
    })) == TranscriptFragment(role="agent", text="Hello")

    assert parse_inbound(json.dumps({
        "type": "user_transcript",
        "user_transcription_event": {"user_transcript": "Hi"},
    })) == TranscriptFragment(role="user", text="Hi")

    assert parse_inbound(json.dumps({
        "type": "mode_change",
        "mode_change_event": {"mode": "speaking"},
    })) == ModeChanged(mode=Mode.SPEAKING)


def test_parses_control_messages():
    assert parse_inbound(json.dumps({
        "type": "interruption",
        "interruption_event": {"reason": "user_speech"},
    })) == Interruption(reason="user_speech")

    assert parse_inbound(json.dumps({
        "type": "ping",
        "ping_event": {"event_id": 3, "ping_ms": 40},
    })) == Ping(event_id=3, ping_ms=40)

    assert parse_inbound(json.dumps({"type": "error", "message": "quota", "fatal": True})) == (
        RemoteError(message="quota", fatal=True)
    )


def test_unknown_kind_is_ignored_not_rejected():
    assert parse_inbound(json.dumps({"type": "vad_score"})) == Ignored(kind="vad_score")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"no": "type"}),
        json.dumps({"type": "audio", "audio_event": {"event_id": "x", "audio_base_64": ""}}),
        json.dumps({"type": "audio", "audio_event": {"event_id": 1, "audio_base_64": "%%%"}}),
        json.dumps({"type": "audio", "audio_event": {"event_id": True, "audio_base_64": ""}}),
        json.dumps({"type": "conversation_initiation_metadata"}),
        json.dumps({"type": "mode_change", "mode_change_event": {"mode": "thinking"}}),
    ],
)
def test_malformed_payloads_raise(raw: str):
    with pytest.raises(ChannelProtocolError):
        parse_inbound(raw)


def test_outbound_encoders():
    assert json.loads(encode_initiation()) == {"type": "conversation_initiation_client_data"}
    assert json.loads(encode_initiation({"agent": {"language": "en"}})) == {
        "type": "conversation_initiation_client_data",
        "conversation_config_override": {"agent": {"language": "en"}},
    }
    assert json.loads(encode_user_message("hi")) == {"type": "user_message", "text": "hi"}
    assert json.loads(encode_pong(9)) == {"type": "pong", "event_id": 9}
    assert json.loads(encode_user_audio(b"\x00\x01")) == {
        "user_audio_chunk": base64.b64encode(b"\x00\x01").decode(),
    }
