# pylint: disable=missing-module-docstring,missing-function-docstring
from types import SimpleNamespace
from typing import Any, AsyncIterator

import pytest

from adapters.convai.artifacts import ArtifactUnavailableError, ElevenLabsArtifactClient
from context.transcript import Speaker


class FakeAudio:

    def __init__(self, chunks: list[bytes], fail: bool = False) -> None:
        self.chunks = chunks
        self.fail = fail

    async def get(self, conversation_id: str) -> AsyncIterator[bytes]:  # pylint: disable=unused-argument
        for chunk in self.chunks:
            yield chunk
        if self.fail:
            raise RuntimeError("stream reset")


class FakeConversations:

    def __init__(self, statuses: list[str], audio: FakeAudio) -> None:
        self.statuses = statuses
        self.audio = audio
        self.lookups = 0

    async def get(self, conversation_id: str) -> Any:  # pylint: disable=unused-argument
        status = self.statuses[min(self.lookups, len(self.statuses) - 1)]
        self.lookups += 1
        return SimpleNamespace(
            status=status,
            transcript=[
                SimpleNamespace(role="agent", message="What drew you to this role?"),
                SimpleNamespace(role="user", message="The team."),
                SimpleNamespace(role="agent", message=None),
            ],
        )


def make_client(conversations: FakeConversations, max_polls: int = 5) -> ElevenLabsArtifactClient:
    fake = SimpleNamespace(conversational_ai=SimpleNamespace(conversations=conversations))
    return ElevenLabsArtifactClient(client=fake, poll_interval_ms=1, max_polls=max_polls)


@pytest.mark.asyncio
async def test_fetch_polls_until_done():
    conversations = FakeConversations(["processing", "processing", "done"], FakeAudio([b"ab", b"cd"]))

    artifacts = await make_client(conversations).fetch("conv-1")

    assert conversations.lookups == 3
    assert artifacts.conversation_id == "conv-1"
    assert [(e.speaker, e.text) for e in artifacts.transcript] == [
        (Speaker.AGENT, "What drew you to this role?"),
        (Speaker.USER, "The team."),
    ]
    assert artifacts.audio == b"abcd"
    assert artifacts.audio_content_type == "audio/mpeg"


@pytest.mark.asyncio
async def test_failed_processing_raises():
    conversations = FakeConversations(["processing", "failed"], FakeAudio([]))

    with pytest.raises(ArtifactUnavailableError):
        await make_client(conversations).fetch("conv-1")


@pytest.mark.asyncio
async def test_poll_budget_is_bounded():
    conversations = FakeConversations(["processing"], FakeAudio([]))

    with pytest.raises(ArtifactUnavailableError):
        await make_client(conversations, max_polls=3).fetch("conv-1")
    assert conversations.lookups == 3


@pytest.mark.asyncio
async def test_audio_failure_keeps_transcript():
    conversations = FakeConversations(["done"], FakeAudio([b"partial"], fail=True))

    artifacts = await make_client(conversations).fetch("conv-1")

    assert artifacts.audio is None
    assert len(artifacts.transcript) == 2


def test_client_without_conversations_api_is_rejected():
    async def get_conversation(conversation_id: str) -> Any:  # pylint: disable=unused-argument
        return None

    legacy = SimpleNamespace(conversational_ai=SimpleNamespace(get_conversation=get_conversation))

    with pytest.raises(RuntimeError, match="elevenlabs>=2.0.0"):
        ElevenLabsArtifactClient(client=legacy)
