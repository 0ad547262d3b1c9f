# pylint: disable=missing-module-docstring,missing-function-docstring
from context.transcript import (
    Speaker,
    TranscriptAssembler,
    TranscriptEntry,
    entries_from_spans,
)


def test_entries_render_in_arrival_order():
    transcript = TranscriptAssembler()
    transcript.append(Speaker.AGENT, "Hello, I'm your interviewer.")
    transcript.append("user", "  Hi there.  ")

    assert transcript.render() == "Agent: Hello, I'm your interviewer.\nUser: Hi there."
    assert [e.order for e in transcript.entries] == [0, 1]


def test_blank_text_is_not_stored():
    updates: list[str] = []
    transcript = TranscriptAssembler(on_update=updates.append)

    assert transcript.append(Speaker.USER, "   ") is None
    assert transcript.entries == ()
    assert updates == []


def test_update_callback_receives_full_render():
    updates: list[str] = []
    transcript = TranscriptAssembler(on_update=updates.append)

    transcript.append(Speaker.AGENT, "One")
    transcript.append(Speaker.USER, "Two")

    assert updates == ["Agent: One", "Agent: One\nUser: Two"]


def test_remote_transcript_wins_when_present():
    transcript = TranscriptAssembler()
    transcript.append(Speaker.AGENT, "live text")

    remote = (TranscriptEntry(speaker=Speaker.AGENT, text="remote text", order=0),)
    final = transcript.resolve(remote)

    assert final.source == "remote"
    assert final.text == "Agent: remote text"


def test_live_transcript_is_fallback():
    transcript = TranscriptAssembler()
    transcript.append(Speaker.AGENT, "live text")

    for remote in (None, ()):
        final = transcript.resolve(remote)
        assert final.source == "live"
        assert final.text == "Agent: live text"


def test_custom_labels():
    transcript = TranscriptAssembler(labels={"agent": "Interviewer", "user": "Candidate"})
    transcript.append(Speaker.AGENT, "Q1")
    transcript.append(Speaker.USER, "A1")

    assert transcript.render() == "Interviewer: Q1\nCandidate: A1"


def test_spans_skip_unknown_roles_and_blank_messages():
    entries = entries_from_spans([
        ("agent", "Welcome."),
        ("tool", "lookup"),
        ("user", ""),
        ("user", " Thanks "),
    ])

    assert [(e.speaker, e.text, e.order) for e in entries] == [
        (Speaker.AGENT, "Welcome.", 0),
        (Speaker.USER, "Thanks", 1),
    ]
