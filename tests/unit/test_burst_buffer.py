# pylint: disable=missing-module-docstring,missing-function-docstring
import itertools

import pytest

from audio.burst_buffer import AudioChunkBuffer
from audio.frames import AudioBurst
from observability.metrics import SessionMetrics
from session.errors import EmptyAudioError


class FakeClock:
    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_buffer(clock: FakeClock, emitted: list[AudioBurst] | None = None) -> AudioChunkBuffer:
    sink = emitted if emitted is not None else []
    return AudioChunkBuffer(
        quiet_period_ms=500,
        poll_interval_ms=100,
        on_burst=sink.append,
        clock=clock,
    )


def test_out_of_order_chunks_are_reassembled_by_sequence_id():
    buf = make_buffer(FakeClock())

    buf.add_chunk(2, b"C")
    buf.add_chunk(0, b"A")
    buf.add_chunk(1, b"B")

    burst = buf.flush()
    assert burst.data == b"ABC"
    assert burst.first_sequence_id == 0
    assert burst.last_sequence_id == 2
    assert burst.chunk_count == 3


def test_arrival_order_never_changes_output():
    chunks = {0: b"aa", 1: b"bb", 2: b"cc", 5: b"ff"}

    for order in itertools.permutations(chunks):
        buf = make_buffer(FakeClock())
        for sid in order:
            assert buf.add_chunk(sid, chunks[sid])
        assert buf.flush().data == b"aabbccff"


def test_quiet_period_flushes_exactly_once():
    clock = FakeClock()
    emitted: list[AudioBurst] = []
    buf = make_buffer(clock, emitted)

    buf.add_chunk(0, b"A")
    clock.advance(300)
    buf.add_chunk(1, b"B")

    # 499ms since the last chunk: still speaking
    clock.advance(499)
    assert buf.check() is None
    assert emitted == []

    clock.advance(1)
    burst = buf.check()
    assert burst is not None
    assert burst.data == b"AB"

    # Further polls emit nothing
    clock.advance(1_000)
    assert buf.check() is None
    assert buf.check() is None
    assert len(emitted) == 1
    assert buf.bursts_emitted == 1


def test_burst_start_is_first_arrival():
    clock = FakeClock(now=5_000)
    buf = make_buffer(clock)

    buf.add_chunk(1, b"B")
    clock.advance(40)
    buf.add_chunk(0, b"A")
    clock.advance(600)

    burst = buf.check()
    assert burst is not None
    assert burst.started_at_ms == 5_000
    assert burst.completed_at_ms == 5_640


def test_empty_flush_raises():
    buf = make_buffer(FakeClock())

    with pytest.raises(EmptyAudioError):
        buf.flush()


def test_invalid_chunks_are_rejected():
    metrics = SessionMetrics()
    metrics.start()
    buf = AudioChunkBuffer(clock=FakeClock(), metrics=metrics)

    assert not buf.add_chunk(0, b"")
    assert not buf.add_chunk(-1, b"x")
    assert buf.add_chunk(3, b"first")
    assert not buf.add_chunk(3, b"second")

    assert len(buf) == 1
    assert buf.rejects.empty == 1
    assert buf.rejects.invalid_id == 1
    assert buf.rejects.duplicate == 1
    assert metrics.count("chunks_rejected") == 3
    assert metrics.count("chunks_received") == 1

    # Duplicate keeps the first payload
    assert buf.flush().data == b"first"


def test_salvage_flushes_pending_and_marks_burst():
    emitted: list[AudioBurst] = []
    buf = make_buffer(FakeClock(), emitted)

    assert buf.salvage() is None

    buf.add_chunk(1, b"B")
    buf.add_chunk(0, b"A")
    burst = buf.salvage()

    assert burst is not None
    assert burst.salvaged
    assert burst.data == b"AB"
    assert emitted == [burst]
    assert buf.is_empty()


def test_callback_failure_does_not_leave_partial_state():
    def boom(_: AudioBurst) -> None:
        raise RuntimeError("sink failed")

    buf = AudioChunkBuffer(on_burst=boom, clock=FakeClock())
    buf.add_chunk(0, b"A")

    burst = buf.flush()
    assert burst.data == b"A"
    assert buf.is_empty()
    assert buf.pending_bytes == 0


def test_clear_drops_without_emitting():
    emitted: list[AudioBurst] = []
    clock = FakeClock()
    buf = make_buffer(clock, emitted)

    buf.add_chunk(0, b"A")
    buf.clear()
    clock.advance(1_000)

    assert buf.check() is None
    assert emitted == []


def test_snapshot_reports_pending_state():
    buf = make_buffer(FakeClock())
    buf.add_chunk(0, b"abc")
    buf.add_chunk(0, b"dup")

    assert buf.snapshot() == {
        "chunks": 1,
        "bytes": 3,
        "bursts_emitted": 0,
        "rejected_empty": 0,
        "rejected_invalid_id": 0,
        "rejected_duplicate": 1,
    }


def test_invalid_intervals_are_rejected():
    with pytest.raises(ValueError):
        AudioChunkBuffer(quiet_period_ms=0)
    with pytest.raises(ValueError):
        AudioChunkBuffer(poll_interval_ms=0)
