"""
Conversation session lifecycle manager.

Responsibilities:
- Own the Session, the lifecycle state and the PendingRequest
- Act as the universal event sink for the session
  (caller requests, channel reader, timers)
- Invoke the pure lifecycle reducer and execute the emitted commands
- Route inbound stream messages to the mode tracker and chunk buffer
- Pair completed bursts with the pending send_message call
- Assemble the final transcript/audio artifact pair on end

Guarantees:
- Reducer is called exactly once per lifecycle event
- State is swapped before any command executes
- Inbound messages are processed in arrival order by one reader per channel
- Timers re-enter through handle_event() or settle the pending request
- Callback exceptions are logged and never break dispatch
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping

from adapters.convai.artifacts import ArtifactSource
from adapters.convai.channel import ChannelClosedError, ChannelFactory, VoiceChannel
from audio.burst_buffer import AudioChunkBuffer, monotonic_ms
from audio.capture import AudioInput
from audio.frames import AudioBurst
from audio.pcm import LevelMeter, apply_gain, is_pcm_format
from audio.recording import LocalRecording
from config import SessionTimings
from context.transcript import FinalTranscript, TranscriptAssembler, TranscriptEntry
from observability.logger import bind, log_event, now_ms
from observability.metrics import SessionMetrics
from orchestrator.commands import (
    CancelTimer,
    CloseChannel,
    Command,
    FailInitialize,
    FailPending,
    LogEvent,
    NotifyConnected,
    NotifyDisconnected,
    NotifyStatus,
    OpenChannel,
    ResolveInitialize,
    ScheduleReconnect,
    StartTimer,
    SurfaceError,
    Teardown,
)
from orchestrator.enums.mode import Mode
from orchestrator.enums.state import SessionState
from orchestrator.events import (
    ChannelClosed,
    ChannelOpenFailed,
    EndRequested,
    Event,
    EventType,
    HandshakeAcknowledged,
    HandshakeTimeout,
    InitializeRequested,
    ReconnectReady,
    RemoteFailure,
)
from orchestrator.reducer import TIMER_RECONNECT, reduce
from orchestrator.retry import ReconnectPolicy
from orchestrator.state_dataclass import LifecycleState
from protocol.convai import (
    AudioChunkReceived,
    ConversationInitiated,
    InboundMessage,
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
from session.connection_status import ConnectionStatus
from session.errors import (
    BusyError,
    ChannelProtocolError,
    ConnectionError,  # pylint: disable=redefined-builtin
    ConversationError,
    InterruptionError,
    ResponseTimeoutError,
    SessionClosedError,
    SessionNotActiveError,
    build_error,
)
from session.mode_tracker import ModeTracker, SessionClosed
from session.pending import PendingRequest
from session.voice_session import Session
from spec import (
    LOCAL_AUDIO_CONTENT_TYPE,
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_NORMAL,
    ms_to_seconds,
)


TIMER_RESPONSE = "response_deadline"


# ---------------------------------------------------------------------
# Public data
# ---------------------------------------------------------------------


@dataclass
class ConversationCallbacks:
    """
    Optional hooks. Every hook runs on the event loop; exceptions are logged.
    """
    on_connect: Callable[[str], None] | None = None
    on_disconnect: Callable[[str], None] | None = None
    on_message: Callable[[str], None] | None = None
    on_error: Callable[[ConversationError], None] | None = None
    on_status_change: Callable[[ConnectionStatus], None] | None = None
    on_mode_change: Callable[[Mode], None] | None = None
    on_transcript_update: Callable[[str], None] | None = None
    on_audio: Callable[[AudioBurst], None] | None = None
    on_levels: Callable[[float, float], None] | None = None


@dataclass(frozen=True)
class ConversationResult:
    """Final transcript/audio pair returned by end_conversation()."""
    session_id: str
    conversation_ids: tuple[str, ...]
    transcript: FinalTranscript
    audio: bytes | None
    audio_content_type: str | None
    audio_source: str | None  # "remote" | "local" | None

    @property
    def conversation_id(self) -> str | None:
        return self.conversation_ids[0] if self.conversation_ids else None


# ---------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------


class ConversationManager:
    """
    Owns exactly one conversation session.

    A manager is single use: once closed, initialize() raises
    SessionClosedError and a new manager must be constructed.
    """

    def __init__(
        self,
        *,
        channel_factory: ChannelFactory,
        artifact_source: ArtifactSource | None = None,
        audio_input: AudioInput | None = None,
        callbacks: ConversationCallbacks | None = None,
        metrics: SessionMetrics | None = None,
        timings: SessionTimings | None = None,
        clock: Callable[[], int] = monotonic_ms,
        initiation_overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self._timings = timings or SessionTimings()
        self._channel_factory = channel_factory
        self._artifacts = artifact_source
        self._audio_input = audio_input
        self._callbacks = callbacks or ConversationCallbacks()
        self._clock = clock
        self._initiation_overrides = initiation_overrides

        self.session = Session()
        self._log = bind(session_id=self.session.session_id)

        self._owns_metrics = metrics is None
        self._metrics = metrics or SessionMetrics(session_id=self.session.session_id)

        self._state = LifecycleState(
            policy=ReconnectPolicy(
                max_attempts=self._timings.max_reconnect_attempts,
                base_delay_ms=self._timings.reconnect_base_delay_ms,
                max_delay_ms=self._timings.reconnect_max_delay_ms,
            ),
            handshake_timeout_ms=self._timings.handshake_timeout_ms,
        )

        self._transcript = TranscriptAssembler(on_update=self._on_transcript_update)
        self._tracker = ModeTracker(self._transcript, on_change=self._on_mode_change)
        self._buffer = AudioChunkBuffer(
            quiet_period_ms=self._timings.quiet_period_ms,
            poll_interval_ms=self._timings.poll_interval_ms,
            on_burst=self._on_burst,
            clock=clock,
            metrics=self._metrics,
        )
        self._levels = LevelMeter()
        self._recording = LocalRecording()

        # Channel of the live generation
        self._channel: VoiceChannel | None = None
        self._channel_generation = 0
        self._open_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None

        self._timers: dict[str, asyncio.Task[None]] = {}
        self._init_future: asyncio.Future[str] | None = None
        self._pending: PendingRequest | None = None

        self._mic_queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._mic_task: asyncio.Task[None] | None = None

        self._closed_event = asyncio.Event()
        self._end_called = False
        self._ending = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def mode(self) -> Mode:
        return self._tracker.mode

    @property
    def conversation_id(self) -> str | None:
        return self.session.conversation_id

    @property
    def transcript(self) -> str:
        return self._transcript.render()

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics

    @property
    def lifecycle(self) -> LifecycleState:
        return self._state

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Open the session and wait for the handshake.

        Raises:
            SessionClosedError: this manager already ended.
            ConnectionError: handshake not acknowledged in time, or the
                channel could not be opened within the reconnect budget
                (ReconnectExhaustedError).
            AudioDeviceError: the capture device could not be acquired.
        """
        if self._state.state in (SessionState.ENDING, SessionState.CLOSED):
            raise SessionClosedError("session already ended")

        # Set before the first await; concurrent callers share it
        if self._init_future is not None:
            if not self._init_future.done():
                await asyncio.shield(self._init_future)
            return

        self._init_future = asyncio.get_running_loop().create_future()
        init_future = self._init_future

        if self._owns_metrics:
            self._metrics.start()

        if self._audio_input is not None:
            try:
                await self._audio_input.acquire(self._on_mic_frame)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._init_future = None
                init_future.set_exception(e)
                init_future.exception()  # mark retrieved
                raise
            if self._end_called:
                # Ended while the device was being acquired
                self._audio_input.release()
                init_future.set_exception(SessionClosedError("session already ended"))
                init_future.exception()
                raise SessionClosedError("session already ended")
            self._mic_task = asyncio.create_task(self._mic_pump())

        self._buffer.start()

        self._log("SESSION_INITIALIZE", **self.session.log_context())
        with self._metrics.timed("handshake_latency"):
            await self.handle_event(
                InitializeRequested(event_type=EventType.INITIALIZE_REQUESTED, ts_ms=now_ms())
            )
            await init_future

    async def send_message(self, text: str) -> bytes:
        """
        Send a user message and return the audio of the agent's reply.

        The reply is the next burst that started after this call.

        Raises:
            ValueError: text is blank.
            BusyError: a previous call is still pending.
            SessionClosedError / SessionNotActiveError: session not active.
            ResponseTimeoutError: no burst or interruption in time.
            InterruptionError: the agent was interrupted with nothing to salvage.
        """
        if not text or not text.strip():
            raise ValueError("text must not be blank")

        if self._state.state in (SessionState.ENDING, SessionState.CLOSED):
            raise SessionClosedError("session is closed")
        if self._state.state is not SessionState.ACTIVE:
            raise SessionNotActiveError(f"session is {self._state.state.value}")
        if self._pending is not None and not self._pending.settled:
            self._metrics.increment("busy_rejections")
            raise BusyError("a message is already pending")

        created = self._clock()
        pending = PendingRequest(
            text=text,
            created_at_ms=created,
            deadline_ms=created + self._timings.response_timeout_ms,
        )
        self._pending = pending
        self._start_timer(
            TIMER_RESPONSE,
            self._timings.response_timeout_ms,
            lambda: self._expire_response(pending),
        )

        try:
            await self._send(encode_user_message(text))
        except ChannelClosedError as e:
            pending.reject(ConnectionError(f"message not delivered: {e}"))

        self._log("USER_MESSAGE_SENT", chars=len(text))
        try:
            with self._metrics.timed("response_latency"):
                burst = await pending.future
        finally:
            if self._pending is pending:
                self._pending = None
                self._cancel_timer(TIMER_RESPONSE)
        return burst.data

    def pause(self) -> None:
        """Disable and suspend local capture. The remote session is untouched."""
        if self._audio_input is None:
            return
        self._audio_input.suspend()
        self._log("CAPTURE_PAUSED")

    def resume(self) -> None:
        """Re-enable local capture after pause()."""
        if self._audio_input is None:
            return
        self._audio_input.resume()
        self._log("CAPTURE_RESUMED")

    @property
    def volume(self) -> float:
        return self._levels.output_gain

    def set_volume(self, volume: float) -> None:
        """
        Set the agent playback volume, clamped to [0.0, 1.0].

        Applied to bursts completed afterwards when the agent speaks PCM;
        other encodings pass through untouched.

        Raises:
            ValueError: volume is not a finite number.
        """
        applied = self._levels.set_output_gain(volume)
        self._log("OUTPUT_VOLUME_SET", volume=applied)

    async def end_conversation(self) -> ConversationResult | None:
        """
        Close the session and return the final transcript/audio pair.

        Returns None when no session was ever established and on every call
        after the first.
        """
        if self._end_called:
            return None
        self._end_called = True
        self._ending = True

        # Best-effort salvage; answers the pending request if it qualifies
        self._buffer.salvage()

        if self._state.state is not SessionState.CLOSED:
            await self.handle_event(
                EndRequested(event_type=EventType.END_REQUESTED, ts_ms=now_ms())
            )
            await self._closed_event.wait()

        result: ConversationResult | None = None
        if self._state.established:
            result = await self._collect_results()

        self._log(
            "SESSION_ENDED",
            established=self._state.established,
            transcript_source=result.transcript.source if result else None,
            audio_source=result.audio_source if result else None,
        )
        if self._owns_metrics:
            self._metrics.shutdown()
        return result

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single lifecycle event.

        1. Pass the current state and event to the pure reducer
        2. Swap in the new state and mirror it onto the Session
        3. Execute all emitted commands sequentially
        """
        self._state, commands = reduce(self._state, event)
        self.session.state = self._state.state
        self.session.reconnect_attempt = self._state.reconnect_attempt.attempt

        for cmd in commands:
            await self._execute_command(cmd)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "session_id": self.session.session_id})

        elif isinstance(cmd, OpenChannel):
            self._open_task = asyncio.create_task(self._open_channel(cmd.generation))

        elif isinstance(cmd, CloseChannel):
            await self._close_channel(cmd.generation, cmd.code)

        elif isinstance(cmd, ScheduleReconnect):
            self._metrics.increment("reconnect_attempts")
            attempt = cmd.attempt
            self._start_timer(
                TIMER_RECONNECT,
                cmd.delay_ms,
                lambda: self.handle_event(
                    ReconnectReady(
                        event_type=EventType.RECONNECT_READY,
                        ts_ms=now_ms(),
                        attempt=attempt,
                    )
                ),
            )

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                cmd.timer_id,
                cmd.duration_ms,
                self._timeout_handler(cmd.timeout_event_type, cmd.generation),
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, ResolveInitialize):
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_result(cmd.conversation_id)

        elif isinstance(cmd, FailInitialize):
            if self._init_future is not None and not self._init_future.done():
                self._init_future.set_exception(build_error(cmd.kind, cmd.reason))

        elif isinstance(cmd, FailPending):
            pending = self._pending
            if pending is not None and pending.reject(build_error(cmd.kind, cmd.reason)):
                self._pending = None
                self._cancel_timer(TIMER_RESPONSE)

        elif isinstance(cmd, NotifyStatus):
            self.session.connection_status = cmd.status
            self._fire("on_status_change", cmd.status)

        elif isinstance(cmd, NotifyConnected):
            self.session.record_conversation(cmd.conversation_id)
            self._log.update(conversation_id=cmd.conversation_id)
            if cmd.reconnected:
                self._metrics.increment("reconnects")
            self._log(
                "SESSION_CONNECTED",
                reconnected=cmd.reconnected,
                conversation_ids=list(self.session.conversation_ids),
            )
            self._fire("on_connect", cmd.conversation_id)

        elif isinstance(cmd, NotifyDisconnected):
            self._log("SESSION_DISCONNECTED", reason=cmd.reason)
            self._fire("on_disconnect", cmd.reason)

        elif isinstance(cmd, SurfaceError):
            self._metrics.increment("errors")
            error = build_error(cmd.kind, cmd.reason)
            self._log("SESSION_ERROR", kind=cmd.kind.value, error=str(error))
            self._fire("on_error", error)

        elif isinstance(cmd, Teardown):
            await self._teardown(cmd.reason)

        else:
            self._log("UNKNOWN_COMMAND", command=type(cmd).__name__)

    # ------------------------------------------------------------------
    # Channel management
    # ------------------------------------------------------------------

    async def _open_channel(self, generation: int) -> None:
        try:
            channel = await self._channel_factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("CHANNEL_OPEN_FAILED", generation=generation, error=repr(e))
            await self.handle_event(
                ChannelOpenFailed(
                    event_type=EventType.CHANNEL_OPEN_FAILED,
                    ts_ms=now_ms(),
                    generation=generation,
                    reason=repr(e),
                )
            )
            return

        if generation != self._state.channel_generation or not self._state.channel_live:
            # Abandoned while connecting
            await self._safe_close(channel, WS_CLOSE_NORMAL)
            return

        self._channel = channel
        self._channel_generation = generation
        self._reader_task = asyncio.create_task(self._read_loop(channel, generation))
        self._log("CHANNEL_OPENED", generation=generation)

        try:
            await channel.send(encode_initiation(self._initiation_overrides))
        except ChannelClosedError:
            # The reader reports the close
            return

    async def _close_channel(self, generation: int, code: int) -> None:
        channel = self._channel if self._channel_generation == generation else None
        if channel is None:
            task = self._open_task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
            await self._report_closed(generation, code, "closed before open")
            return
        if await self._safe_close(channel, code):
            return

        # The reader will never see a close frame; report it here instead
        reader = self._reader_task
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
        if self._channel is channel:
            self._channel = None
        await self._report_closed(generation, code, "close failed")

    async def _safe_close(self, channel: VoiceChannel, code: int) -> bool:
        try:
            await channel.close(code=code)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("CHANNEL_CLOSE_FAILED", error=repr(e))
            return False
        return True

    async def _report_closed(self, generation: int, code: int, reason: str | None) -> None:
        await self.handle_event(
            ChannelClosed(
                event_type=EventType.CHANNEL_CLOSED,
                ts_ms=now_ms(),
                generation=generation,
                code=code,
                reason=reason,
            )
        )

    async def _send(self, message: str) -> None:
        channel = self._channel
        if channel is None:
            raise ChannelClosedError(WS_CLOSE_ABNORMAL, "no open channel")
        await channel.send(message)

    async def _read_loop(self, channel: VoiceChannel, generation: int) -> None:
        """
        Reads one channel until it closes, then reports ChannelClosed.

        Malformed payloads are logged and dropped.
        """
        code = WS_CLOSE_ABNORMAL
        reason: str | None = None
        try:
            while True:
                raw = await channel.recv()
                try:
                    message = parse_inbound(raw)
                except ChannelProtocolError as e:
                    self._log("CHANNEL_MESSAGE_DROPPED", generation=generation, error=str(e))
                    continue

                try:
                    await self._dispatch_inbound(channel, generation, message)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    self._log(
                        "INBOUND_DISPATCH_FAILED",
                        generation=generation,
                        message=type(message).__name__,
                        error=repr(e),
                    )
        except ChannelClosedError as e:
            code, reason = e.code, e.reason
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = repr(e)
            await self._safe_close(channel, WS_CLOSE_ABNORMAL)

        if self._channel is channel:
            self._channel = None
        self._log("CHANNEL_CLOSED", generation=generation, code=code, reason=reason)

        # Event ids restart with the next conversation; never mix the two
        if (
            generation == self._state.channel_generation
            and self._state.state is SessionState.ACTIVE
        ):
            self._buffer.salvage()

        await self._report_closed(generation, code, reason)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    async def _dispatch_inbound(
        self,
        channel: VoiceChannel,
        generation: int,
        message: InboundMessage,
    ) -> None:
        if isinstance(message, ConversationInitiated):
            self.session.output_audio_format = message.agent_output_audio_format
            await self.handle_event(
                HandshakeAcknowledged(
                    event_type=EventType.HANDSHAKE_ACKNOWLEDGED,
                    ts_ms=now_ms(),
                    generation=generation,
                    conversation_id=message.conversation_id,
                )
            )
            return

        if isinstance(message, Ping):
            try:
                await channel.send(encode_pong(message.event_id))
            except ChannelClosedError:
                return
            return

        if isinstance(message, RemoteError):
            await self.handle_event(
                RemoteFailure(
                    event_type=EventType.REMOTE_FAILURE,
                    ts_ms=now_ms(),
                    generation=generation,
                    message=message.message,
                    fatal=message.fatal,
                )
            )
            return

        # Stream messages only count for the live, active channel
        if (
            generation != self._state.channel_generation
            or self._state.state is not SessionState.ACTIVE
        ):
            return

        if isinstance(message, AudioChunkReceived):
            self._on_audio_chunk(message)

        elif isinstance(message, ModeChanged):
            self._tracker.handle(message)

        elif isinstance(message, TranscriptFragment):
            self._tracker.handle(message)
            if message.role == "agent":
                self._fire("on_message", message.text)

        elif isinstance(message, Interruption):
            self._on_interruption(message.reason)

    def _on_audio_chunk(self, message: AudioChunkReceived) -> None:
        if self._buffer.is_empty() and self._tracker.mode is Mode.LISTENING:
            self._tracker.handle(ModeChanged(mode=Mode.SPEAKING))
        if self._buffer.add_chunk(message.event_id, message.audio):
            self._fire("on_levels", self._levels.input_level, self._levels.observe_output(message.audio))

    def _on_interruption(self, reason: str | None) -> None:
        self._metrics.increment("interruptions")
        burst = self._buffer.salvage()
        self._log(
            "AGENT_INTERRUPTED",
            reason=reason,
            salvaged_bytes=len(burst) if burst is not None else 0,
        )

        pending = self._pending
        if pending is not None and not pending.settled:
            if pending.reject(InterruptionError(reason or "agent interrupted")):
                self._pending = None
                self._cancel_timer(TIMER_RESPONSE)

        self._tracker.handle(ModeChanged(mode=Mode.LISTENING))

    def _on_burst(self, burst: AudioBurst) -> None:
        """Buffer callback: one completed (or salvaged) burst."""
        gain = self._levels.output_gain
        if gain != 1.0 and is_pcm_format(self.session.output_audio_format):
            burst = replace(burst, data=apply_gain(burst.data, gain))

        self._log(
            "BURST_COMPLETE",
            bytes=len(burst),
            chunks=burst.chunk_count,
            salvaged=burst.salvaged,
        )
        self._fire("on_audio", burst)

        pending = self._pending
        if pending is not None and not pending.settled and pending.accepts(burst):
            pending.resolve(burst)
            self._pending = None
            self._cancel_timer(TIMER_RESPONSE)
        else:
            self._log("BURST_UNSOLICITED", bytes=len(burst))

        self._tracker.handle(ModeChanged(mode=Mode.LISTENING))

    # ------------------------------------------------------------------
    # Local capture
    # ------------------------------------------------------------------

    def _on_mic_frame(self, pcm_bytes: bytes) -> None:
        """Runs on the loop (handed over with call_soon_threadsafe)."""
        self._recording.append(pcm_bytes)
        self._fire("on_levels", self._levels.observe_input(pcm_bytes), self._levels.output_level)
        self._mic_queue.put_nowait(pcm_bytes)

    async def _mic_pump(self) -> None:
        try:
            while True:
                pcm_bytes = await self._mic_queue.get()
                if self._state.state is not SessionState.ACTIVE:
                    continue
                try:
                    await self._send(encode_user_audio(pcm_bytes))
                except ChannelClosedError:
                    continue
        except asyncio.CancelledError:
            return

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        timer_id: str,
        duration_ms: int,
        on_expire: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Start or replace a timer.

        The task removes itself before firing so that teardown triggered by
        the expiry never cancels the running task.
        """
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(ms_to_seconds(duration_ms))
            except asyncio.CancelledError:
                return
            if self._timers.get(timer_id) is asyncio.current_task():
                del self._timers[timer_id]
            await on_expire()

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _timeout_handler(
        self, timeout_event_type: EventType, generation: int
    ) -> Callable[[], Awaitable[None]]:
        async def _fire_timeout() -> None:
            if timeout_event_type is EventType.HANDSHAKE_TIMEOUT:
                await self.handle_event(
                    HandshakeTimeout(
                        event_type=EventType.HANDSHAKE_TIMEOUT,
                        ts_ms=now_ms(),
                        generation=generation,
                    )
                )
            else:
                self._log("UNKNOWN_TIMEOUT", timeout_event_type=timeout_event_type.value)
        return _fire_timeout

    async def _expire_response(self, pending: PendingRequest) -> None:
        error = ResponseTimeoutError(
            f"no response within {self._timings.response_timeout_ms} ms"
        )
        if pending.reject(error):
            self._metrics.increment("response_timeouts")
            self._log("RESPONSE_TIMEOUT", timeout_ms=self._timings.response_timeout_ms)
            if self._pending is pending:
                self._pending = None

    # ------------------------------------------------------------------
    # Teardown / results
    # ------------------------------------------------------------------

    async def _teardown(self, reason: str) -> None:
        current = asyncio.current_task()

        self._tracker.handle(SessionClosed())

        for timer_id in list(self._timers):
            self._cancel_timer(timer_id)

        for task in (self._open_task, self._reader_task, self._mic_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._mic_task = None

        if self._audio_input is not None:
            self._audio_input.release()

        await self._buffer.stop()
        self._channel = None
        self.session.connection_status = ConnectionStatus.DISCONNECTED

        self._log("SESSION_CLOSED", reason=reason, **self.session.log_context())
        if self._owns_metrics and not self._ending:
            self._metrics.shutdown()
        self._closed_event.set()

    async def _collect_results(self) -> ConversationResult:
        """
        Fetch remote artifacts for every conversation id, in order.

        Audio: remote when every conversation yielded audio, else local
        capture, else whatever remote audio arrived, else None.
        Transcript: remote when every fetch succeeded, else live.
        """
        remote_entries: list[TranscriptEntry] = []
        remote_audio: list[bytes] = []
        remote_content_type: str | None = None
        all_fetched = self._artifacts is not None
        all_audio = self._artifacts is not None

        if self._artifacts is not None:
            for conversation_id in self.session.conversation_ids:
                try:
                    with self._metrics.timed(
                        "artifact_fetch", details={"conversation_id": conversation_id}
                    ):
                        artifacts = await self._artifacts.fetch(conversation_id)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    all_fetched = False
                    all_audio = False
                    self._metrics.increment("artifact_failures")
                    self._log(
                        "ARTIFACT_FETCH_FAILED",
                        conversation_id=conversation_id,
                        error=repr(e),
                    )
                    continue

                remote_entries.extend(artifacts.transcript)
                if artifacts.audio:
                    remote_audio.append(artifacts.audio)
                    remote_content_type = artifacts.audio_content_type
                else:
                    all_audio = False

        renumbered = tuple(
            TranscriptEntry(speaker=entry.speaker, text=entry.text, order=i)
            for i, entry in enumerate(remote_entries)
        )
        transcript = self._transcript.resolve(renumbered if all_fetched else None)

        local_wav = self._recording.to_wav()
        audio: bytes | None = None
        content_type: str | None = None
        audio_source: str | None = None
        if remote_audio and all_audio:
            audio, content_type, audio_source = b"".join(remote_audio), remote_content_type, "remote"
        elif local_wav is not None:
            audio, content_type, audio_source = local_wav, LOCAL_AUDIO_CONTENT_TYPE, "local"
        elif remote_audio:
            audio, content_type, audio_source = b"".join(remote_audio), remote_content_type, "remote"

        return ConversationResult(
            session_id=self.session.session_id,
            conversation_ids=tuple(self.session.conversation_ids),
            transcript=transcript,
            audio=audio,
            audio_content_type=content_type,
            audio_source=audio_source,
        )

    # ------------------------------------------------------------------
    # Callback plumbing
    # ------------------------------------------------------------------

    def _fire(self, name: str, *args: Any) -> None:
        hook = getattr(self._callbacks, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("CALLBACK_FAILED", callback=name, error=repr(e))

    def _on_mode_change(self, previous: Mode, current: Mode) -> None:  # pylint: disable=unused-argument
        self.session.mode = current
        self._fire("on_mode_change", current)

    def _on_transcript_update(self, text: str) -> None:
        self.session.transcript_text = text
        self._fire("on_transcript_update", text)
