"""
Session gateway (browser bridge).

Responsibilities:
- One gateway == one browser WebSocket == at most one ConversationManager
- Routes inbound JSON control messages -> manager operations
- Wires manager callbacks -> outbound JSON messages
- Runs USER_MESSAGE requests as tasks so the socket keeps reading
  (a second message while one is pending answers BUSY)

NOT responsible for:
- Any lifecycle logic (the manager owns it)
- Socket I/O (routes.py drains the outbound queue)
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Callable

from audio.frames import AudioBurst
from observability.logger import log_event, now_ms
from orchestrator.enums.mode import Mode
from session.connection_status import ConnectionStatus
from session.errors import BusyError, ConversationError
from session.manager import ConversationCallbacks, ConversationManager, ConversationResult
from spec import GATEWAY_INBOUND_TYPES


ManagerFactory = Callable[[ConversationCallbacks], ConversationManager]


def _error_message(error: BaseException, *, request: str | None = None) -> dict[str, Any]:
    retryable = error.retryable if isinstance(error, ConversationError) else False
    return {
        "type": "ERROR",
        "request": request,
        "error": type(error).__name__,
        "message": str(error),
        "retryable": retryable,
    }


def _ended_message(result: ConversationResult | None) -> dict[str, Any]:
    if result is None:
        return {"type": "SESSION_ENDED", "transcript": None}
    return {
        "type": "SESSION_ENDED",
        "session_id": result.session_id,
        "conversation_ids": list(result.conversation_ids),
        "transcript": result.transcript.text,
        "transcript_source": result.transcript.source,
        "audio_source": result.audio_source,
        "audio_content_type": result.audio_content_type,
    }


class SessionGateway:
    """
    Translates browser messages into ConversationManager calls.

    Outbound messages are plain dicts placed on `outbound`; the socket
    route serializes and sends them in order.
    """

    def __init__(self, *, manager_factory: ManagerFactory | None) -> None:
        self._manager_factory = manager_factory
        self.manager: ConversationManager | None = None
        self.outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._message_tasks: set[asyncio.Task[None]] = set()
        self._ended = False

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def on_json_message(self, payload: str) -> None:
        """Route one inbound JSON control message."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "JSON_DECODE_ERROR",
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return

        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type not in GATEWAY_INBOUND_TYPES:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "msg_type": msg_type,
            })
            self._push(_error_message(ValueError(f"unknown message type: {msg_type}")))
            return

        if msg_type == "START":
            await self._start()
        elif msg_type == "USER_MESSAGE":
            self._submit(str(data.get("text") or ""))
        elif msg_type == "PAUSE":
            if self.manager is not None:
                self.manager.pause()
        elif msg_type == "RESUME":
            if self.manager is not None:
                self.manager.resume()
        elif msg_type == "SET_VOLUME":
            self._set_volume(data.get("volume"))
        elif msg_type == "END":
            await self._end()

    async def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Ends the conversation if the browser went away mid-session."""
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_DISCONNECTED",
            "reason": reason,
            "session_id": self.manager.session.session_id if self.manager else None,
        })
        await self._end(notify=False)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _start(self) -> None:
        if self.manager is not None:
            if self._ended:
                self._push(_error_message(ValueError("session already ended"), request="START"))
                return
            # initialize() is idempotent while the session is open
            await self._initialize(self.manager)
            return

        if self._manager_factory is None:
            self._push(_error_message(RuntimeError("voice agent not configured"), request="START"))
            return

        self.manager = self._manager_factory(self._callbacks())
        await self._initialize(self.manager)

    async def _initialize(self, manager: ConversationManager) -> None:
        try:
            await manager.initialize()
        except ConversationError as e:
            self._push(_error_message(e, request="START"))
            return
        self._push({
            "type": "SESSION_READY",
            "session_id": manager.session.session_id,
            "conversation_id": manager.conversation_id,
        })

    def _submit(self, text: str) -> None:
        task = asyncio.create_task(self._run_message(text))
        self._message_tasks.add(task)
        task.add_done_callback(self._message_tasks.discard)

    async def _run_message(self, text: str) -> None:
        manager = self.manager
        if manager is None:
            self._push(_error_message(ValueError("session not started"), request="USER_MESSAGE"))
            return

        try:
            audio = await manager.send_message(text)
        except BusyError as e:
            self._push({"type": "BUSY", "message": str(e)})
            return
        except (ConversationError, ValueError) as e:
            self._push(_error_message(e, request="USER_MESSAGE"))
            return

        self._push({
            "type": "AGENT_AUDIO",
            "audio": base64.b64encode(audio).decode("ascii"),
            "bytes": len(audio),
        })

    def _set_volume(self, raw: Any) -> None:
        if self.manager is None:
            return
        try:
            self.manager.set_volume(float(raw))
        except (TypeError, ValueError):
            self._push(_error_message(ValueError(f"invalid volume: {raw!r}"), request="SET_VOLUME"))
            return
        self._push({"type": "VOLUME", "volume": self.manager.volume})

    async def _end(self, *, notify: bool = True) -> None:
        manager = self.manager
        if manager is None or self._ended:
            if notify:
                self._push(_ended_message(None))
            return
        self._ended = True

        result = await manager.end_conversation()

        for task in list(self._message_tasks):
            if not task.done():
                task.cancel()

        if notify:
            self._push(_ended_message(result))

    # ------------------------------------------------------------------
    # Manager callbacks -> outbound
    # ------------------------------------------------------------------

    def _callbacks(self) -> ConversationCallbacks:
        return ConversationCallbacks(
            on_error=lambda e: self._push(_error_message(e)),
            on_status_change=self._on_status_change,
            on_mode_change=self._on_mode_change,
            on_transcript_update=lambda text: self._push(
                {"type": "TRANSCRIPT_UPDATE", "transcript": text}
            ),
            on_audio=self._on_audio,
        )

    def _on_status_change(self, status: ConnectionStatus) -> None:
        self._push({"type": "STATUS", "status": status.value})

    def _on_mode_change(self, mode: Mode) -> None:
        self._push({"type": "MODE_CHANGE", "mode": mode.value})

    def _on_audio(self, burst: AudioBurst) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "GATEWAY_BURST",
            "bytes": len(burst),
            "salvaged": burst.salvaged,
        })

    def _push(self, message: dict[str, Any]) -> None:
        self.outbound.put_nowait(message)
