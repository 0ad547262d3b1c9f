"""
Conversational voice channel adapter (websockets).

Core model:
- One VoiceChannel = one websocket = one remote conversation.
- The channel only moves text frames. Parsing lives in protocol/convai.py
  and every lifecycle decision lives in the reducer.
- recv() raises ChannelClosedError carrying the close code once the socket
  is gone, whichever side closed it.

Design constraints:
- Adapter must not call the reducer directly.
- Adapter must not retry. Reconnection is a reducer decision.
"""

from __future__ import annotations

import urllib.parse
from typing import Awaitable, Callable, Protocol

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed

from spec import CHANNEL_MAX_MESSAGE_BYTES, WS_CLOSE_ABNORMAL, WS_CLOSE_NORMAL


class ChannelClosedError(Exception):
    """The channel is closed. code is the websocket close code."""

    def __init__(self, code: int, reason: str | None = None) -> None:
        super().__init__(f"channel closed ({code}): {reason or ''}".rstrip(": "))
        self.code = code
        self.reason = reason


class VoiceChannel(Protocol):
    """Bidirectional text-frame channel to the remote voice agent."""

    async def send(self, message: str) -> None:
        """Send one text frame. Raises ChannelClosedError when closed."""

    async def recv(self) -> str | bytes:
        """Receive one frame. Raises ChannelClosedError when closed."""

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        """Close the channel. Idempotent."""


ChannelFactory = Callable[[], Awaitable[VoiceChannel]]


def _closed_error(e: ConnectionClosed) -> ChannelClosedError:
    frame = e.rcvd or e.sent
    if frame is None:
        return ChannelClosedError(WS_CLOSE_ABNORMAL, "connection lost")
    return ChannelClosedError(frame.code, frame.reason or None)


class WebSocketChannel:
    """VoiceChannel over a websockets client connection."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, message: str) -> None:
        try:
            await self._ws.send(message)
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def recv(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)


def build_channel_url(base_url: str, agent_id: str) -> str:
    qs = urllib.parse.urlencode({"agent_id": agent_id})
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{qs}"


def websocket_channel_factory(
    *,
    url: str,
    agent_id: str,
    api_key: str | None = None,
) -> ChannelFactory:
    """
    Build a factory that opens a fresh WebSocketChannel per call.

    Connection errors propagate to the caller unchanged.
    """
    full_url = build_channel_url(url, agent_id)
    headers = {"xi-api-key": api_key} if api_key else None

    async def _open() -> VoiceChannel:
        ws = await ws_connect(
            full_url,
            additional_headers=headers,
            max_size=CHANNEL_MAX_MESSAGE_BYTES,
            ping_interval=None,
        )
        return WebSocketChannel(ws)

    return _open
