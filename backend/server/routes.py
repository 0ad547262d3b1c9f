"""
Route registration for the interview voice agent API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire gateway to WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from observability.logger import log_event, now_ms
from session.gateway import SessionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = SessionGateway(manager_factory=app.state.manager_factory)
        sender = asyncio.create_task(_pump_outbound(ws, gateway))

        try:
            while True:
                payload = await ws.receive_text()
                await gateway.on_json_message(payload)

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "session_id": gateway.manager.session.session_id if gateway.manager else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")

        finally:
            sender.cancel()


async def _pump_outbound(ws: WebSocket, gateway: SessionGateway) -> None:
    while True:
        message = await gateway.outbound.get()
        try:
            await ws.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError):
            # Socket already closed
            return
