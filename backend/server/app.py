"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Build the per-session manager factory from config
- Register routes
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.convai.artifacts import ElevenLabsArtifactClient
from adapters.convai.channel import websocket_channel_factory
from audio.capture import MicrophoneCapture
from config import AppConfig
from observability.logger import configure
from server.routes import register_routes
from session.gateway import ManagerFactory
from session.manager import ConversationCallbacks, ConversationManager


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    `config` defaults to AppConfig.load_from_env(); tests pass their own.
    """
    if config is None:
        config = AppConfig.load_from_env()
    configure(enabled=config.enable_json_logs)

    app = FastAPI(title="Interview Voice Agent API")

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.manager_factory = build_manager_factory(config)

    # Routes
    register_routes(app)

    return app


def build_manager_factory(config: AppConfig) -> ManagerFactory | None:
    """
    One fresh ConversationManager per browser session.

    Returns None when no agent id is configured; START then answers ERROR.
    """
    if not config.elevenlabs_agent_id:
        return None

    channel_factory = websocket_channel_factory(
        url=config.convai_ws_url,
        agent_id=config.elevenlabs_agent_id,
        api_key=config.elevenlabs_api_key,
    )
    # Artifact client is shared; it holds no per-session state
    artifacts = (
        ElevenLabsArtifactClient(api_key=config.elevenlabs_api_key)
        if config.elevenlabs_api_key
        else None
    )

    def _factory(callbacks: ConversationCallbacks) -> ConversationManager:
        return ConversationManager(
            channel_factory=channel_factory,
            artifact_source=artifacts,
            audio_input=MicrophoneCapture() if config.local_capture else None,
            callbacks=callbacks,
            timings=config.timings,
        )

    return _factory
