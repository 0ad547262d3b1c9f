"""
Conversation mode enumeration.

Modes are orthogonal to lifecycle states:
- State answers: "Is the session connected?"
- Mode answers:  "Who is talking right now?"
"""

from __future__ import annotations

from enum import Enum


class Mode(str, Enum):
    """
    Turn-taking mode of the remote agent.

    LISTENING:
        The agent is waiting for candidate input.

    SPEAKING:
        The agent is producing audio.
    """

    LISTENING = "listening"
    SPEAKING = "speaking"
