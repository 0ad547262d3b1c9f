"""
Connection status reported to callers.

Connection lifecycle is tracked separately from the session state machine:
RECONNECTING and CONNECTING both surface as CONNECTING; ENDING and CLOSED
both surface as DISCONNECTED once the channel is gone.
"""
from enum import Enum

class ConnectionStatus(str, Enum):
    """
    Status values passed to on_status_change.

    Separate from and independent of SessionState.
    """
    DISCONNECTED = "disconnected"  # No channel
    CONNECTING = "connecting"      # Opening or re-opening (with backoff)
    CONNECTED = "connected"        # Handshake acknowledged
