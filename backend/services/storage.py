"""
Storage and email contracts consumed by the interview asset publisher.

Only the call shapes live here. Deployments supply implementations.
"""

from __future__ import annotations

from typing import Protocol


class ArtifactStorage(Protocol):

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Store `data` at `path` and return a URL for it."""


class Mailer(Protocol):

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Deliver a plain-text email."""
