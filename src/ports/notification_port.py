"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationError(Exception):
    """Raised when a message could not be delivered."""


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules.

    `send_message` returns normally on success and raises on failure.
    Retries and timeouts are the implementation's business.
    """

    async def send_message(self, chat_id: int, text: str) -> None: ...
