"""
Channel manager: fans exchange events out to subscribed WebSocket clients.

One connection subscribes to exactly one channel (``exchange:{id}``).
Connections whose send fails are dropped on the next broadcast.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from fastapi import WebSocketDisconnect

from skillswap.core.models import utcnow

logger = logging.getLogger(__name__)


class JSONSocket(Protocol):
    async def accept(self) -> None: ...

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Subscription:
    connection_id: str
    websocket: JSONSocket
    channel: str
    connected_at: datetime = field(default_factory=utcnow)


class ChannelManager:
    """Tracks WebSocket subscriptions per channel."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._channels: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self._counter = 0

    async def connect(self, websocket: JSONSocket, channel: str) -> str:
        """Accept ``websocket`` and subscribe it to ``channel``."""
        await websocket.accept()
        async with self._lock:
            self._counter += 1
            connection_id = f"conn_{self._counter}"
            self._subscriptions[connection_id] = Subscription(
                connection_id=connection_id, websocket=websocket, channel=channel,
            )
            self._channels.setdefault(channel, set()).add(connection_id)
        logger.info("WebSocket %s subscribed to %s", connection_id, channel)
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            sub = self._subscriptions.pop(connection_id, None)
            if sub is None:
                return
            members = self._channels.get(sub.channel)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._channels[sub.channel]
        logger.info("WebSocket %s disconnected from %s", connection_id, sub.channel)

    async def broadcast_to_channel(self, channel: str, message: dict[str, Any]) -> int:
        """Send ``message`` to every subscriber; return how many received it."""
        members = list(self._channels.get(channel, ()))
        sent = 0
        failed = []
        for connection_id in members:
            sub = self._subscriptions.get(connection_id)
            if sub is None:
                continue
            try:
                await sub.websocket.send_json(message)
                sent += 1
            except (RuntimeError, ConnectionError, WebSocketDisconnect) as e:
                logger.warning("Send to %s failed: %s", connection_id, e)
                failed.append(connection_id)
        for connection_id in failed:
            await self.disconnect(connection_id)
        return sent

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))
