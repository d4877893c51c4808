"""
EventPusher implementations: deliver committed exchange events.

- WebSocketEventPusher: fans each event out to the exchange channel and
  to one channel per party profile
- NullEventPusher: discards (headless scripts, batch jobs)

Events are pushed after the write they describe has committed, so a
delivery failure is logged and never raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

from skillswap.core.events import ExchangeEvent

logger = logging.getLogger(__name__)


def exchange_channel(exchange_id: str) -> str:
    return f"exchange:{exchange_id}"


def profile_channel(profile_id: str) -> str:
    return f"profile:{profile_id}"


def event_channels(event: ExchangeEvent) -> list[str]:
    """Channels an event is delivered to, in order, without duplicates.

    Rating recomputes not tied to an exchange carry an empty exchange id
    and go to profile channels only.
    """
    channels = []
    if event.exchange_id:
        channels.append(exchange_channel(event.exchange_id))
    for profile_id in event.party_ids:
        channel = profile_channel(profile_id)
        if profile_id and channel not in channels:
            channels.append(channel)
    return channels


class NullEventPusher:
    """EventPusher that discards all events."""

    async def push(self, event: ExchangeEvent) -> None:
        pass

    async def push_many(self, events: list[ExchangeEvent]) -> None:
        pass


class WebSocketEventPusher:
    """
    Broadcasts events to subscribed WebSockets.

    Channel naming: exchange:{exchange_id} and profile:{profile_id}
    """

    def __init__(self, ws_manager: Any):
        """
        Args:
            ws_manager: Any object with an async
                ``broadcast_to_channel(channel, message) -> int``.
        """
        self._ws_manager = ws_manager

    async def push(self, event: ExchangeEvent) -> None:
        message = event.to_dict()
        for channel in event_channels(event):
            try:
                sent = await self._ws_manager.broadcast_to_channel(channel, message)
            except Exception as e:
                logger.error(
                    "Broadcast of %s %s to %s failed: %s",
                    event.event_type.value, event.event_id, channel, e,
                )
                continue
            logger.debug(
                "Pushed %s to %s (%s connections)",
                event.event_type.value, channel, sent,
            )

    async def push_many(self, events: list[ExchangeEvent]) -> None:
        for event in events:
            await self.push(event)
