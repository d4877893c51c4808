"""
Dispute subsystem: contested closures of in-progress exchanges.

A party raises the dispute; neither party can settle it. Only a resolver
approved by the ResolverPolicy moves the exchange onto a terminal status,
with the same counter side effects as the ordinary transition.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .errors import Forbidden, InvalidArgument, InvalidTransition, NotFound
from .events import dispute_resolved, status_changed
from .locks import KeyedLock
from .models import (
    MAX_SKILL_DESCRIPTION,
    Changeset,
    Exchange,
    ExchangeStatus,
    ProfileRole,
    check_text,
    parse_enum,
    utcnow,
)
from .protocols import EngineStore, EventPusher, ProfileStore, ResolverPolicy
from .state_machine import ExchangeStateMachine, apply_status_change, check_transition

logger = logging.getLogger(__name__)

RESOLUTION_OUTCOMES = frozenset({ExchangeStatus.COMPLETED, ExchangeStatus.CANCELLED})


class RoleResolverPolicy:
    """
    Moderators and admins may resolve disputes, plus any explicitly listed
    profile id. Parties to the exchange never may.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        resolver_ids: Optional[Iterable[str]] = None,
    ):
        self._profiles = profiles
        self._resolver_ids = set(resolver_ids or [])

    async def can_resolve(self, resolver_id: str, exchange: Exchange) -> bool:
        if exchange.is_party(resolver_id):
            return False
        if resolver_id in self._resolver_ids:
            return True
        profile = await self._profiles.get_profile(resolver_id)
        if profile is None or not profile.is_active:
            return False
        return profile.role in (ProfileRole.MODERATOR, ProfileRole.ADMIN)


class DisputeDesk:
    """Raises and resolves disputes on top of the exchange state machine."""

    def __init__(
        self,
        store: EngineStore,
        event_pusher: EventPusher,
        state_machine: ExchangeStateMachine,
        resolver_policy: ResolverPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._event_pusher = event_pusher
        self._state_machine = state_machine
        self._resolver_policy = resolver_policy
        self._clock = clock

    async def raise_dispute(
        self, exchange_id: str, actor_id: str, reason: str,
    ) -> Exchange:
        """Contest an in-progress exchange. Terminal exchanges cannot be disputed."""
        return await self._state_machine.transition(
            exchange_id, actor_id, ExchangeStatus.DISPUTED, reason=reason,
        )

    async def resolve(
        self,
        exchange_id: str,
        resolver_id: str,
        outcome_status: ExchangeStatus | str,
        resolution_notes: str,
    ) -> Exchange:
        outcome = parse_enum(ExchangeStatus, outcome_status, "outcome")
        if outcome not in RESOLUTION_OUTCOMES:
            raise InvalidArgument(
                f"Dispute outcome must be completed or cancelled, got {outcome.value}"
            )
        notes = check_text(resolution_notes, "resolution", MAX_SKILL_DESCRIPTION)

        async with self._state_machine.locks.hold(exchange_id):
            exchange = await self._store.get_exchange(exchange_id)
            if exchange is None:
                raise NotFound(f"Exchange {exchange_id} not found")
            if not await self._resolver_policy.can_resolve(resolver_id, exchange):
                raise Forbidden(f"{resolver_id} may not resolve disputes on {exchange_id}")
            if exchange.status != ExchangeStatus.DISPUTED:
                raise InvalidTransition(
                    f"Exchange {exchange_id} is {exchange.status.value}, not disputed"
                )
            check_transition(exchange, outcome)

            now = self._clock()
            exchange.dispute.resolution = notes
            exchange.dispute.resolved_by = resolver_id
            exchange.dispute.resolved_at = now
            exchange.dispute.outcome = outcome

            changeset = Changeset()
            apply_status_change(exchange, outcome, resolver_id, changeset, now)
            await self._store.apply(changeset)

        logger.info(
            "Dispute on %s resolved by %s as %s", exchange_id, resolver_id, outcome.value,
        )
        await self._event_pusher.push_many([
            dispute_resolved(exchange),
            status_changed(exchange, ExchangeStatus.DISPUTED.value, resolver_id),
        ])
        return exchange
