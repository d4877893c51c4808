"""
EngineBuilder: convenience factory for assembling the exchange engine
with all its dependencies.

The four components share one store, one event pusher and one set of
per-exchange locks; wiring them by hand is easy to get subtly wrong, so
this builder does it once. Sensible defaults are provided for everything.

Usage (headless)::

    from skillswap import EngineBuilder

    engine = (
        EngineBuilder()
        .with_store(my_store)
        .with_event_pusher(my_pusher)
        .build()
    )
    exchange = await engine.exchanges.propose(...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from skillswap.core.disputes import DisputeDesk, RoleResolverPolicy
from skillswap.core.locks import KeyedLock
from skillswap.core.models import utcnow
from skillswap.core.progress import ProgressTracker
from skillswap.core.protocols import EngineStore, EventPusher, ResolverPolicy
from skillswap.core.reputation import ReputationAggregator
from skillswap.core.state_machine import ExchangeStateMachine
from skillswap.infra.config import SkillSwapConfig
from skillswap.infra.database import SQLStore
from skillswap.infra.event_pusher import NullEventPusher
from skillswap.infra.memory_store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class BarterEngine:
    """The assembled engine: one entry point per component."""
    store: EngineStore
    exchanges: ExchangeStateMachine
    progress: ProgressTracker
    disputes: DisputeDesk
    reputation: ReputationAggregator
    config: SkillSwapConfig


class EngineBuilder:
    """Fluent builder for BarterEngine."""

    def __init__(self) -> None:
        self._config: SkillSwapConfig | None = None
        self._store: EngineStore | None = None
        self._event_pusher: EventPusher | None = None
        self._resolver_policy: ResolverPolicy | None = None
        self._clock: Callable[[], datetime] = utcnow

    def with_config(self, config: SkillSwapConfig) -> EngineBuilder:
        self._config = config
        return self

    def with_store(self, store: EngineStore) -> EngineBuilder:
        self._store = store
        return self

    def with_event_pusher(self, pusher: EventPusher) -> EngineBuilder:
        self._event_pusher = pusher
        return self

    def with_resolver_policy(self, policy: ResolverPolicy) -> EngineBuilder:
        self._resolver_policy = policy
        return self

    def with_clock(self, clock: Callable[[], datetime]) -> EngineBuilder:
        self._clock = clock
        return self

    def _default_store(self, config: SkillSwapConfig) -> EngineStore:
        if not config.database_url:
            return MemoryStore()
        return SQLStore(config.database_url)

    def build(self) -> BarterEngine:
        config = self._config or SkillSwapConfig()
        store = self._store or self._default_store(config)
        pusher = self._event_pusher or NullEventPusher()
        policy = self._resolver_policy or RoleResolverPolicy(
            store, resolver_ids=config.get_resolver_ids(),
        )
        exchange_locks = KeyedLock()

        state_machine = ExchangeStateMachine(
            store=store,
            event_pusher=pusher,
            exchange_locks=exchange_locks,
            max_message_length=config.max_message_length,
            min_hours=config.min_estimated_hours,
            max_hours=config.max_estimated_hours,
            clock=self._clock,
        )
        engine = BarterEngine(
            store=store,
            exchanges=state_machine,
            progress=ProgressTracker(
                store=store,
                event_pusher=pusher,
                exchange_locks=exchange_locks,
                clock=self._clock,
            ),
            disputes=DisputeDesk(
                store=store,
                event_pusher=pusher,
                state_machine=state_machine,
                resolver_policy=policy,
                clock=self._clock,
            ),
            reputation=ReputationAggregator(
                store=store,
                event_pusher=pusher,
                exchange_locks=exchange_locks,
                reviewee_locks=KeyedLock(),
                default_moderation=config.default_review_moderation,
                clock=self._clock,
            ),
            config=config,
        )

        logger.info(
            "EngineBuilder: built engine (store=%s, pusher=%s)",
            type(store).__name__,
            type(pusher).__name__,
        )
        return engine
