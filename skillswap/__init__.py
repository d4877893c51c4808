"""
SkillSwap: skill barter exchange lifecycle and reputation engine.

Public API surface. Import everything you need from here::

    from skillswap import EngineBuilder, ExchangeStatus

Extension points (implement these Protocols to customize):

- ``EngineStore``: persistence for profiles, exchanges and reviews
- ``EventPusher``: custom event transport
- ``ResolverPolicy``: who may close a disputed exchange
"""

# -- Assembly --
from skillswap.builder import BarterEngine, EngineBuilder

# -- Components --
from skillswap.core.disputes import DisputeDesk, RoleResolverPolicy
from skillswap.core.matching import compatibility_score, suggest_partners
from skillswap.core.progress import ProgressTracker, completion_percentage
from skillswap.core.reputation import ReputationAggregator
from skillswap.core.state_machine import VALID_TRANSITIONS, ExchangeStateMachine

# -- Data models --
from skillswap.core.models import (
    Exchange,
    ExchangeStatus,
    ModerationStatus,
    Rating,
    Review,
    SkillProfile,
)

# -- Events --
from skillswap.core.events import EventType, ExchangeEvent

# -- Errors --
from skillswap.core.errors import (
    AlreadyExists,
    ConfigError,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    SkillSwapError,
    Unavailable,
)

# -- Protocols (contracts for extension) --
from skillswap.core.protocols import EngineStore, EventPusher, ResolverPolicy

# -- Infrastructure --
from skillswap.infra.config import SkillSwapConfig
from skillswap.infra.event_pusher import NullEventPusher, WebSocketEventPusher
from skillswap.infra.memory_store import MemoryStore

__all__ = [
    "BarterEngine",
    "EngineBuilder",
    "DisputeDesk",
    "RoleResolverPolicy",
    "compatibility_score",
    "suggest_partners",
    "ProgressTracker",
    "completion_percentage",
    "ReputationAggregator",
    "VALID_TRANSITIONS",
    "ExchangeStateMachine",
    "Exchange",
    "ExchangeStatus",
    "ModerationStatus",
    "Rating",
    "Review",
    "SkillProfile",
    "EventType",
    "ExchangeEvent",
    "AlreadyExists",
    "ConfigError",
    "Forbidden",
    "InvalidArgument",
    "InvalidTransition",
    "NotFound",
    "SkillSwapError",
    "Unavailable",
    "EngineStore",
    "EventPusher",
    "ResolverPolicy",
    "SkillSwapConfig",
    "NullEventPusher",
    "WebSocketEventPusher",
    "MemoryStore",
]
