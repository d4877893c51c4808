"""Core engine layer: exchange lifecycle, progress, disputes, reputation, matching."""

from .errors import (
    SkillSwapError,
    InvalidArgument,
    Forbidden,
    NotFound,
    InvalidTransition,
    AlreadyExists,
    Unavailable,
    ConfigError,
)
from .events import EventType, ExchangeEvent
from .locks import KeyedLock
from .models import (
    Changeset,
    Exchange,
    ExchangeStatus,
    MeetingPreference,
    ModerationStatus,
    NeededSkill,
    OfferedSkill,
    ProficiencyLevel,
    ProfileRole,
    Rating,
    Review,
    ReviewTag,
    SkillCategory,
    SkillDescriptor,
    SkillProfile,
    Urgency,
    generate_id,
)
from .protocols import (
    EngineStore,
    EventPusher,
    ExchangeStore,
    ProfileStore,
    ResolverPolicy,
    ReviewStore,
)

__all__ = [
    "SkillSwapError", "InvalidArgument", "Forbidden", "NotFound",
    "InvalidTransition", "AlreadyExists", "Unavailable", "ConfigError",
    "EventType", "ExchangeEvent", "KeyedLock",
    "Changeset", "Exchange", "ExchangeStatus", "MeetingPreference",
    "ModerationStatus", "NeededSkill", "OfferedSkill", "ProficiencyLevel",
    "ProfileRole", "Rating", "Review", "ReviewTag", "SkillCategory",
    "SkillDescriptor", "SkillProfile", "Urgency", "generate_id",
    "EngineStore", "EventPusher", "ExchangeStore", "ProfileStore",
    "ResolverPolicy", "ReviewStore",
]
