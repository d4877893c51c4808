"""
Core data models for the barter exchange engine.

These are the fundamental data structures shared across all modules.
They define WHAT the engine works with, not HOW it processes them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, TypeVar

from pydantic import TypeAdapter

from .errors import InvalidArgument


# ============ ID / Time ============

def generate_id(prefix: str = "") -> str:
    """Generate a unique ID with optional prefix."""
    uid = uuid.uuid4().hex[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============ Closed Sets ============

class SkillCategory(str, Enum):
    ACADEMIC = "Academic"
    TECHNICAL = "Technical"
    CREATIVE = "Creative"
    LANGUAGE = "Language"
    SPORTS = "Sports"
    MUSIC = "Music"
    OTHER = "Other"


class ProficiencyLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class Urgency(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class MeetingPreference(str, Enum):
    ONLINE = "online"
    IN_PERSON = "in_person"
    BOTH = "both"


class ProfileRole(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class ExchangeStatus(str, Enum):
    """
    Exchange lifecycle states.

    Success path: PENDING -> ACCEPTED -> IN_PROGRESS -> COMPLETED.
    DISPUTED is a sub-state of IN_PROGRESS that only a resolver can leave.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


TERMINAL_STATUSES = frozenset(
    {ExchangeStatus.COMPLETED, ExchangeStatus.CANCELLED, ExchangeStatus.REJECTED}
)


class ModerationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    HIDDEN = "hidden"


class ReviewTag(str, Enum):
    HELPFUL = "helpful"
    PROFESSIONAL = "professional"
    PATIENT = "patient"
    KNOWLEDGEABLE = "knowledgeable"
    CREATIVE = "creative"
    PUNCTUAL = "punctual"
    RESPONSIVE = "responsive"
    FRIENDLY = "friendly"
    EXPERT = "expert"
    BEGINNER_FRIENDLY = "beginner-friendly"
    GREAT_MENTOR = "great-mentor"
    GOOD_COLLABORATOR = "good-collaborator"
    HIGHLY_RECOMMEND = "highly-recommend"


# ============ Boundary Validation ============

E = TypeVar("E", bound=Enum)

MAX_SKILL_DESCRIPTION = 500
MAX_PROFILE_SKILL_DESCRIPTION = 200
MAX_TITLE_LENGTH = 100
MAX_SKILL_NAME_LENGTH = 100
MAX_COMMENT_LENGTH = 500


def parse_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Coerce ``value`` into ``enum_cls`` or raise InvalidArgument."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidArgument(
            f"Invalid {field_name} {value!r}; expected one of: {allowed}"
        ) from None


def check_text(
    value: Optional[str], field_name: str, max_length: int, required: bool = True,
) -> str:
    """Trim ``value`` and enforce presence and length bounds."""
    if value is not None and not isinstance(value, str):
        raise InvalidArgument(f"{field_name} must be a string")
    text = (value or "").strip()
    if required and not text:
        raise InvalidArgument(f"{field_name} is required")
    if len(text) > max_length:
        raise InvalidArgument(f"{field_name} cannot exceed {max_length} characters")
    return text


def check_rating(value: Any, field_name: str = "rating") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{field_name} must be an integer between 1 and 5")
    if value < 1 or value > 5:
        raise InvalidArgument(f"{field_name} must be between 1 and 5, got {value}")
    return value


# ============ Skill Profile ============

@dataclass
class OfferedSkill:
    name: str
    category: SkillCategory
    level: ProficiencyLevel
    description: str = ""

    @classmethod
    def create(
        cls, name: str, category: Any, level: Any, description: str = "",
    ) -> OfferedSkill:
        return cls(
            name=check_text(name, "skill name", MAX_SKILL_NAME_LENGTH),
            category=parse_enum(SkillCategory, category, "category"),
            level=parse_enum(ProficiencyLevel, level, "level"),
            description=check_text(
                description, "skill description",
                MAX_PROFILE_SKILL_DESCRIPTION, required=False,
            ),
        )


@dataclass
class NeededSkill:
    name: str
    category: SkillCategory
    urgency: Urgency
    description: str = ""

    @classmethod
    def create(
        cls, name: str, category: Any, urgency: Any, description: str = "",
    ) -> NeededSkill:
        return cls(
            name=check_text(name, "skill name", MAX_SKILL_NAME_LENGTH),
            category=parse_enum(SkillCategory, category, "category"),
            urgency=parse_enum(Urgency, urgency, "urgency"),
            description=check_text(
                description, "skill description",
                MAX_PROFILE_SKILL_DESCRIPTION, required=False,
            ),
        )


@dataclass
class Rating:
    """Aggregate rating. Only the reputation aggregator writes it."""
    mean: float = 0.0
    count: int = 0


@dataclass
class SkillProfile:
    """
    A participant's identity, skills and running reputation figures.

    Counters and rating are never set by callers; the store only changes
    them through a committed Changeset.
    """
    profile_id: str
    display_name: str
    institution: str = ""
    region: str = ""
    town: str = ""
    offered_skills: list[OfferedSkill] = field(default_factory=list)
    needed_skills: list[NeededSkill] = field(default_factory=list)
    rating: Rating = field(default_factory=Rating)
    active_exchanges: int = 0
    completed_exchanges: int = 0
    is_active: bool = True
    role: ProfileRole = ProfileRole.USER
    created_at: datetime = field(default_factory=utcnow)


# ============ Exchange ============

@dataclass
class SkillDescriptor:
    """
    One side of a barter: the skill requested or the skill offered.

    A requested skill carries ``urgency``; an offered skill carries ``level``.
    """
    name: str
    category: SkillCategory
    description: str
    estimated_hours: float
    urgency: Optional[Urgency] = None
    level: Optional[ProficiencyLevel] = None


@dataclass
class Location:
    region: str = ""
    town: str = ""
    specific_location: str = ""


@dataclass
class Message:
    sender_id: str
    text: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Task:
    task_id: str
    description: str
    completed: bool = False
    completed_at: Optional[datetime] = None


@dataclass
class Progress:
    requester_tasks: list[Task] = field(default_factory=list)
    provider_tasks: list[Task] = field(default_factory=list)

    @property
    def all_tasks(self) -> list[Task]:
        return [*self.requester_tasks, *self.provider_tasks]

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.all_tasks:
            if task.task_id == task_id:
                return task
        return None


@dataclass
class CompletionDetails:
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    requester_satisfied: Optional[bool] = None
    provider_satisfied: Optional[bool] = None
    notes: Optional[str] = None


@dataclass
class DisputeRecord:
    is_disputed: bool = False
    disputed_by: Optional[str] = None
    reason: Optional[str] = None
    disputed_at: Optional[datetime] = None
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    outcome: Optional[ExchangeStatus] = None


@dataclass
class ReviewSlots:
    requester_review_id: Optional[str] = None
    provider_review_id: Optional[str] = None


@dataclass
class Monetization:
    """Reserved for paid exchanges. No engine operation reads or writes it."""
    is_monetized: bool = False
    amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class Exchange:
    """
    One proposed-through-closed skill trade between two profiles.

    Owned by neither profile: the state machine is the only writer of
    ``status`` and every write bumps ``version``.
    """
    exchange_id: str
    requester_id: str
    provider_id: str
    requested_skill: SkillDescriptor
    offered_skill: SkillDescriptor
    deadline: datetime
    meeting_preference: MeetingPreference
    title: str = ""
    status: ExchangeStatus = ExchangeStatus.PENDING
    location: Optional[Location] = None
    tags: list[str] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    progress: Progress = field(default_factory=Progress)
    completion: CompletionDetails = field(default_factory=CompletionDetails)
    dispute: DisputeRecord = field(default_factory=DisputeRecord)
    reviews: ReviewSlots = field(default_factory=ReviewSlots)
    monetization: Monetization = field(default_factory=Monetization)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def party_ids(self) -> tuple[str, str]:
        return (self.requester_id, self.provider_id)

    def is_party(self, profile_id: str) -> bool:
        return profile_id in self.party_ids

    def tasks_for(self, profile_id: str) -> list[Task]:
        if profile_id == self.requester_id:
            return self.progress.requester_tasks
        if profile_id == self.provider_id:
            return self.progress.provider_tasks
        raise InvalidArgument(f"{profile_id} is not a party to {self.exchange_id}")


# ============ Review ============

@dataclass
class DetailedRatings:
    communication: Optional[int] = None
    skill_level: Optional[int] = None
    reliability: Optional[int] = None
    friendliness: Optional[int] = None
    meetup_experience: Optional[int] = None

    def values(self) -> list[int]:
        return [
            v for v in (
                self.communication,
                self.skill_level,
                self.reliability,
                self.friendliness,
                self.meetup_experience,
            )
            if v
        ]


@dataclass
class SkillRating:
    skill: str
    rating: int
    comment: str = ""


@dataclass
class Moderation:
    status: ModerationStatus = ModerationStatus.APPROVED
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None


@dataclass
class ReviewResponse:
    content: str
    responded_at: datetime = field(default_factory=utcnow)
    is_public: bool = True


@dataclass
class Review:
    """
    A rating one party gives the other after a completed exchange.

    Content is immutable once written; only moderation, the reviewee's
    single response and helpful votes change afterwards.
    """
    review_id: str
    reviewer_id: str
    reviewee_id: str
    exchange_id: str
    rating: int
    was_successful: bool
    would_recommend: bool
    comment: Optional[str] = None
    detailed_ratings: DetailedRatings = field(default_factory=DetailedRatings)
    skills_reviewed: list[SkillRating] = field(default_factory=list)
    tags: list[ReviewTag] = field(default_factory=list)
    moderation: Moderation = field(default_factory=Moderation)
    response: Optional[ReviewResponse] = None
    helpful_votes: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_approved(self) -> bool:
        return self.moderation.status == ModerationStatus.APPROVED

    @property
    def average_detailed_rating(self) -> float:
        values = self.detailed_ratings.values()
        if not values:
            return 0.0
        return round(sum(values) / len(values), 1)

    @property
    def helpfulness_score(self) -> int:
        score = 0
        if self.comment and len(self.comment) > 20:
            score += 3
        if self.detailed_ratings.values():
            score += 2
        if self.skills_reviewed:
            score += 2
        if self.tags:
            score += 1
        return score

    @property
    def is_comprehensive(self) -> bool:
        return self.helpfulness_score >= 5


# ============ Changeset ============

@dataclass
class CounterDelta:
    active: int = 0
    completed: int = 0


@dataclass
class Changeset:
    """
    Everything one operation writes, committed all-or-nothing by the store.

    ``exchanges`` carry the version they were read at; the store rejects the
    whole changeset if any of them moved in the meantime.
    """
    exchanges: list[Exchange] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)
    counter_deltas: dict[str, CounterDelta] = field(default_factory=dict)
    ratings: dict[str, Rating] = field(default_factory=dict)

    def adjust_counters(
        self, profile_id: str, active: int = 0, completed: int = 0,
    ) -> None:
        delta = self.counter_deltas.setdefault(profile_id, CounterDelta())
        delta.active += active
        delta.completed += completed

    @property
    def is_empty(self) -> bool:
        return not (
            self.exchanges or self.reviews or self.counter_deltas or self.ratings
        )


# ============ Serialization ============

T = TypeVar("T")


@lru_cache(maxsize=None)
def _adapter(cls: type) -> TypeAdapter:
    return TypeAdapter(cls)


def to_record(obj: Any) -> dict[str, Any]:
    """Dump a model dataclass to a JSON-compatible dict."""
    return _adapter(type(obj)).dump_python(obj, mode="json")


def from_record(cls: type[T], data: dict[str, Any]) -> T:
    """Rebuild a model dataclass from ``to_record`` output."""
    return _adapter(cls).validate_python(data)
