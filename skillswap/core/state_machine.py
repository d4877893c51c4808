"""
Exchange state machine: owns an exchange record's lifecycle from proposal
to closure.

Every mutation follows the same shape inside a per-exchange critical
section: load a private copy, validate, mutate, commit one Changeset.
Counter side effects ride in the same Changeset as the status write, so a
failed commit leaves both untouched.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .errors import Forbidden, InvalidArgument, InvalidTransition, NotFound
from .events import (
    ExchangeEvent,
    dispute_raised,
    exchange_proposed,
    message_appended,
    parties,
    status_changed,
)
from .locks import KeyedLock
from .models import (
    MAX_SKILL_DESCRIPTION,
    MAX_SKILL_NAME_LENGTH,
    MAX_TITLE_LENGTH,
    TERMINAL_STATUSES,
    Changeset,
    Exchange,
    ExchangeStatus,
    Location,
    MeetingPreference,
    Message,
    ProficiencyLevel,
    SkillCategory,
    SkillDescriptor,
    Urgency,
    check_text,
    generate_id,
    parse_enum,
    utcnow,
)
from .protocols import EngineStore, EventPusher

logger = logging.getLogger(__name__)

# ============ State Machine ============

# Valid status transitions. Key = current status, value = allowed next statuses.
VALID_TRANSITIONS: dict[ExchangeStatus, set[ExchangeStatus]] = {
    ExchangeStatus.PENDING: {
        ExchangeStatus.ACCEPTED,
        ExchangeStatus.REJECTED,
        ExchangeStatus.CANCELLED,
    },
    ExchangeStatus.ACCEPTED: {ExchangeStatus.IN_PROGRESS, ExchangeStatus.CANCELLED},
    ExchangeStatus.IN_PROGRESS: {
        ExchangeStatus.COMPLETED,
        ExchangeStatus.CANCELLED,
        ExchangeStatus.DISPUTED,
    },
    # Left only through DisputeDesk.resolve
    ExchangeStatus.DISPUTED: {ExchangeStatus.COMPLETED, ExchangeStatus.CANCELLED},
    ExchangeStatus.COMPLETED: set(),
    ExchangeStatus.CANCELLED: set(),
    ExchangeStatus.REJECTED: set(),
}

DEFAULT_MAX_MESSAGE_LENGTH = 1000
DEFAULT_MIN_HOURS = 0.5
DEFAULT_MAX_HOURS = 100.0


# ============ Role Resolution ============

def other_party(exchange: Exchange, actor_id: str) -> str:
    """Return the counterpart of ``actor_id`` in ``exchange``."""
    if actor_id == exchange.requester_id:
        return exchange.provider_id
    if actor_id == exchange.provider_id:
        return exchange.requester_id
    raise Forbidden(
        f"{actor_id} is not a party to exchange {exchange.exchange_id}"
    )


def require_party(exchange: Exchange, actor_id: str, action: str) -> None:
    if not exchange.is_party(actor_id):
        raise Forbidden(f"Not authorized to {action} exchange {exchange.exchange_id}")


def check_transition(
    exchange: Exchange, new_status: ExchangeStatus,
) -> None:
    """Raise InvalidTransition unless ``current -> new_status`` is an edge."""
    current = exchange.status
    allowed = VALID_TRANSITIONS.get(current, set())
    if new_status not in allowed:
        raise InvalidTransition(
            f"Invalid status transition: {current.value} -> {new_status.value}"
        )


def apply_status_change(
    exchange: Exchange,
    new_status: ExchangeStatus,
    actor_id: str,
    changeset: Changeset,
    now: datetime,
) -> None:
    """
    Write the new status and its counter side effects into ``changeset``.

    completed: both parties active -1, completed +1.
    cancelled / rejected from a live status: both parties active -1.
    """
    previous = exchange.status
    exchange.status = new_status
    exchange.updated_at = now

    if new_status == ExchangeStatus.COMPLETED:
        exchange.completion.completed_by = actor_id
        exchange.completion.completed_at = now
        for profile_id in exchange.party_ids:
            changeset.adjust_counters(profile_id, active=-1, completed=1)
    elif (
        new_status in (ExchangeStatus.CANCELLED, ExchangeStatus.REJECTED)
        and previous not in TERMINAL_STATUSES
    ):
        for profile_id in exchange.party_ids:
            changeset.adjust_counters(profile_id, active=-1)

    changeset.exchanges.append(exchange)
    logger.info(
        "Exchange %s: %s -> %s (by %s)",
        exchange.exchange_id, previous.value, new_status.value, actor_id,
    )


# ============ Boundary Validation ============

def parse_descriptor(
    data: SkillDescriptor | dict[str, Any],
    side: str,
    min_hours: float = DEFAULT_MIN_HOURS,
    max_hours: float = DEFAULT_MAX_HOURS,
) -> SkillDescriptor:
    """
    Validate one side of a barter.

    ``side`` is "requested" (needs ``urgency``) or "offered" (needs ``level``).
    """
    if isinstance(data, SkillDescriptor):
        raw = {
            "name": data.name,
            "category": data.category,
            "description": data.description,
            "estimated_hours": data.estimated_hours,
            "urgency": data.urgency,
            "level": data.level,
        }
    elif isinstance(data, dict):
        raw = dict(data)
    else:
        raise InvalidArgument(f"{side} skill must be an object")

    label = f"{side} skill"
    try:
        hours = float(raw.get("estimated_hours"))
    except (TypeError, ValueError):
        raise InvalidArgument(f"{label} estimated hours must be a number") from None
    if not math.isfinite(hours) or hours < min_hours or hours > max_hours:
        raise InvalidArgument(
            f"{label} estimated hours must be between {min_hours} and {max_hours}, "
            f"got {hours}"
        )

    descriptor = SkillDescriptor(
        name=check_text(raw.get("name"), f"{label} name", MAX_SKILL_NAME_LENGTH),
        category=parse_enum(SkillCategory, raw.get("category"), f"{label} category"),
        description=check_text(
            raw.get("description"), f"{label} description", MAX_SKILL_DESCRIPTION,
        ),
        estimated_hours=hours,
    )
    if side == "requested":
        descriptor.urgency = parse_enum(Urgency, raw.get("urgency"), f"{label} urgency")
    else:
        descriptor.level = parse_enum(
            ProficiencyLevel, raw.get("level"), f"{label} level",
        )
    return descriptor


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_location(data: Optional[Location | dict[str, Any]]) -> Optional[Location]:
    """Validate a meeting location; unknown keys are rejected."""
    if data is None:
        return None
    if isinstance(data, Location):
        data = {
            "region": data.region,
            "town": data.town,
            "specific_location": data.specific_location,
        }
    if not isinstance(data, dict):
        raise InvalidArgument("location must be an object")
    unknown = set(data) - set(Location.__dataclass_fields__)
    if unknown:
        raise InvalidArgument(f"Unknown location fields: {', '.join(sorted(unknown))}")
    return Location(**{
        key: check_text(value, f"location {key}", MAX_TITLE_LENGTH, required=False)
        for key, value in data.items()
    })


class ExchangeStateMachine:
    """
    Drives Exchange records through their lifecycle:

    pending -> accepted -> in_progress -> completed
    pending | accepted | in_progress -> cancelled
    pending -> rejected
    in_progress -> disputed -> completed | cancelled (resolver only)

    Deadlines are advisory: nothing transitions on expiry.
    """

    def __init__(
        self,
        store: EngineStore,
        event_pusher: EventPusher,
        exchange_locks: Optional[KeyedLock] = None,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        min_hours: float = DEFAULT_MIN_HOURS,
        max_hours: float = DEFAULT_MAX_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._event_pusher = event_pusher
        self._locks = exchange_locks or KeyedLock()
        self._max_message_length = max_message_length
        self._min_hours = min_hours
        self._max_hours = max_hours
        self._clock = clock

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    # ============ Queries ============

    async def get(self, exchange_id: str) -> Exchange:
        exchange = await self._store.get_exchange(exchange_id)
        if exchange is None:
            raise NotFound(f"Exchange {exchange_id} not found")
        return exchange

    async def list_for_profile(
        self,
        profile_id: str,
        role: str = "all",
        status: Optional[ExchangeStatus | str] = None,
    ) -> list[Exchange]:
        if role not in ("all", "requested", "providing"):
            raise InvalidArgument(f"Invalid role filter {role!r}")
        status_filter = parse_enum(ExchangeStatus, status, "status") if status else None
        return await self._store.list_exchanges(
            profile_id=profile_id, role=role, status=status_filter,
        )

    def is_overdue(self, exchange: Exchange, now: Optional[datetime] = None) -> bool:
        """Advisory only: past deadline while still in progress."""
        moment = now or self._clock()
        return (
            exchange.status == ExchangeStatus.IN_PROGRESS
            and moment > exchange.deadline
        )

    # ============ Proposal ============

    async def propose(
        self,
        requester_id: str,
        provider_id: str,
        requested_skill: SkillDescriptor | dict[str, Any],
        offered_skill: SkillDescriptor | dict[str, Any],
        deadline: datetime,
        meeting_preference: MeetingPreference | str,
        title: str = "",
        location: Optional[Location | dict[str, Any]] = None,
        tags: Optional[list[str]] = None,
    ) -> Exchange:
        """
        Create an Exchange in ``pending`` and count it as active for both
        parties.
        """
        if requester_id == provider_id:
            raise InvalidArgument("Requester and provider must be different profiles")

        requested = parse_descriptor(
            requested_skill, "requested", self._min_hours, self._max_hours,
        )
        offered = parse_descriptor(
            offered_skill, "offered", self._min_hours, self._max_hours,
        )
        preference = parse_enum(
            MeetingPreference, meeting_preference, "meeting preference",
        )
        if not isinstance(deadline, datetime):
            raise InvalidArgument("deadline must be a datetime")
        now = self._clock()
        deadline = _as_utc(deadline)
        if deadline <= now:
            raise InvalidArgument("deadline must be in the future")

        title_text = check_text(title, "title", MAX_TITLE_LENGTH, required=False)
        location = parse_location(location)

        requester = await self._store.get_profile(requester_id)
        if requester is None or not requester.is_active:
            raise NotFound(f"Requester {requester_id} not found")
        provider = await self._store.get_profile(provider_id)
        if provider is None or not provider.is_active:
            raise NotFound(f"Provider {provider_id} not found")

        exchange = Exchange(
            exchange_id=generate_id("exc"),
            requester_id=requester_id,
            provider_id=provider_id,
            requested_skill=requested,
            offered_skill=offered,
            deadline=deadline,
            meeting_preference=preference,
            title=title_text or f"{requested.name} for {offered.name}",
            location=location,
            tags=[t.strip().lower() for t in (tags or []) if t.strip()],
            created_at=now,
            updated_at=now,
        )

        changeset = Changeset(exchanges=[exchange])
        changeset.adjust_counters(requester_id, active=1)
        changeset.adjust_counters(provider_id, active=1)
        await self._store.apply(changeset)

        logger.info(
            "Exchange %s proposed: %s -> %s (%s for %s)",
            exchange.exchange_id, requester_id, provider_id,
            requested.name, offered.name,
        )
        await self._event_pusher.push(exchange_proposed(exchange))
        return exchange

    # ============ Transitions ============

    async def transition(
        self,
        exchange_id: str,
        actor_id: str,
        new_status: ExchangeStatus | str,
        reason: Optional[str] = None,
    ) -> Exchange:
        """
        Move an exchange along one edge of the graph on behalf of a party.

        Entering ``disputed`` requires a ``reason``. A disputed exchange does
        not accept party transitions; see DisputeDesk.resolve.
        """
        target = parse_enum(ExchangeStatus, new_status, "status")
        events: list[ExchangeEvent] = []

        async with self._locks.hold(exchange_id):
            exchange = await self.get(exchange_id)
            require_party(exchange, actor_id, "update")

            if exchange.status == ExchangeStatus.DISPUTED:
                raise InvalidTransition(
                    f"Exchange {exchange_id} is disputed; only a resolver can close it"
                )
            check_transition(exchange, target)

            now = self._clock()
            previous = exchange.status.value
            changeset = Changeset()

            if target == ExchangeStatus.DISPUTED:
                reason_text = check_text(reason, "dispute reason", MAX_SKILL_DESCRIPTION)
                exchange.dispute.is_disputed = True
                exchange.dispute.disputed_by = actor_id
                exchange.dispute.reason = reason_text
                exchange.dispute.disputed_at = now
                events.append(dispute_raised(exchange))

            apply_status_change(exchange, target, actor_id, changeset, now)
            await self._store.apply(changeset)
            events.insert(0, status_changed(exchange, previous, actor_id))

        await self._event_pusher.push_many(events)
        return exchange

    # ============ Transcript ============

    async def append_message(
        self, exchange_id: str, actor_id: str, text: str,
    ) -> Message:
        body = check_text(text, "message", self._max_message_length)

        async with self._locks.hold(exchange_id):
            exchange = await self.get(exchange_id)
            require_party(exchange, actor_id, "message in")

            message = Message(sender_id=actor_id, text=body, timestamp=self._clock())
            exchange.messages.append(message)
            exchange.updated_at = message.timestamp
            await self._store.apply(Changeset(exchanges=[exchange]))

        await self._event_pusher.push(
            message_appended(
                exchange_id, actor_id, body, message.timestamp, parties(exchange),
            )
        )
        return message

    # ============ Completion Details ============

    async def record_satisfaction(
        self,
        exchange_id: str,
        actor_id: str,
        satisfied: bool,
        notes: Optional[str] = None,
    ) -> Exchange:
        """Record one party's satisfaction flag on a completed exchange."""
        async with self._locks.hold(exchange_id):
            exchange = await self.get(exchange_id)
            require_party(exchange, actor_id, "rate")
            if exchange.status != ExchangeStatus.COMPLETED:
                raise InvalidTransition(
                    f"Exchange {exchange_id} is {exchange.status.value}, not completed"
                )

            if actor_id == exchange.requester_id:
                exchange.completion.requester_satisfied = bool(satisfied)
            else:
                exchange.completion.provider_satisfied = bool(satisfied)
            if notes is not None:
                exchange.completion.notes = check_text(
                    notes, "notes", MAX_SKILL_DESCRIPTION, required=False,
                )
            exchange.updated_at = self._clock()
            await self._store.apply(Changeset(exchanges=[exchange]))
        return exchange
