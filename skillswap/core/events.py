"""
Outbound events: one per committed change that other components care about.

The engine pushes ALL events; real-time delivery, notifications and
dashboards decide what to do with them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .models import Exchange, Rating, Review, generate_id, utcnow


class EventType(str, Enum):
    EXCHANGE_PROPOSED = "exchange.proposed"
    STATUS_CHANGED = "exchange.status_changed"
    MESSAGE_APPENDED = "exchange.message_appended"
    PROGRESS_UPDATED = "exchange.progress_updated"
    DISPUTE_RAISED = "exchange.disputed"
    DISPUTE_RESOLVED = "exchange.dispute_resolved"
    REVIEW_SUBMITTED = "review.submitted"
    REVIEW_MODERATED = "review.moderated"
    RATING_UPDATED = "rating.updated"


@dataclass
class ExchangeEvent:
    event_type: EventType
    exchange_id: str
    data: dict[str, Any] = field(default_factory=dict)
    party_ids: list[str] = field(default_factory=list)
    event_id: str = field(default_factory=lambda: generate_id("evt"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "exchange_id": self.exchange_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


# ============ Factories ============

def parties(exchange: Exchange) -> list[str]:
    return [exchange.requester_id, exchange.provider_id]


def exchange_proposed(exchange: Exchange) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.EXCHANGE_PROPOSED,
        exchange_id=exchange.exchange_id,
        party_ids=parties(exchange),
        data={
            "requester_id": exchange.requester_id,
            "provider_id": exchange.provider_id,
            "requested_skill": exchange.requested_skill.name,
            "offered_skill": exchange.offered_skill.name,
            "deadline": exchange.deadline.isoformat(),
        },
    )


def status_changed(
    exchange: Exchange, previous: str, actor_id: str,
) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.STATUS_CHANGED,
        exchange_id=exchange.exchange_id,
        party_ids=parties(exchange),
        data={
            "from": previous,
            "to": exchange.status.value,
            "actor_id": actor_id,
        },
    )


def message_appended(
    exchange_id: str, sender_id: str, text: str, timestamp: datetime,
    party_ids: Optional[list[str]] = None,
) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.MESSAGE_APPENDED,
        exchange_id=exchange_id,
        party_ids=list(party_ids or [sender_id]),
        data={
            "sender_id": sender_id,
            "text": text,
            "timestamp": timestamp.isoformat(),
        },
    )


def progress_updated(
    exchange_id: str, actor_id: str, task_id: str, percentage: int,
    party_ids: Optional[list[str]] = None,
) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.PROGRESS_UPDATED,
        exchange_id=exchange_id,
        party_ids=list(party_ids or [actor_id]),
        data={"actor_id": actor_id, "task_id": task_id, "percentage": percentage},
    )


def dispute_raised(exchange: Exchange) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.DISPUTE_RAISED,
        exchange_id=exchange.exchange_id,
        party_ids=parties(exchange),
        data={
            "disputed_by": exchange.dispute.disputed_by,
            "reason": exchange.dispute.reason,
        },
    )


def dispute_resolved(exchange: Exchange) -> ExchangeEvent:
    outcome = exchange.dispute.outcome
    return ExchangeEvent(
        event_type=EventType.DISPUTE_RESOLVED,
        exchange_id=exchange.exchange_id,
        party_ids=parties(exchange),
        data={
            "resolved_by": exchange.dispute.resolved_by,
            "outcome": outcome.value if outcome else None,
            "resolution": exchange.dispute.resolution,
        },
    )


def review_submitted(review: Review) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.REVIEW_SUBMITTED,
        exchange_id=review.exchange_id,
        party_ids=[review.reviewer_id, review.reviewee_id],
        data={
            "review_id": review.review_id,
            "reviewer_id": review.reviewer_id,
            "reviewee_id": review.reviewee_id,
            "rating": review.rating,
            "moderation_status": review.moderation.status.value,
        },
    )


def review_moderated(review: Review, previous: str) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.REVIEW_MODERATED,
        exchange_id=review.exchange_id,
        party_ids=[review.reviewer_id, review.reviewee_id],
        data={
            "review_id": review.review_id,
            "from": previous,
            "to": review.moderation.status.value,
            "moderated_by": review.moderation.moderated_by,
        },
    )


def rating_updated(
    exchange_id: str, profile_id: str, rating: Rating,
    previous: Optional[Rating] = None,
) -> ExchangeEvent:
    return ExchangeEvent(
        event_type=EventType.RATING_UPDATED,
        exchange_id=exchange_id,
        party_ids=[profile_id],
        data={
            "profile_id": profile_id,
            "mean": rating.mean,
            "count": rating.count,
            "previous_mean": previous.mean if previous else None,
            "previous_count": previous.count if previous else None,
        },
    )
