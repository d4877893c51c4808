"""
Module-boundary Protocol definitions: the contracts between the engine
and its collaborators.

These Protocols define WHAT a collaborator must do, not HOW.
Any implementation that satisfies the Protocol can be used interchangeably:
the in-memory store for tests, the SQLAlchemy store in production.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from .events import ExchangeEvent
from .models import (
    Changeset,
    Exchange,
    ExchangeStatus,
    Review,
    SkillProfile,
)


# ============ Profiles (inbound) ============

@runtime_checkable
class ProfileStore(Protocol):
    """
    Profile existence / active-status lookup.

    Registration and profile editing live outside the engine; they call
    ``save_profile``. Counters and rating of an existing profile are
    preserved by ``save_profile`` and only change through ``apply``.
    Deactivation is also preserved; only ``deactivate_profile`` changes it.
    """

    async def get_profile(self, profile_id: str) -> Optional[SkillProfile]:
        ...

    async def list_profiles(self, active_only: bool = True) -> list[SkillProfile]:
        ...

    async def save_profile(self, profile: SkillProfile) -> SkillProfile:
        ...

    async def deactivate_profile(self, profile_id: str) -> bool:
        ...


# ============ Exchanges / Reviews ============

@runtime_checkable
class ExchangeStore(Protocol):

    async def get_exchange(self, exchange_id: str) -> Optional[Exchange]:
        """Return a private copy; mutating it has no effect until applied."""
        ...

    async def list_exchanges(
        self,
        profile_id: Optional[str] = None,
        role: str = "all",
        status: Optional[ExchangeStatus] = None,
    ) -> list[Exchange]:
        """Exchanges newest first, optionally filtered by party and status."""
        ...


@runtime_checkable
class ReviewStore(Protocol):

    async def get_review(self, review_id: str) -> Optional[Review]:
        ...

    async def list_reviews(
        self,
        reviewee_id: Optional[str] = None,
        exchange_id: Optional[str] = None,
    ) -> list[Review]:
        ...


@runtime_checkable
class EngineStore(ProfileStore, ExchangeStore, ReviewStore, Protocol):
    """
    The full storage contract the engine needs.

    ``apply`` is the single transactional update function: every exchange,
    review, counter delta and rating in the changeset commits together or
    not at all. Transient failures surface as ``Unavailable``.
    """

    async def apply(self, changeset: Changeset) -> None:
        ...

    async def exchange_report(self) -> dict[str, Any]:
        """Read-only aggregates for administrative analytics."""
        ...


# ============ Dispute Resolution ============

@runtime_checkable
class ResolverPolicy(Protocol):
    """Decides who may resolve a disputed exchange."""

    async def can_resolve(self, resolver_id: str, exchange: Exchange) -> bool:
        ...


# ============ Event Pusher (outbound) ============

@runtime_checkable
class EventPusher(Protocol):
    """
    Pushes exchange events to the product layer.

    The engine pushes ALL events after commit. The product layer decides
    what to display.
    """

    async def push(self, event: ExchangeEvent) -> None:
        """Push a single event."""
        ...

    async def push_many(self, events: list[ExchangeEvent]) -> None:
        """Push multiple events."""
        ...
