"""
In-memory EngineStore: the default store for headless use and tests.

Reads hand out deep copies, so callers can mutate freely and nothing is
visible until ``apply`` commits. ``apply`` validates the whole changeset
before writing anything and contains no suspension point, which makes it
atomic with respect to every other coroutine on the loop.
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from typing import Any, Optional

from skillswap.core.errors import AlreadyExists, InvalidTransition, NotFound
from skillswap.core.models import (
    Changeset,
    Exchange,
    ExchangeStatus,
    Review,
    SkillProfile,
)

logger = logging.getLogger(__name__)


class MemoryStore:
    """Dict-backed implementation of the EngineStore protocol."""

    def __init__(self) -> None:
        self._profiles: dict[str, SkillProfile] = {}
        self._exchanges: dict[str, Exchange] = {}
        self._reviews: dict[str, Review] = {}
        self.apply_count = 0

    # ============ Profiles ============

    async def get_profile(self, profile_id: str) -> Optional[SkillProfile]:
        profile = self._profiles.get(profile_id)
        return copy.deepcopy(profile) if profile else None

    async def list_profiles(self, active_only: bool = True) -> list[SkillProfile]:
        return [
            copy.deepcopy(p)
            for p in self._profiles.values()
            if p.is_active or not active_only
        ]

    async def save_profile(self, profile: SkillProfile) -> SkillProfile:
        stored = copy.deepcopy(profile)
        existing = self._profiles.get(profile.profile_id)
        if existing is not None:
            stored.rating = copy.deepcopy(existing.rating)
            stored.active_exchanges = existing.active_exchanges
            stored.completed_exchanges = existing.completed_exchanges
            stored.created_at = existing.created_at
            stored.is_active = existing.is_active
        self._profiles[profile.profile_id] = stored
        return copy.deepcopy(stored)

    async def deactivate_profile(self, profile_id: str) -> bool:
        profile = self._profiles.get(profile_id)
        if profile is None:
            return False
        profile.is_active = False
        logger.info("Profile %s deactivated", profile_id)
        return True

    # ============ Exchanges ============

    async def get_exchange(self, exchange_id: str) -> Optional[Exchange]:
        exchange = self._exchanges.get(exchange_id)
        return copy.deepcopy(exchange) if exchange else None

    async def list_exchanges(
        self,
        profile_id: Optional[str] = None,
        role: str = "all",
        status: Optional[ExchangeStatus] = None,
    ) -> list[Exchange]:
        result = []
        for exchange in self._exchanges.values():
            if profile_id is not None:
                if role == "requested" and exchange.requester_id != profile_id:
                    continue
                if role == "providing" and exchange.provider_id != profile_id:
                    continue
                if role == "all" and not exchange.is_party(profile_id):
                    continue
            if status is not None and exchange.status != status:
                continue
            result.append(copy.deepcopy(exchange))
        result.sort(key=lambda e: e.created_at, reverse=True)
        return result

    # ============ Reviews ============

    async def get_review(self, review_id: str) -> Optional[Review]:
        review = self._reviews.get(review_id)
        return copy.deepcopy(review) if review else None

    async def list_reviews(
        self,
        reviewee_id: Optional[str] = None,
        exchange_id: Optional[str] = None,
    ) -> list[Review]:
        result = [
            copy.deepcopy(r)
            for r in self._reviews.values()
            if (reviewee_id is None or r.reviewee_id == reviewee_id)
            and (exchange_id is None or r.exchange_id == exchange_id)
        ]
        result.sort(key=lambda r: r.created_at, reverse=True)
        return result

    # ============ Transactional Apply ============

    def _check(self, changeset: Changeset) -> None:
        for exchange in changeset.exchanges:
            stored = self._exchanges.get(exchange.exchange_id)
            current = stored.version if stored else 0
            if exchange.version != current:
                raise InvalidTransition(
                    f"Exchange {exchange.exchange_id} was modified concurrently"
                )

        for review in changeset.reviews:
            if review.review_id in self._reviews:
                continue
            for other in self._reviews.values():
                if (
                    other.reviewer_id == review.reviewer_id
                    and other.reviewee_id == review.reviewee_id
                    and other.exchange_id == review.exchange_id
                ):
                    raise AlreadyExists(
                        f"{review.reviewer_id} already reviewed {review.reviewee_id} "
                        f"for {review.exchange_id}"
                    )

        for profile_id in {*changeset.counter_deltas, *changeset.ratings}:
            if profile_id not in self._profiles:
                raise NotFound(f"Profile {profile_id} not found")

    async def apply(self, changeset: Changeset) -> None:
        self._check(changeset)

        for exchange in changeset.exchanges:
            exchange.version += 1
            self._exchanges[exchange.exchange_id] = copy.deepcopy(exchange)
        for review in changeset.reviews:
            self._reviews[review.review_id] = copy.deepcopy(review)
        for profile_id, delta in changeset.counter_deltas.items():
            profile = self._profiles[profile_id]
            profile.active_exchanges += delta.active
            profile.completed_exchanges += delta.completed
        for profile_id, rating in changeset.ratings.items():
            self._profiles[profile_id].rating = copy.deepcopy(rating)
        self.apply_count += 1

    # ============ Reporting ============

    async def exchange_report(self) -> dict[str, Any]:
        by_status = Counter(e.status.value for e in self._exchanges.values())
        approved = [r.rating for r in self._reviews.values() if r.is_approved]
        return {
            "total_exchanges": len(self._exchanges),
            "by_status": {s.value: by_status.get(s.value, 0) for s in ExchangeStatus},
            "total_reviews": len(self._reviews),
            "approved_reviews": len(approved),
            "average_rating": round(sum(approved) / len(approved), 2) if approved else 0.0,
            "active_profiles": sum(1 for p in self._profiles.values() if p.is_active),
        }
