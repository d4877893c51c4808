"""
Reputation aggregator: reviews of completed exchanges and the ratings
derived from them.

A profile's rating is always recomputed from the full set of approved
reviews, never maintained as a running average, so moderation reversals
are reflected on the next recompute. Recomputes are serialized per
reviewee and committed in the same Changeset as the review that caused
them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from .errors import AlreadyExists, Forbidden, InvalidArgument, InvalidTransition, NotFound
from .events import (
    ExchangeEvent,
    rating_updated,
    review_moderated,
    review_submitted,
)
from .locks import KeyedLock
from .models import (
    MAX_COMMENT_LENGTH,
    MAX_SKILL_NAME_LENGTH,
    Changeset,
    DetailedRatings,
    Exchange,
    ExchangeStatus,
    Moderation,
    ModerationStatus,
    Rating,
    Review,
    ReviewResponse,
    ReviewTag,
    SkillRating,
    check_rating,
    check_text,
    generate_id,
    parse_enum,
    utcnow,
)
from .protocols import EngineStore, EventPusher
from .state_machine import other_party

logger = logging.getLogger(__name__)


def aggregate_rating(reviews: Iterable[Review]) -> Rating:
    """Mean and count over exactly the approved reviews."""
    ratings = [r.rating for r in reviews if r.is_approved]
    if not ratings:
        return Rating(mean=0.0, count=0)
    return Rating(mean=sum(ratings) / len(ratings), count=len(ratings))


def _parse_detailed(data: Optional[DetailedRatings | dict[str, Any]]) -> DetailedRatings:
    if data is None:
        return DetailedRatings()
    if isinstance(data, DetailedRatings):
        data = {
            "communication": data.communication,
            "skill_level": data.skill_level,
            "reliability": data.reliability,
            "friendliness": data.friendliness,
            "meetup_experience": data.meetup_experience,
        }
    known = set(DetailedRatings.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise InvalidArgument(f"Unknown detailed ratings: {', '.join(sorted(unknown))}")
    return DetailedRatings(**{
        key: check_rating(value, key)
        for key, value in data.items()
        if value is not None
    })


def _parse_skills_reviewed(
    items: Optional[list[SkillRating | dict[str, Any]]],
) -> list[SkillRating]:
    known = set(SkillRating.__dataclass_fields__)
    parsed = []
    for item in items or []:
        if isinstance(item, dict):
            unknown = set(item) - known
            if unknown:
                raise InvalidArgument(
                    f"Unknown skill rating fields: {', '.join(sorted(unknown))}"
                )
            if "skill" not in item or "rating" not in item:
                raise InvalidArgument("Each reviewed skill needs a skill and a rating")
            item = SkillRating(**item)
        elif not isinstance(item, SkillRating):
            raise InvalidArgument("Each reviewed skill must be an object")
        parsed.append(SkillRating(
            skill=check_text(item.skill, "reviewed skill", MAX_SKILL_NAME_LENGTH),
            rating=check_rating(item.rating, f"rating for {item.skill}"),
            comment=check_text(
                item.comment, "skill comment", MAX_COMMENT_LENGTH, required=False,
            ),
        ))
    return parsed


class ReputationAggregator:
    """Accepts reviews, applies moderation decisions, recomputes ratings."""

    def __init__(
        self,
        store: EngineStore,
        event_pusher: EventPusher,
        exchange_locks: Optional[KeyedLock] = None,
        reviewee_locks: Optional[KeyedLock] = None,
        default_moderation: ModerationStatus | str = ModerationStatus.APPROVED,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._event_pusher = event_pusher
        self._exchange_locks = exchange_locks or KeyedLock()
        self._reviewee_locks = reviewee_locks or KeyedLock()
        self._default_moderation = parse_enum(
            ModerationStatus, default_moderation, "moderation status",
        )
        self._clock = clock

    # ============ Queries ============

    async def get_review(self, review_id: str) -> Review:
        review = await self._store.get_review(review_id)
        if review is None:
            raise NotFound(f"Review {review_id} not found")
        return review

    async def reviews_for(
        self, profile_id: str, include_unapproved: bool = False,
    ) -> list[Review]:
        reviews = await self._store.list_reviews(reviewee_id=profile_id)
        if include_unapproved:
            return reviews
        return [r for r in reviews if r.is_approved]

    # ============ Submission ============

    async def submit_review(
        self,
        exchange_id: str,
        reviewer_id: str,
        rating: int,
        was_successful: bool,
        would_recommend: bool,
        comment: Optional[str] = None,
        detailed_ratings: Optional[DetailedRatings | dict[str, Any]] = None,
        skills_reviewed: Optional[list[SkillRating | dict[str, Any]]] = None,
        tags: Optional[list[ReviewTag | str]] = None,
    ) -> Review:
        """
        Review the other party of a completed exchange.

        At most one review per (reviewer, reviewee, exchange).
        """
        score = check_rating(rating)
        detailed = _parse_detailed(detailed_ratings)
        skills = _parse_skills_reviewed(skills_reviewed)
        parsed_tags = [parse_enum(ReviewTag, t, "review tag") for t in (tags or [])]
        comment_text = check_text(
            comment, "comment", MAX_COMMENT_LENGTH, required=False,
        ) or None

        events: list[ExchangeEvent] = []
        async with self._exchange_locks.hold(exchange_id):
            exchange = await self._store.get_exchange(exchange_id)
            if exchange is None:
                raise NotFound(f"Exchange {exchange_id} not found")
            reviewee_id = other_party(exchange, reviewer_id)
            if exchange.status != ExchangeStatus.COMPLETED:
                raise InvalidTransition("Can only review completed exchanges")

            async with self._reviewee_locks.hold(reviewee_id):
                existing = await self._store.list_reviews(reviewee_id=reviewee_id)
                if any(
                    r.reviewer_id == reviewer_id and r.exchange_id == exchange_id
                    for r in existing
                ):
                    raise AlreadyExists(
                        f"{reviewer_id} already reviewed {reviewee_id} for {exchange_id}"
                    )

                now = self._clock()
                review = Review(
                    review_id=generate_id("rev"),
                    reviewer_id=reviewer_id,
                    reviewee_id=reviewee_id,
                    exchange_id=exchange_id,
                    rating=score,
                    was_successful=bool(was_successful),
                    would_recommend=bool(would_recommend),
                    comment=comment_text,
                    detailed_ratings=detailed,
                    skills_reviewed=skills,
                    tags=parsed_tags,
                    moderation=Moderation(status=self._default_moderation),
                    created_at=now,
                )
                self._link_review(exchange, review)
                exchange.updated_at = now

                changeset = Changeset(exchanges=[exchange], reviews=[review])
                events.append(review_submitted(review))
                events.extend(await self._stage_recompute(
                    reviewee_id, [*existing, review], changeset, exchange_id,
                ))
                await self._store.apply(changeset)

        logger.info(
            "Review %s: %s rated %s %d/5 on %s (%s)",
            review.review_id, reviewer_id, reviewee_id, score, exchange_id,
            review.moderation.status.value,
        )
        await self._event_pusher.push_many(events)
        return review

    @staticmethod
    def _link_review(exchange: Exchange, review: Review) -> None:
        if review.reviewer_id == exchange.requester_id:
            exchange.reviews.requester_review_id = review.review_id
        else:
            exchange.reviews.provider_review_id = review.review_id

    # ============ Moderation (inbound) ============

    async def moderate(
        self,
        review_id: str,
        moderator_id: str,
        status: ModerationStatus | str,
        reason: Optional[str] = None,
    ) -> Review:
        """
        Apply a moderation decision and recompute the reviewee's rating.

        Moving a review back to pending with a reason flags it.
        """
        new_status = parse_enum(ModerationStatus, status, "moderation status")
        probe = await self.get_review(review_id)

        events: list[ExchangeEvent] = []
        async with self._reviewee_locks.hold(probe.reviewee_id):
            existing = await self._store.list_reviews(reviewee_id=probe.reviewee_id)
            review = next((r for r in existing if r.review_id == review_id), None)
            if review is None:
                raise NotFound(f"Review {review_id} not found")

            previous = review.moderation.status.value
            review.moderation.status = new_status
            review.moderation.moderated_by = moderator_id
            review.moderation.moderated_at = self._clock()
            if new_status == ModerationStatus.PENDING and reason:
                review.moderation.is_flagged = True
                review.moderation.flag_reason = check_text(
                    reason, "flag reason", MAX_COMMENT_LENGTH,
                )
            elif new_status == ModerationStatus.APPROVED:
                review.moderation.is_flagged = False

            changeset = Changeset(reviews=[review])
            events.append(review_moderated(review, previous))
            events.extend(await self._stage_recompute(
                review.reviewee_id, existing, changeset, review.exchange_id,
            ))
            await self._store.apply(changeset)

        logger.info(
            "Review %s moderated by %s: %s -> %s",
            review_id, moderator_id, previous, new_status.value,
        )
        await self._event_pusher.push_many(events)
        return review

    # ============ Reviewee Response / Votes ============

    async def respond(
        self,
        review_id: str,
        actor_id: str,
        content: str,
        is_public: bool = True,
    ) -> Review:
        """The reviewee's single, append-only reply."""
        text = check_text(content, "response", MAX_COMMENT_LENGTH)
        probe = await self.get_review(review_id)
        if actor_id != probe.reviewee_id:
            raise Forbidden("Only the reviewee can respond to a review")

        async with self._reviewee_locks.hold(probe.reviewee_id):
            review = await self.get_review(review_id)
            if review.response is not None:
                raise AlreadyExists(f"Review {review_id} already has a response")
            review.response = ReviewResponse(
                content=text, responded_at=self._clock(), is_public=bool(is_public),
            )
            await self._store.apply(Changeset(reviews=[review]))
        return review

    async def mark_helpful(self, review_id: str) -> Review:
        probe = await self.get_review(review_id)
        async with self._reviewee_locks.hold(probe.reviewee_id):
            review = await self.get_review(review_id)
            review.helpful_votes += 1
            await self._store.apply(Changeset(reviews=[review]))
        return review

    # ============ Recompute ============

    async def recompute(self, profile_id: str) -> Rating:
        """Re-derive ``profile_id``'s rating from its approved reviews."""
        async with self._reviewee_locks.hold(profile_id):
            reviews = await self._store.list_reviews(reviewee_id=profile_id)
            changeset = Changeset()
            events = await self._stage_recompute(profile_id, reviews, changeset, "")
            await self._store.apply(changeset)
        await self._event_pusher.push_many(events)
        return changeset.ratings[profile_id]

    async def _stage_recompute(
        self,
        profile_id: str,
        reviews: list[Review],
        changeset: Changeset,
        exchange_id: str,
    ) -> list[ExchangeEvent]:
        """
        Put the recomputed rating into ``changeset``.

        Reviews staged in the changeset win over the stored copies.
        Caller must hold the reviewee lock.
        """
        staged = {r.review_id: r for r in changeset.reviews}
        merged = [staged.pop(r.review_id, r) for r in reviews]
        merged.extend(staged.values())

        rating = aggregate_rating(r for r in merged if r.reviewee_id == profile_id)
        changeset.ratings[profile_id] = rating

        profile = await self._store.get_profile(profile_id)
        previous = profile.rating if profile else None
        logger.info(
            "Rating for %s recomputed: %.2f over %d approved reviews",
            profile_id, rating.mean, rating.count,
        )
        return [rating_updated(exchange_id, profile_id, rating, previous)]
