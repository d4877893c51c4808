"""
Tests for the ReputationAggregator: review submission, moderation and
rating recompute.
"""

from __future__ import annotations

import asyncio

import pytest

from skillswap.builder import EngineBuilder
from skillswap.core.errors import (
    AlreadyExists,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
)
from skillswap.core.events import EventType
from skillswap.core.models import ModerationStatus, Rating, Review, ReviewTag
from skillswap.core.reputation import aggregate_rating
from skillswap.infra.config import SkillSwapConfig


def _review(rating: int, status: ModerationStatus = ModerationStatus.APPROVED) -> Review:
    review = Review(
        review_id=f"rev_{rating}_{status.value}",
        reviewer_id="usr_b",
        reviewee_id="usr_a",
        exchange_id="exc_1",
        rating=rating,
        was_successful=True,
        would_recommend=True,
    )
    review.moderation.status = status
    return review


async def _rating(engine, profile_id) -> Rating:
    return (await engine.store.get_profile(profile_id)).rating


@pytest.fixture
def review(engine):
    """Factory: submit a review with valid defaults."""

    async def _submit(exchange_id, reviewer_id="usr_bob", rating=5, **kwargs):
        kwargs.setdefault("was_successful", True)
        kwargs.setdefault("would_recommend", True)
        return await engine.reputation.submit_review(
            exchange_id, reviewer_id, rating, **kwargs,
        )

    return _submit


@pytest.fixture
def completed_pair(propose, drive):
    """Factory: a fresh completed exchange between Alice and Bob."""

    async def _make():
        exchange = await propose()
        await drive(exchange.exchange_id, "accepted", "in_progress", "completed")
        return exchange.exchange_id

    return _make


class TestAggregateRating:
    def test_empty(self):
        assert aggregate_rating([]) == Rating(mean=0.0, count=0)

    def test_mean_of_approved_only(self):
        reviews = [
            _review(5),
            _review(3),
            _review(1, ModerationStatus.REJECTED),
            _review(2, ModerationStatus.PENDING),
            _review(1, ModerationStatus.HIDDEN),
        ]
        assert aggregate_rating(reviews) == Rating(mean=4.0, count=2)

    def test_mean_is_not_rounded(self):
        reviews = [_review(5), _review(4), _review(4)]
        assert aggregate_rating(reviews) == Rating(mean=13 / 3, count=3)


class TestSubmitReview:
    @pytest.mark.asyncio
    async def test_reviewee_is_other_party(self, engine, completed_id, review, clock):
        submitted = await review(
            completed_id,
            comment="Great tutor, very patient with beginners",
            detailed_ratings={"communication": 5, "reliability": 4, "friendliness": None},
            skills_reviewed=[{"skill": "Guitar", "rating": 5}],
            tags=["patient", "great-mentor"],
        )

        assert submitted.reviewer_id == "usr_bob"
        assert submitted.reviewee_id == "usr_alice"
        assert submitted.created_at == clock.now
        assert submitted.detailed_ratings.communication == 5
        assert submitted.detailed_ratings.friendliness is None
        assert submitted.tags == [ReviewTag.PATIENT, ReviewTag.GREAT_MENTOR]
        assert submitted.is_comprehensive
        assert submitted.moderation.status == ModerationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_links_review_on_exchange(self, engine, completed_id, review):
        by_bob = await review(completed_id, "usr_bob")
        by_alice = await review(completed_id, "usr_alice", rating=4)

        exchange = await engine.exchanges.get(completed_id)
        assert exchange.reviews.provider_review_id == by_bob.review_id
        assert exchange.reviews.requester_review_id == by_alice.review_id

    @pytest.mark.asyncio
    async def test_updates_reviewee_rating(self, engine, completed_id, review):
        await review(completed_id, "usr_bob", rating=5)
        assert await _rating(engine, "usr_alice") == Rating(mean=5.0, count=1)
        assert await _rating(engine, "usr_bob") == Rating(mean=0.0, count=0)

    @pytest.mark.asyncio
    async def test_mean_over_several_exchanges(self, engine, completed_pair, review):
        for score in (5, 4, 3):
            await review(await completed_pair(), "usr_bob", rating=score)
        assert await _rating(engine, "usr_alice") == Rating(mean=4.0, count=3)

    @pytest.mark.asyncio
    async def test_requires_completed(self, engine, in_progress_id, review):
        with pytest.raises(InvalidTransition):
            await review(in_progress_id)

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, completed_id, review):
        with pytest.raises(Forbidden):
            await review(completed_id, "usr_carol")

    @pytest.mark.asyncio
    async def test_missing_exchange(self, review):
        with pytest.raises(NotFound):
            await review("exc_missing")

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, engine, completed_id, review):
        await review(completed_id, "usr_bob", rating=5)
        with pytest.raises(AlreadyExists):
            await review(completed_id, "usr_bob", rating=1)
        assert await _rating(engine, "usr_alice") == Rating(mean=5.0, count=1)

    @pytest.mark.asyncio
    async def test_concurrent_duplicates(self, engine, completed_id, review):
        results = await asyncio.gather(
            review(completed_id, "usr_bob", rating=5),
            review(completed_id, "usr_bob", rating=2),
            return_exceptions=True,
        )
        assert sum(isinstance(r, Review) for r in results) == 1
        assert sum(isinstance(r, AlreadyExists) for r in results) == 1
        assert (await _rating(engine, "usr_alice")).count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, 3.5])
    async def test_rating_bounds(self, completed_id, review, rating):
        with pytest.raises(InvalidArgument):
            await review(completed_id, rating=rating)

    @pytest.mark.asyncio
    async def test_detailed_rating_bounds(self, completed_id, review):
        with pytest.raises(InvalidArgument):
            await review(completed_id, detailed_ratings={"communication": 9})

    @pytest.mark.asyncio
    async def test_unknown_detailed_rating(self, completed_id, review):
        with pytest.raises(InvalidArgument, match="punctuality"):
            await review(completed_id, detailed_ratings={"punctuality": 5})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("skills", [
        [{"skill": "Guitar"}],
        [{"rating": 4}],
        [{"skill": "Guitar", "rating": 4, "stars": 5}],
        [{"skill": None, "rating": 4}],
        [{"skill": "Guitar", "rating": "4"}],
        ["Guitar"],
    ])
    async def test_malformed_skills_reviewed(self, engine, completed_id, review, skills):
        with pytest.raises(InvalidArgument):
            await review(completed_id, skills_reviewed=skills)
        assert await engine.store.list_reviews(exchange_id=completed_id) == []

    @pytest.mark.asyncio
    async def test_unknown_tag(self, completed_id, review):
        with pytest.raises(InvalidArgument):
            await review(completed_id, tags=["amazing"])

    @pytest.mark.asyncio
    async def test_comment_bound(self, completed_id, review):
        with pytest.raises(InvalidArgument):
            await review(completed_id, comment="x" * 501)

    @pytest.mark.asyncio
    async def test_events(self, completed_id, review, mock_pusher):
        mock_pusher.reset()
        await review(completed_id, rating=4)

        types = [e.event_type for e in mock_pusher.events]
        assert types == [EventType.REVIEW_SUBMITTED, EventType.RATING_UPDATED]
        rating_event = mock_pusher.events[1]
        assert rating_event.data["profile_id"] == "usr_alice"
        assert rating_event.data["mean"] == 4.0
        assert rating_event.data["previous_count"] == 0


class TestPendingModeration:
    @pytest.fixture
    def config(self) -> SkillSwapConfig:
        return SkillSwapConfig(default_review_moderation="pending")

    @pytest.mark.asyncio
    async def test_pending_review_does_not_count(self, engine, completed_id, review):
        submitted = await review(completed_id, rating=2)
        assert submitted.moderation.status == ModerationStatus.PENDING
        assert await _rating(engine, "usr_alice") == Rating(mean=0.0, count=0)

    @pytest.mark.asyncio
    async def test_approval_counts_it(self, engine, completed_id, review):
        submitted = await review(completed_id, rating=2)
        await engine.reputation.moderate(submitted.review_id, "usr_mod", "approved")
        assert await _rating(engine, "usr_alice") == Rating(mean=2.0, count=1)


class TestModerate:
    @pytest.mark.asyncio
    async def test_unapproval_removes_from_mean(self, engine, completed_pair, review, mock_pusher):
        kept = await review(await completed_pair(), rating=5)
        dropped = await review(await completed_pair(), rating=1)
        assert await _rating(engine, "usr_alice") == Rating(mean=3.0, count=2)
        mock_pusher.reset()

        moderated = await engine.reputation.moderate(dropped.review_id, "usr_mod", "rejected")

        assert moderated.moderation.status == ModerationStatus.REJECTED
        assert moderated.moderation.moderated_by == "usr_mod"
        assert await _rating(engine, "usr_alice") == Rating(mean=5.0, count=1)
        assert [e.event_type for e in mock_pusher.events] == [
            EventType.REVIEW_MODERATED, EventType.RATING_UPDATED,
        ]

        await engine.reputation.moderate(dropped.review_id, "usr_mod", "approved")
        assert await _rating(engine, "usr_alice") == Rating(mean=3.0, count=2)

        await engine.reputation.moderate(kept.review_id, "usr_mod", "hidden")
        assert await _rating(engine, "usr_alice") == Rating(mean=1.0, count=1)

    @pytest.mark.asyncio
    async def test_flag_with_reason(self, engine, completed_id, review):
        submitted = await review(completed_id)
        flagged = await engine.reputation.moderate(
            submitted.review_id, "usr_mod", "pending", reason="Reported as abusive",
        )
        assert flagged.moderation.is_flagged
        assert flagged.moderation.flag_reason == "Reported as abusive"
        assert await _rating(engine, "usr_alice") == Rating(mean=0.0, count=0)

        cleared = await engine.reputation.moderate(submitted.review_id, "usr_mod", "approved")
        assert not cleared.moderation.is_flagged

    @pytest.mark.asyncio
    async def test_unknown_status(self, engine, completed_id, review):
        submitted = await review(completed_id)
        with pytest.raises(InvalidArgument):
            await engine.reputation.moderate(submitted.review_id, "usr_mod", "deleted")

    @pytest.mark.asyncio
    async def test_missing_review(self, engine):
        with pytest.raises(NotFound):
            await engine.reputation.moderate("rev_missing", "usr_mod", "approved")

    @pytest.mark.asyncio
    async def test_reviews_for_hides_unapproved(self, engine, completed_pair, review):
        visible = await review(await completed_pair(), rating=5)
        hidden = await review(await completed_pair(), rating=1)
        await engine.reputation.moderate(hidden.review_id, "usr_mod", "hidden")

        shown = await engine.reputation.reviews_for("usr_alice")
        assert [r.review_id for r in shown] == [visible.review_id]
        everything = await engine.reputation.reviews_for("usr_alice", include_unapproved=True)
        assert len(everything) == 2


class TestResponses:
    @pytest.mark.asyncio
    async def test_reviewee_responds_once(self, engine, completed_id, review, clock):
        submitted = await review(completed_id)
        answered = await engine.reputation.respond(
            submitted.review_id, "usr_alice", "Thank you!", is_public=False,
        )
        assert answered.response.content == "Thank you!"
        assert answered.response.responded_at == clock.now
        assert answered.response.is_public is False

        with pytest.raises(AlreadyExists):
            await engine.reputation.respond(submitted.review_id, "usr_alice", "Again")

    @pytest.mark.asyncio
    async def test_only_reviewee(self, engine, completed_id, review):
        submitted = await review(completed_id)
        with pytest.raises(Forbidden):
            await engine.reputation.respond(submitted.review_id, "usr_bob", "Self reply")

    @pytest.mark.asyncio
    async def test_response_keeps_rating(self, engine, completed_id, review):
        submitted = await review(completed_id, rating=4)
        await engine.reputation.respond(submitted.review_id, "usr_alice", "Thanks")
        stored = await engine.reputation.get_review(submitted.review_id)
        assert stored.rating == 4

    @pytest.mark.asyncio
    async def test_mark_helpful(self, engine, completed_id, review):
        submitted = await review(completed_id)
        await engine.reputation.mark_helpful(submitted.review_id)
        voted = await engine.reputation.mark_helpful(submitted.review_id)
        assert voted.helpful_votes == 2


class TestRecompute:
    @pytest.mark.asyncio
    async def test_recompute_matches_stored(self, engine, completed_pair, review):
        for score in (4, 5):
            await review(await completed_pair(), rating=score)
        rating = await engine.reputation.recompute("usr_alice")
        assert rating == Rating(mean=4.5, count=2)
        assert await _rating(engine, "usr_alice") == rating

    @pytest.mark.asyncio
    async def test_recompute_without_reviews(self, engine):
        assert await engine.reputation.recompute("usr_carol") == Rating(mean=0.0, count=0)

    @pytest.mark.asyncio
    async def test_recompute_unknown_profile(self, engine):
        with pytest.raises(NotFound):
            await engine.reputation.recompute("usr_ghost")


class TestConfiguredDefault:
    @pytest.mark.asyncio
    async def test_invalid_default_moderation(self, seeded_store):
        config = SkillSwapConfig(default_review_moderation="maybe")
        with pytest.raises(InvalidArgument):
            EngineBuilder().with_config(config).with_store(seeded_store).build()
