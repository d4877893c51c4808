"""Tests for dispute raising, resolver policy and resolution."""

from __future__ import annotations

import pytest

from skillswap.builder import EngineBuilder
from skillswap.core.disputes import RoleResolverPolicy
from skillswap.core.errors import Forbidden, InvalidArgument, InvalidTransition, NotFound
from skillswap.core.events import EventType
from skillswap.core.models import ExchangeStatus
from skillswap.infra.config import SkillSwapConfig


async def _counters(engine, profile_id):
    profile = await engine.store.get_profile(profile_id)
    return profile.active_exchanges, profile.completed_exchanges


@pytest.fixture
def raise_dispute(engine, in_progress_id):
    async def _raise(actor_id="usr_alice", reason="Provider missed two sessions"):
        return await engine.disputes.raise_dispute(in_progress_id, actor_id, reason)
    return _raise


class TestRaiseDispute:
    @pytest.mark.asyncio
    async def test_either_party(self, raise_dispute):
        exchange = await raise_dispute(actor_id="usr_bob")
        assert exchange.status == ExchangeStatus.DISPUTED
        assert exchange.dispute.disputed_by == "usr_bob"

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, raise_dispute):
        with pytest.raises(Forbidden):
            await raise_dispute(actor_id="usr_carol")

    @pytest.mark.asyncio
    async def test_only_from_in_progress(self, engine, propose, completed_id):
        pending = await propose()
        for exchange_id in (pending.exchange_id, completed_id):
            with pytest.raises(InvalidTransition):
                await engine.disputes.raise_dispute(exchange_id, "usr_alice", "Unhappy")

    @pytest.mark.asyncio
    async def test_reason_required(self, raise_dispute):
        with pytest.raises(InvalidArgument):
            await raise_dispute(reason="")

    @pytest.mark.asyncio
    async def test_twice_rejected(self, raise_dispute):
        await raise_dispute()
        with pytest.raises(InvalidTransition):
            await raise_dispute(actor_id="usr_bob")


class TestResolverPolicy:
    @pytest.mark.asyncio
    async def test_moderator_may_resolve(self, seeded_store, in_progress_id):
        exchange = await seeded_store.get_exchange(in_progress_id)
        policy = RoleResolverPolicy(seeded_store)
        assert await policy.can_resolve("usr_mod", exchange)

    @pytest.mark.asyncio
    async def test_plain_user_may_not(self, seeded_store, in_progress_id):
        exchange = await seeded_store.get_exchange(in_progress_id)
        policy = RoleResolverPolicy(seeded_store)
        assert not await policy.can_resolve("usr_carol", exchange)
        assert not await policy.can_resolve("usr_ghost", exchange)

    @pytest.mark.asyncio
    async def test_listed_id_may_resolve(self, seeded_store, in_progress_id):
        exchange = await seeded_store.get_exchange(in_progress_id)
        policy = RoleResolverPolicy(seeded_store, resolver_ids=["usr_carol"])
        assert await policy.can_resolve("usr_carol", exchange)

    @pytest.mark.asyncio
    async def test_parties_never_resolve(self, seeded_store, in_progress_id):
        exchange = await seeded_store.get_exchange(in_progress_id)
        policy = RoleResolverPolicy(seeded_store, resolver_ids=["usr_alice"])
        assert not await policy.can_resolve("usr_alice", exchange)

    @pytest.mark.asyncio
    async def test_deactivated_moderator_may_not(self, seeded_store, in_progress_id):
        await seeded_store.deactivate_profile("usr_mod")
        exchange = await seeded_store.get_exchange(in_progress_id)
        assert not await RoleResolverPolicy(seeded_store).can_resolve("usr_mod", exchange)


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_completed(self, engine, in_progress_id, raise_dispute, clock, mock_pusher):
        await raise_dispute()
        mock_pusher.reset()

        exchange = await engine.disputes.resolve(
            in_progress_id, "usr_mod", "completed", "Sessions were delivered",
        )

        assert exchange.status == ExchangeStatus.COMPLETED
        assert exchange.dispute.outcome == ExchangeStatus.COMPLETED
        assert exchange.dispute.resolved_by == "usr_mod"
        assert exchange.dispute.resolved_at == clock.now
        assert exchange.dispute.resolution == "Sessions were delivered"
        assert exchange.dispute.is_disputed
        assert exchange.completion.completed_by == "usr_mod"
        assert await _counters(engine, "usr_alice") == (0, 1)
        assert await _counters(engine, "usr_bob") == (0, 1)

        types = [e.event_type for e in mock_pusher.events]
        assert types == [EventType.DISPUTE_RESOLVED, EventType.STATUS_CHANGED]

    @pytest.mark.asyncio
    async def test_resolve_cancelled(self, engine, in_progress_id, raise_dispute):
        await raise_dispute()
        exchange = await engine.disputes.resolve(
            in_progress_id, "usr_mod", ExchangeStatus.CANCELLED, "No sessions happened",
        )
        assert exchange.status == ExchangeStatus.CANCELLED
        assert await _counters(engine, "usr_alice") == (0, 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", ["in_progress", "rejected", "disputed", "pending"])
    async def test_invalid_outcome(self, engine, in_progress_id, raise_dispute, outcome):
        await raise_dispute()
        with pytest.raises(InvalidArgument, match="outcome"):
            await engine.disputes.resolve(in_progress_id, "usr_mod", outcome, "notes")

    @pytest.mark.asyncio
    async def test_party_forbidden(self, engine, in_progress_id, raise_dispute):
        await raise_dispute()
        with pytest.raises(Forbidden):
            await engine.disputes.resolve(in_progress_id, "usr_bob", "completed", "I did it")
        assert (await engine.exchanges.get(in_progress_id)).status == ExchangeStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_non_moderator_forbidden(self, engine, in_progress_id, raise_dispute):
        await raise_dispute()
        with pytest.raises(Forbidden):
            await engine.disputes.resolve(in_progress_id, "usr_carol", "completed", "ok")

    @pytest.mark.asyncio
    async def test_requires_disputed(self, engine, in_progress_id):
        with pytest.raises(InvalidTransition):
            await engine.disputes.resolve(in_progress_id, "usr_mod", "completed", "ok")

    @pytest.mark.asyncio
    async def test_resolution_notes_required(self, engine, in_progress_id, raise_dispute):
        await raise_dispute()
        with pytest.raises(InvalidArgument):
            await engine.disputes.resolve(in_progress_id, "usr_mod", "completed", " ")

    @pytest.mark.asyncio
    async def test_missing_exchange(self, engine):
        with pytest.raises(NotFound):
            await engine.disputes.resolve("exc_missing", "usr_mod", "completed", "ok")

    @pytest.mark.asyncio
    async def test_resolved_exchange_is_terminal(self, engine, in_progress_id, raise_dispute):
        await raise_dispute()
        await engine.disputes.resolve(in_progress_id, "usr_mod", "cancelled", "Refund")
        with pytest.raises(InvalidTransition):
            await engine.disputes.resolve(in_progress_id, "usr_mod", "completed", "Changed my mind")


class TestConfiguredResolvers:
    @pytest.mark.asyncio
    async def test_resolver_ids_from_config(self, seeded_store, mock_pusher, clock, propose):
        config = SkillSwapConfig(dispute_resolver_ids="usr_carol, usr_ops")
        engine = (
            EngineBuilder()
            .with_config(config)
            .with_store(seeded_store)
            .with_event_pusher(mock_pusher)
            .with_clock(clock)
            .build()
        )
        exchange = await propose()
        for status in ("accepted", "in_progress"):
            await engine.exchanges.transition(exchange.exchange_id, "usr_bob", status)
        await engine.disputes.raise_dispute(exchange.exchange_id, "usr_alice", "Late")

        resolved = await engine.disputes.resolve(
            exchange.exchange_id, "usr_carol", "completed", "Delivered",
        )
        assert resolved.status == ExchangeStatus.COMPLETED
