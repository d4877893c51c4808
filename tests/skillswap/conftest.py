"""
Shared test fixtures for all SkillSwap tests.

Provides a collecting event pusher, a controllable clock, sample profiles
and factories for driving exchanges through the engine.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from skillswap.builder import BarterEngine, EngineBuilder
from skillswap.core.events import EventType, ExchangeEvent
from skillswap.core.models import (
    NeededSkill,
    OfferedSkill,
    ProfileRole,
    SkillProfile,
)
from skillswap.infra.config import SkillSwapConfig
from skillswap.infra.memory_store import MemoryStore


# ============ Sample Data ============

REQUESTED_SKILL = {
    "name": "Guitar",
    "category": "Music",
    "description": "Learn basic chords and strumming",
    "estimated_hours": 15,
    "urgency": "High",
}

OFFERED_SKILL = {
    "name": "Python",
    "category": "Technical",
    "description": "Intro to Python scripting",
    "estimated_hours": 20,
    "level": "Advanced",
}


def sample_profiles() -> list[SkillProfile]:
    return [
        SkillProfile(
            profile_id="usr_alice",
            display_name="Alice",
            institution="University of Nairobi",
            region="Nairobi",
            offered_skills=[OfferedSkill.create("Python", "Technical", "Advanced")],
            needed_skills=[NeededSkill.create("Guitar", "Music", "High")],
        ),
        SkillProfile(
            profile_id="usr_bob",
            display_name="Bob",
            institution="University of Nairobi",
            region="Nairobi",
            offered_skills=[OfferedSkill.create("Guitar", "Music", "Expert")],
            needed_skills=[NeededSkill.create("python", "Technical", "Medium")],
        ),
        SkillProfile(
            profile_id="usr_carol",
            display_name="Carol",
            institution="Kenyatta University",
            region="Mombasa",
            offered_skills=[OfferedSkill.create("Spanish", "Language", "Intermediate")],
            needed_skills=[NeededSkill.create("Guitar", "Music", "Low")],
        ),
        SkillProfile(
            profile_id="usr_mod",
            display_name="Moderator",
            role=ProfileRole.MODERATOR,
        ),
    ]


# ============ Mock Event Pusher ============

class MockEventPusher:
    """Collects pushed events for test assertions."""

    def __init__(self):
        self.events: list[ExchangeEvent] = []

    async def push(self, event: ExchangeEvent) -> None:
        self.events.append(event)

    async def push_many(self, events: list[ExchangeEvent]) -> None:
        self.events.extend(events)

    def get_events_by_type(self, event_type: EventType) -> list[ExchangeEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def reset(self) -> None:
        self.events.clear()


# ============ Clock ============

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============ Fixtures ============

@pytest.fixture
def mock_pusher() -> MockEventPusher:
    return MockEventPusher()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest_asyncio.fixture
async def seeded_store(store: MemoryStore) -> MemoryStore:
    for profile in sample_profiles():
        await store.save_profile(profile)
    return store


@pytest.fixture
def config() -> SkillSwapConfig:
    return SkillSwapConfig()


@pytest.fixture
def engine(seeded_store, mock_pusher, clock, config) -> BarterEngine:
    return (
        EngineBuilder()
        .with_config(config)
        .with_store(seeded_store)
        .with_event_pusher(mock_pusher)
        .with_clock(clock)
        .build()
    )


@pytest.fixture
def propose(engine: BarterEngine, clock: FixedClock):
    """Factory: propose an exchange with valid defaults."""

    async def _propose(requester_id="usr_alice", provider_id="usr_bob", **overrides):
        kwargs = {
            "requested_skill": dict(REQUESTED_SKILL),
            "offered_skill": dict(OFFERED_SKILL),
            "deadline": clock.now + timedelta(days=14),
            "meeting_preference": "online",
        }
        kwargs.update(overrides)
        return await engine.exchanges.propose(requester_id, provider_id, **kwargs)

    return _propose


@pytest.fixture
def drive(engine: BarterEngine):
    """Factory: walk an exchange through a sequence of statuses."""

    async def _drive(exchange_id: str, *statuses: str, actor_id: str = "usr_bob"):
        exchange = None
        for status in statuses:
            exchange = await engine.exchanges.transition(exchange_id, actor_id, status)
        return exchange

    return _drive


@pytest_asyncio.fixture
async def in_progress_id(propose, drive) -> str:
    exchange = await propose()
    await drive(exchange.exchange_id, "accepted", "in_progress")
    return exchange.exchange_id


@pytest_asyncio.fixture
async def completed_id(in_progress_id, drive) -> str:
    await drive(in_progress_id, "completed")
    return in_progress_id
