"""Tests for KeyedLock."""

from __future__ import annotations

import asyncio

import pytest

from skillswap.core.locks import KeyedLock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str):
            async with locks.hold("exc_1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLock()
        inside = asyncio.Event()

        async def holder():
            async with locks.hold("exc_1"):
                inside.set()
                await asyncio.sleep(0.05)

        async def other():
            await inside.wait()
            async with locks.hold("exc_2"):
                return locks.is_locked("exc_1")

        _, overlapped = await asyncio.gather(holder(), other())
        assert overlapped

    @pytest.mark.asyncio
    async def test_cleans_up_after_release(self):
        locks = KeyedLock()
        async with locks.hold("exc_1"):
            assert locks.is_locked("exc_1")
            assert len(locks) == 1
        assert not locks.is_locked("exc_1")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_releases_on_exception(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("exc_1"):
                raise RuntimeError("boom")
        assert len(locks) == 0
        async with locks.hold("exc_1"):
            pass
