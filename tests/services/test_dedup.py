"""Tests for in-flight request deduplication."""

from __future__ import annotations

import asyncio
import gc

import pytest

from tokenomics.services.dedup import RequestDeduplicator, generate_request_key


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_operation(deduplicator):
    calls = 0
    release = asyncio.Event()

    async def fetch() -> dict[str, str]:
        nonlocal calls
        calls += 1
        await release.wait()
        return {"id": "bitcoin"}

    first = asyncio.create_task(deduplicator.deduplicate("coin:bitcoin", fetch))
    second = asyncio.create_task(deduplicator.deduplicate("coin:bitcoin", fetch))
    await asyncio.sleep(0)
    assert deduplicator.is_pending("coin:bitcoin") is True

    release.set()
    results = await asyncio.gather(first, second)

    assert calls == 1
    assert results == [{"id": "bitcoin"}, {"id": "bitcoin"}]
    assert deduplicator.pending_count == 0


@pytest.mark.asyncio
async def test_different_keys_run_independently(deduplicator):
    calls: list[str] = []

    async def fetch(name: str) -> str:
        calls.append(name)
        await asyncio.sleep(0)
        return name

    results = await asyncio.gather(
        deduplicator.deduplicate("a", lambda: fetch("a")),
        deduplicator.deduplicate("b", lambda: fetch("b")),
    )

    assert results == ["a", "b"]
    assert sorted(calls) == ["a", "b"]


@pytest.mark.asyncio
async def test_failure_is_shared_and_releases_key(deduplicator):
    calls = 0

    async def failing() -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        raise RuntimeError("upstream down")

    results = await asyncio.gather(
        deduplicator.deduplicate("k", failing),
        deduplicator.deduplicate("k", failing),
        return_exceptions=True,
    )

    assert calls == 1
    assert all(isinstance(result, RuntimeError) for result in results)
    assert deduplicator.is_pending("k") is False

    async def succeeding() -> str:
        return "recovered"

    assert await deduplicator.deduplicate("k", succeeding) == "recovered"


@pytest.mark.asyncio
async def test_sequential_calls_are_not_deduplicated(deduplicator):
    calls = 0

    async def fetch() -> int:
        nonlocal calls
        calls += 1
        return calls

    assert await deduplicator.deduplicate("k", fetch) == 1
    assert await deduplicator.deduplicate("k", fetch) == 2


@pytest.mark.asyncio
async def test_stale_registration_is_dropped():
    clock = ManualClock()
    deduplicator = RequestDeduplicator(max_age=5.0, clock=clock)
    never = asyncio.Event()

    async def hangs() -> str:
        await never.wait()
        return "late"

    stuck = asyncio.create_task(deduplicator.deduplicate("k", hangs))
    await asyncio.sleep(0)
    assert deduplicator.is_pending("k") is True

    clock.now = 6.0

    async def fresh() -> str:
        return "fresh"

    assert await deduplicator.deduplicate("k", fresh) == "fresh"

    never.set()
    assert await stuck == "late"
    assert deduplicator.pending_count == 0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_operation(deduplicator):
    release = asyncio.Event()

    async def fetch() -> str:
        await release.wait()
        return "done"

    first = asyncio.create_task(deduplicator.deduplicate("k", fetch))
    second = asyncio.create_task(deduplicator.deduplicate("k", fetch))
    await asyncio.sleep(0)

    first.cancel()
    release.set()

    assert await second == "done"
    with pytest.raises(asyncio.CancelledError):
        await first


@pytest.mark.asyncio
async def test_clear_forgets_registrations(deduplicator):
    release = asyncio.Event()

    async def fetch() -> str:
        await release.wait()
        return "x"

    task = asyncio.create_task(deduplicator.deduplicate("k", fetch))
    await asyncio.sleep(0)

    deduplicator.clear()
    assert deduplicator.pending_count == 0

    release.set()
    assert await task == "x"


def test_request_key_matches_cache_key_format():
    assert generate_request_key("search", {"query": "btc", "limit": 5}) == (
        'search:limit:5|query:"btc"'
    )


@pytest.mark.asyncio
async def test_failure_after_all_callers_cancelled_is_retrieved(deduplicator):
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    release = asyncio.Event()

    async def failing() -> None:
        await release.wait()
        raise RuntimeError("upstream down")

    try:
        caller = asyncio.create_task(deduplicator.deduplicate("k", failing))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert deduplicator.is_pending("k") is False

        del caller
        gc.collect()
    finally:
        loop.set_exception_handler(previous_handler)

    assert not [
        context
        for context in reported
        if "never retrieved" in context.get("message", "")
    ]
