"""
Read coalescing tests: same-tick gets share one MGET.
"""

from __future__ import annotations

import asyncio

import pytest

from cachemesh.core.errors import CommandError, ErrorCode, PoolError


@pytest.fixture
def coalescing_store(make_store):
    return make_store(coalesce_reads=True)


async def test_same_tick_gets_share_one_mget(coalescing_store, server):
    store = coalescing_store
    await store.set("a", 1)
    await store.set("b", 2)

    results = await asyncio.gather(store.get("a"), store.get("b"), store.get("a"), store.get("c"))

    assert results == [1, 2, 1, None]
    assert server.count("MGET") == 1
    assert server.count("GET") == 0
    # duplicate keys are fetched once
    assert [args for name, args in server.commands if name == "MGET"] == [(b"a", b"b", b"c")]


async def test_later_ticks_form_new_batches(coalescing_store, server):
    store = coalescing_store
    await store.set("a", 1)
    assert await store.get("a") == 1
    assert await store.get("a") == 1
    assert server.count("MGET") == 2


async def test_each_caller_decodes_with_its_own_policy(coalescing_store):
    store = coalescing_store
    await store.set("plain", "p")
    await store.set("packed", "z", {"compress": True})

    plain, packed = await asyncio.gather(
        store.get("plain"),
        store.get("packed", {"compress": True}),
    )
    assert (plain, packed) == ("p", "z")


async def test_batch_failure_reaches_every_caller(coalescing_store, server):
    store = coalescing_store
    server.reject_on.add("MGET")
    results = await asyncio.gather(store.get("a"), store.get("b"), return_exceptions=True)
    assert all(isinstance(r, CommandError) for r in results)
    assert results[0].code is ErrorCode.COMMAND_FAILED
    assert store.pool.in_use == 0


async def test_unreachable_server_reaches_every_caller(coalescing_store, server):
    server.down = True
    results = await asyncio.gather(
        coalescing_store.get("a"), coalescing_store.get("b"), return_exceptions=True,
    )
    assert all(isinstance(r, PoolError) for r in results)


async def test_metrics_count_each_caller(coalescing_store):
    store = coalescing_store
    await store.set("a", 1)
    await asyncio.gather(store.get("a"), store.get("missing"))
    assert store.metrics.get_count == 2
    assert (store.metrics.hits, store.metrics.misses) == (1, 1)
