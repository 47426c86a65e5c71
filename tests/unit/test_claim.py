"""Tests for the optimistic touched_at claim."""

import asyncio
from datetime import timedelta

import pytest

from chapterforge_schemas import ProjectStatus, Tier

from services.scheduler.app.claim import claim, stale_cutoff
from services.scheduler.app.store import InMemoryStore
from tests.utils.factories import FIXED_NOW, make_project

pytestmark = pytest.mark.anyio("asyncio")

WINDOW = 4


@pytest.fixture
def anyio_backend():
    return "asyncio"


async def test_consecutive_ticks_claim_once() -> None:
    store = InMemoryStore([make_project("p1", cursor=3, touched_at=FIXED_NOW - timedelta(minutes=30))])

    first_now = FIXED_NOW
    first = await claim(store, ["p1"], stale_before=stale_cutoff(first_now, WINDOW), now=first_now, tier=Tier.RESUME)
    second_now = FIXED_NOW + timedelta(seconds=20)
    second = await claim(store, ["p1"], stale_before=stale_cutoff(second_now, WINDOW), now=second_now, tier=Tier.RESUME)

    assert first == ["p1"]
    assert second == []
    assert (await store.get_project("p1")).touched_at == first_now


async def test_overlapping_claims_never_share_projects() -> None:
    ids = [f"p{i}" for i in range(20)]
    store = InMemoryStore([make_project(project_id) for project_id in ids])
    cutoff = stale_cutoff(FIXED_NOW, WINDOW)

    results = await asyncio.gather(
        *(
            claim(store, list(reversed(ids)) if n % 2 else ids, stale_before=cutoff, now=FIXED_NOW, tier=Tier.COLD_START)
            for n in range(6)
        )
    )

    claimed = [project_id for result in results for project_id in result]
    assert sorted(claimed) == sorted(ids)
    assert len(claimed) == len(set(claimed))


async def test_claim_is_reacquired_after_window() -> None:
    store = InMemoryStore([make_project("p1", cursor=1)])
    await claim(store, ["p1"], stale_before=stale_cutoff(FIXED_NOW, WINDOW), now=FIXED_NOW, tier=Tier.RESUME)

    later = FIXED_NOW + timedelta(minutes=WINDOW, seconds=1)
    assert await claim(store, ["p1"], stale_before=stale_cutoff(later, WINDOW), now=later, tier=Tier.RESUME) == ["p1"]


async def test_claim_skips_inactive_and_unknown_projects() -> None:
    store = InMemoryStore([make_project("done", status=ProjectStatus.COMPLETED), make_project("ok")])
    claimed = await claim(
        store, ["done", "ghost", "ok"], stale_before=stale_cutoff(FIXED_NOW, WINDOW), now=FIXED_NOW, tier=Tier.RESUME
    )
    assert claimed == ["ok"]


async def test_claim_preserves_candidate_order() -> None:
    store = InMemoryStore([make_project(name) for name in ("a", "b", "c")])
    claimed = await claim(
        store, ["c", "a", "b"], stale_before=stale_cutoff(FIXED_NOW, WINDOW), now=FIXED_NOW, tier=Tier.RESUME
    )
    assert claimed == ["c", "a", "b"]
