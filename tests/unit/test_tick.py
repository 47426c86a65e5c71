"""End-to-end tick tests against the in-memory store."""

import asyncio
from datetime import date, timedelta

import pytest

from chapterforge_providers import mock_provider_config
from chapterforge_schemas import (
    AttemptStatus,
    CompletionReason,
    ContentUnit,
    DailyQuota,
    FailureKind,
    ProjectStatus,
    QuotaStatus,
    Tier,
)

from services.scheduler.app.errors import StoreError
from services.scheduler.app.generation import ChapterGenerator
from services.scheduler.app.providers import fallback_config
from services.scheduler.app.store import InMemoryStore
from services.scheduler.app.tick import TickRunner
from tests.utils.factories import FIXED_NOW, FixedClock, StoryStubProvider, make_project, make_settings

pytestmark = pytest.mark.anyio("asyncio")

DAY = date(2026, 3, 10)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _runner(monkeypatch, store, stub, clock, **overrides) -> TickRunner:
    monkeypatch.setattr("services.scheduler.app.generation.ProviderFactory.create", lambda config: stub)
    settings = make_settings(**overrides)
    primary = mock_provider_config()
    generator = ChapterGenerator(primary, fallback_config(primary, settings))
    return TickRunner(store, settings, generator=generator, clock=clock)


async def _seed_chapters(store: InMemoryStore, output_id: str, numbers) -> None:
    for number in numbers:
        await store.upsert_chapter(
            ContentUnit(output_id=output_id, number=number, title=f"Old {number}", content="Earlier prose.")
        )


async def test_cold_start_writes_first_chapter(monkeypatch) -> None:
    project = make_project("fresh")
    store = InMemoryStore([project])
    clock = FixedClock()
    runner = _runner(monkeypatch, store, StoryStubProvider(), clock)

    summary = await runner.run()

    assert summary.day == DAY
    assert summary.quotas_created == 1
    assert summary.cold_start.claimed == 1
    assert summary.cold_start.succeeded == 1
    assert summary.outcomes[0].chapter == 1
    assert (await store.get_project("fresh")).cursor == 1
    assert store.chapters[(project.output_id, 1)].title == "Trial 1"
    assert store.summaries[("fresh", 1)].summary == "Summary of chapter 1."

    quota = store.quotas[("fresh", DAY)]
    assert quota.written == 1
    assert quota.next_due_at >= FIXED_NOW + timedelta(minutes=5)


async def test_immediate_second_tick_writes_nothing(monkeypatch) -> None:
    store = InMemoryStore([make_project("fresh")])
    clock = FixedClock()
    runner = _runner(monkeypatch, store, StoryStubProvider(), clock)

    await runner.run()
    clock.advance(minutes=1)
    second = await runner.run()

    assert second.outcomes == []
    assert second.due == 0
    assert (await store.get_project("fresh")).cursor == 1


async def test_resume_advances_sequentially(monkeypatch) -> None:
    project = make_project("warm", cursor=3)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 4))
    clock = FixedClock()
    runner = _runner(monkeypatch, store, StoryStubProvider(), clock)

    first = await runner.run()
    clock.now = store.quotas[("warm", DAY)].next_due_at + timedelta(seconds=1)
    second = await runner.run()

    assert [o.chapter for o in first.outcomes + second.outcomes] == [4, 5]
    assert first.resume.succeeded == 1
    assert (await store.get_project("warm")).cursor == 5
    assert store.quotas[("warm", DAY)].written == 2


async def test_daily_quota_completion(monkeypatch) -> None:
    project = make_project("busy", cursor=40)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 41))
    await store.insert_quotas(
        [DailyQuota(project_id="busy", day=DAY, target=20, written=19, next_due_at=FIXED_NOW - timedelta(minutes=1))]
    )
    clock = FixedClock()
    runner = _runner(monkeypatch, store, StoryStubProvider(), clock)

    await runner.run()
    quota = store.quotas[("busy", DAY)]
    assert quota.written == 20
    assert quota.status == QuotaStatus.COMPLETED
    assert quota.next_due_at is None

    clock.advance(minutes=90)
    later = await runner.run()
    assert later.outcomes == []
    assert (await store.get_project("busy")).cursor == 41


async def test_existing_next_chapter_is_overwritten(monkeypatch) -> None:
    project = make_project("p1", cursor=3)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 5))
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    await runner.run()

    assert len([key for key in store.chapters if key[0] == project.output_id]) == 4
    assert store.chapters[(project.output_id, 4)].title == "Trial 4"
    assert (await store.get_project("p1")).cursor == 4


async def test_gap_is_healed_without_moving_cursor(monkeypatch) -> None:
    project = make_project("gappy", cursor=6)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, [1, 2, 4, 5, 6])
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    outcome = summary.outcomes[0]
    assert outcome.chapter == 3
    assert outcome.backfill
    assert store.chapters[(project.output_id, 3)].title == "Trial 3"
    assert (project.output_id, 7) not in store.chapters
    assert (await store.get_project("gappy")).cursor == 6


async def test_cursor_ahead_is_corrected(monkeypatch) -> None:
    project = make_project("ahead", cursor=8)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 6))
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.outcomes[0].chapter == 6
    assert (await store.get_project("ahead")).cursor == 6


async def test_exact_target_completes_project(monkeypatch) -> None:
    project = make_project("closing", cursor=199, target=200)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 200))
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    stored = await store.get_project("closing")
    assert stored.status == ProjectStatus.COMPLETED
    assert stored.completion_reason == CompletionReason.EXACT_TARGET
    assert summary.resume.completed == 1
    assert summary.outcomes[0].completion_reason == CompletionReason.EXACT_TARGET


async def test_natural_ending_in_grace(monkeypatch) -> None:
    project = make_project("epic", cursor=202, target=200)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 203))
    stub = StoryStubProvider(
        chapter_text={203: "Peace returned to the valley at last.\n\nThe End"},
        chapter_title=lambda number: "Epilogue",
    )
    runner = _runner(monkeypatch, store, stub, FixedClock())

    await runner.run()

    assert (await store.get_project("epic")).completion_reason == CompletionReason.NATURAL_ENDING


async def test_timeout_records_quota_failure(monkeypatch) -> None:
    store = InMemoryStore([make_project("slow")])
    runner = _runner(
        monkeypatch,
        store,
        StoryStubProvider(delay=2.0),
        FixedClock(),
        cold_start_timeout_seconds=0.05,
        resume_timeout_seconds=0.05,
        invocation_budget_seconds=5.0,
    )

    summary = await runner.run()

    outcome = summary.outcomes[0]
    assert outcome.status == AttemptStatus.TIMED_OUT
    assert outcome.failure_kind == FailureKind.TIMEOUT
    assert summary.cold_start.timed_out == 1
    quota = store.quotas[("slow", DAY)]
    assert quota.retry_count == 1
    assert quota.next_due_at == FIXED_NOW + timedelta(minutes=10)
    project = await store.get_project("slow")
    assert project.cursor == 0
    assert project.last_error.startswith("Timed out")


class _BrokenOutputStore(InMemoryStore):
    async def upsert_chapter(self, unit: ContentUnit) -> None:
        if unit.output_id == "novel-bad":
            raise RuntimeError("disk full")
        await super().upsert_chapter(unit)


async def test_one_failure_does_not_affect_others(monkeypatch) -> None:
    store = _BrokenOutputStore([make_project("bad", cursor=0), make_project("good", cursor=0)])
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock(), summary_attempts=2)

    summary = await runner.run()

    by_id = {outcome.project_id: outcome for outcome in summary.outcomes}
    assert by_id["good"].status == AttemptStatus.SUCCEEDED
    assert by_id["bad"].status == AttemptStatus.FAILED
    assert by_id["bad"].failure_kind == FailureKind.PERSISTENCE
    assert (await store.get_project("good")).cursor == 1
    assert (await store.get_project("bad")).cursor == 0
    assert store.quotas[("bad", DAY)].retry_count == 1
    assert store.quotas[("good", DAY)].written == 1


async def test_generation_failure_is_recorded(monkeypatch) -> None:
    store = InMemoryStore([make_project("p1", cursor=2)])
    await _seed_chapters(store, "novel-p1", [1, 2])
    stub = StoryStubProvider(fail_purposes=("chapter", "chapter_fallback"))
    runner = _runner(monkeypatch, store, stub, FixedClock())

    summary = await runner.run()

    assert summary.outcomes[0].failure_kind == FailureKind.GENERATION
    assert summary.resume.failed == 1
    assert (await store.get_project("p1")).cursor == 2
    assert ("novel-p1", 3) not in store.chapters


async def test_overlapping_ticks_write_each_project_once(monkeypatch) -> None:
    store = InMemoryStore([make_project(f"p{i}") for i in range(4)])
    stub = StoryStubProvider(delay=0.01)
    clock = FixedClock()
    first = _runner(monkeypatch, store, stub, clock, cold_start_per_tick=4)
    second = _runner(monkeypatch, store, stub, clock, cold_start_per_tick=4)

    results = await asyncio.gather(first.run(), second.run())

    attempted = [outcome.project_id for summary in results for outcome in summary.outcomes]
    assert sorted(attempted) == ["p0", "p1", "p2", "p3"]
    assert stub.purposes().count("chapter") == 4


async def test_deadline_returns_partial_summary(monkeypatch) -> None:
    store = InMemoryStore([make_project(f"p{i}") for i in range(3)])
    runner = _runner(
        monkeypatch,
        store,
        StoryStubProvider(delay=5.0),
        FixedClock(),
        concurrency=1,
        cold_start_per_tick=3,
        cold_start_timeout_seconds=0.15,
        resume_timeout_seconds=0.15,
        invocation_budget_seconds=0.3,
    )

    summary = await runner.run()

    assert summary.deadline_exceeded
    assert summary.finished_at is not None
    assert len(summary.outcomes) < 3


async def test_cold_start_cap_and_tier_split(monkeypatch) -> None:
    projects = [make_project(f"cold{i}") for i in range(4)] + [make_project("warm", cursor=1)]
    store = InMemoryStore(projects)
    await _seed_chapters(store, "novel-warm", [1])
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.cold_start.offered == 2
    assert summary.cold_start.succeeded == 2
    assert summary.resume.succeeded == 1
    tiers = {outcome.project_id: outcome.tier for outcome in summary.outcomes}
    assert tiers["warm"] == Tier.RESUME


async def test_hard_stop_skips_next_arc_planning(monkeypatch) -> None:
    project = make_project("long", cursor=219, target=200)
    store = InMemoryStore([project])
    await _seed_chapters(store, project.output_id, range(1, 220))
    stub = StoryStubProvider()
    runner = _runner(monkeypatch, store, stub, FixedClock())

    summary = await runner.run()

    outcome = summary.outcomes[0]
    assert outcome.chapter == 220
    assert outcome.completion_reason == CompletionReason.HARD_STOP
    assert "synopsis" in stub.purposes()
    assert "arc_outline" not in stub.purposes()
    assert ("long", 12) not in store.outlines


class QuotaWritesFail(InMemoryStore):
    async def insert_quotas(self, quotas) -> int:
        raise StoreError("quota table unavailable")


async def test_missing_quota_row_does_not_block_writing(monkeypatch) -> None:
    project = make_project("warm", cursor=3)
    store = QuotaWritesFail([project])
    await _seed_chapters(store, project.output_id, range(1, 4))
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.quotas_created == 0
    assert summary.due == 1
    assert summary.outcomes[0].status == AttemptStatus.SUCCEEDED
    assert (await store.get_project("warm")).cursor == 4
    assert ("warm", DAY) not in store.quotas


class QuotaReadsFail(InMemoryStore):
    async def list_quotas(self, day, project_ids=None):
        raise StoreError("quota table unavailable")


async def test_unreadable_quotas_still_write(monkeypatch) -> None:
    project = make_project("warm", cursor=3)
    store = QuotaReadsFail([project])
    await _seed_chapters(store, project.output_id, range(1, 4))
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.error is None
    assert summary.resume.succeeded == 1
    assert (await store.get_project("warm")).cursor == 4


class ProjectListFails(InMemoryStore):
    async def list_active_projects(self):
        raise StoreError("connection refused")


async def test_datastore_failure_returns_summary_with_error(monkeypatch) -> None:
    runner = _runner(monkeypatch, ProjectListFails([make_project("p1")]), StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.error == "StoreError: connection refused"
    assert summary.finished_at is not None
    assert summary.outcomes == []
    assert not summary.deadline_exceeded


class ClaimFails(InMemoryStore):
    async def claim_projects(self, project_ids, stale_before, now):
        raise StoreError("lock timeout")


async def test_claim_failure_returns_summary_with_error(monkeypatch) -> None:
    store = ClaimFails([make_project("p1")])
    runner = _runner(monkeypatch, store, StoryStubProvider(), FixedClock())

    summary = await runner.run()

    assert summary.error.startswith("StoreError")
    assert summary.active_projects == 1
    assert (await store.get_project("p1")).cursor == 0
