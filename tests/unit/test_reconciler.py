"""Tests for cursor reconciliation."""

import pytest

from chapterforge_schemas import ContentUnit

from services.scheduler.app.reconciler import ReconcilePlan, plan_reconciliation, reconcile
from services.scheduler.app.store import InMemoryStore
from tests.utils.factories import FIXED_NOW, make_project

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


def test_consistent_state() -> None:
    assert plan_reconciliation(5, [1, 2, 3, 4, 5]) == ReconcilePlan(run_from=5, persisted_cursor=5)


def test_next_chapter_already_persisted_is_consistent() -> None:
    assert plan_reconciliation(5, [1, 2, 3, 4, 5, 6]) == ReconcilePlan(run_from=5, persisted_cursor=5)


def test_internal_gap_backfills_without_lowering_cursor() -> None:
    plan = plan_reconciliation(6, [1, 2, 4, 5, 6])
    assert plan == ReconcilePlan(run_from=2, persisted_cursor=6, backfill=True)
    assert plan.next_number == 3


def test_missing_first_chapter_is_a_gap() -> None:
    assert plan_reconciliation(3, [2, 3]).next_number == 1


def test_cursor_ahead_of_storage() -> None:
    plan = plan_reconciliation(8, [1, 2, 3, 4, 5])
    assert plan == ReconcilePlan(run_from=5, persisted_cursor=5, corrected=True)


def test_nothing_persisted_rewinds_to_start() -> None:
    plan = plan_reconciliation(4, [])
    assert plan.run_from == 0
    assert plan.corrected


def test_cold_start_skips_reconciliation() -> None:
    assert plan_reconciliation(0, [1, 2]) == ReconcilePlan(run_from=0, persisted_cursor=0)


async def _seed(store: InMemoryStore, output_id: str, numbers) -> None:
    for number in numbers:
        await store.upsert_chapter(ContentUnit(output_id=output_id, number=number, title=f"T{number}", content="x"))


async def test_reconcile_corrects_stored_cursor_downward() -> None:
    project = make_project("p1", cursor=8)
    store = InMemoryStore([project])
    await _seed(store, project.output_id, range(1, 6))

    plan = await reconcile(store, project, FIXED_NOW)

    assert plan.next_number == 6
    assert (await store.get_project("p1")).cursor == 5


async def test_reconcile_gap_leaves_cursor_untouched() -> None:
    project = make_project("p1", cursor=6)
    store = InMemoryStore([project])
    await _seed(store, project.output_id, [1, 2, 4, 5, 6])

    plan = await reconcile(store, project, FIXED_NOW)

    assert plan.backfill
    assert plan.next_number == 3
    assert (await store.get_project("p1")).cursor == 6
