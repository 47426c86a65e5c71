"""Tests for candidate selection and tiering."""

from datetime import date, timedelta

from chapterforge_schemas import DailyQuota, ProjectStatus, QuotaStatus, Tier

from services.scheduler.app.selector import compute_batch_size, is_eligible, select_candidates
from tests.utils.factories import FIXED_NOW, make_project, make_settings

DAY = date(2026, 3, 10)


def _quota(project_id: str, *, written: int = 0, due_in: int | None = None, **kwargs) -> DailyQuota:
    next_due = None if due_in is None else FIXED_NOW + timedelta(minutes=due_in)
    return DailyQuota(project_id=project_id, day=DAY, target=20, written=written, next_due_at=next_due, **kwargs)


def test_batch_size_formula() -> None:
    settings = make_settings()
    # 1000 projects * 20 chapters / 288 ticks * 1.5 = 104.2 -> capped at 60.
    assert compute_batch_size(1000, settings) == 60
    # 100 * 20 / 288 * 1.5 = 10.4 -> 11.
    assert compute_batch_size(100, settings) == 11
    assert compute_batch_size(3, settings) == 5


def test_eligibility() -> None:
    settings = make_settings()
    assert is_eligible(make_project(cursor=10), settings)
    assert not is_eligible(make_project(output_id=None), settings)
    assert not is_eligible(make_project(status=ProjectStatus.COMPLETED), settings)
    assert not is_eligible(make_project(cursor=220, target=200), settings)
    assert is_eligible(make_project(cursor=219, target=200), settings)


def test_due_filter_and_missing_quota() -> None:
    projects = [make_project("due", cursor=3), make_project("later", cursor=3), make_project("noquota", cursor=3)]
    quotas = {
        "due": _quota("due", due_in=-1),
        "later": _quota("later", due_in=10),
    }
    selection = select_candidates(projects, quotas, FIXED_NOW, make_settings())
    # A project without a row sorts as "nothing written, no due time".
    assert [c.project.id for c in selection.resume] == ["noquota", "due"]
    assert selection.resume[0].quota is None
    assert selection.eligible == 3
    assert selection.due == 2


def test_completed_quota_is_not_due() -> None:
    projects = [make_project("p1", cursor=5)]
    quotas = {"p1": _quota("p1", written=20, status=QuotaStatus.COMPLETED)}
    selection = select_candidates(projects, quotas, FIXED_NOW, make_settings())
    assert selection.resume == []


def test_tiers_and_caps() -> None:
    projects = [make_project(f"cold{i}") for i in range(5)] + [make_project(f"warm{i}", cursor=4) for i in range(8)]
    quotas = {project.id: _quota(project.id) for project in projects}
    selection = select_candidates(projects, quotas, FIXED_NOW, make_settings(min_batch_size=6))

    assert len(selection.cold_start) == 2
    assert all(c.tier == Tier.COLD_START for c in selection.cold_start)
    assert len(selection.resume) == 6
    assert all(c.tier == Tier.RESUME and c.project.cursor > 0 for c in selection.resume)


def test_fairness_ordering() -> None:
    projects = [make_project(name, cursor=1) for name in ("a", "b", "c", "d")]
    quotas = {
        "a": _quota("a", written=3, due_in=-30),
        "b": _quota("b", written=1, due_in=-5),
        "c": _quota("c", written=1, due_in=-20),
        "d": _quota("d", written=1),
    }
    selection = select_candidates(projects, quotas, FIXED_NOW, make_settings())
    assert [c.project.id for c in selection.resume] == ["d", "c", "b", "a"]
