"""Smoke tests for Pydantic schema validation."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chapterforge_schemas import (
    ContentUnit,
    DailyQuota,
    GeneratedChapter,
    Project,
    QuotaStatus,
    first_missing_number,
    truncate_message,
)

NOW = datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc)


def test_project_defaults_to_active_with_zero_cursor() -> None:
    project = Project(id="p1", output_id="n1", target=200)
    assert project.is_active
    assert project.cursor == 0
    assert project.params.target_word_count == 2500


def test_project_rejects_non_positive_target() -> None:
    with pytest.raises(ValidationError):
        Project(id="p1", target=0)


def test_project_params_keep_unknown_keys() -> None:
    project = Project.model_validate({"id": "p1", "target": 10, "params": {"genre": "wuxia", "tone": "grim"}})
    assert project.params.model_dump()["tone"] == "grim"


def test_content_unit_strips_title() -> None:
    unit = ContentUnit(output_id="n1", number=1, title="  The Gate  ", content="Once upon a time")
    assert unit.title == "The Gate"
    assert unit.word_count == 4


def test_content_unit_rejects_blank_title() -> None:
    with pytest.raises(ValidationError):
        ContentUnit(output_id="n1", number=1, title="   ", content="text")


def test_generated_chapter_to_unit() -> None:
    unit = GeneratedChapter(title="Dawn", content="Light.").to_unit("n1", 3)
    assert (unit.output_id, unit.number, unit.title) == ("n1", 3, "Dawn")


def test_quota_written_cannot_exceed_target() -> None:
    with pytest.raises(ValidationError):
        DailyQuota(project_id="p1", day=date(2026, 3, 10), target=20, written=21, status=QuotaStatus.COMPLETED)


def test_full_quota_must_be_completed() -> None:
    with pytest.raises(ValidationError):
        DailyQuota(project_id="p1", day=date(2026, 3, 10), target=20, written=20)


def test_quota_due_rules() -> None:
    quota = DailyQuota(project_id="p1", day=date(2026, 3, 10), target=20)
    assert quota.is_due(NOW)
    later = quota.model_copy(update={"next_due_at": NOW + timedelta(minutes=1)})
    assert not later.is_due(NOW)
    done = quota.model_copy(update={"status": QuotaStatus.COMPLETED, "written": 20})
    assert not done.is_due(NOW)
    failed = quota.model_copy(update={"status": QuotaStatus.FAILED})
    assert not failed.is_due(NOW)


def test_truncate_message() -> None:
    assert truncate_message(None) is None
    assert truncate_message("  short ") == "short"
    clipped = truncate_message("x" * 800)
    assert len(clipped) == 500
    assert clipped.endswith("...")


@pytest.mark.parametrize(
    ("numbers", "expected"),
    [([], None), ([1, 2, 3], None), ([1, 3, 4], 2), ([2, 3], 1), ([1, 1, 2, 5], 3)],
)
def test_first_missing_number(numbers, expected) -> None:
    assert first_missing_number(numbers) == expected
