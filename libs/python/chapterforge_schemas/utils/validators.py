"""Reusable validation helpers."""

from __future__ import annotations

from typing import Iterable

ERROR_MESSAGE_LIMIT = 500


def truncate_message(value: str | None, *, limit: int = ERROR_MESSAGE_LIMIT) -> str | None:
    """Clip diagnostic text so it fits the ``last_error`` columns.

    Args:
        value: Message to store, possibly ``None``.
        limit: Maximum number of characters kept, ellipsis included.

    Returns:
        The message unchanged when short enough, otherwise its clipped form.
    """

    if value is None:
        return None
    text = value.strip()
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def first_missing_number(numbers: Iterable[int]) -> int | None:
    """Return the lowest gap in a sequence that should run 1, 2, 3, ...

    ``None`` means the sorted input is contiguous from 1.
    """

    expected = 1
    for number in sorted(set(numbers)):
        if number < expected:
            continue
        if number > expected:
            return expected
        expected += 1
    return None
