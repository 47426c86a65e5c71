from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chapterforge_schemas import CompletionReason

from ..settings import SchedulerSettings
from .rules import EndingRuleSet, default_rule_set


@dataclass(frozen=True)
class CompletionDecision:
    complete: bool
    reason: Optional[CompletionReason] = None
    ending_score: Optional[float] = None


KEEP_WRITING = CompletionDecision(complete=False)


class CompletionDetector:
    """Decides after each written chapter whether the project is finished.

    ``target`` is a soft bound. Past it the project keeps writing toward the
    next arc boundary unless the chapter lands exactly on target or reads as
    a natural ending; ``target + grace`` is a hard stop.
    """

    def __init__(
        self,
        *,
        grace: int = 20,
        arc_size: int = 20,
        tail_window: int = 5,
        rules: EndingRuleSet | None = None,
    ) -> None:
        self.grace = grace
        self.arc_size = arc_size
        self.tail_window = tail_window
        self.rules = rules or default_rule_set()

    @classmethod
    def from_settings(cls, settings: SchedulerSettings) -> "CompletionDetector":
        if settings.ending_rules_path:
            rules = EndingRuleSet.from_json(settings.ending_rules_path)
        else:
            rules = default_rule_set()
        rules = rules.with_overrides(
            threshold=settings.natural_ending_threshold,
            tail_chars=settings.ending_tail_chars,
        )
        return cls(
            grace=settings.grace_chapters,
            arc_size=settings.arc_size,
            tail_window=settings.tail_window,
            rules=rules,
        )

    def evaluate(
        self,
        last_written: Optional[int],
        target: int,
        *,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> CompletionDecision:
        if last_written is None:
            return KEEP_WRITING
        if last_written >= target + self.grace:
            return CompletionDecision(True, CompletionReason.HARD_STOP)

        def natural_ending() -> tuple[bool, float]:
            if not content:
                return False, 0.0
            result = self.rules.score(title, content)
            return result.fired, result.score

        if last_written >= target:
            if last_written == target:
                return CompletionDecision(True, CompletionReason.EXACT_TARGET)
            if last_written % self.arc_size == 0:
                return CompletionDecision(True, CompletionReason.ARC_BOUNDARY)
            fired, score = natural_ending()
            if fired:
                return CompletionDecision(True, CompletionReason.NATURAL_ENDING, score)
            return CompletionDecision(False, ending_score=score)

        if last_written >= target - self.tail_window:
            fired, score = natural_ending()
            if fired:
                return CompletionDecision(True, CompletionReason.NATURAL_ENDING, score)
            return CompletionDecision(False, ending_score=score)
        return KEEP_WRITING
