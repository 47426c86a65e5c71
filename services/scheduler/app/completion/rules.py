"""Weighted surface-text rules for spotting a chapter that ends the story.

The scorer is deliberately coarse: each rule is a regular expression with a
signed weight, matched at most once against the chapter title plus the tail
of its content. Rule sets can be loaded from JSON so thresholds are tuned
without code changes.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

STRONG = 3.0
AMBIGUOUS = 1.0
CLIFFHANGER = -3.0


class EndingRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    weight: float

    _compiled: re.Pattern[str] = PrivateAttr()

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid ending rule pattern {value!r}: {exc}") from exc
        return value

    def model_post_init(self, __context: Any) -> None:
        self._compiled = re.compile(self.pattern, re.IGNORECASE | re.UNICODE)

    def matches(self, text: str) -> bool:
        return self._compiled.search(text) is not None


class EndingScore(BaseModel):
    score: float
    matched: list[str] = Field(default_factory=list)
    fired: bool = False


class EndingRuleSet(BaseModel):
    """Ordered rules plus the score a chapter must reach to count as an ending."""

    rules: list[EndingRule] = Field(default_factory=list)
    threshold: float = Field(4.0, gt=0)
    tail_chars: int = Field(1500, ge=1)

    @classmethod
    def from_dicts(
        cls,
        rules: Iterable[Mapping[str, Any]],
        *,
        threshold: float = 4.0,
        tail_chars: int = 1500,
    ) -> "EndingRuleSet":
        return cls(
            rules=[EndingRule.model_validate(dict(rule)) for rule in rules],
            threshold=threshold,
            tail_chars=tail_chars,
        )

    @classmethod
    def from_json(cls, path: str | Path) -> "EndingRuleSet":
        """Load ``{"threshold": .., "tail_chars": .., "rules": [..]}`` from disk."""

        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(payload)

    def with_overrides(self, *, threshold: float | None = None, tail_chars: int | None = None) -> "EndingRuleSet":
        update: dict[str, Any] = {}
        if threshold is not None:
            update["threshold"] = threshold
        if tail_chars is not None:
            update["tail_chars"] = tail_chars
        return self.model_copy(update=update)

    def score(self, title: str | None, content: str | None) -> EndingScore:
        text = f"{title or ''}\n{(content or '')[-self.tail_chars:]}"
        total = 0.0
        matched: list[str] = []
        for rule in self.rules:
            if rule.matches(text):
                total += rule.weight
                matched.append(rule.label)
        return EndingScore(score=total, matched=matched, fired=total >= self.threshold)

    def fires(self, title: str | None, content: str | None) -> bool:
        if not content:
            return False
        return self.score(title, content).fired


_DEFAULT_RULES: Sequence[dict[str, Any]] = (
    # Strong resolution markers.
    {"label": "the_end", "pattern": r"\bthe\s+end\b", "weight": STRONG},
    {"label": "epilogue", "pattern": r"\bepilogue\b", "weight": STRONG},
    {"label": "final_chapter", "pattern": r"\bfinal\s+chapter\b", "weight": STRONG},
    {"label": "happily_ever_after", "pattern": r"\bhappily\s+ever\s+after\b", "weight": STRONG},
    {"label": "dai_ket_cuc", "pattern": r"đại\s+kết\s+cục", "weight": STRONG},
    {"label": "toan_thu_hoan", "pattern": r"toàn\s+thư\s+hoàn", "weight": STRONG},
    {"label": "vi_thanh", "pattern": r"vĩ\s+thanh", "weight": STRONG},
    # Ambiguous resolution markers.
    {"label": "ending", "pattern": r"\b(ending|conclusion)\b", "weight": AMBIGUOUS},
    {"label": "farewell", "pattern": r"\b(farewell|goodbye)\b", "weight": AMBIGUOUS},
    {"label": "at_last", "pattern": r"\b(at\s+last|finally|at\s+peace)\b", "weight": AMBIGUOUS},
    {"label": "ket_thuc", "pattern": r"kết\s+thúc", "weight": AMBIGUOUS},
    {"label": "doan_ket", "pattern": r"đoạn\s+kết", "weight": AMBIGUOUS},
    {"label": "tam_biet", "pattern": r"(tạm|vĩnh)\s+biệt", "weight": AMBIGUOUS},
    {"label": "het", "pattern": r"(^|\W)hết\W*$", "weight": AMBIGUOUS},
    # Continuation and cliffhanger markers.
    {"label": "to_be_continued", "pattern": r"\bto\s+be\s+continued\b", "weight": CLIFFHANGER},
    {"label": "con_tiep", "pattern": r"còn\s+tiếp", "weight": CLIFFHANGER},
    {"label": "not_over", "pattern": r"\b(not|never)\s+(yet\s+)?over\b|chưa\s+kết\s+thúc", "weight": CLIFFHANGER},
    {"label": "suddenly", "pattern": r"\bsuddenly\b|đột\s+nhiên", "weight": CLIFFHANGER},
    {"label": "next_chapter", "pattern": r"\bnext\s+chapter\b|chương\s+sau", "weight": CLIFFHANGER},
)


def default_rule_set(*, threshold: float = 4.0, tail_chars: int = 1500) -> EndingRuleSet:
    return EndingRuleSet.from_dicts(_DEFAULT_RULES, threshold=threshold, tail_chars=tail_chars)
