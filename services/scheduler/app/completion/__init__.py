"""Terminal-state detection for projects."""

from .detector import KEEP_WRITING, CompletionDecision, CompletionDetector
from .rules import EndingRule, EndingRuleSet, EndingScore, default_rule_set

__all__ = [
    "CompletionDecision",
    "CompletionDetector",
    "EndingRule",
    "EndingRuleSet",
    "EndingScore",
    "KEEP_WRITING",
    "default_rule_set",
]
