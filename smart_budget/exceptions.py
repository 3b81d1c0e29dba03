"""Exception classes raised by the budgeting core."""

from __future__ import annotations

from typing import Sequence


class SmartBudgetError(Exception):
    """Base class for errors raised by smart_budget."""


class ApprovalRequiredError(SmartBudgetError):
    def __init__(self, pending_patterns: Sequence = (), message: str | None = None):
        self.pending_patterns = list(pending_patterns)
        super().__init__(
            message
            or f"{len(self.pending_patterns)} recurring pattern(s) need approval before the budget can be calculated"
        )


class PatternNotFoundError(SmartBudgetError):
    def __init__(self, pattern_id: str):
        self.pattern_id = pattern_id
        super().__init__(f"Pattern {pattern_id} not found")


class PatternStateError(SmartBudgetError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move a {current} pattern to {target}")
