"""Decide whether an approved pattern recurs in a given calendar month."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from .models import Pattern, RecurrenceType

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProjectionResult:
    matches: bool
    base_month: Optional[int] = None
    months_from_base: Optional[int] = None
    reasoning: str = ''


def month_difference(base_month: int, target_month: int) -> int:
    """Months forward from ``base_month`` to ``target_month``, wrapping at December."""
    for value in (base_month, target_month):
        if not 1 <= value <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {value}")
    return (target_month - base_month + 12) % 12


def explain_projection(pattern: Pattern, target_month: int) -> ProjectionResult:
    if not 1 <= target_month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {target_month}")

    if pattern.is_malformed:
        logger.warning(
            "malformed_pattern_skipped",
            pattern_id=pattern.pattern_id,
            scheduled_months=list(pattern.scheduled_months),
        )
        return ProjectionResult(False, reasoning="Pattern has no usable scheduled months")

    if target_month in pattern.scheduled_months:
        return ProjectionResult(
            True,
            base_month=target_month,
            months_from_base=0,
            reasoning=f"Month {target_month} is a scheduled month",
        )

    if pattern.recurrence_type == RecurrenceType.YEARLY:
        return ProjectionResult(False, reasoning="Yearly patterns only fire in their scheduled month")

    step = 2 if pattern.recurrence_type == RecurrenceType.BI_MONTHLY else 3
    for base in sorted(pattern.scheduled_months):
        difference = month_difference(base, target_month)
        if difference % step == 0:
            return ProjectionResult(
                True,
                base_month=base,
                months_from_base=difference,
                reasoning=f"{difference} months after month {base}, a multiple of {step}",
            )
    return ProjectionResult(
        False,
        reasoning=f"No scheduled month is a multiple of {step} months before month {target_month}",
    )


def should_fire_in_month(pattern: Pattern, target_month: int) -> bool:
    """Return True when ``pattern`` is expected to charge in ``target_month``.

    Bi-monthly and quarterly patterns fire in any month reachable from a
    scheduled month in steps of two or three months.  A bi-monthly pattern
    scheduled in both an even and an odd month therefore fires every month.
    """
    return explain_projection(pattern, target_month).matches
