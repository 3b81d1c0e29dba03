"""Denominator strategies for averaging variable spend, plus even distribution.

A category that only shows up in part of the analysis window can be
averaged over the months it appeared in or over the whole requested
window.  Which one is right depends on whether the gaps are genuine (an
irregular expense) or an artifact of a short data history.  The strategy
is pluggable so the budget synthesizer does not own that policy.

Month values handed to a strategy are absolute month ordinals (see
:func:`smart_budget.models.month_ordinal`) so a window that crosses a new
year is still seen as consecutive.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import AbstractSet, List, Protocol, Sequence

HIGH_PRESENCE_SHARE = 0.8
SEMI_REGULAR_SHARE = 0.5
MIN_REGULAR_RUN = 4
MIN_MID_PERIOD_RUN = 3
MIN_MID_PERIOD_COVERAGE = 0.5


@dataclass(frozen=True)
class AveragingDecision:
    denominator: int
    reasoning: str
    pattern_type: str = ''
    coverage_percentage: int = 0


class AveragingStrategy(Protocol):
    def get_denominator(
        self,
        months_category_present: AbstractSet[int],
        months_any_data_present: AbstractSet[int],
        months_requested: int,
    ) -> AveragingDecision:
        ...


def _is_consecutive(months: Sequence[int]) -> bool:
    return all(later == earlier + 1 for earlier, later in zip(months, months[1:]))


def classify_coverage(category_months: AbstractSet[int], data_months: AbstractSet[int]) -> tuple[str, int]:
    """Label how regularly a category appears among the months that have data."""
    if not data_months:
        return 'IRREGULAR', 0
    share = len(category_months) / len(data_months)
    percentage = round(share * 100)
    if len(category_months) == len(data_months):
        return 'REGULAR', percentage
    if share >= HIGH_PRESENCE_SHARE:
        return 'MOSTLY_REGULAR', percentage
    if share >= SEMI_REGULAR_SHARE:
        return 'SEMI_REGULAR', percentage
    return 'IRREGULAR', percentage


class SmartDenominatorStrategy:
    """Average over the requested window only when gaps look like missing history."""

    def get_denominator(
        self,
        months_category_present: AbstractSet[int],
        months_any_data_present: AbstractSet[int],
        months_requested: int,
    ) -> AveragingDecision:
        category = sorted(months_category_present)
        data = sorted(months_any_data_present)
        if not category:
            return AveragingDecision(1, "No spending in this category; nothing to average.", 'IRREGULAR', 0)

        present = len(category)
        pattern_type, coverage = classify_coverage(months_category_present, months_any_data_present)
        if not data or months_requested <= 0:
            return AveragingDecision(
                present,
                f"Incomplete window information. Using actual months present ({present}).",
                pattern_type,
                coverage,
            )

        if present == len(data):
            if self._is_regular_with_short_history(category, data, months_requested):
                return AveragingDecision(
                    months_requested,
                    f"Regular expense in all {present} available months, running up to the latest month. "
                    f"History is shorter than requested, so averaging over {months_requested} months.",
                    pattern_type,
                    coverage,
                )
            return AveragingDecision(
                present,
                f"Regular expense appearing in all {present} available months. "
                f"Using actual months ({present}) for true average.",
                pattern_type,
                coverage,
            )

        if present >= math.ceil(len(data) * HIGH_PRESENCE_SHARE):
            if category[0] != data[0] and self._is_regular_since_mid_period(category, months_requested):
                return AveragingDecision(
                    months_requested,
                    f"Mostly regular expense ({coverage}% coverage) that started mid-period. "
                    f"Averaging over the requested {months_requested} months.",
                    pattern_type,
                    coverage,
                )
            return AveragingDecision(
                present,
                f"Mostly regular expense ({coverage}% coverage). "
                f"Using actual months present ({present}).",
                pattern_type,
                coverage,
            )

        label = 'Semi-regular' if pattern_type == 'SEMI_REGULAR' else 'Irregular'
        return AveragingDecision(
            present,
            f"{label} expense ({coverage}% coverage). Using actual months present ({present}) "
            f"to reflect true spending pattern.",
            pattern_type,
            coverage,
        )

    @staticmethod
    def _is_regular_with_short_history(category: List[int], data: List[int], months_requested: int) -> bool:
        return (
            len(category) >= MIN_REGULAR_RUN
            and len(data) < months_requested
            and _is_consecutive(category)
            and category[-1] == data[-1]
        )

    @staticmethod
    def _is_regular_since_mid_period(category: List[int], months_requested: int) -> bool:
        return (
            len(category) >= MIN_MID_PERIOD_RUN
            and _is_consecutive(category)
            and len(category) / months_requested >= MIN_MID_PERIOD_COVERAGE
        )


class FixedWindowStrategy:
    """Always divide by the full requested window."""

    def get_denominator(
        self,
        months_category_present: AbstractSet[int],
        months_any_data_present: AbstractSet[int],
        months_requested: int,
    ) -> AveragingDecision:
        denominator = max(1, months_requested)
        return AveragingDecision(denominator, f"Averaging over the full {denominator}-month window.")


def distribute_evenly(total: int, periods: int) -> List[int]:
    """Split ``total`` whole units over ``periods`` so the parts sum back to ``total``.

    The remainder goes one unit at a time to the earliest periods, e.g.
    ``distribute_evenly(1003, 20)`` gives three 51s followed by seventeen 50s.
    """
    if periods <= 0:
        raise ValueError("periods must be positive")
    if total <= 0:
        raise ValueError("total must be positive")
    base, remainder = divmod(int(total), int(periods))
    return [base + 1 if index < remainder else base for index in range(periods)]
