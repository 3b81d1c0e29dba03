"""Classify groups of similar transactions as bi-monthly, quarterly or yearly charges."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple
import uuid

import numpy as np
import pandas as pd
import structlog

from .models import (
    AmountRange,
    Pattern,
    PatternIdentifier,
    RecurrenceType,
    SampleTransaction,
    TransactionGroup,
)

logger = structlog.get_logger()

MIN_CONFIDENCE = 0.70
MAX_CONFIDENCE = 0.95
MIN_COUNT_CONFIDENCE = 0.5
OCCURRENCE_BONUS = 0.05
MAX_OCCURRENCE_BONUS = 0.2
# Allowed distance between actual and expected occurrence counts
OCCURRENCE_SLACK = 1

# Numerically sorted month gaps accepted as "every other month"; 10 and 11 cover Nov/Dec to Jan
BI_MONTHLY_GAPS = {2, 10, 11}
# Sorted month gaps accepted as quarterly; -9 is 3 taken across the year boundary
QUARTERLY_GAPS = {3, -9}
QUARTERLY_BOOST = 0.1

YEARLY_MIN_TRANSACTIONS = 3
YEARLY_MIN_SHARE = 0.7
YEARLY_BASE_CONFIDENCE = 0.7
YEARLY_YEAR_BOOST = 0.15
YEARLY_COUNT_BOOST = 0.15
YEARLY_SHARE_WEIGHT = 0.1

SAMPLE_SIZE = 3


@dataclass
class CadenceMatch:
    recurrence_type: RecurrenceType
    scheduled_months: Tuple[int, ...]
    confidence: float


@dataclass
class Classification:
    """Outcome of classifying one group: a pattern, or why there is none."""

    pattern: Optional[Pattern] = None
    rejections: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.pattern is not None


def pattern_confidence(actual: int, expected: int) -> float:
    """Score how closely an occurrence count tracks the cadence's expected count."""
    accuracy = 1 - abs(actual - expected) / expected
    bonus = min(MAX_OCCURRENCE_BONUS, actual * OCCURRENCE_BONUS)
    return float(np.clip(accuracy + bonus, MIN_COUNT_CONFIDENCE, MAX_CONFIDENCE))


def _occurrence_check(actual: int, expected: int, minimum: int) -> Optional[str]:
    if actual < minimum:
        return f"needs at least {minimum} occurrences, found {actual}"
    if expected <= 0:
        return "analysis window too short for this cadence"
    if abs(actual - expected) > OCCURRENCE_SLACK:
        return f"expected about {expected} occurrences, found {actual}"
    return None


def _bi_monthly(months: Sequence[int], analysis_months: int) -> Tuple[Optional[CadenceMatch], str]:
    actual = len(months)
    expected = analysis_months // 2
    problem = _occurrence_check(actual, expected, 2)
    if problem:
        return None, problem

    distinct = sorted(set(months))
    if len(distinct) < 2:
        return None, "all occurrences fall in the same month"
    gaps = [later - earlier for earlier, later in zip(distinct, distinct[1:])]
    if any(gap not in BI_MONTHLY_GAPS for gap in gaps):
        return None, f"month gaps {gaps} are not every other month"

    match = CadenceMatch(
        recurrence_type=RecurrenceType.BI_MONTHLY,
        scheduled_months=tuple(distinct),
        confidence=pattern_confidence(actual, expected),
    )
    return match, ''


def _quarterly(months: Sequence[int], analysis_months: int) -> Tuple[Optional[CadenceMatch], str]:
    actual = len(months)
    expected = analysis_months // 3
    problem = _occurrence_check(actual, expected, 3)
    if problem:
        return None, problem

    ordered = sorted(months)
    gaps = [later - earlier for earlier, later in zip(ordered, ordered[1:])]
    if any(gap not in QUARTERLY_GAPS for gap in gaps):
        return None, f"month gaps {gaps} are not quarterly"

    confidence = min(MAX_CONFIDENCE, pattern_confidence(actual, expected) + QUARTERLY_BOOST)
    match = CadenceMatch(
        recurrence_type=RecurrenceType.QUARTERLY,
        scheduled_months=tuple(range(min(months), 13, 3)),
        confidence=confidence,
    )
    return match, ''


def _yearly(dates: Sequence[date]) -> Tuple[Optional[CadenceMatch], str]:
    if len(dates) < YEARLY_MIN_TRANSACTIONS:
        return None, f"needs at least {YEARLY_MIN_TRANSACTIONS} transactions, found {len(dates)}"

    frame = pd.DataFrame({'month': [d.month for d in dates], 'year': [d.year for d in dates]})
    counts = frame['month'].value_counts()
    top = counts.max()
    # ties go to the later month
    primary_month = int(max(month for month, count in counts.items() if count == top))
    share = top / len(frame)
    if share < YEARLY_MIN_SHARE:
        return None, f"only {share:.0%} of transactions fall in month {primary_month}"

    years = frame.loc[frame['month'] == primary_month, 'year'].nunique()
    if years < 2 and top < 3:
        return None, "primary month seen in a single year only"

    confidence = YEARLY_BASE_CONFIDENCE
    if years >= 2:
        confidence += years * YEARLY_YEAR_BOOST
    if top >= 3:
        confidence += YEARLY_COUNT_BOOST
    confidence += share * YEARLY_SHARE_WEIGHT
    match = CadenceMatch(
        recurrence_type=RecurrenceType.YEARLY,
        scheduled_months=(primary_month,),
        confidence=min(MAX_CONFIDENCE, float(confidence)),
    )
    return match, ''


def check_bi_monthly(months: Sequence[int], analysis_months: int) -> Optional[CadenceMatch]:
    return _bi_monthly(months, analysis_months)[0]


def check_quarterly(months: Sequence[int], analysis_months: int) -> Optional[CadenceMatch]:
    """``months`` are month-of-year values, one per occurrence, in any order."""
    return _quarterly(months, analysis_months)[0]


def check_yearly(dates: Sequence[date]) -> Optional[CadenceMatch]:
    return _yearly(dates)[0]


def evaluate(
    group: TransactionGroup,
    analysis_months: int,
    detected_at: Optional[datetime] = None,
) -> Classification:
    """Try each cadence in priority order and build a pattern from the first fit.

    The first cadence that fits decides the outcome: if its confidence is
    under ``MIN_CONFIDENCE`` the group is rejected rather than tried against
    the remaining cadences.
    """
    ordered = sorted(group.transactions, key=lambda t: (t.date, str(t.transaction_id)))
    dates = [t.date for t in ordered]
    months = [d.month for d in dates]
    rejections: List[str] = []

    match: Optional[CadenceMatch] = None
    for label, attempt in (
        ('bi-monthly', lambda: _bi_monthly(months, analysis_months)),
        ('quarterly', lambda: _quarterly(months, analysis_months)),
        ('yearly', lambda: _yearly(dates)),
    ):
        match, reason = attempt()
        if match is not None:
            break
        rejections.append(f"{label}: {reason}")

    if match is not None and match.confidence < MIN_CONFIDENCE:
        rejections.append(
            f"{match.recurrence_type.value}: confidence {match.confidence:.2f} below {MIN_CONFIDENCE:.2f}"
        )
        match = None
    if match is None:
        logger.debug("group_not_recurring", description=group.common_description, reasons=rejections)
        return Classification(rejections=rejections)

    amounts = [t.expense_amount for t in ordered]
    pattern = Pattern(
        pattern_id=uuid.uuid4().hex,
        identifier=PatternIdentifier(
            description=group.common_description,
            amount_range=AmountRange(min(amounts), max(amounts)),
            category_id=group.category_id,
            sub_category_id=group.sub_category_id,
        ),
        recurrence_type=match.recurrence_type,
        scheduled_months=match.scheduled_months,
        average_amount=sum(amounts) / len(amounts),
        confidence=match.confidence,
        analysis_months=analysis_months,
        last_detected=detected_at or datetime.now(),
        sample_transactions=tuple(
            SampleTransaction(date=t.date, amount=t.expense_amount, description=t.description)
            for t in ordered[:SAMPLE_SIZE]
        ),
    )
    return Classification(pattern=pattern, rejections=rejections)


def classify(group: TransactionGroup, analysis_months: int) -> Optional[Pattern]:
    """Return a pending pattern for ``group`` or ``None`` when it is not recurring."""
    return evaluate(group, analysis_months).pattern
