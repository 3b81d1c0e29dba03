"""Build a monthly budget from variable-spend averages plus recurring patterns."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pandas as pd
import structlog

from .averaging import AveragingDecision, AveragingStrategy, SmartDenominatorStrategy, distribute_evenly
from .models import (
    BudgetResult,
    BudgetSource,
    CategoryBudgetLine,
    Pattern,
    PatternInfo,
    TransactionRecord,
    month_ordinal,
    round_currency,
)
from .projection import should_fire_in_month

logger = structlog.get_logger()

LineKey = Tuple[str, Optional[str]]


@dataclass
class CategoryAverage:
    category_id: str
    sub_category_id: Optional[str]
    total_amount: float
    months_present: Set[int]
    decision: AveragingDecision

    @property
    def average_amount(self) -> int:
        return round_currency(self.total_amount / self.decision.denominator)


def analysis_window(year: int, month: int, analysis_months: int) -> Tuple[date, date]:
    """First and last day of the ``analysis_months`` full months before ``year``/``month``."""
    if analysis_months < 1:
        raise ValueError("analysis_months must be at least 1")
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    target = month_ordinal(year, month)
    start_year, start_index = divmod(target - analysis_months, 12)
    end_year, end_index = divmod(target - 1, 12)
    last_day = calendar.monthrange(end_year, end_index + 1)[1]
    return date(start_year, start_index + 1, 1), date(end_year, end_index + 1, last_day)


def budgetable(transactions: Iterable[TransactionRecord], start: date, end: date) -> List[TransactionRecord]:
    """Expenses inside the window that have a category and are not excluded."""
    return [
        t for t in transactions
        if t.is_expense
        and not t.exclude_from_budget
        and t.category_id is not None
        and start <= t.date <= end
    ]


def partition_transactions(
    transactions: Sequence[TransactionRecord],
    patterns: Sequence[Pattern],
) -> Tuple[Dict[str, List[TransactionRecord]], List[TransactionRecord]]:
    """Split transactions into those explained by a pattern and the variable rest.

    A transaction is attributed to the first pattern whose identifier matches.
    """
    recurring: Dict[str, List[TransactionRecord]] = {p.pattern_id: [] for p in patterns}
    variable: List[TransactionRecord] = []
    for transaction in transactions:
        owner = next((p for p in patterns if p.identifier.matches(transaction)), None)
        if owner is None:
            variable.append(transaction)
        else:
            recurring[owner.pattern_id].append(transaction)
    return recurring, variable


def compute_category_averages(
    transactions: Sequence[TransactionRecord],
    data_months: Set[int],
    requested_months: int,
    strategy: AveragingStrategy,
    issues: Optional[List[str]] = None,
) -> List[CategoryAverage]:
    """Per category line totals divided by the strategy's denominator.

    A denominator below 1 falls back to the months the line was present and
    is noted in ``issues``.
    """
    if not transactions:
        return []
    frame = pd.DataFrame({
        'category': [t.category_id for t in transactions],
        'sub_category': [t.sub_category_id or '' for t in transactions],
        'amount': [t.expense_amount for t in transactions],
        'month': [month_ordinal(t.date.year, t.date.month) for t in transactions],
    })
    averages: List[CategoryAverage] = []
    for (category, sub_category), rows in frame.groupby(['category', 'sub_category'], sort=True):
        total = float(rows['amount'].sum())
        if total <= 0:
            continue
        months_present = set(int(m) for m in rows['month'].unique())
        decision = strategy.get_denominator(months_present, data_months, requested_months)
        if decision.denominator < 1:
            logger.warning(
                "invalid_denominator",
                category_id=category,
                sub_category_id=sub_category or None,
                denominator=decision.denominator,
            )
            if issues is not None:
                label = f"{category} / {sub_category}" if sub_category else category
                issues.append(
                    f"Averaging for {label} returned denominator "
                    f"{decision.denominator}; used the {len(months_present)} month(s) with spending instead"
                )
            decision = AveragingDecision(
                len(months_present),
                f"Averaging over the {len(months_present)} month(s) with spending.",
                decision.pattern_type,
                decision.coverage_percentage,
            )
        averages.append(CategoryAverage(
            category_id=category,
            sub_category_id=sub_category or None,
            total_amount=total,
            months_present=months_present,
            decision=decision,
        ))
    return averages


def _contribution(pattern: Pattern) -> PatternInfo:
    return PatternInfo(
        pattern_id=pattern.pattern_id,
        recurrence_type=pattern.recurrence_type,
        recurring_amount=round_currency(pattern.average_amount),
        display_name=pattern.display_name,
    )


def synthesize_budget(
    user_id: str,
    transactions: Iterable[TransactionRecord],
    approved_patterns: Sequence[Pattern],
    year: int,
    month: int,
    analysis_months: int,
    strategy: Optional[AveragingStrategy] = None,
) -> BudgetResult:
    """Merge smart averages of variable spend with the patterns firing in ``month``.

    Each category line starts from its rounded non-recurring average.  Every
    approved pattern that fires in the target month adds its rounded average
    onto the line for its category, creating the line if needed.
    """
    strategy = strategy or SmartDenominatorStrategy()
    start, end = analysis_window(year, month, analysis_months)
    history = budgetable(transactions, start, end)
    issues: List[str] = []
    patterns: List[Pattern] = []
    for pattern in sorted(approved_patterns, key=lambda p: p.key):
        if pattern.is_malformed:
            logger.warning("malformed_pattern_skipped", pattern_id=pattern.pattern_id, user_id=user_id)
            issues.append(f"Skipped pattern {pattern.pattern_id} ({pattern.display_name}): no usable schedule")
            continue
        patterns.append(pattern)

    recurring, variable = partition_transactions(history, patterns)
    data_months = {month_ordinal(t.date.year, t.date.month) for t in history}

    lines: Dict[LineKey, CategoryBudgetLine] = {}
    for average in compute_category_averages(variable, data_months, analysis_months, strategy, issues):
        lines[(average.category_id, average.sub_category_id)] = CategoryBudgetLine(
            category_id=average.category_id,
            sub_category_id=average.sub_category_id,
            year=year,
            month=month,
            budgeted_amount=average.average_amount,
            source=BudgetSource.NON_RECURRING_AVERAGE,
            average_amount=average.average_amount,
            averaging_reasoning=average.decision.reasoning,
        )

    for pattern in patterns:
        if not should_fire_in_month(pattern, month):
            continue
        info = _contribution(pattern)
        key = (pattern.identifier.category_id, pattern.identifier.sub_category_id)
        line = lines.get(key)
        if line is None:
            lines[key] = CategoryBudgetLine(
                category_id=key[0],
                sub_category_id=key[1],
                year=year,
                month=month,
                budgeted_amount=info.recurring_amount,
                source=BudgetSource.RECURRING_PATTERN,
                contributions=(info,),
            )
            continue
        line.budgeted_amount += info.recurring_amount
        line.contributions = line.contributions + (info,)
        if line.source == BudgetSource.NON_RECURRING_AVERAGE:
            line.source = BudgetSource.COMBINED

    ordered = [lines[key] for key in sorted(lines, key=lambda k: (k[0], k[1] or ''))]
    recurring_count = sum(len(matched) for matched in recurring.values())
    result = BudgetResult(
        user_id=user_id,
        year=year,
        month=month,
        analysis_months=analysis_months,
        lines=ordered,
        total_budgeted_expenses=sum(line.budgeted_amount for line in ordered),
        transaction_count=len(history),
        recurring_transaction_count=recurring_count,
        non_recurring_transaction_count=len(variable),
        approved_pattern_count=len(patterns),
        issues=issues,
        notes=(
            f"Budget for {year}-{month:02d} from {start.isoformat()} to {end.isoformat()}: "
            f"{recurring_count} transactions matched {len(patterns)} approved patterns, "
            f"{len(variable)} variable transactions averaged."
        ),
    )
    logger.info(
        "budget_synthesized",
        user_id=user_id,
        year=year,
        month=month,
        lines=len(ordered),
        total=result.total_budgeted_expenses,
        issues=len(issues),
    )
    return result


def annual_reserve_schedule(patterns: Iterable[Pattern]) -> Dict[str, List[int]]:
    """Monthly set-aside per pattern so a year's recurring charges are funded evenly."""
    schedule: Dict[str, List[int]] = {}
    for pattern in patterns:
        if pattern.is_malformed:
            continue
        firing = [m for m in range(1, 13) if should_fire_in_month(pattern, m)]
        annual_total = round_currency(pattern.average_amount) * len(firing)
        if annual_total > 0:
            schedule[pattern.pattern_id] = distribute_evenly(annual_total, 12)
    return schedule
