"""Domain types shared by the detection and budgeting modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
import math
import re
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd


class RecurrenceType(str, Enum):
    BI_MONTHLY = 'bi-monthly'
    QUARTERLY = 'quarterly'
    YEARLY = 'yearly'


class ApprovalStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class BudgetSource(str, Enum):
    NON_RECURRING_AVERAGE = 'non-recurring-average'
    RECURRING_PATTERN = 'recurring-pattern'
    COMBINED = 'combined-average-and-pattern'


def normalize_description(text: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace so descriptions compare cleanly."""
    if text is None or not isinstance(text, str):
        return ''
    return re.sub(r"\s+", " ", text.strip().lower())


def round_currency(value: float) -> int:
    """Round to a whole currency unit, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def month_ordinal(year: int, month: int) -> int:
    """Absolute month number so consecutive months differ by one across years."""
    return year * 12 + (month - 1)


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    return pd.Timestamp(value).to_pydatetime()


@dataclass(frozen=True)
class TransactionRecord:
    transaction_id: str
    date: date
    amount: float
    category_id: Optional[str]
    description: str
    sub_category_id: Optional[str] = None
    exclude_from_budget: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, 'date', _coerce_date(self.date))
        object.__setattr__(self, 'amount', float(self.amount))

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    @property
    def expense_amount(self) -> float:
        return abs(self.amount)


@dataclass
class TransactionGroup:
    """Transactions that share a category, a similar description and a similar amount."""

    common_description: str
    category_id: Optional[str]
    sub_category_id: Optional[str]
    transactions: List[TransactionRecord] = field(default_factory=list)
    total_amount: float = 0.0
    average_amount: float = 0.0
    min_amount: float = math.inf
    max_amount: float = 0.0

    def add(self, transaction: TransactionRecord) -> None:
        amount = transaction.expense_amount
        self.transactions.append(transaction)
        self.total_amount += amount
        self.average_amount = self.total_amount / len(self.transactions)
        self.min_amount = min(self.min_amount, amount)
        self.max_amount = max(self.max_amount, amount)

    @property
    def size(self) -> int:
        return len(self.transactions)


@dataclass(frozen=True)
class AmountRange:
    min: float
    max: float

    def contains(self, amount: float) -> bool:
        return self.min <= amount <= self.max


@dataclass(frozen=True)
class PatternIdentifier:
    description: str
    amount_range: AmountRange
    category_id: Optional[str]
    sub_category_id: Optional[str] = None

    def matches(self, transaction: TransactionRecord) -> bool:
        """Return True when a historical transaction belongs to this pattern."""
        if transaction.category_id != self.category_id:
            return False
        if transaction.sub_category_id != self.sub_category_id:
            return False
        if not self.amount_range.contains(transaction.expense_amount):
            return False
        ours = normalize_description(self.description)
        theirs = normalize_description(transaction.description)
        if not ours or not theirs:
            return False
        return ours in theirs or theirs in ours


@dataclass(frozen=True)
class SampleTransaction:
    date: date
    amount: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {'date': self.date.isoformat(), 'amount': self.amount, 'description': self.description}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'SampleTransaction':
        return cls(
            date=_coerce_date(payload['date']),
            amount=float(payload['amount']),
            description=str(payload.get('description', '')),
        )


@dataclass(frozen=True)
class Pattern:
    """A detected recurring-expense signature and its approval state."""

    pattern_id: str
    identifier: PatternIdentifier
    recurrence_type: RecurrenceType
    scheduled_months: Tuple[int, ...]
    average_amount: float
    confidence: float
    user_id: Optional[str] = None
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    analysis_months: int = 0
    last_detected: Optional[datetime] = None
    sample_transactions: Tuple[SampleTransaction, ...] = ()
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def key(self) -> Tuple[Optional[str], str, Optional[str], str]:
        return (
            self.user_id,
            normalize_description(self.identifier.description),
            self.identifier.category_id,
            self.identifier.sub_category_id or '',
        )

    @property
    def display_name(self) -> str:
        category = self.identifier.category_id or 'Uncategorized'
        if self.identifier.sub_category_id:
            category = f"{category} → {self.identifier.sub_category_id}"
        return f"{self.identifier.description} ({category})"

    @property
    def is_malformed(self) -> bool:
        if not self.scheduled_months:
            return True
        if any(not isinstance(m, int) or m < 1 or m > 12 for m in self.scheduled_months):
            return True
        return not math.isfinite(self.average_amount) or self.average_amount < 0

    def next_scheduled_month(self, current_month: int) -> Optional[int]:
        if not self.scheduled_months:
            return None
        ordered = sorted(self.scheduled_months)
        for month in ordered:
            if month > current_month:
                return month
        return ordered[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern_id': self.pattern_id,
            'user_id': self.user_id,
            'description': self.identifier.description,
            'amount_min': self.identifier.amount_range.min,
            'amount_max': self.identifier.amount_range.max,
            'category_id': self.identifier.category_id,
            'sub_category_id': self.identifier.sub_category_id,
            'recurrence_type': self.recurrence_type.value,
            'scheduled_months': list(self.scheduled_months),
            'average_amount': self.average_amount,
            'confidence': self.confidence,
            'approval_status': self.approval_status.value,
            'analysis_months': self.analysis_months,
            'last_detected': self.last_detected.isoformat() if self.last_detected else None,
            'sample_transactions': [s.to_dict() for s in self.sample_transactions],
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'Pattern':
        return cls(
            pattern_id=payload['pattern_id'],
            user_id=payload.get('user_id'),
            identifier=PatternIdentifier(
                description=payload['description'],
                amount_range=AmountRange(float(payload['amount_min']), float(payload['amount_max'])),
                category_id=payload.get('category_id'),
                sub_category_id=payload.get('sub_category_id') or None,
            ),
            recurrence_type=RecurrenceType(payload['recurrence_type']),
            scheduled_months=tuple(int(m) for m in payload.get('scheduled_months') or ()),
            average_amount=float(payload['average_amount']),
            confidence=float(payload['confidence']),
            approval_status=ApprovalStatus(payload.get('approval_status') or ApprovalStatus.PENDING.value),
            analysis_months=int(payload.get('analysis_months') or 0),
            last_detected=_coerce_datetime(payload.get('last_detected')),
            sample_transactions=tuple(
                SampleTransaction.from_dict(s) for s in payload.get('sample_transactions') or ()
            ),
            approved_at=_coerce_datetime(payload.get('approved_at')),
            notes=payload.get('notes'),
        )


@dataclass(frozen=True)
class PatternInfo:
    pattern_id: str
    recurrence_type: RecurrenceType
    recurring_amount: int
    display_name: str = ''


@dataclass
class CategoryBudgetLine:
    category_id: str
    sub_category_id: Optional[str]
    year: int
    month: int
    budgeted_amount: int
    source: BudgetSource
    average_amount: int = 0
    averaging_reasoning: Optional[str] = None
    contributions: Tuple[PatternInfo, ...] = ()

    @property
    def pattern_info(self) -> Optional[PatternInfo]:
        return self.contributions[0] if self.contributions else None

    @property
    def recurring_amount(self) -> int:
        return sum(info.recurring_amount for info in self.contributions)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload['source'] = self.source.value
        payload['contributions'] = [
            {**asdict(info), 'recurrence_type': info.recurrence_type.value}
            for info in self.contributions
        ]
        return payload


@dataclass
class BudgetResult:
    user_id: str
    year: int
    month: int
    analysis_months: int
    lines: List[CategoryBudgetLine] = field(default_factory=list)
    total_budgeted_expenses: int = 0
    transaction_count: int = 0
    recurring_transaction_count: int = 0
    non_recurring_transaction_count: int = 0
    approved_pattern_count: int = 0
    issues: List[str] = field(default_factory=list)
    notes: str = ''

    def line_for(self, category_id: str, sub_category_id: Optional[str] = None) -> Optional[CategoryBudgetLine]:
        for line in self.lines:
            if line.category_id == category_id and line.sub_category_id == sub_category_id:
                return line
        return None

    def to_frame(self) -> pd.DataFrame:
        columns = ['Category', 'Sub-Category', 'Budgeted', 'Average', 'Recurring', 'Source', 'Patterns']
        rows = [
            {
                'Category': line.category_id,
                'Sub-Category': line.sub_category_id or '',
                'Budgeted': line.budgeted_amount,
                'Average': line.average_amount,
                'Recurring': line.recurring_amount,
                'Source': line.source.value,
                'Patterns': ', '.join(info.display_name or info.pattern_id for info in line.contributions),
            }
            for line in self.lines
        ]
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'year': self.year,
            'month': self.month,
            'analysis_months': self.analysis_months,
            'total_budgeted_expenses': self.total_budgeted_expenses,
            'lines': [line.to_dict() for line in self.lines],
            'calculation': {
                'transaction_count': self.transaction_count,
                'recurring_transaction_count': self.recurring_transaction_count,
                'non_recurring_transaction_count': self.non_recurring_transaction_count,
                'approved_pattern_count': self.approved_pattern_count,
                'methodology': 'pattern-aware-calculation',
            },
            'issues': list(self.issues),
            'notes': self.notes,
        }
