"""Collaborator interfaces for the budgeting core and in-memory implementations.

The in-memory classes back the tests and the dashboard's demo mode; the
sqlite adapters live in :mod:`smart_budget.db` and the JSON budget sink in
:mod:`smart_budget.budget_storage`.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
import threading
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from .lifecycle import merge_redetected
from .models import ApprovalStatus, BudgetResult, Pattern, TransactionRecord


class TransactionSource(Protocol):
    def find_expenses(self, user_id: str, start: date, end: date) -> List[TransactionRecord]:
        ...


class PatternStore(Protocol):
    def find_pending(self, user_id: str) -> List[Pattern]:
        ...

    def find_approved(self, user_id: str) -> List[Pattern]:
        ...

    def find_all(self, user_id: str) -> List[Pattern]:
        ...

    def get(self, user_id: str, pattern_id: str) -> Optional[Pattern]:
        ...

    def upsert_by_identifier(self, pattern: Pattern) -> Pattern:
        ...

    def save(self, pattern: Pattern) -> Pattern:
        ...


class BudgetSink(Protocol):
    def save_budget(self, result: BudgetResult) -> None:
        ...


class InMemoryTransactionSource:
    def __init__(self, transactions: Optional[Dict[str, Iterable[TransactionRecord]]] = None):
        self._transactions: Dict[str, List[TransactionRecord]] = {
            user_id: list(records) for user_id, records in (transactions or {}).items()
        }

    def add(self, user_id: str, records: Iterable[TransactionRecord]) -> None:
        self._transactions.setdefault(user_id, []).extend(records)

    def find_expenses(self, user_id: str, start: date, end: date) -> List[TransactionRecord]:
        return sorted(
            (
                record
                for record in self._transactions.get(user_id, [])
                if record.is_expense and start <= record.date <= end
            ),
            key=lambda record: (record.date, str(record.transaction_id)),
        )


class InMemoryPatternStore:
    """Thread-safe pattern store keyed by the pattern identity tuple."""

    def __init__(self, patterns: Iterable[Pattern] = ()):
        self._lock = threading.Lock()
        self._patterns: Dict[Tuple, Pattern] = {}
        for pattern in patterns:
            self._patterns[pattern.key] = pattern

    def _for_user(self, user_id: str, status: Optional[ApprovalStatus] = None) -> List[Pattern]:
        with self._lock:
            patterns = [p for p in self._patterns.values() if p.user_id == user_id]
        if status is not None:
            patterns = [p for p in patterns if p.approval_status == status]
        return sorted(patterns, key=lambda p: p.key)

    def find_pending(self, user_id: str) -> List[Pattern]:
        return self._for_user(user_id, ApprovalStatus.PENDING)

    def find_approved(self, user_id: str) -> List[Pattern]:
        return self._for_user(user_id, ApprovalStatus.APPROVED)

    def find_all(self, user_id: str) -> List[Pattern]:
        return self._for_user(user_id)

    def get(self, user_id: str, pattern_id: str) -> Optional[Pattern]:
        with self._lock:
            for pattern in self._patterns.values():
                if pattern.user_id == user_id and pattern.pattern_id == pattern_id:
                    return pattern
        return None

    def upsert_by_identifier(self, pattern: Pattern) -> Pattern:
        with self._lock:
            existing = self._patterns.get(pattern.key)
            stored = merge_redetected(existing, pattern) if existing else replace(pattern)
            self._patterns[pattern.key] = stored
            return stored

    def save(self, pattern: Pattern) -> Pattern:
        with self._lock:
            self._patterns[pattern.key] = pattern
            return pattern


class InMemoryBudgetSink:
    def __init__(self) -> None:
        self.saved: List[BudgetResult] = []

    def save_budget(self, result: BudgetResult) -> None:
        self.saved.append(result)
