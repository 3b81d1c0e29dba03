"""Sequence pattern detection, the approval gate and budget calculation for one user."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
import structlog

from . import lifecycle
from .averaging import AveragingStrategy, SmartDenominatorStrategy
from .config import DEFAULT_ANALYSIS_MONTHS
from .exceptions import ApprovalRequiredError, PatternNotFoundError
from .grouping import group_similar_transactions
from .models import ApprovalStatus, BudgetResult, Pattern
from .recurring import evaluate
from .stores import BudgetSink, PatternStore, TransactionSource
from .synthesis import analysis_window, synthesize_budget

logger = structlog.get_logger()

MIN_DETECTION_TRANSACTIONS = 3

STEP_APPROVAL_REQUIRED = 'pattern-approval-required'
STEP_DETECTION_COMPLETE = 'pattern-detection-complete'
STEP_BUDGET_CALCULATED = 'budget-calculated'


@dataclass
class GroupRejection:
    """A group of similar expenses that did not form a recurring pattern."""

    description: str
    category_id: Optional[str]
    sub_category_id: Optional[str]
    transaction_count: int
    average_amount: float
    reasons: List[str]


@dataclass
class DetectionResult:
    user_id: str
    analysis_months: int
    transactions_analyzed: int = 0
    groups_considered: int = 0
    patterns: List[Pattern] = field(default_factory=list)
    rejections: List[GroupRejection] = field(default_factory=list)

    @property
    def insufficient_data(self) -> bool:
        return self.transactions_analyzed < MIN_DETECTION_TRANSACTIONS


@dataclass
class PendingCheck:
    has_pending: bool
    pending_count: int
    patterns: List[Pattern]
    message: str


@dataclass
class WorkflowOutcome:
    step: str
    message: str
    pending_patterns: List[Pattern] = field(default_factory=list)
    detection: Optional[DetectionResult] = None
    budget: Optional[BudgetResult] = None

    @property
    def requires_approval(self) -> bool:
        return self.step in (STEP_APPROVAL_REQUIRED, STEP_DETECTION_COMPLETE) and bool(self.pending_patterns)


class SmartBudgetWorkflow:
    """Per-user orchestration over a transaction source, a pattern store and an optional sink."""

    def __init__(
        self,
        transactions: TransactionSource,
        patterns: PatternStore,
        strategy: Optional[AveragingStrategy] = None,
        sink: Optional[BudgetSink] = None,
    ):
        self.transactions = transactions
        self.patterns = patterns
        self.strategy = strategy or SmartDenominatorStrategy()
        self.sink = sink

    def detect_patterns(
        self,
        user_id: str,
        analysis_months: int = DEFAULT_ANALYSIS_MONTHS,
        as_of: Optional[datetime] = None,
    ) -> DetectionResult:
        """Group recent expenses, classify each group and store the patterns found.

        Patterns already stored under the same identity keep their approval
        state; only their statistics are refreshed, so running detection
        twice over the same history changes nothing.
        """
        now = as_of or datetime.now()
        start = (pd.Timestamp(now) - pd.DateOffset(months=analysis_months)).date()
        expenses = [
            t for t in self.transactions.find_expenses(user_id, start, now.date())
            if t.category_id is not None
        ]
        result = DetectionResult(user_id=user_id, analysis_months=analysis_months)
        result.transactions_analyzed = len(expenses)
        if result.insufficient_data:
            logger.info("pattern_detection_skipped", user_id=user_id, transactions=len(expenses))
            return result

        groups = group_similar_transactions(expenses)
        result.groups_considered = len(groups)
        for group in groups:
            classification = evaluate(group, analysis_months, detected_at=now)
            if classification.pattern is None:
                result.rejections.append(GroupRejection(
                    description=group.common_description,
                    category_id=group.category_id,
                    sub_category_id=group.sub_category_id,
                    transaction_count=group.size,
                    average_amount=group.average_amount,
                    reasons=classification.rejections,
                ))
                continue
            candidate = replace(classification.pattern, user_id=user_id)
            result.patterns.append(self.patterns.upsert_by_identifier(candidate))

        logger.info(
            "pattern_detection_complete",
            user_id=user_id,
            transactions=len(expenses),
            groups=len(groups),
            patterns=len(result.patterns),
        )
        return result

    def check_pending(self, user_id: str) -> PendingCheck:
        pending = self.patterns.find_pending(user_id)
        if pending:
            message = f"{len(pending)} recurring pattern(s) need approval before budget calculation"
        else:
            message = "No pending patterns"
        return PendingCheck(bool(pending), len(pending), pending, message)

    def _resolve(self, user_id: str, pattern_id: str, target: ApprovalStatus, notes: Optional[str]) -> Pattern:
        pattern = self.patterns.get(user_id, pattern_id)
        if pattern is None:
            raise PatternNotFoundError(pattern_id)
        updated = lifecycle.transition(pattern, target, notes=notes)
        if updated is not pattern:
            self.patterns.save(updated)
            logger.info("pattern_status_changed", user_id=user_id, pattern_id=pattern_id, status=target.value)
        return updated

    def approve_pattern(self, user_id: str, pattern_id: str, notes: Optional[str] = None) -> Pattern:
        return self._resolve(user_id, pattern_id, ApprovalStatus.APPROVED, notes)

    def reject_pattern(self, user_id: str, pattern_id: str, notes: Optional[str] = None) -> Pattern:
        return self._resolve(user_id, pattern_id, ApprovalStatus.REJECTED, notes)

    def calculate_budget(
        self,
        user_id: str,
        year: int,
        month: int,
        analysis_months: int = DEFAULT_ANALYSIS_MONTHS,
    ) -> BudgetResult:
        pending = self.patterns.find_pending(user_id)
        if pending:
            raise ApprovalRequiredError(pending)
        approved = self.patterns.find_approved(user_id)
        start, end = analysis_window(year, month, analysis_months)
        history = self.transactions.find_expenses(user_id, start, end)
        return synthesize_budget(user_id, history, approved, year, month, analysis_months, self.strategy)

    def calculate_yearly_breakdown(
        self,
        user_id: str,
        year: int,
        analysis_months: int = DEFAULT_ANALYSIS_MONTHS,
    ) -> Dict[int, BudgetResult]:
        """Budget for every month of ``year`` from one snapshot of approved patterns."""
        pending = self.patterns.find_pending(user_id)
        if pending:
            raise ApprovalRequiredError(pending)
        approved = self.patterns.find_approved(user_id)
        breakdown: Dict[int, BudgetResult] = {}
        for month in range(1, 13):
            start, end = analysis_window(year, month, analysis_months)
            history = self.transactions.find_expenses(user_id, start, end)
            breakdown[month] = synthesize_budget(
                user_id, history, approved, year, month, analysis_months, self.strategy
            )
        return breakdown

    def execute(
        self,
        user_id: str,
        year: int,
        month: int,
        analysis_months: int = DEFAULT_ANALYSIS_MONTHS,
    ) -> WorkflowOutcome:
        """Run whichever step the user is at: approval, first detection or calculation."""
        check = self.check_pending(user_id)
        if check.has_pending:
            return WorkflowOutcome(
                step=STEP_APPROVAL_REQUIRED,
                message=check.message,
                pending_patterns=check.patterns,
            )

        if not self.patterns.find_all(user_id):
            detection = self.detect_patterns(user_id, analysis_months, as_of=datetime(year, month, 1))
            pending = self.patterns.find_pending(user_id)
            if pending:
                return WorkflowOutcome(
                    step=STEP_DETECTION_COMPLETE,
                    message=f"Detected {len(pending)} recurring pattern(s); review them before calculating",
                    pending_patterns=pending,
                    detection=detection,
                )

        budget = self.calculate_budget(user_id, year, month, analysis_months)
        if self.sink is not None:
            self.sink.save_budget(budget)
        return WorkflowOutcome(
            step=STEP_BUDGET_CALCULATED,
            message=f"Budget calculated: {budget.total_budgeted_expenses} across {len(budget.lines)} categories",
            budget=budget,
        )
