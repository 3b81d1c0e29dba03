"""Approval state machine for detected patterns."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from .exceptions import PatternStateError
from .models import ApprovalStatus, Pattern

ALLOWED_TRANSITIONS = {
    ApprovalStatus.PENDING: {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    ApprovalStatus.APPROVED: set(),
    ApprovalStatus.REJECTED: set(),
}


def transition(
    pattern: Pattern,
    target: ApprovalStatus,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Pattern:
    """Return a copy of ``pattern`` moved to ``target``.

    Moving a pattern to the state it is already in returns it unchanged.
    """
    target = ApprovalStatus(target)
    if pattern.approval_status == target:
        return pattern
    if target not in ALLOWED_TRANSITIONS[pattern.approval_status]:
        raise PatternStateError(pattern.approval_status.value, target.value)
    return replace(
        pattern,
        approval_status=target,
        approved_at=now or datetime.now(),
        notes=notes if notes is not None else pattern.notes,
    )


def approve(pattern: Pattern, now: Optional[datetime] = None, notes: Optional[str] = None) -> Pattern:
    return transition(pattern, ApprovalStatus.APPROVED, now=now, notes=notes)


def reject(pattern: Pattern, now: Optional[datetime] = None, notes: Optional[str] = None) -> Pattern:
    return transition(pattern, ApprovalStatus.REJECTED, now=now, notes=notes)


def merge_redetected(existing: Pattern, fresh: Pattern) -> Pattern:
    """Fold a fresh detection into the stored pattern with the same key.

    Only detection statistics move; identity, cadence, amount range and the
    user's approval decision stay as stored.
    """
    return replace(
        existing,
        average_amount=fresh.average_amount,
        scheduled_months=fresh.scheduled_months,
        confidence=fresh.confidence,
        analysis_months=fresh.analysis_months,
        last_detected=fresh.last_detected,
        sample_transactions=fresh.sample_transactions,
    )
