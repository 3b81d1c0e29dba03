from datetime import datetime

import pytest

from smart_budget.exceptions import PatternStateError
from smart_budget.lifecycle import approve, merge_redetected, reject, transition
from smart_budget.models import AmountRange, ApprovalStatus, Pattern, PatternIdentifier, RecurrenceType


def _pattern(**overrides):
    values = dict(
        pattern_id='p1',
        user_id='u1',
        identifier=PatternIdentifier('state farm', AmountRange(290.0, 310.0), 'Insurance', 'Car'),
        recurrence_type=RecurrenceType.QUARTERLY,
        scheduled_months=(1, 4, 7, 10),
        average_amount=300.0,
        confidence=0.9,
    )
    values.update(overrides)
    return Pattern(**values)


def test_approve_stamps_time_and_notes():
    when = datetime(2025, 1, 2, 9, 30)
    approved = approve(_pattern(), now=when, notes='car insurance')

    assert approved.approval_status == ApprovalStatus.APPROVED
    assert approved.approved_at == when
    assert approved.notes == 'car insurance'


def test_same_state_is_a_no_op():
    pattern = _pattern(approval_status=ApprovalStatus.REJECTED)
    assert transition(pattern, ApprovalStatus.REJECTED) is pattern


def test_resolved_patterns_cannot_change():
    approved = approve(_pattern())
    with pytest.raises(PatternStateError):
        reject(approved)
    with pytest.raises(PatternStateError):
        transition(approved, ApprovalStatus.PENDING)


def test_redetection_keeps_identity_and_decision():
    stored = approve(_pattern(), notes='keep')
    fresh = _pattern(
        pattern_id='other',
        recurrence_type=RecurrenceType.BI_MONTHLY,
        identifier=PatternIdentifier('state farm', AmountRange(250.0, 350.0), 'Insurance', 'Car'),
        scheduled_months=(1, 4, 7),
        average_amount=320.0,
        confidence=0.8,
        analysis_months=9,
    )

    merged = merge_redetected(stored, fresh)

    assert merged.pattern_id == 'p1'
    assert merged.approval_status == ApprovalStatus.APPROVED
    assert merged.notes == 'keep'
    assert merged.recurrence_type == RecurrenceType.QUARTERLY
    assert merged.identifier.amount_range == AmountRange(290.0, 310.0)
    assert merged.average_amount == 320.0
    assert merged.scheduled_months == (1, 4, 7)
    assert merged.analysis_months == 9


def test_display_name_and_next_month():
    pattern = _pattern()
    assert pattern.display_name == 'state farm (Insurance → Car)'
    assert pattern.next_scheduled_month(4) == 7
    assert pattern.next_scheduled_month(11) == 1
