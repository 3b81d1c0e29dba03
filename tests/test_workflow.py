from datetime import date, datetime

import pytest

from smart_budget.exceptions import ApprovalRequiredError, PatternNotFoundError, PatternStateError
from smart_budget.models import ApprovalStatus, BudgetSource, RecurrenceType, TransactionRecord
from smart_budget.stores import InMemoryBudgetSink, InMemoryPatternStore, InMemoryTransactionSource
from smart_budget.workflow import (
    STEP_APPROVAL_REQUIRED,
    STEP_BUDGET_CALCULATED,
    STEP_DETECTION_COMPLETE,
    SmartBudgetWorkflow,
)

AS_OF = datetime(2025, 2, 1, 12, 0)


def _history():
    rows = [
        TransactionRecord(f'ins-{m}', when, -300.0, 'Insurance', 'State Farm', sub_category_id='Car')
        for m, when in enumerate(['2024-04-15', '2024-07-15', '2024-10-15', '2025-01-15'])
    ]
    for idx in range(12):
        year, month = (2024, idx + 2) if idx < 11 else (2025, 1)
        rows.append(TransactionRecord(f'gro-{idx}', date(year, month, 5), -100.0, 'Groceries', 'Market'))
    rows.append(TransactionRecord('salary', '2024-12-31', 4000.0, 'Income', 'Payroll'))
    return rows


def _workflow(rows=None, sink=None):
    source = InMemoryTransactionSource({'u1': _history() if rows is None else rows})
    return SmartBudgetWorkflow(source, InMemoryPatternStore(), sink=sink)


def test_detection_stores_pending_quarterly_pattern():
    workflow = _workflow()

    result = workflow.detect_patterns('u1', 12, as_of=AS_OF)

    assert len(result.patterns) == 1
    pattern = result.patterns[0]
    assert pattern.user_id == 'u1'
    assert pattern.recurrence_type == RecurrenceType.QUARTERLY
    assert pattern.approval_status == ApprovalStatus.PENDING
    assert 'market' in [r.description for r in result.rejections]
    assert workflow.check_pending('u1').pending_count == 1


def test_rejections_kept_for_each_group_with_the_same_payee():
    rows = [
        TransactionRecord('s1', '2024-03-03', -20.0, 'Shopping', 'Amazon'),
        TransactionRecord('s2', '2024-09-03', -20.0, 'Shopping', 'Amazon'),
        TransactionRecord('b1', '2024-05-10', -500.0, 'Shopping', 'Amazon'),
        TransactionRecord('b2', '2024-06-10', -500.0, 'Shopping', 'Amazon'),
    ]
    workflow = _workflow(rows)

    result = workflow.detect_patterns('u1', 12, as_of=AS_OF)

    assert result.patterns == []
    assert result.groups_considered == 2
    assert len(result.rejections) == 2
    assert sorted(r.average_amount for r in result.rejections) == [20.0, 500.0]
    assert all(r.description == 'amazon' and r.reasons for r in result.rejections)


def test_detection_is_idempotent():
    workflow = _workflow()

    first = workflow.detect_patterns('u1', 12, as_of=AS_OF)
    second = workflow.detect_patterns('u1', 12, as_of=AS_OF)

    stored = workflow.patterns.find_all('u1')
    assert len(stored) == 1
    assert second.patterns[0].pattern_id == first.patterns[0].pattern_id
    assert stored[0] == first.patterns[0]


def test_redetection_keeps_approval():
    workflow = _workflow()
    pattern = workflow.detect_patterns('u1', 12, as_of=AS_OF).patterns[0]
    workflow.approve_pattern('u1', pattern.pattern_id, notes='car insurance')

    workflow.detect_patterns('u1', 12, as_of=AS_OF)

    stored = workflow.patterns.get('u1', pattern.pattern_id)
    assert stored.approval_status == ApprovalStatus.APPROVED
    assert stored.notes == 'car insurance'
    assert workflow.check_pending('u1').has_pending is False


def test_too_few_expenses_is_not_an_error():
    rows = [TransactionRecord('1', '2025-01-05', -20.0, 'Groceries', 'Market')]
    result = _workflow(rows).detect_patterns('u1', 6, as_of=AS_OF)

    assert result.insufficient_data
    assert result.patterns == []


def test_budget_requires_all_patterns_resolved():
    workflow = _workflow()
    pattern = workflow.detect_patterns('u1', 12, as_of=AS_OF).patterns[0]

    with pytest.raises(ApprovalRequiredError) as excinfo:
        workflow.calculate_budget('u1', 2025, 4, 6)
    assert [p.pattern_id for p in excinfo.value.pending_patterns] == [pattern.pattern_id]

    workflow.approve_pattern('u1', pattern.pattern_id)
    result = workflow.calculate_budget('u1', 2025, 4, 6)

    line = result.line_for('Insurance', 'Car')
    assert line.source == BudgetSource.RECURRING_PATTERN
    assert line.budgeted_amount == 300


def test_rejected_pattern_spend_is_averaged():
    workflow = _workflow()
    pattern = workflow.detect_patterns('u1', 12, as_of=AS_OF).patterns[0]
    workflow.reject_pattern('u1', pattern.pattern_id)

    result = workflow.calculate_budget('u1', 2025, 2, 6)

    line = result.line_for('Insurance', 'Car')
    assert line.source == BudgetSource.NON_RECURRING_AVERAGE
    assert line.pattern_info is None


def test_invalid_status_changes_raise():
    workflow = _workflow()
    pattern = workflow.detect_patterns('u1', 12, as_of=AS_OF).patterns[0]

    with pytest.raises(PatternNotFoundError):
        workflow.approve_pattern('u1', 'missing')
    workflow.approve_pattern('u1', pattern.pattern_id)
    with pytest.raises(PatternStateError):
        workflow.reject_pattern('u1', pattern.pattern_id)


def test_execute_walks_through_each_step():
    sink = InMemoryBudgetSink()
    workflow = _workflow(sink=sink)
    workflow.detect_patterns('u1', 12, as_of=AS_OF)

    outcome = workflow.execute('u1', 2025, 4, 6)
    assert outcome.step == STEP_APPROVAL_REQUIRED
    assert outcome.requires_approval
    assert sink.saved == []

    workflow.approve_pattern('u1', outcome.pending_patterns[0].pattern_id)
    outcome = workflow.execute('u1', 2025, 4, 6)

    assert outcome.step == STEP_BUDGET_CALCULATED
    assert outcome.budget is not None
    assert sink.saved == [outcome.budget]


def test_execute_runs_first_detection_when_no_patterns_exist():
    workflow = _workflow()

    outcome = workflow.execute('u1', 2025, 2, 12)

    assert outcome.step == STEP_DETECTION_COMPLETE
    assert len(outcome.pending_patterns) == 1
    assert outcome.detection is not None


def test_execute_calculates_when_nothing_recurs():
    rows = [
        TransactionRecord(str(idx), date(2024, month, 3), -50.0 - idx * 20, 'Dining', f'Restaurant {idx}')
        for idx, month in enumerate(range(8, 13))
    ]
    outcome = _workflow(rows).execute('u1', 2025, 1, 6)

    assert outcome.step == STEP_BUDGET_CALCULATED
    assert outcome.budget.line_for('Dining') is not None


def test_yearly_breakdown_adds_pattern_in_scheduled_months_only():
    workflow = _workflow()
    pattern = workflow.detect_patterns('u1', 12, as_of=AS_OF).patterns[0]
    workflow.approve_pattern('u1', pattern.pattern_id)

    breakdown = workflow.calculate_yearly_breakdown('u1', 2025, 6)

    assert sorted(breakdown) == list(range(1, 13))
    assert breakdown[4].line_for('Insurance', 'Car').recurring_amount == 300
    assert breakdown[2].line_for('Insurance', 'Car') is None
