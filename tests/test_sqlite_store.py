from datetime import date, datetime
import threading

import pandas as pd
import pytest

from smart_budget import db
from smart_budget.lifecycle import approve
from smart_budget.models import AmountRange, ApprovalStatus, Pattern, PatternIdentifier, RecurrenceType
from smart_budget.stores import InMemoryPatternStore
from smart_budget.workflow import SmartBudgetWorkflow


def _build_df(rows):
    return pd.DataFrame(rows)


def _transactions_df():
    return _build_df([
        {'Transaction ID': 'a1', 'Transaction Date': '2024-04-15', 'Description': 'State Farm', 'Amount': -300.0,
         'Category': 'Insurance', 'Sub-Category': 'Car'},
        {'Transaction ID': 'a2', 'Transaction Date': '2024-07-15', 'Description': 'State Farm', 'Amount': -300.0,
         'Category': 'Insurance', 'Sub-Category': 'Car'},
        {'Transaction ID': 'a3', 'Transaction Date': '2024-10-15', 'Description': 'State Farm', 'Amount': -300.0,
         'Category': 'Insurance', 'Sub-Category': 'Car'},
        {'Transaction ID': 'a4', 'Transaction Date': '2025-01-15', 'Description': 'State Farm', 'Amount': -300.0,
         'Category': 'Insurance', 'Sub-Category': 'Car'},
        {'Transaction ID': 'p1', 'Transaction Date': '2024-12-31', 'Description': 'Payroll', 'Amount': 4000.0,
         'Category': 'Income', 'Sub-Category': None},
        {'Transaction ID': 'bad', 'Transaction Date': 'not a date', 'Description': 'Broken', 'Amount': -5.0,
         'Category': 'Misc', 'Sub-Category': None},
    ])


def _pattern(pattern_id='p-1', average=300.0):
    return Pattern(
        pattern_id=pattern_id,
        user_id='u1',
        identifier=PatternIdentifier('state farm', AmountRange(300.0, 300.0), 'Insurance', 'Car'),
        recurrence_type=RecurrenceType.QUARTERLY,
        scheduled_months=(1, 4, 7, 10),
        average_amount=average,
        confidence=0.95,
        analysis_months=12,
        last_detected=datetime(2025, 2, 1, 12, 0),
    )


def test_import_deduplicates_and_skips_invalid_rows(tmp_path):
    path = tmp_path / 'budget.db'
    db.init_db(path)

    inserted, skipped = db.upsert_transactions(_transactions_df(), 'u1', db_path=path)
    assert (inserted, skipped) == (5, 1)

    inserted, skipped = db.upsert_transactions(_transactions_df(), 'u1', db_path=path)
    assert (inserted, skipped) == (0, 6)


def test_transaction_source_returns_expenses_in_window(tmp_path):
    path = tmp_path / 'budget.db'
    source = db.SqliteTransactionSource(path)
    db.upsert_transactions(_transactions_df(), 'u1', db_path=path)

    records = source.find_expenses('u1', date(2024, 7, 1), date(2024, 12, 31))

    assert [r.transaction_id for r in records] == ['a2', 'a3']
    assert records[0].sub_category_id == 'Car'
    assert records[0].date == date(2024, 7, 15)
    assert source.find_expenses('someone-else', date(2024, 1, 1), date(2025, 12, 31)) == []


def test_budget_exclusion_flag_round_trips(tmp_path):
    path = tmp_path / 'budget.db'
    source = db.SqliteTransactionSource(path)
    db.upsert_transactions(_transactions_df(), 'u1', db_path=path)

    assert db.set_budget_exclusion('u1', 'a2', db_path=path)
    assert not db.set_budget_exclusion('u1', 'missing', db_path=path)

    flagged = {r.transaction_id: r.exclude_from_budget for r in source.find_expenses('u1', date(2024, 1, 1), date(2025, 12, 31))}
    assert flagged == {'a1': False, 'a2': True, 'a3': False, 'a4': False}


def test_pattern_upsert_refreshes_statistics_but_not_approval(tmp_path):
    store = db.SqlitePatternStore(tmp_path / 'budget.db')

    stored = store.upsert_by_identifier(_pattern())
    assert store.find_pending('u1') == [stored]

    store.save(approve(stored, now=datetime(2025, 2, 2), notes='ok'))
    refreshed = store.upsert_by_identifier(_pattern(pattern_id='p-2', average=310.0))

    assert refreshed.pattern_id == 'p-1'
    assert refreshed.average_amount == 310.0
    assert refreshed.approval_status == ApprovalStatus.APPROVED
    assert refreshed.notes == 'ok'
    assert store.find_pending('u1') == []
    assert [p.pattern_id for p in store.find_approved('u1')] == ['p-1']
    assert store.get('u1', 'p-2') is None


def test_pattern_round_trips_through_sqlite(tmp_path):
    store = db.SqlitePatternStore(tmp_path / 'budget.db')
    original = _pattern()

    stored = store.upsert_by_identifier(original)

    assert stored == original


def test_sqlite_backed_detection_is_idempotent(tmp_path):
    path = tmp_path / 'budget.db'
    workflow = SmartBudgetWorkflow(db.SqliteTransactionSource(path), db.SqlitePatternStore(path))
    db.upsert_transactions(_transactions_df(), 'u1', db_path=path)

    workflow.detect_patterns('u1', 12, as_of=datetime(2025, 2, 1))
    workflow.detect_patterns('u1', 12, as_of=datetime(2025, 2, 1))

    patterns = workflow.patterns.find_all('u1')
    assert len(patterns) == 1
    assert patterns[0].recurrence_type == RecurrenceType.QUARTERLY


@pytest.mark.parametrize('make_store', [
    lambda tmp_path: InMemoryPatternStore(),
    lambda tmp_path: db.SqlitePatternStore(tmp_path / 'budget.db'),
], ids=['memory', 'sqlite'])
def test_concurrent_upserts_create_one_pattern(tmp_path, make_store):
    store = make_store(tmp_path)
    workers = 8
    start = threading.Barrier(workers)
    results = []
    errors = []

    def run(idx):
        start.wait()
        try:
            results.append(store.upsert_by_identifier(_pattern(pattern_id=f'p-{idx}')))
        except Exception as exc:  # surfaced by the assertions below
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(idx,)) for idx in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == workers
    stored = store.find_all('u1')
    assert len(stored) == 1
    assert len(store.find_pending('u1')) == 1
    assert {r.pattern_id for r in results} == {stored[0].pattern_id}
