import json

from smart_budget.budget_storage import JsonBudgetSink, budget_path, list_saved_budgets, load_budget, save_budget
from smart_budget.models import BudgetResult, BudgetSource, CategoryBudgetLine, PatternInfo, RecurrenceType


def _result():
    line = CategoryBudgetLine(
        category_id='Insurance',
        sub_category_id='Car',
        year=2025,
        month=1,
        budgeted_amount=900,
        source=BudgetSource.COMBINED,
        average_amount=600,
        averaging_reasoning='Irregular expense',
        contributions=(PatternInfo('p-1', RecurrenceType.QUARTERLY, 300, 'state farm (Insurance → Car)'),),
    )
    return BudgetResult(
        user_id='u1',
        year=2025,
        month=1,
        analysis_months=6,
        lines=[line],
        total_budgeted_expenses=900,
    )


def test_save_and_load_budget(tmp_path):
    path = save_budget(_result(), directory=tmp_path)

    assert path == tmp_path / 'u1' / '2025-01.json'
    data = load_budget('u1', 2025, 1, directory=tmp_path)
    assert data['total_budgeted_expenses'] == 900
    line = data['lines'][0]
    assert line['source'] == 'combined-average-and-pattern'
    assert line['contributions'][0]['recurrence_type'] == 'quarterly'
    assert line['contributions'][0]['recurring_amount'] == 300
    assert data['calculation']['methodology'] == 'pattern-aware-calculation'


def test_load_missing_or_corrupt_budget_returns_none(tmp_path):
    assert load_budget('u1', 2025, 2, directory=tmp_path) is None

    target = budget_path('u1', 2025, 3, directory=tmp_path)
    target.parent.mkdir(parents=True)
    target.write_text('{not json', encoding='utf-8')
    assert load_budget('u1', 2025, 3, directory=tmp_path) is None

    target.write_text(json.dumps({'lines': 'nope'}), encoding='utf-8')
    assert load_budget('u1', 2025, 3, directory=tmp_path) is None


def test_json_sink_writes_one_file_per_month(tmp_path):
    sink = JsonBudgetSink(tmp_path)
    sink.save_budget(_result())

    assert list_saved_budgets('u1', directory=tmp_path) == ['2025-01']
    assert list_saved_budgets('nobody', directory=tmp_path) == []


def test_user_ids_are_made_path_safe(tmp_path):
    assert budget_path('../evil', 2025, 1, directory=tmp_path).parent == tmp_path / '___evil'
