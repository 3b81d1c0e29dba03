import pytest
from structlog.testing import capture_logs

from smart_budget.models import AmountRange, Pattern, PatternIdentifier, RecurrenceType
from smart_budget.projection import explain_projection, month_difference, should_fire_in_month


def _pattern(recurrence_type, months):
    return Pattern(
        pattern_id='p1',
        user_id='u1',
        identifier=PatternIdentifier('state farm', AmountRange(300.0, 300.0), 'Insurance', 'Car'),
        recurrence_type=recurrence_type,
        scheduled_months=tuple(months),
        average_amount=300.0,
        confidence=0.9,
    )


def test_quarterly_projection_from_single_scheduled_month():
    pattern = _pattern(RecurrenceType.QUARTERLY, [4])

    assert should_fire_in_month(pattern, 4)
    assert should_fire_in_month(pattern, 7)
    assert should_fire_in_month(pattern, 10)
    assert should_fire_in_month(pattern, 1)
    assert not should_fire_in_month(pattern, 5)


def test_bi_monthly_projection():
    pattern = _pattern(RecurrenceType.BI_MONTHLY, [2])

    assert should_fire_in_month(pattern, 4)
    assert should_fire_in_month(pattern, 12)
    assert not should_fire_in_month(pattern, 3)


def test_bi_monthly_with_odd_and_even_months_fires_every_month():
    pattern = _pattern(RecurrenceType.BI_MONTHLY, [1, 2])

    assert all(should_fire_in_month(pattern, month) for month in range(1, 13))


def test_yearly_fires_only_in_scheduled_month():
    pattern = _pattern(RecurrenceType.YEARLY, [6])

    assert should_fire_in_month(pattern, 6)
    assert not should_fire_in_month(pattern, 12)


def test_explain_projection_reports_base_month():
    result = explain_projection(_pattern(RecurrenceType.QUARTERLY, [4]), 1)

    assert result.matches
    assert result.base_month == 4
    assert result.months_from_base == 9


def test_malformed_pattern_is_logged_and_skipped():
    pattern = _pattern(RecurrenceType.QUARTERLY, [])

    with capture_logs() as logs:
        assert not should_fire_in_month(pattern, 3)

    assert any(entry['event'] == 'malformed_pattern_skipped' for entry in logs)


def test_invalid_months_raise():
    with pytest.raises(ValueError):
        should_fire_in_month(_pattern(RecurrenceType.QUARTERLY, [4]), 13)
    with pytest.raises(ValueError):
        month_difference(0, 5)
    assert month_difference(10, 1) == 3
