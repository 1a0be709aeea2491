"""Unit tests for due dates, policies and date helpers"""

import pytest
from datetime import date
from installment_gateway.domain.exceptions import ValidationError
from installment_gateway.domain.models import ContractPolicy, DayRule, YearMonth
from installment_gateway.domain.policies import infer_day_rule, inferred_policy, resolve_target_day, validate_policy
from installment_gateway.domain.scheduling import generate_due_dates
from installment_gateway.utils.date_utils import add_months, clamped_date, format_dmy

TODAY = date(2025, 1, 10)


def test_due_dates_last_of_month_clamped_in_february():
    dates = generate_due_dates(YearMonth(2025, 1), 30, 2, today=TODAY)
    assert dates == [date(2025, 2, 28), date(2025, 3, 30)]


def test_due_dates_start_the_month_after():
    dates = generate_due_dates(YearMonth(2025, 6), 1, 1, today=TODAY)
    assert dates == [date(2025, 7, 1)]


def test_due_dates_cross_year_boundary():
    dates = generate_due_dates(YearMonth(2025, 11), 15, 3, today=TODAY)
    assert dates == [date(2025, 12, 15), date(2026, 1, 15), date(2026, 2, 15)]


def test_due_dates_leap_february():
    dates = generate_due_dates(YearMonth(2028, 1), 30, 1, today=TODAY)
    assert dates == [date(2028, 2, 29)]


def test_due_dates_first_date_today_is_allowed():
    dates = generate_due_dates(YearMonth(2024, 12), 10, 1, today=TODAY)
    assert dates == [TODAY]


def test_due_dates_reject_past_start():
    with pytest.raises(ValidationError) as exc_info:
        generate_due_dates(YearMonth(2024, 11), 1, 3, today=TODAY)
    assert exc_info.value.details["first_due_date"] == "2024-12-01"


@pytest.mark.parametrize("months,day", [(0, 1), (3, 0), (3, 32)])
def test_due_dates_reject_bad_arguments(months, day):
    with pytest.raises(ValidationError):
        generate_due_dates(YearMonth(2025, 1), day, months, today=TODAY)


def test_last_of_month_is_strictly_thirtieth():
    """Never the 31st, even in 31-day months"""
    policy = ContractPolicy(id=2, display_name="End of month", day_rule=DayRule.LAST_OF_MONTH)
    assert resolve_target_day(policy, YearMonth(2025, 1)) == 30
    assert resolve_target_day(policy, YearMonth(2025, 2)) == 28
    assert resolve_target_day(policy, YearMonth(2025, 4)) == 30


def test_explicit_day_clamped_to_month_end():
    policy = ContractPolicy(id=3, display_name="31st", day_rule=DayRule.EXPLICIT_DAY, explicit_day=31)
    assert resolve_target_day(policy, YearMonth(2025, 4)) == 30
    assert resolve_target_day(policy, YearMonth(2025, 5)) == 31


def test_first_of_month():
    policy = ContractPolicy(id=1, display_name="1st", day_rule=DayRule.FIRST_OF_MONTH)
    assert resolve_target_day(policy, YearMonth(2025, 2)) == 1


@pytest.mark.parametrize("explicit_day", [None, 0, 32])
def test_validate_policy_rejects_impossible_day(explicit_day):
    policy = ContractPolicy(id=9, display_name="bad", day_rule=DayRule.EXPLICIT_DAY, explicit_day=explicit_day)
    with pytest.raises(ValidationError):
        validate_policy(policy)


@pytest.mark.parametrize("stored_day,expected", [(1, DayRule.FIRST_OF_MONTH), (14, DayRule.FIRST_OF_MONTH),
                                                 (15, DayRule.LAST_OF_MONTH), (30, DayRule.LAST_OF_MONTH)])
def test_infer_day_rule_cutoff(stored_day, expected):
    assert infer_day_rule(stored_day) == expected


def test_inferred_policy_target_day():
    assert inferred_policy(28).target_day == 30
    assert inferred_policy(28, cutoff=29).target_day == 1


def test_year_month_parse_and_shift():
    month = YearMonth.parse("2025-11")
    assert month.shift(2) == YearMonth(2026, 1)
    assert month.shift(-11) == YearMonth(2024, 12)
    assert str(month) == "2025-11"
    assert month.last_day() == date(2025, 11, 30)


def test_date_helpers():
    assert add_months(2024, 11, 3) == (2025, 2)
    assert clamped_date(2024, 2, 30) == date(2024, 2, 29)
    assert format_dmy(date(2025, 2, 1)) == "01/02/2025"
    assert format_dmy(None) == ""
