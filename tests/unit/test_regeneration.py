"""Unit tests for term amendments and rebuild guards"""

import pytest
from datetime import date
from installment_gateway.domain.exceptions import IntegrityWarning, ValidationError
from installment_gateway.domain.models import YearMonth
from installment_gateway.domain.regeneration import (
    assess_terms_change,
    rebuild_start_month,
    require_rebuild_confirmation,
)


def assess(**overrides):
    values = dict(
        sale_id=1,
        previous_monthly=4000,
        previous_total=12000,
        previous_term=3,
        previous_policy_id=2,
        new_total=12000,
        new_term=3,
        new_policy_id=2,
        paid_amount=0,
        pending_count=3,
        paid_count=0,
    )
    values.update(overrides)
    return assess_terms_change(**values)


def test_unchanged_terms_not_stale():
    assessment = assess()
    assert assessment.stale is False
    assert assessment.new_monthly == 4000


def test_total_change_that_moves_monthly_is_stale():
    assessment = assess(new_total=15000)
    assert assessment.stale is True
    assert assessment.new_monthly == 5000
    assert assessment.remaining_balance == 15000


def test_total_change_within_rounding_not_stale():
    """12002 / 3 still floors to 4000"""
    assert assess(new_total=12002).stale is False


def test_term_change_is_stale():
    assessment = assess(new_term=4)
    assert assessment.stale is True
    assert assessment.new_monthly == 3000


def test_policy_change_is_stale():
    assert assess(new_policy_id=1).stale is True


def test_paid_amount_is_netted_out():
    assessment = assess(new_total=15000, paid_amount=4000, pending_count=2, paid_count=1)
    assert assessment.remaining_balance == 11000
    assert assessment.new_monthly == 3666


def test_overpaid_sale_has_no_monthly_amount():
    assessment = assess(new_total=3000, paid_amount=4000)
    assert assessment.remaining_balance == -1000
    assert assessment.new_monthly == 0


@pytest.mark.parametrize("new_total,new_term", [(0, 3), (12000, 0)])
def test_assess_rejects_invalid_terms(new_total, new_term):
    with pytest.raises(ValidationError):
        assess(new_total=new_total, new_term=new_term)


def test_rebuild_requires_confirmation():
    assessment = assess(new_total=15000, pending_count=2, paid_count=1, paid_amount=4000)

    with pytest.raises(IntegrityWarning) as exc_info:
        require_rebuild_confirmation(assessment, confirmed=False)

    assert exc_info.value.details["pending_count"] == 2
    assert exc_info.value.details["paid_count"] == 1


def test_confirmed_rebuild_passes():
    require_rebuild_confirmation(assess(), confirmed=True)


def test_rebuild_keeps_future_start_month():
    assert rebuild_start_month(YearMonth(2025, 1), 1, date(2025, 1, 10)) == YearMonth(2025, 1)


def test_rebuild_moves_past_start_to_current_month():
    assert rebuild_start_month(YearMonth(2024, 10), 1, date(2025, 1, 10)) == YearMonth(2025, 1)
