"""Schedule regeneration after a sale's commercial terms change"""

from datetime import date

from installment_gateway.domain.exceptions import IntegrityWarning, ValidationError
from installment_gateway.domain.models import RegenerationAssessment, YearMonth
from installment_gateway.domain.scheduling import generate_due_dates


def assess_terms_change(
    sale_id: int,
    previous_monthly: int,
    previous_total: int,
    previous_term: int,
    previous_policy_id: int | None,
    new_total: int,
    new_term: int,
    new_policy_id: int | None,
    paid_amount: int,
    pending_count: int,
    paid_count: int,
) -> RegenerationAssessment:
    """
    Compare amended terms against the schedule already persisted.

    The new monthly amount spreads what is still owed (new total minus
    everything paid so far, down payment included) over the new term. The
    schedule is stale when the terms changed and that amount no longer
    matches the persisted monthly amount.
    """
    if new_total <= 0:
        raise ValidationError("Total amount must be positive", field="total_amount", value=new_total)
    if new_term < 1:
        raise ValidationError("Term must be at least one month", field="term_months", value=new_term)

    remaining = new_total - paid_amount
    new_monthly = remaining // new_term if remaining > 0 else 0

    if new_term != previous_term or new_policy_id != previous_policy_id:
        # Dates or row count change regardless of the amount
        stale = True
    elif new_total != previous_total:
        stale = new_monthly != previous_monthly
    else:
        stale = False

    return RegenerationAssessment(
        sale_id=sale_id,
        previous_monthly=previous_monthly,
        new_monthly=new_monthly,
        remaining_balance=remaining,
        stale=stale,
        pending_count=pending_count,
        paid_count=paid_count,
        paid_amount=paid_amount,
    )


def require_rebuild_confirmation(assessment: RegenerationAssessment, confirmed: bool) -> None:
    """
    Block a rebuild that was not explicitly confirmed.

    A rebuild deletes every pending installment of the sale and issues new
    references, so it never proceeds silently.
    """
    if confirmed:
        return
    raise IntegrityWarning(
        f"Rebuilding sale {assessment.sale_id} deletes {assessment.pending_count} pending installments"
        f" ({assessment.paid_count} already paid); confirm to proceed",
        sale_id=assessment.sale_id,
        pending_count=assessment.pending_count,
        paid_count=assessment.paid_count,
        paid_amount=assessment.paid_amount,
        remaining_balance=assessment.remaining_balance,
    )


def rebuild_start_month(stored_start: YearMonth, target_day: int, today: date) -> YearMonth:
    """Keep the sale's start month unless its first due date is already past"""
    try:
        generate_due_dates(stored_start, target_day, 1, today)
    except ValidationError:
        return YearMonth.of(today)
    return stored_start
