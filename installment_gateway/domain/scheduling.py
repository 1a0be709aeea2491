"""Monthly due-date generation with end-of-month clamping"""

from datetime import date
from typing import List

from installment_gateway.domain.exceptions import ValidationError
from installment_gateway.domain.models import YearMonth
from installment_gateway.utils.date_utils import clamped_date


def generate_due_dates(
    start_month: YearMonth,
    target_day: int,
    months: int,
    today: date | None = None,
) -> List[date]:
    """
    Generate one due date per month for a credit sale.

    Requirements:
    - The first installment falls in the month after the sale, the last one
      `months` months after it
    - Each date uses the target day, reduced to the month's last day when the
      month is shorter (30 -> Feb 28)
    - A schedule never starts in the past

    Args:
        start_month: Month of the sale
        target_day: Unclamped withdrawal day (1..31)
        months: Number of installments
        today: Reference date for the past-start check (default: date.today())

    Returns:
        Ordered list of due dates

    Example:
        start 2025-01, target 30, 2 months -> [2025-02-28, 2025-03-30]
    """
    if months < 1:
        raise ValidationError("Term must be at least one month", field="term_months", value=months)
    if not 1 <= target_day <= 31:
        raise ValidationError("Withdrawal day must be between 1 and 31", field="target_day", value=target_day)

    if today is None:
        today = date.today()

    due_dates = []
    for offset in range(1, months + 1):
        month = start_month.shift(offset)
        due_dates.append(clamped_date(month.year, month.month, target_day))

    if due_dates[0] < today:
        raise ValidationError(
            f"Schedule would start in the past ({due_dates[0].isoformat()})",
            field="start_month",
            first_due_date=due_dates[0].isoformat(),
        )

    return due_dates
