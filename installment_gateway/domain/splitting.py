"""Monthly obligation and its split across payment references"""

from typing import List

from installment_gateway.domain.exceptions import ValidationError


def monthly_obligation(total_amount: int, down_payment: int, term_months: int) -> int:
    """Amount due each month: (total - down payment) / term, floored to whole units"""
    if total_amount <= 0:
        raise ValidationError("Total amount must be positive", field="total_amount", value=total_amount)
    if down_payment < 0:
        raise ValidationError("Down payment cannot be negative", field="down_payment", value=down_payment)
    if term_months < 1:
        raise ValidationError("Term must be at least one month", field="term_months", value=term_months)

    financed = total_amount - down_payment
    if financed <= 0:
        raise ValidationError(
            "Down payment covers the whole amount, nothing to schedule",
            field="down_payment",
            value=down_payment,
        )

    monthly = financed // term_months
    if monthly <= 0:
        raise ValidationError(
            f"Financed amount {financed} is too small for {term_months} months",
            field="term_months",
            value=term_months,
        )
    return monthly


def split_monthly_amount(amount: int, reference_count: int, minimum: int = 500, max_references: int = 5) -> List[int]:
    """
    Split a monthly amount across payment references.

    Requirements:
    - Every share but the last is amount // count
    - The last share absorbs the remainder, so shares always sum to amount
    - Zero shares are dropped (fewer references than requested)
    - Any remaining share below `minimum` rejects the whole split

    Example:
        1000 over 3 -> [333, 333, 334]
        900 over 5 -> 180 per share < 500 -> rejected
    """
    if reference_count == 0:
        return []
    if not 1 <= reference_count <= max_references:
        raise ValidationError(
            f"Reference count must be between 1 and {max_references}",
            field="reference_count",
            value=reference_count,
        )
    if amount <= 0:
        raise ValidationError("Monthly amount must be positive", field="amount", value=amount)

    base = amount // reference_count
    shares = [base] * (reference_count - 1)
    shares.append(amount - base * (reference_count - 1))

    shares = [share for share in shares if share > 0]

    for index, share in enumerate(shares):
        if share < minimum:
            raise ValidationError(
                f"Reference {index + 1} would carry {share}, below the minimum of {minimum}",
                field="reference_count",
                slot=index,
                amount=share,
                minimum=minimum,
            )

    return shares
