"""Installment schedule generation for credit sales"""

from datetime import date
from typing import List, Protocol

from installment_gateway.domain.exceptions import ValidationError
from installment_gateway.domain.models import (
    ContractPolicy,
    Schedule,
    ScheduledInstallment,
    ScheduledReference,
    ScheduleRequest,
)
from installment_gateway.domain.policies import validate_policy
from installment_gateway.domain.references import (
    allocate_codes,
    ensure_codes_available,
    validate_code,
    validate_prefix,
)
from installment_gateway.domain.scheduling import generate_due_dates
from installment_gateway.domain.splitting import monthly_obligation, split_monthly_amount


class ReferenceStore(Protocol):
    """Store operations the builder needs for reference codes"""

    def reserve_sequence(self, prefix: str, count: int) -> int:
        """Reserve `count` numbers under `prefix`, returning the number before the block"""
        ...

    def code_exists(self, code: str) -> bool:
        ...


def build_schedule(
    request: ScheduleRequest,
    policy: ContractPolicy,
    store: ReferenceStore,
    today: date | None = None,
    minimum: int = 500,
    max_references: int = 5,
) -> Schedule:
    """
    Build the references and installment rows of a credit sale.

    Steps:
    1. Monthly obligation and its split across references
    2. Due dates (fails before any reference number is reserved)
    3. Codes: operator overrides, then sequential numbers for the other slots
    4. Uniqueness of every code, in the batch and against issued codes
    5. One installment per due date and reference, or one per due date
       without a reference when the schedule carries none

    Raises:
        ValidationError: Any rule violation; nothing has been persisted
    """
    validate_policy(policy)
    validate_prefix(request.branch_prefix)

    monthly = monthly_obligation(request.total_amount, request.down_payment, request.term_months)
    shares = split_monthly_amount(monthly, request.reference_count, minimum, max_references)

    target_day = policy.target_day
    due_dates = generate_due_dates(request.start_month, target_day, request.term_months, today)

    manual_codes = {}
    for slot, code in request.manual_codes.items():
        if not code:
            continue
        if not 0 <= slot < len(shares):
            raise ValidationError(
                f"Manual code for slot {slot + 1} but only {len(shares)} references",
                field="manual_codes",
                slot=slot,
            )
        manual_codes[slot] = validate_code(code.strip(), slot)

    auto_count = len(shares) - len(manual_codes)
    last_number = store.reserve_sequence(request.branch_prefix, auto_count) if auto_count else 0
    slots = allocate_codes(request.branch_prefix, last_number, len(shares), manual_codes)
    ensure_codes_available(slots, store.code_exists)

    coverage_start = request.start_month.shift(1).first_day()
    coverage_end = request.start_month.shift(request.term_months).last_day()
    references = [
        ScheduledReference(
            slot=slot.index,
            code=slot.code,
            amount=share,
            coverage_start=coverage_start,
            coverage_end=coverage_end,
        )
        for slot, share in zip(slots, shares)
    ]

    installments: List[ScheduledInstallment] = []
    for due_date in due_dates:
        if references:
            installments.extend(
                ScheduledInstallment(due_date=due_date, amount=ref.amount, reference_code=ref.code)
                for ref in references
            )
        else:
            installments.append(ScheduledInstallment(due_date=due_date, amount=monthly))

    return Schedule(
        monthly_amount=monthly,
        target_day=target_day,
        due_dates=due_dates,
        references=references,
        installments=installments,
    )
