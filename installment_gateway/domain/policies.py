"""Contract policy rules: which day of the month an installment falls due"""

import logging

from installment_gateway.domain.exceptions import ValidationError
from installment_gateway.domain.models import ContractPolicy, DayRule, YearMonth
from installment_gateway.utils.date_utils import last_day_of_month

logger = logging.getLogger(__name__)


def validate_policy(policy: ContractPolicy) -> ContractPolicy:
    """Reject explicit-day policies whose day cannot exist in any month"""
    if policy.day_rule == DayRule.EXPLICIT_DAY:
        if policy.explicit_day is None or not 1 <= policy.explicit_day <= 31:
            raise ValidationError(
                f"Policy {policy.id} has invalid explicit day {policy.explicit_day}",
                field="explicit_day",
                policy_id=policy.id,
            )
    return policy


def resolve_target_day(policy: ContractPolicy, month: YearMonth) -> int:
    """
    Day of `month` on which the policy collects.

    FirstOfMonth is always 1. LastOfMonth is the 30th, never the calendar
    month end, so it only moves on months shorter than 30 days. Explicit
    days are clamped the same way.
    """
    validate_policy(policy)
    return min(policy.target_day, last_day_of_month(month.year, month.month))


def infer_day_rule(stored_day: int, cutoff: int = 15) -> DayRule:
    """
    Fallback for a sale under edit whose policy is unknown.

    Guesses the rule from the due day already stored on the sale: days on or
    after the cutoff read as an end-of-month contract. Only for edits; a new
    sale always carries an explicit policy.
    """
    rule = DayRule.LAST_OF_MONTH if stored_day >= cutoff else DayRule.FIRST_OF_MONTH
    logger.warning(
        "Contract policy inferred from stored day",
        extra={"stored_day": stored_day, "cutoff": cutoff, "inferred_rule": rule.value},
    )
    return rule


def inferred_policy(stored_day: int, cutoff: int = 15) -> ContractPolicy:
    """Synthetic policy built from `infer_day_rule`, not backed by a stored policy"""
    rule = infer_day_rule(stored_day, cutoff)
    return ContractPolicy(id=0, display_name=f"inferred ({rule.value})", day_rule=rule)
