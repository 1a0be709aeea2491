"""Domain models - pure Python dataclasses representing business entities"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from installment_gateway.utils.date_utils import add_months, last_day_of_month


class DayRule(str, Enum):
    """Which day of the month a contract's withdrawals fall on"""

    FIRST_OF_MONTH = "first_of_month"
    LAST_OF_MONTH = "last_of_month"
    EXPLICIT_DAY = "explicit_day"


class CodeStatus(str, Enum):
    """Outcome of a reference code uniqueness check"""

    AVAILABLE = "available"
    DUPLICATE_IN_BATCH = "duplicate_in_batch"
    ALREADY_USED = "already_used"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PostalStatus(str, Enum):
    NONE = "none"
    WAITING = "waiting"
    BLOCKED = "blocked"
    CLEARED = "cleared"


@dataclass(frozen=True, order=True)
class YearMonth:
    """Calendar month without a day"""

    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        """Parse 'YYYY-MM'"""
        year, _, month = value.strip().partition("-")
        return cls(int(year), int(month))

    @classmethod
    def of(cls, value: date) -> "YearMonth":
        return cls(value.year, value.month)

    def shift(self, months: int) -> "YearMonth":
        return YearMonth(*add_months(self.year, self.month, months))

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def last_day(self) -> date:
        return date(self.year, self.month, last_day_of_month(self.year, self.month))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class ContractPolicy:
    """Named withdrawal-day policy (reference data, read-only to the engine)"""

    id: int
    display_name: str
    day_rule: DayRule
    explicit_day: Optional[int] = None

    @property
    def target_day(self) -> int:
        """Unclamped day of month: 1, strictly 30, or the explicit day"""
        if self.day_rule == DayRule.FIRST_OF_MONTH:
            return 1
        if self.day_rule == DayRule.LAST_OF_MONTH:
            return 30
        return self.explicit_day


@dataclass
class ScheduleRequest:
    """Commercial terms of a credit sale to turn into a schedule"""

    total_amount: int
    down_payment: int
    term_months: int
    start_month: YearMonth
    branch_prefix: str
    reference_count: int = 1
    policy_id: Optional[int] = None
    manual_codes: Dict[int, str] = field(default_factory=dict)  # slot index -> operator code


@dataclass(frozen=True)
class ReferenceSlot:
    """A reference code chosen for one split share"""

    index: int
    code: str
    manual: bool = False


@dataclass
class ScheduledReference:
    """Payment reference covering one slice of the monthly obligation"""

    slot: int
    code: str
    amount: int
    coverage_start: date
    coverage_end: date


@dataclass
class ScheduledInstallment:
    """Single due-date/amount row, optionally tied to a reference"""

    due_date: date
    amount: int
    reference_code: Optional[str] = None


@dataclass
class Schedule:
    """Output of the schedule builder, ready to persist"""

    monthly_amount: int
    target_day: int
    due_dates: List[date]
    references: List[ScheduledReference]
    installments: List[ScheduledInstallment]

    def by_month(self) -> "OrderedDict[date, int]":
        """Total amount due per due date"""
        totals: "OrderedDict[date, int]" = OrderedDict()
        for inst in self.installments:
            totals[inst.due_date] = totals.get(inst.due_date, 0) + inst.amount
        return totals


@dataclass
class RegenerationAssessment:
    """How an edit of a sale's terms affects its existing schedule"""

    sale_id: int
    previous_monthly: int
    new_monthly: int
    remaining_balance: int
    stale: bool
    pending_count: int
    paid_count: int
    paid_amount: int


@dataclass
class PostalExportRow:
    """Installment joined with its reference and customer, as read from the store"""

    installment_id: int
    amount: int
    due_date: date
    reference_code: str
    coverage_start: date
    coverage_end: date
    installment_index: int
    withdrawal_day: int
    last_name: str
    first_name: str
    payer_account: Optional[str]
    payer_key: Optional[str]


@dataclass
class PostalExportRecord:
    """One line of the monthly postal withdrawal file"""

    payer_account: str
    payer_key: str
    last_name: str
    first_name: str
    amount: int
    payee_account: str
    payee_key: str
    coverage_start: str
    coverage_end: str
    creation_date: str
    target_month: str
    installment_index: int
    withdrawal_day: int
    reference_code: str
    missing_payer_account: bool = False


@dataclass(frozen=True)
class StatusLine:
    """Parsed line of a postal status batch"""

    line_number: int
    raw: str
    reference_code: str
    status_code: int


@dataclass
class PendingInstallment:
    """Oldest pending installment of a reference, as read for reconciliation"""

    id: int
    sale_id: int
    amount: int
    due_date: date


@dataclass
class InstallmentUpdate:
    """Status transition to apply to one installment"""

    installment_id: int
    sale_id: int
    reference_code: str
    amount: int
    due_date: date
    status: InstallmentStatus
    postal_status: PostalStatus
    line_number: int


@dataclass
class LineIssue:
    """Reported reason a batch line was not applied"""

    line_number: int
    raw: str
    reason: str
    reference_code: Optional[str] = None


@dataclass
class ReconciliationResult:
    """Outcome of importing one postal status batch"""

    cleared: int = 0
    waiting: int = 0
    blocked: int = 0
    updates: List[InstallmentUpdate] = field(default_factory=list)
    issues: List[LineIssue] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None
    unprocessed: int = 0

    @property
    def unresolved(self) -> int:
        return len(self.issues)

    @property
    def cleared_amount(self) -> int:
        return sum(u.amount for u in self.updates if u.postal_status == PostalStatus.CLEARED)
