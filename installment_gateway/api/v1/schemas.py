"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Dict, List, Optional

YEAR_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class PolicySchema(BaseModel):
    """Contract policy as listed to operators"""

    id: int
    display_name: str
    day_rule: str
    explicit_day: Optional[int] = None
    target_day: int


class SaleCreateRequest(BaseModel):
    """Request body for POST /v1/sales"""

    customer_id: int
    branch_id: int
    policy_id: int
    total_amount: int = Field(..., gt=0, description="Sale total in currency units")
    down_payment: int = Field(0, ge=0)
    term_months: int = Field(..., ge=1)
    start_month: str = Field(..., pattern=YEAR_MONTH_PATTERN, description="Sale month, YYYY-MM")
    reference_count: int = Field(1, ge=0, description="Payment references to split the monthly amount across")
    manual_codes: Dict[int, str] = Field(default_factory=dict, description="Slot index -> operator code")


class ReferenceSchema(BaseModel):
    reference_code: str
    amount: int
    coverage_start: date
    coverage_end: date


class InstallmentSchema(BaseModel):
    """Single installment row"""

    due_date: date
    amount: int
    reference_code: Optional[str] = None
    status: str = "pending"
    postal_status: str = "none"


class MonthSchema(BaseModel):
    """Installments due on one date, summed across references"""

    due_date: date
    total_amount: int
    status: str
    installments: List[InstallmentSchema]


class ScheduleResponse(BaseModel):
    """Schedule of a sale"""

    sale_id: int
    monthly_amount: int
    withdrawal_day: int
    stale: bool = False
    references: List[ReferenceSchema]
    installments: List[InstallmentSchema]
    months: List[MonthSchema]


class TermsUpdateRequest(BaseModel):
    """Request body for PATCH /v1/sales/{sale_id}/terms"""

    total_amount: int = Field(..., gt=0)
    term_months: Optional[int] = Field(None, ge=1)
    policy_id: Optional[int] = None


class RegenerationResponse(BaseModel):
    sale_id: int
    previous_monthly: int
    new_monthly: int
    remaining_balance: int
    stale: bool
    pending_count: int
    paid_count: int
    paid_amount: int


class RebuildRequest(BaseModel):
    """Request body for POST /v1/sales/{sale_id}/schedule/rebuild"""

    confirm: bool = False
    reference_count: Optional[int] = Field(None, ge=0, description="Defaults to the references the sale still collects on")
    manual_codes: Dict[int, str] = Field(default_factory=dict)
    start_month: Optional[str] = Field(None, pattern=YEAR_MONTH_PATTERN)


class NextReferencesResponse(BaseModel):
    prefix: str
    last_number: int
    codes: List[str]


class ReferenceCheckRequest(BaseModel):
    """Request body for POST /v1/references/check"""

    codes: List[str] = Field(..., min_length=1)


class ReferenceCheckItem(BaseModel):
    slot: int
    code: str
    status: str


class ReferenceCheckResponse(BaseModel):
    available: bool
    results: List[ReferenceCheckItem]


class PostalExportRecordSchema(BaseModel):
    """One line of the postal withdrawal file"""

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


class PostalExportResponse(BaseModel):
    target_month: str
    record_count: int
    missing_payer_accounts: int
    records: List[PostalExportRecordSchema]


class LineIssueSchema(BaseModel):
    line_number: int
    raw: str
    reason: str
    reference_code: Optional[str] = None


class InstallmentUpdateSchema(BaseModel):
    installment_id: int
    sale_id: int
    reference_code: str
    due_date: date
    amount: int
    status: str
    postal_status: str
    line_number: int


class PostalImportResponse(BaseModel):
    """Summary of a reconciled postal status batch"""

    cleared: int
    waiting: int
    blocked: int
    unresolved: int
    unprocessed: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None
    cleared_amount: int
    updates: List[InstallmentUpdateSchema]
    issues: List[LineIssueSchema]


class PortalSaleSchema(BaseModel):
    sale_id: int
    total_amount: int
    paid_amount: int
    status: str
    months: List[MonthSchema]


class PortalResponse(BaseModel):
    """Response for GET /v1/portal/installments"""

    payer_account: str
    customer_name: str
    sales: List[PortalSaleSchema]
