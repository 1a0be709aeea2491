"""Credit sale schedules: creation, lookup, term amendments and rebuilds"""

import time
import logging
from dataclasses import asdict
from datetime import date
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from installment_gateway.api.dependencies import get_ledger_client, get_request_id, get_settings, get_today
from installment_gateway.api.errors import to_http_exception
from installment_gateway.api.v1.schemas import (
    InstallmentSchema,
    MonthSchema,
    RebuildRequest,
    ReferenceSchema,
    RegenerationResponse,
    SaleCreateRequest,
    ScheduleResponse,
    TermsUpdateRequest,
)
from installment_gateway.config import Settings
from installment_gateway.domain.exceptions import (
    ConflictError,
    DomainException,
    IntegrityWarning,
    NotFoundError,
    ValidationError,
)
from installment_gateway.domain.installments import build_schedule
from installment_gateway.domain.models import InstallmentStatus, ScheduleRequest, YearMonth
from installment_gateway.domain.policies import inferred_policy
from installment_gateway.domain.regeneration import (
    assess_terms_change,
    rebuild_start_month,
    require_rebuild_confirmation,
)
from installment_gateway.infrastructure.clients.ledger import LedgerClient
from installment_gateway.infrastructure.database.models import Installment, Sale
from installment_gateway.infrastructure.database.repositories import (
    PolicyRepository,
    ReferenceRepository,
    SaleRepository,
    ScheduleRepository,
    month_installments,
)
from installment_gateway.infrastructure.database.session import get_db
from installment_gateway.infrastructure.observability.logging import log_schedule_built
from installment_gateway.infrastructure.observability.metrics import record_schedule_build

router = APIRouter()


def month_status(rows: List[Installment], today: date) -> str:
    """paid when every row is paid, overdue once the due date has passed, upcoming otherwise"""
    if all(inst.status == InstallmentStatus.PAID.value for inst in rows):
        return "paid"
    if rows[0].due_date < today:
        return "overdue"
    return "upcoming"


def installment_schema(inst: Installment) -> InstallmentSchema:
    return InstallmentSchema(
        due_date=inst.due_date,
        amount=inst.amount,
        reference_code=inst.reference.code if inst.reference else None,
        status=inst.status,
        postal_status=inst.postal_status,
    )


def month_schemas(installments: List[Installment], today: date) -> List[MonthSchema]:
    return [
        MonthSchema(
            due_date=due_date,
            total_amount=sum(inst.amount for inst in rows),
            status=month_status(rows, today),
            installments=[installment_schema(inst) for inst in rows],
        )
        for due_date, rows in month_installments(installments).items()
    ]


def schedule_response(sale: Sale, db: Session, today: date) -> ScheduleResponse:
    installments = ScheduleRepository(db).installments_for_sale(sale.id)
    return ScheduleResponse(
        sale_id=sale.id,
        monthly_amount=sale.monthly_amount,
        withdrawal_day=sale.withdrawal_day,
        stale=sale.schedule_stale,
        references=[
            ReferenceSchema(
                reference_code=ref.code,
                amount=ref.amount,
                coverage_start=ref.coverage_start,
                coverage_end=ref.coverage_end,
            )
            for ref in ScheduleRepository(db).active_references(sale.id)
        ],
        installments=[installment_schema(inst) for inst in installments],
        months=month_schemas(installments, today),
    )


@router.post("/sales", response_model=ScheduleResponse, status_code=201)
def create_sale(
    body: SaleCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    ledger_client: LedgerClient = Depends(get_ledger_client),
    today: date = Depends(get_today),
    app_settings: Settings = Depends(get_settings),
):
    """
    Create a credit sale and its installment schedule.

    Flow:
    1. Resolve customer, branch (reference prefix) and contract policy
    2. Build the schedule: split, due dates, reference codes
    3. Persist sale, references and installments in one transaction
    4. Notify the ledger in the background
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        sale_repo = SaleRepository(db)
        sale_repo.get_customer(body.customer_id)
        branch = sale_repo.get_branch(body.branch_id)
        policy = PolicyRepository(db).get_policy(body.policy_id)

        schedule_request = ScheduleRequest(
            total_amount=body.total_amount,
            down_payment=body.down_payment,
            term_months=body.term_months,
            start_month=YearMonth.parse(body.start_month),
            branch_prefix=branch.reference_prefix,
            reference_count=body.reference_count,
            policy_id=policy.id,
            manual_codes=body.manual_codes,
        )
        schedule = build_schedule(
            schedule_request,
            policy,
            ReferenceRepository(db),
            today=today,
            minimum=app_settings.min_reference_amount,
            max_references=app_settings.max_references,
        )

        sale = sale_repo.create_sale(body.customer_id, branch.id, schedule_request, schedule)
        ScheduleRepository(db).persist_schedule(sale, schedule)
        db.commit()

    except (ValidationError, NotFoundError) as e:
        db.rollback()
        record_schedule_build("create", "rejected")
        logging.warning(f"Schedule rejected: {e}", extra={"request_id": request_id, "details": e.details})
        raise to_http_exception(e)

    except ConflictError as e:
        db.rollback()
        record_schedule_build("create", "conflict")
        logging.warning(f"Reference conflict: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    except DomainException as e:
        db.rollback()
        logging.error(f"Schedule build failed: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    codes = [ref.code for ref in schedule.references]
    background_tasks.add_task(
        ledger_client.send_event,
        {
            "event": "SCHEDULE_CREATED",
            "sale_id": sale.id,
            "reference_codes": codes,
            "monthly_amount": schedule.monthly_amount,
            "installment_count": len(schedule.installments),
        },
    )

    duration_ms = (time.time() - start_time) * 1000
    record_schedule_build("create", "success", len(codes))
    log_schedule_built(request_id, sale.id, codes, len(schedule.installments), schedule.monthly_amount, duration_ms)

    return schedule_response(sale, db, today)


@router.get("/sales/{sale_id}/schedule", response_model=ScheduleResponse)
def get_schedule(sale_id: int, db: Session = Depends(get_db), today: date = Depends(get_today)):
    """
    Retrieve a sale's references and installments.

    Returns:
        Rows in due-date order plus a per-month grouping with paid/overdue/upcoming labels
    """
    try:
        sale = SaleRepository(db).get_sale(sale_id)
    except NotFoundError as e:
        raise to_http_exception(e)
    return schedule_response(sale, db, today)


@router.patch("/sales/{sale_id}/terms", response_model=RegenerationResponse)
def update_terms(sale_id: int, body: TermsUpdateRequest, request: Request, db: Session = Depends(get_db)):
    """
    Amend a sale's total, term or policy.

    The existing schedule is left untouched; when the amendment changes what
    is owed each month the sale is flagged stale until an operator confirms
    a rebuild.
    """
    request_id = get_request_id(request)
    try:
        sale_repo = SaleRepository(db)
        sale = sale_repo.get_sale(sale_id)
        if body.policy_id is not None:
            PolicyRepository(db).get_policy(body.policy_id)

        new_term = body.term_months or sale.term_months
        new_policy_id = body.policy_id if body.policy_id is not None else sale.policy_id
        pending_count, paid_count = sale_repo.installment_counts(sale.id)

        assessment = assess_terms_change(
            sale_id=sale.id,
            previous_monthly=sale.monthly_amount,
            previous_total=sale.total_amount,
            previous_term=sale.term_months,
            previous_policy_id=sale.policy_id,
            new_total=body.total_amount,
            new_term=new_term,
            new_policy_id=new_policy_id,
            paid_amount=sale.paid_amount,
            pending_count=pending_count,
            paid_count=paid_count,
        )

        sale.total_amount = body.total_amount
        sale.term_months = new_term
        sale.policy_id = new_policy_id
        sale.schedule_stale = sale.schedule_stale or assessment.stale
        assessment.stale = sale.schedule_stale
        db.commit()

    except DomainException as e:
        db.rollback()
        logging.warning(f"Terms update rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    if assessment.stale:
        logging.warning(
            "Schedule is stale, rebuild required",
            extra={"request_id": request_id, "sale_id": sale_id, "new_monthly": assessment.new_monthly},
        )
    return RegenerationResponse(**asdict(assessment))


@router.post("/sales/{sale_id}/schedule/rebuild", response_model=ScheduleResponse)
def rebuild_schedule(
    sale_id: int,
    body: RebuildRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    ledger_client: LedgerClient = Depends(get_ledger_client),
    today: date = Depends(get_today),
    app_settings: Settings = Depends(get_settings),
):
    """
    Replace a sale's pending installments with a freshly built schedule.

    Requires `confirm=true`: every non-paid installment is deleted and new
    references are issued for what remains owed (total minus everything
    paid, down payment included). Paid rows are kept as history; references
    left without rows are retired, never reissued.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        sale_repo = SaleRepository(db)
        sale = sale_repo.get_sale(sale_id)
        pending_count, paid_count = sale_repo.installment_counts(sale.id)

        if sale.policy_id is not None:
            policy = PolicyRepository(db).get_policy(sale.policy_id)
        else:
            policy = inferred_policy(sale.withdrawal_day, app_settings.inferred_policy_cutoff_day)

        assessment = assess_terms_change(
            sale_id=sale.id,
            previous_monthly=sale.monthly_amount,
            previous_total=sale.total_amount,
            previous_term=sale.term_months,
            previous_policy_id=sale.policy_id,
            new_total=sale.total_amount,
            new_term=sale.term_months,
            new_policy_id=sale.policy_id,
            paid_amount=sale.paid_amount,
            pending_count=pending_count,
            paid_count=paid_count,
        )
        require_rebuild_confirmation(assessment, body.confirm)

        if body.start_month:
            start_month = YearMonth.parse(body.start_month)
        else:
            start_month = rebuild_start_month(YearMonth.of(sale.start_month), policy.target_day, today)

        if body.reference_count is not None:
            reference_count = body.reference_count
        else:
            reference_count = ScheduleRepository(db).live_reference_count(sale.id)

        schedule_request = ScheduleRequest(
            total_amount=sale.total_amount,
            down_payment=sale.paid_amount,
            term_months=sale.term_months,
            start_month=start_month,
            branch_prefix=sale.branch.reference_prefix,
            reference_count=reference_count,
            policy_id=sale.policy_id,
            manual_codes=body.manual_codes,
        )
        # Built before deleting anything so the old codes still count as used
        schedule = build_schedule(
            schedule_request,
            policy,
            ReferenceRepository(db),
            today=today,
            minimum=app_settings.min_reference_amount,
            max_references=app_settings.max_references,
        )

        schedule_repo = ScheduleRepository(db)
        deleted_installments, retired_references = schedule_repo.delete_unpaid(sale)

        sale.start_month = start_month.first_day()
        sale.withdrawal_day = schedule.target_day
        sale.monthly_amount = schedule.monthly_amount
        sale.schedule_stale = False
        sale.status = "active"
        schedule_repo.persist_schedule(sale, schedule)
        db.commit()

    except IntegrityWarning as e:
        db.rollback()
        logging.warning(f"Rebuild needs confirmation: {e}", extra={"request_id": request_id, "details": e.details})
        raise to_http_exception(e)

    except ConflictError as e:
        db.rollback()
        record_schedule_build("rebuild", "conflict")
        logging.warning(f"Reference conflict: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    except DomainException as e:
        db.rollback()
        record_schedule_build("rebuild", "rejected")
        logging.warning(f"Rebuild rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    codes = [ref.code for ref in schedule.references]
    logging.warning(
        "Schedule rebuilt",
        extra={
            "request_id": request_id,
            "sale_id": sale_id,
            "deleted_installments": deleted_installments,
            "retired_references": retired_references,
            "paid_kept": paid_count,
        },
    )
    background_tasks.add_task(
        ledger_client.send_event,
        {
            "event": "SCHEDULE_REBUILT",
            "sale_id": sale_id,
            "reference_codes": codes,
            "monthly_amount": schedule.monthly_amount,
            "deleted_installments": deleted_installments,
        },
    )

    duration_ms = (time.time() - start_time) * 1000
    record_schedule_build("rebuild", "success", len(codes))
    log_schedule_built(
        request_id, sale_id, codes, len(schedule.installments), schedule.monthly_amount, duration_ms, step="schedule_rebuilt"
    )

    return schedule_response(sale, db, today)
