"""Postal (CCP) withdrawal file export and status batch import"""

import time
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from installment_gateway.api.dependencies import get_ledger_client, get_request_id, get_settings
from installment_gateway.api.errors import to_http_exception
from installment_gateway.api.v1.schemas import (
    InstallmentUpdateSchema,
    LineIssueSchema,
    PostalExportRecordSchema,
    PostalExportResponse,
    PostalImportResponse,
    YEAR_MONTH_PATTERN,
)
from installment_gateway.config import Settings
from installment_gateway.domain.exceptions import StoreError
from installment_gateway.domain.models import PostalStatus, YearMonth
from installment_gateway.domain.postal import build_export_records, reconcile_batch, render_export_csv
from installment_gateway.infrastructure.clients.ledger import LedgerClient
from installment_gateway.infrastructure.database.repositories import PostalRepository
from installment_gateway.infrastructure.database.session import get_db
from installment_gateway.infrastructure.observability.logging import log_postal_reconciliation
from installment_gateway.infrastructure.observability.metrics import (
    postal_export_records_counter,
    record_reconciliation,
)

router = APIRouter()


@router.get("/postal/export", response_model=PostalExportResponse)
def export_month(
    month: str = Query(..., pattern=YEAR_MONTH_PATTERN, description="Target month, YYYY-MM"),
    output: str = Query("json", alias="format", pattern="^(json|csv)$"),
    db: Session = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """
    Export every referenced installment due in a month.

    Returns:
        JSON records, or a CSV file with the postal system's column headers
        when format=csv
    """
    target_month = YearMonth.parse(month)
    try:
        rows = PostalRepository(db).export_rows(target_month)
    except StoreError as e:
        raise to_http_exception(e)

    records = build_export_records(
        rows,
        target_month,
        payee_account=app_settings.payee_account,
        payee_key=app_settings.payee_key,
        missing_account=app_settings.missing_account_placeholder,
        missing_key=app_settings.missing_key_placeholder,
    )
    missing = sum(1 for r in records if r.missing_payer_account)
    if missing:
        postal_export_records_counter.labels(payer_account="missing").inc(missing)
    if len(records) - missing:
        postal_export_records_counter.labels(payer_account="present").inc(len(records) - missing)

    if output == "csv":
        return PlainTextResponse(
            render_export_csv(records),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="prelevements_{target_month}.csv"'},
        )

    return PostalExportResponse(
        target_month=str(target_month),
        record_count=len(records),
        missing_payer_accounts=missing,
        records=[PostalExportRecordSchema(**vars(r)) for r in records],
    )


@router.post("/postal/import", response_model=PostalImportResponse)
async def import_statuses(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """
    Reconcile a returned postal status batch.

    The body is the plain-text batch: one 'REFERENCE STATUS' per line,
    status 0 = cleared, 1 = waiting, 2 = blocked. Each applied line is
    committed on its own, so a store failure mid-batch keeps what was applied
    and reports the rest as unprocessed.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    raw = await request.body()
    content = raw.decode("utf-8-sig", errors="replace")

    try:
        result = reconcile_batch(content, PostalRepository(db, commit_each=True))
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    if result.aborted:
        logging.error(
            f"Postal import aborted: {result.abort_reason}",
            extra={"request_id": request_id, "unprocessed": result.unprocessed},
        )
        # Discard the half-applied line; earlier lines are already committed
        db.rollback()

    for issue in result.issues:
        logging.warning(
            f"Postal line {issue.line_number} unresolved: {issue.reason}",
            extra={"request_id": request_id, "raw_line": issue.raw, "reference_code": issue.reference_code},
        )

    if result.updates:
        background_tasks.add_task(
            ledger_client.send_event,
            {
                "event": "POSTAL_BATCH_RECONCILED",
                "cleared": result.cleared,
                "cleared_amount": result.cleared_amount,
                "cleared_installments": [
                    u.installment_id for u in result.updates if u.postal_status == PostalStatus.CLEARED
                ],
                "waiting": result.waiting,
                "blocked": result.blocked,
            },
        )

    duration_ms = (time.time() - start_time) * 1000
    record_reconciliation(result.cleared, result.waiting, result.blocked, result.unresolved, result.unprocessed)
    log_postal_reconciliation(
        request_id, result.cleared, result.waiting, result.blocked, result.unresolved, result.aborted, duration_ms
    )

    return PostalImportResponse(
        cleared=result.cleared,
        waiting=result.waiting,
        blocked=result.blocked,
        unresolved=result.unresolved,
        unprocessed=result.unprocessed,
        aborted=result.aborted,
        abort_reason=result.abort_reason,
        cleared_amount=result.cleared_amount,
        updates=[
            InstallmentUpdateSchema(
                installment_id=u.installment_id,
                sale_id=u.sale_id,
                reference_code=u.reference_code,
                due_date=u.due_date,
                amount=u.amount,
                status=u.status.value,
                postal_status=u.postal_status.value,
                line_number=u.line_number,
            )
            for u in result.updates
        ],
        issues=[LineIssueSchema(**vars(i)) for i in result.issues],
    )
