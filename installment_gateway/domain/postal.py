"""Postal (CCP) withdrawal batch: monthly export and status import"""

import csv
import io
import logging
import re
from enum import IntEnum
from typing import Iterable, List, Optional, Protocol

from installment_gateway.domain.exceptions import ImportLineError, StoreError
from installment_gateway.domain.models import (
    InstallmentStatus,
    InstallmentUpdate,
    LineIssue,
    PendingInstallment,
    PostalExportRecord,
    PostalExportRow,
    PostalStatus,
    ReconciliationResult,
    StatusLine,
    YearMonth,
)
from installment_gateway.utils.date_utils import format_dmy

logger = logging.getLogger(__name__)

FIELD_SEPARATORS = re.compile(r"[\s,;]+")

# Column order and headers of the postal system's withdrawal file
EXPORT_COLUMNS = [
    ("CompteA", "payer_account"),
    ("cleA", "payer_key"),
    ("NOM", "last_name"),
    ("PRENOM", "first_name"),
    ("MontantVo", "amount"),
    ("CompteB", "payee_account"),
    ("CleB", "payee_key"),
    ("DateDebut", "coverage_start"),
    ("DateFin", "coverage_end"),
    ("DateCreation", "creation_date"),
    ("MoisTraite", "target_month"),
    ("Nbrecheance", "installment_index"),
    ("JourPrel", "withdrawal_day"),
    ("Reference", "reference_code"),
]


class PostalStatusCode(IntEnum):
    """Status codes returned by the postal system"""

    CLEARED = 0
    WAITING = 1
    BLOCKED = 2


TRANSITIONS = {
    PostalStatusCode.CLEARED: (InstallmentStatus.PAID, PostalStatus.CLEARED),
    PostalStatusCode.WAITING: (InstallmentStatus.PENDING, PostalStatus.WAITING),
    PostalStatusCode.BLOCKED: (InstallmentStatus.PENDING, PostalStatus.BLOCKED),
}


class ReconciliationStore(Protocol):
    """Store operations needed to apply a status batch"""

    def find_reference_id(self, code: str) -> Optional[int]:
        ...

    def oldest_pending_installment(self, reference_id: int) -> Optional[PendingInstallment]:
        ...

    def apply_update(self, update: InstallmentUpdate) -> None:
        ...


def build_export_records(
    rows: Iterable[PostalExportRow],
    target_month: YearMonth,
    payee_account: str,
    payee_key: str,
    missing_account: str = "MISSING",
    missing_key: str = "00",
) -> List[PostalExportRecord]:
    """
    Turn installments due in `target_month` into postal export records.

    Rows are expected to carry a reference. A customer without a payer
    account is exported with a placeholder and flagged, never dropped.
    """
    records = []
    for row in rows:
        missing = not row.payer_account
        records.append(
            PostalExportRecord(
                payer_account=row.payer_account or missing_account,
                payer_key=row.payer_key or missing_key,
                last_name=row.last_name or "",
                first_name=row.first_name or "",
                amount=row.amount,
                payee_account=payee_account,
                payee_key=payee_key,
                coverage_start=format_dmy(row.coverage_start),
                coverage_end=format_dmy(row.coverage_end),
                creation_date=format_dmy(row.coverage_start),
                target_month=str(target_month),
                installment_index=row.installment_index,
                withdrawal_day=row.withdrawal_day,
                reference_code=row.reference_code,
                missing_payer_account=missing,
            )
        )
    if any(r.missing_payer_account for r in records):
        logger.warning(
            "Postal export contains customers without payer account",
            extra={
                "target_month": str(target_month),
                "missing_count": sum(1 for r in records if r.missing_payer_account),
            },
        )
    return records


def render_export_csv(records: Iterable[PostalExportRecord]) -> str:
    """Render export records as CSV with the postal column headers"""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    for record in records:
        writer.writerow([getattr(record, attr) for _, attr in EXPORT_COLUMNS])
    return buffer.getvalue()


def parse_status_line(line_number: int, raw: str) -> StatusLine:
    """
    Parse one 'REFERENCE STATUS' line.

    Raises:
        ImportLineError: Fewer than two fields, or a status that is not 0, 1 or 2
    """
    parts = FIELD_SEPARATORS.split(raw.strip())
    if len(parts) < 2:
        raise ImportLineError("Malformed line", line_number, raw)

    code, status = parts[0], parts[1]
    try:
        status_code = int(status)
    except ValueError as e:
        raise ImportLineError(f"Invalid status {status!r}", line_number, raw, reference_code=code) from e
    if status_code not in TRANSITIONS:
        raise ImportLineError(f"Unknown status {status_code}", line_number, raw, reference_code=code)

    return StatusLine(line_number=line_number, raw=raw, reference_code=code, status_code=status_code)


def apply_status_line(line: StatusLine, store: ReconciliationStore) -> InstallmentUpdate:
    """Apply one parsed line to the oldest pending installment of its reference"""
    reference_id = store.find_reference_id(line.reference_code)
    if reference_id is None:
        raise ImportLineError(
            "Reference not found", line.line_number, line.raw, reference_code=line.reference_code
        )

    pending = store.oldest_pending_installment(reference_id)
    if pending is None:
        raise ImportLineError(
            "No pending installment for reference", line.line_number, line.raw, reference_code=line.reference_code
        )

    status, postal_status = TRANSITIONS[PostalStatusCode(line.status_code)]
    update = InstallmentUpdate(
        installment_id=pending.id,
        sale_id=pending.sale_id,
        reference_code=line.reference_code,
        amount=pending.amount,
        due_date=pending.due_date,
        status=status,
        postal_status=postal_status,
        line_number=line.line_number,
    )
    store.apply_update(update)
    return update


def reconcile_batch(content: str, store: ReconciliationStore) -> ReconciliationResult:
    """
    Reconcile a returned postal status batch into installment statuses.

    Lines are independent: a line that cannot be applied is reported and the
    batch continues. A store failure (unreachable, or an error while writing)
    stops processing; updates already applied are kept, the failing line is
    named in `abort_reason` and the remaining lines are counted as
    unprocessed.
    """
    result = ReconciliationResult()
    lines = [(number, raw) for number, raw in enumerate(content.splitlines(), start=1) if raw.strip()]

    for position, (line_number, raw) in enumerate(lines):
        try:
            line = parse_status_line(line_number, raw)
            update = apply_status_line(line, store)
        except ImportLineError as e:
            result.issues.append(
                LineIssue(
                    line_number=e.line_number,
                    raw=e.raw,
                    reason=e.message,
                    reference_code=e.details.get("reference_code"),
                )
            )
            continue
        except StoreError as e:
            logger.error(
                f"Store failure during postal import: {e}",
                extra={"line_number": line_number, "applied": len(result.updates)},
            )
            result.aborted = True
            result.abort_reason = f"Line {line_number}: {e.message}"
            result.unprocessed = len(lines) - position
            break

        result.updates.append(update)
        if update.postal_status == PostalStatus.CLEARED:
            result.cleared += 1
        elif update.postal_status == PostalStatus.WAITING:
            result.waiting += 1
        else:
            result.blocked += 1

    return result
