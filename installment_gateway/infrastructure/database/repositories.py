"""Data access layer for credit sales, payment references and installments"""

from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from installment_gateway.domain.exceptions import ConflictError, NotFoundError, StoreError, StoreUnavailableError
from installment_gateway.domain.models import (
    ContractPolicy,
    DayRule,
    InstallmentStatus,
    InstallmentUpdate,
    PendingInstallment,
    PostalExportRow,
    Schedule,
    ScheduleRequest,
    YearMonth,
)
from installment_gateway.domain.references import parse_sequence_number
from installment_gateway.infrastructure.database.models import (
    Branch,
    ContractPolicyRecord,
    Customer,
    Installment,
    PaymentReference,
    ReferenceCounter,
    Sale,
)


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate database failures into domain store errors"""
    try:
        yield
    except OperationalError as e:
        raise StoreUnavailableError(f"Database unavailable: {e.orig}") from e
    except SQLAlchemyError as e:
        raise StoreError(f"Database error: {e}") from e


class PolicyRepository:
    """Repository for contract policies"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_domain(record: ContractPolicyRecord) -> ContractPolicy:
        return ContractPolicy(
            id=record.id,
            display_name=record.display_name,
            day_rule=DayRule(record.day_rule),
            explicit_day=record.explicit_day,
        )

    def list_policies(self) -> List[ContractPolicy]:
        records = self.db.query(ContractPolicyRecord).order_by(ContractPolicyRecord.id).all()
        return [self.to_domain(r) for r in records]

    def get_policy(self, policy_id: int) -> ContractPolicy:
        record = self.db.get(ContractPolicyRecord, policy_id)
        if record is None:
            raise NotFoundError(f"Contract policy {policy_id} not found", policy_id=policy_id)
        return self.to_domain(record)


class SaleRepository:
    """Repository for credit sales and the parties they reference"""

    def __init__(self, db: Session):
        self.db = db

    def get_branch(self, branch_id: int) -> Branch:
        branch = self.db.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError(f"Branch {branch_id} not found", branch_id=branch_id)
        return branch

    def get_customer(self, customer_id: int) -> Customer:
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found", customer_id=customer_id)
        return customer

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.db.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", sale_id=sale_id)
        return sale

    def create_sale(
        self,
        customer_id: int,
        branch_id: int,
        request: ScheduleRequest,
        schedule: Schedule,
    ) -> Sale:
        """Persist the sale row without committing"""
        sale = Sale(
            customer_id=customer_id,
            branch_id=branch_id,
            policy_id=request.policy_id,
            total_amount=request.total_amount,
            down_payment=request.down_payment,
            paid_amount=request.down_payment,
            term_months=request.term_months,
            start_month=request.start_month.first_day(),
            withdrawal_day=schedule.target_day,
            monthly_amount=schedule.monthly_amount,
            status="active",
            schedule_stale=False,
        )
        self.db.add(sale)
        self.db.flush()  # Get ID without committing
        return sale

    def installment_counts(self, sale_id: int) -> Tuple[int, int]:
        """(pending, paid) installment counts of a sale"""
        rows = self.db.query(Installment.status).filter(Installment.sale_id == sale_id).all()
        paid = sum(1 for (status,) in rows if status == InstallmentStatus.PAID.value)
        return len(rows) - paid, paid

    def sales_for_payer_account(self, payer_account: str) -> List[Sale]:
        """Non-cancelled sales of the customers holding a payer account"""
        return (
            self.db.query(Sale)
            .join(Customer, Sale.customer_id == Customer.id)
            .filter(Customer.payer_account == payer_account)
            .filter(Sale.status != "cancelled")
            .order_by(Sale.created_at.desc(), Sale.id.desc())
            .all()
        )


class ReferenceRepository:
    """Repository for payment reference codes and their per-prefix numbering"""

    def __init__(self, db: Session):
        self.db = db

    def highest_sequence(self, prefix: str) -> int:
        """Highest numeric suffix among persisted codes issued under `prefix`"""
        codes = self.db.query(PaymentReference.code).filter(PaymentReference.code.startswith(prefix)).all()
        numbers = [parse_sequence_number(code, prefix) for (code,) in codes]
        return max((n for n in numbers if n is not None), default=0)

    def peek_last_number(self, prefix: str) -> int:
        """Last number issued under `prefix`, without reserving anything"""
        counter = self.db.get(ReferenceCounter, prefix)
        observed = self.highest_sequence(prefix)
        return max(counter.last_number, observed) if counter else observed

    def reserve_sequence(self, prefix: str, count: int) -> int:
        """
        Reserve `count` numbers under `prefix` in the current transaction.

        The counter row is locked until commit, so concurrent builds for the
        same prefix get disjoint blocks. Manual codes that happen to follow the
        prefix pattern are skipped over.

        Returns:
            The number preceding the reserved block

        Raises:
            ConflictError: Another build created the prefix's counter first;
                the caller must roll back and retry
        """
        with store_errors():
            counter = (
                self.db.query(ReferenceCounter)
                .filter(ReferenceCounter.prefix == prefix)
                .with_for_update()
                .first()
            )
            if counter is None:
                counter = ReferenceCounter(prefix=prefix, last_number=0)
                self.db.add(counter)

            start = max(counter.last_number, self.highest_sequence(prefix))
            counter.last_number = start + count
            try:
                self.db.flush()
            except IntegrityError as e:
                # No row to lock yet: two first builds for a prefix both inserted one
                raise ConflictError(
                    f"Reference numbering for prefix {prefix} changed concurrently",
                    prefix=prefix,
                ) from e
            return start

    def code_exists(self, code: str) -> bool:
        """True for any code ever issued, retired references included"""
        with store_errors():
            return self.db.query(PaymentReference.id).filter(PaymentReference.code == code).first() is not None

    def existing_codes(self, codes: Iterable[str]) -> Set[str]:
        codes = list(codes)
        if not codes:
            return set()
        rows = self.db.query(PaymentReference.code).filter(PaymentReference.code.in_(codes)).all()
        return {code for (code,) in rows}


class ScheduleRepository:
    """Repository for the reference and installment rows of a schedule"""

    def __init__(self, db: Session):
        self.db = db

    def persist_schedule(self, sale: Sale, schedule: Schedule) -> List[PaymentReference]:
        """
        Insert references then installments for a sale, without committing.

        Codes are checked again right before insertion; the UNIQUE constraint
        catches anything committed in between.

        Raises:
            ConflictError: A code is already taken; the caller must roll back
        """
        codes = [ref.code for ref in schedule.references]
        taken = ReferenceRepository(self.db).existing_codes(codes)
        if taken:
            raise ConflictError(
                f"Reference codes taken since they were checked: {', '.join(sorted(taken))}",
                sale_id=sale.id,
                codes=sorted(taken),
            )

        try:
            by_code: Dict[str, PaymentReference] = {}
            for ref in schedule.references:
                record = PaymentReference(
                    sale_id=sale.id,
                    code=ref.code,
                    amount=ref.amount,
                    coverage_start=ref.coverage_start,
                    coverage_end=ref.coverage_end,
                )
                self.db.add(record)
                by_code[ref.code] = record
            self.db.flush()

            for inst in schedule.installments:
                reference = by_code.get(inst.reference_code) if inst.reference_code else None
                self.db.add(
                    Installment(
                        sale_id=sale.id,
                        reference_id=reference.id if reference else None,
                        due_date=inst.due_date,
                        amount=inst.amount,
                        status=InstallmentStatus.PENDING.value,
                        postal_status="none",
                    )
                )
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Reference code collided while saving the schedule",
                sale_id=sale.id,
                codes=codes,
            ) from e

        return list(by_code.values())

    def delete_unpaid(self, sale: Sale) -> Tuple[int, int]:
        """
        Delete every non-paid installment of a sale, then retire the references
        left without installments. Paid rows and their references are kept.

        Retired references stay in the table so their codes are never issued
        again; export and reconciliation ignore them.

        Returns:
            (installments deleted, references retired)
        """
        deleted_installments = (
            self.db.query(Installment)
            .filter(Installment.sale_id == sale.id)
            .filter(Installment.status != InstallmentStatus.PAID.value)
            .delete(synchronize_session=False)
        )

        kept_reference_ids = {
            ref_id
            for (ref_id,) in self.db.query(Installment.reference_id)
            .filter(Installment.sale_id == sale.id)
            .filter(Installment.reference_id.isnot(None))
            .all()
        }
        orphans = (
            self.db.query(PaymentReference)
            .filter(PaymentReference.sale_id == sale.id)
            .filter(PaymentReference.retired_at.is_(None))
        )
        if kept_reference_ids:
            orphans = orphans.filter(PaymentReference.id.notin_(kept_reference_ids))
        retired_references = orphans.update({PaymentReference.retired_at: func.now()}, synchronize_session=False)

        self.db.flush()
        self.db.expire(sale)
        return deleted_installments, retired_references

    def live_reference_count(self, sale_id: int) -> int:
        """References still collecting for a sale: those with pending rows, else every non-retired one"""
        pending = (
            self.db.query(Installment.reference_id)
            .filter(Installment.sale_id == sale_id)
            .filter(Installment.status == InstallmentStatus.PENDING.value)
            .filter(Installment.reference_id.isnot(None))
            .distinct()
            .count()
        )
        if pending:
            return pending
        return (
            self.db.query(PaymentReference.id)
            .filter(PaymentReference.sale_id == sale_id)
            .filter(PaymentReference.retired_at.is_(None))
            .count()
        )

    def active_references(self, sale_id: int) -> List[PaymentReference]:
        return (
            self.db.query(PaymentReference)
            .filter(PaymentReference.sale_id == sale_id)
            .filter(PaymentReference.retired_at.is_(None))
            .order_by(PaymentReference.id)
            .all()
        )

    def installments_for_sale(self, sale_id: int) -> List[Installment]:
        return (
            self.db.query(Installment)
            .filter(Installment.sale_id == sale_id)
            .order_by(Installment.due_date, Installment.id)
            .all()
        )


class PostalRepository:
    """Store side of the postal export and status reconciliation"""

    def __init__(self, db: Session, commit_each: bool = False):
        self.db = db
        self.commit_each = commit_each  # Make every applied update durable on its own

    def export_rows(self, month: YearMonth) -> List[PostalExportRow]:
        """Referenced installments due in `month`, joined with reference and customer"""
        with store_errors():
            rows = (
                self.db.query(Installment, PaymentReference, Sale, Customer)
                .join(PaymentReference, Installment.reference_id == PaymentReference.id)
                .join(Sale, Installment.sale_id == Sale.id)
                .join(Customer, Sale.customer_id == Customer.id)
                .filter(Installment.due_date >= month.first_day())
                .filter(Installment.due_date <= month.last_day())
                .filter(PaymentReference.retired_at.is_(None))
                .order_by(PaymentReference.code, Installment.due_date)
                .all()
            )
            positions = self._positions_within_reference({ref.id for _, ref, _, _ in rows})

        return [
            PostalExportRow(
                installment_id=inst.id,
                amount=inst.amount,
                due_date=inst.due_date,
                reference_code=ref.code,
                coverage_start=ref.coverage_start,
                coverage_end=ref.coverage_end,
                installment_index=positions.get(inst.id, 1),
                withdrawal_day=sale.withdrawal_day,
                last_name=customer.last_name,
                first_name=customer.first_name,
                payer_account=customer.payer_account,
                payer_key=customer.payer_key,
            )
            for inst, ref, sale, customer in rows
        ]

    def _positions_within_reference(self, reference_ids: Set[int]) -> Dict[int, int]:
        """1-based position of each installment within its reference, by due date"""
        if not reference_ids:
            return {}
        rows = (
            self.db.query(Installment.id, Installment.reference_id)
            .filter(Installment.reference_id.in_(reference_ids))
            .order_by(Installment.reference_id, Installment.due_date, Installment.id)
            .all()
        )
        positions: Dict[int, int] = {}
        counters: Dict[int, int] = {}
        for inst_id, ref_id in rows:
            counters[ref_id] = counters.get(ref_id, 0) + 1
            positions[inst_id] = counters[ref_id]
        return positions

    def find_reference_id(self, code: str) -> Optional[int]:
        with store_errors():
            row = (
                self.db.query(PaymentReference.id)
                .filter(PaymentReference.code == code)
                .filter(PaymentReference.retired_at.is_(None))
                .first()
            )
        return row[0] if row else None

    def oldest_pending_installment(self, reference_id: int) -> Optional[PendingInstallment]:
        with store_errors():
            inst = (
                self.db.query(Installment)
                .filter(Installment.reference_id == reference_id)
                .filter(Installment.status == InstallmentStatus.PENDING.value)
                .order_by(Installment.due_date, Installment.id)
                .first()
            )
        if inst is None:
            return None
        return PendingInstallment(id=inst.id, sale_id=inst.sale_id, amount=inst.amount, due_date=inst.due_date)

    def apply_update(self, update: InstallmentUpdate) -> None:
        """Write a status transition; a cleared installment counts towards the sale's paid amount"""
        with store_errors():
            inst = self.db.get(Installment, update.installment_id)
            inst.status = update.status.value
            inst.postal_status = update.postal_status.value

            if update.status == InstallmentStatus.PAID:
                sale = self.db.get(Sale, update.sale_id)
                sale.paid_amount = (sale.paid_amount or 0) + update.amount
                self.db.flush()
                still_pending = (
                    self.db.query(Installment.id)
                    .filter(Installment.sale_id == sale.id)
                    .filter(Installment.status == InstallmentStatus.PENDING.value)
                    .first()
                )
                if still_pending is None:
                    sale.status = "completed"

            if self.commit_each:
                self.db.commit()
            else:
                self.db.flush()


def month_installments(installments: Iterable[Installment]) -> Dict[date, List[Installment]]:
    """Group installment rows by due date, preserving order"""
    grouped: Dict[date, List[Installment]] = {}
    for inst in installments:
        grouped.setdefault(inst.due_date, []).append(inst)
    return grouped
