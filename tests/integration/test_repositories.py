"""Integration tests for the data access layer against SQLite"""

import pytest
from datetime import date
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from installment_gateway.domain.exceptions import ConflictError, NotFoundError, StoreError, StoreUnavailableError
from installment_gateway.domain.installments import build_schedule
from installment_gateway.domain.models import (
    InstallmentStatus,
    InstallmentUpdate,
    PostalStatus,
    ScheduleRequest,
    YearMonth,
)
from installment_gateway.infrastructure.database.models import PaymentReference, ReferenceCounter
from installment_gateway.infrastructure.database.repositories import (
    PolicyRepository,
    PostalRepository,
    ReferenceRepository,
    SaleRepository,
    ScheduleRepository,
    store_errors,
)


def build_and_create(db, seed, today, reference_count=2, manual_codes=None):
    """Build a schedule and persist the sale row, leaving the schedule rows to the caller"""
    policy = PolicyRepository(db).get_policy(seed.last_of_month)
    request = ScheduleRequest(
        total_amount=12000,
        down_payment=0,
        term_months=3,
        start_month=YearMonth(2025, 1),
        branch_prefix=seed.prefix,
        reference_count=reference_count,
        policy_id=policy.id,
        manual_codes=manual_codes or {},
    )
    schedule = build_schedule(request, policy, ReferenceRepository(db), today=today)
    sale = SaleRepository(db).create_sale(seed.customer_id, seed.branch_id, request, schedule)
    return sale, schedule


def test_reserve_sequence_hands_out_disjoint_blocks(db, seed):
    repo = ReferenceRepository(db)

    assert repo.reserve_sequence("RF", 2) == 0
    assert repo.reserve_sequence("RF", 1) == 2
    assert db.get(ReferenceCounter, "RF").last_number == 3


def test_reserve_sequence_skips_past_matching_manual_codes(db, seed, today):
    """A manual code that looks sequential pushes the counter past it"""
    sale, schedule = build_and_create(db, seed, today, reference_count=1, manual_codes={0: "RF40"})
    ScheduleRepository(db).persist_schedule(sale, schedule)

    assert ReferenceRepository(db).reserve_sequence("RF", 1) == 40
    assert ReferenceRepository(db).peek_last_number("RF") == 41


def test_reserve_sequence_first_counter_race_is_a_conflict(db, seed):
    """Another session creates the prefix's counter between our read and our insert"""

    def create_counter_elsewhere(session, flush_context, instances):
        other = Session(bind=db.get_bind())
        try:
            other.add(ReferenceCounter(prefix="NEW", last_number=5))
            other.commit()
        finally:
            other.close()

    event.listen(db, "before_flush", create_counter_elsewhere, once=True)

    with pytest.raises(ConflictError) as exc_info:
        ReferenceRepository(db).reserve_sequence("NEW", 2)
    db.rollback()

    assert exc_info.value.details["prefix"] == "NEW"
    assert ReferenceRepository(db).reserve_sequence("NEW", 2) == 5


def test_prefixes_are_numbered_independently(db, seed):
    repo = ReferenceRepository(db)
    repo.reserve_sequence("RF", 3)
    assert repo.reserve_sequence("AB", 1) == 0


def test_persist_schedule(db, seed, today):
    sale, schedule = build_and_create(db, seed, today)
    references = ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    assert [r.code for r in references] == ["RF1", "RF2"]
    rows = ScheduleRepository(db).installments_for_sale(sale.id)
    assert len(rows) == 6
    assert all(r.status == "pending" and r.postal_status == "none" for r in rows)
    assert SaleRepository(db).installment_counts(sale.id) == (6, 0)


def test_persist_schedule_rejects_code_taken_since_check(db, seed, today):
    """A code committed between the check and the save aborts the whole batch"""
    sale, schedule = build_and_create(db, seed, today)
    db.add(
        PaymentReference(
            sale_id=sale.id, code="RF2", amount=1, coverage_start=date(2025, 2, 1), coverage_end=date(2025, 2, 28)
        )
    )
    db.flush()

    with pytest.raises(ConflictError) as exc_info:
        ScheduleRepository(db).persist_schedule(sale, schedule)

    assert exc_info.value.details["codes"] == ["RF2"]


def test_delete_unpaid_keeps_paid_rows(db, seed, today):
    sale, schedule = build_and_create(db, seed, today, reference_count=1)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    postal = PostalRepository(db)
    pending = postal.oldest_pending_installment(postal.find_reference_id("RF1"))
    postal.apply_update(
        InstallmentUpdate(
            installment_id=pending.id,
            sale_id=sale.id,
            reference_code="RF1",
            amount=pending.amount,
            due_date=pending.due_date,
            status=InstallmentStatus.PAID,
            postal_status=PostalStatus.CLEARED,
            line_number=1,
        )
    )

    deleted = ScheduleRepository(db).delete_unpaid(sale)
    db.commit()

    assert deleted == (2, 0)
    rows = ScheduleRepository(db).installments_for_sale(sale.id)
    assert [(r.status, r.due_date) for r in rows] == [("paid", date(2025, 2, 28))]
    assert sale.paid_amount == 4000


def test_delete_unpaid_removes_orphan_references(db, seed, today):
    sale, schedule = build_and_create(db, seed, today)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    assert ScheduleRepository(db).delete_unpaid(sale) == (6, 2)
    db.commit()

    # Retired, not deleted: the codes stay taken but drop out of collection
    assert ReferenceRepository(db).code_exists("RF1") is True
    assert ReferenceRepository(db).existing_codes(["RF1", "RF2", "RF3"]) == {"RF1", "RF2"}
    assert ScheduleRepository(db).active_references(sale.id) == []
    assert PostalRepository(db).find_reference_id("RF1") is None


def test_delete_unpaid_twice_retires_nothing_new(db, seed, today):
    sale, schedule = build_and_create(db, seed, today)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    ScheduleRepository(db).delete_unpaid(sale)
    assert ScheduleRepository(db).delete_unpaid(sale) == (0, 0)


def test_live_reference_count(db, seed, today):
    sale, schedule = build_and_create(db, seed, today, reference_count=2)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    assert ScheduleRepository(db).live_reference_count(sale.id) == 2

    ScheduleRepository(db).delete_unpaid(sale)
    assert ScheduleRepository(db).live_reference_count(sale.id) == 0


def test_last_cleared_installment_completes_sale(db, seed, today):
    sale, schedule = build_and_create(db, seed, today, reference_count=1)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    postal = PostalRepository(db, commit_each=True)
    reference_id = postal.find_reference_id("RF1")
    for line_number in range(1, 4):
        pending = postal.oldest_pending_installment(reference_id)
        postal.apply_update(
            InstallmentUpdate(
                installment_id=pending.id,
                sale_id=sale.id,
                reference_code="RF1",
                amount=pending.amount,
                due_date=pending.due_date,
                status=InstallmentStatus.PAID,
                postal_status=PostalStatus.CLEARED,
                line_number=line_number,
            )
        )

    assert postal.oldest_pending_installment(reference_id) is None
    assert SaleRepository(db).get_sale(sale.id).status == "completed"


def test_export_rows_positions(db, seed, today):
    sale, schedule = build_and_create(db, seed, today)
    ScheduleRepository(db).persist_schedule(sale, schedule)
    db.commit()

    rows = PostalRepository(db).export_rows(YearMonth(2025, 4))

    assert [(r.reference_code, r.installment_index, r.amount) for r in rows] == [("RF1", 3, 2000), ("RF2", 3, 2000)]
    assert rows[0].payer_account == "1234567"


def test_get_policy_not_found(db, seed):
    with pytest.raises(NotFoundError):
        PolicyRepository(db).get_policy(99)


def test_store_errors_translates_connection_failures():
    with pytest.raises(StoreUnavailableError):
        with store_errors():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_store_errors_translates_other_database_errors():
    with pytest.raises(StoreError) as exc_info:
        with store_errors():
            raise IntegrityError("INSERT INTO installments", {}, Exception("constraint failed"))

    assert not isinstance(exc_info.value, StoreUnavailableError)
