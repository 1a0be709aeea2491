"""SQLAlchemy ORM models for credit sales, payment references and installments"""

from sqlalchemy import BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Branch(Base):
    """Sales branch; its prefix namespaces the reference codes it issues"""

    __tablename__ = "branch"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    reference_prefix = Column(Text, nullable=False, unique=True)


class Customer(Base):
    """Customer with the postal account withdrawals are drawn from"""

    __tablename__ = "customer"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    payer_account = Column(Text, nullable=True, index=True)
    payer_key = Column(Text, nullable=True)

    sales = relationship("Sale", back_populates="customer")


class ContractPolicyRecord(Base):
    """Withdrawal-day policy reference data"""

    __tablename__ = "contract_policy"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(Text, nullable=False)
    day_rule = Column(Text, nullable=False)
    explicit_day = Column(Integer, nullable=True)


class Sale(Base):
    """Credit sale carrying the terms its schedule was built from"""

    __tablename__ = "sale"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=False)
    policy_id = Column(Integer, ForeignKey("contract_policy.id"), nullable=True)
    total_amount = Column(BigInteger, nullable=False)
    down_payment = Column(BigInteger, nullable=False, default=0)
    paid_amount = Column(BigInteger, nullable=False, default=0)
    term_months = Column(Integer, nullable=False)
    start_month = Column(Date, nullable=False)  # First day of the sale's month
    withdrawal_day = Column(Integer, nullable=False)
    monthly_amount = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="active")
    schedule_stale = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    customer = relationship("Customer", back_populates="sales")
    branch = relationship("Branch")
    policy = relationship("ContractPolicyRecord")
    references = relationship("PaymentReference", back_populates="sale", order_by="PaymentReference.id")
    installments = relationship(
        "Installment",
        back_populates="sale",
        order_by="Installment.due_date",
    )


class PaymentReference(Base):
    """Collection reference for one slice of a sale's monthly obligation"""

    __tablename__ = "payment_reference"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sale.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(Text, nullable=False, unique=True)  # Never reused, retired rows included
    amount = Column(BigInteger, nullable=False)
    coverage_start = Column(Date, nullable=False)
    coverage_end = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    retired_at = Column(DateTime(timezone=True), nullable=True)  # Set when a rebuild replaces it

    sale = relationship("Sale", back_populates="references")
    installments = relationship("Installment", back_populates="reference")


class Installment(Base):
    """Single monthly amount due, per reference when the sale has references"""

    __tablename__ = "installment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sale.id", ondelete="CASCADE"), nullable=False, index=True)
    reference_id = Column(Integer, ForeignKey("payment_reference.id"), nullable=True, index=True)
    due_date = Column(Date, nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    postal_status = Column(Text, nullable=False, default="none")
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    sale = relationship("Sale", back_populates="installments")
    reference = relationship("PaymentReference", back_populates="installments")


class ReferenceCounter(Base):
    """Last number reserved per branch prefix; advanced atomically"""

    __tablename__ = "reference_counter"

    prefix = Column(Text, primary_key=True)
    last_number = Column(BigInteger, nullable=False, default=0)
