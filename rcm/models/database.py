"""
SQLAlchemy database models for the financial core.

Claims & Payments:
- Claim: billed claim with running paid amount
- Payment: a payment posted against a claim (and its reversal)

Accounts:
- BalanceTransfer: record of a committed transfer between patient accounts

Remittance:
- ERAFile: an electronic remittance advice file
- ERAPaymentDetail: one parsed remittance line

Audit:
- AuditLogEntry: before/after snapshot of every financial mutation

Money columns are ``Numeric(12, 2)`` and map to ``decimal.Decimal``.
"""
from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    Date,
    Text,
    ForeignKey,
    JSON,
    Index,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rcm.config.database import Base, TimestampMixin
from rcm.models.core import MONEY
from rcm.models.enums import (
    AuditAction,
    ClaimStatus,
    ERAFileStatus,
    ERALineStatus,
    PaymentStatus,
    TransferStatus,
)


class Claim(Base, TimestampMixin):
    """
    Claim model.

    Invariant: ``paid_amount <= total_amount`` and ``paid_amount`` equals the
    sum of the claim's posted (not reversed) payments.

    Attributes:
        patient_id: External patient identifier
        claim_control_number: Control number echoed back in remittances
        total_amount: Billed amount
        paid_amount: Amount paid so far
        status: Claim status (draft, submitted, paid, denied, appealed, partially paid)
        notes: Free-text notes (set by bulk status updates)
    """

    __tablename__ = "claims"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String(50), nullable=False, index=True)
    claim_control_number = Column(String(50), unique=True, index=True)
    total_amount = Column(MONEY, nullable=False)
    paid_amount = Column(MONEY, nullable=False, default=0)
    status = Column(SQLEnum(ClaimStatus), nullable=False, default=ClaimStatus.SUBMITTED, index=True)
    notes = Column(Text)

    payments = relationship("Payment", back_populates="claim")

    def __repr__(self):
        return f"<Claim(id={self.id}, paid_amount={self.paid_amount}, total_amount={self.total_amount})>"


class Payment(Base, TimestampMixin):
    """
    Payment posted against a claim.

    Reversal keeps the row and flips ``status`` to reversed, recording who
    reversed it, when and why.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), nullable=False, index=True)
    patient_id = Column(String(50), nullable=False, index=True)
    era_file_id = Column(Integer, ForeignKey("era_files.id"), index=True)

    amount = Column(MONEY, nullable=False)
    payment_date = Column(Date, nullable=False)
    method = Column(String(50), nullable=False)
    check_number = Column(String(50))
    adjustment_amount = Column(MONEY, nullable=False, default=0)
    adjustment_reason = Column(String(255))

    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.POSTED, index=True)
    posted_by = Column(String(100), nullable=False)
    posted_at = Column(DateTime, default=func.now(), nullable=False)
    reversed_by = Column(String(100))
    reversed_at = Column(DateTime)
    reversal_reason = Column(String(255))
    reconciled = Column(Boolean, nullable=False, default=False)
    reconciled_at = Column(DateTime)

    claim = relationship("Claim", back_populates="payments")

    __table_args__ = (Index("ix_payments_claim_status", "claim_id", "status"),)


class BalanceTransfer(Base, TimestampMixin):
    """
    Committed transfer between two patient accounts.

    A row exists iff both balance adjustments committed in the same transaction.
    """

    __tablename__ = "balance_transfers"

    id = Column(Integer, primary_key=True, index=True)
    from_patient_id = Column(String(50), nullable=False, index=True)
    to_patient_id = Column(String(50), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    reason = Column(String(255))
    notes = Column(Text)
    initiated_by = Column(String(100), nullable=False)
    transferred_at = Column(DateTime, default=func.now(), nullable=False)
    status = Column(SQLEnum(TransferStatus), nullable=False, default=TransferStatus.COMPLETED)


class ERAFile(Base, TimestampMixin):
    """Electronic remittance advice file and its processing totals."""

    __tablename__ = "era_files"

    id = Column(Integer, primary_key=True, index=True)
    file_name = Column(String(255), nullable=False)
    provider_id = Column(String(100), index=True)
    uploaded_by = Column(String(100), nullable=False)
    line_count = Column(Integer, nullable=False, default=0)
    total_paid = Column(MONEY, nullable=False, default=0)
    total_adjustments = Column(MONEY, nullable=False, default=0)
    auto_post_requested = Column(Boolean, nullable=False, default=False)
    auto_posted_count = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(ERAFileStatus), nullable=False, default=ERAFileStatus.PROCESSED, index=True)
    processed_at = Column(DateTime, default=func.now(), nullable=False)

    details = relationship("ERAPaymentDetail", back_populates="era_file")


class ERAPaymentDetail(Base, TimestampMixin):
    """One parsed remittance line of an ERA file."""

    __tablename__ = "era_payment_details"

    id = Column(Integer, primary_key=True, index=True)
    era_file_id = Column(Integer, ForeignKey("era_files.id"), nullable=False, index=True)
    claim_id = Column(String(50), nullable=False, index=True)
    patient_id = Column(String(50))
    service_date = Column(Date)
    allowed_amount = Column(MONEY, nullable=False, default=0)
    paid_amount = Column(MONEY, nullable=False, default=0)
    adjustment_amount = Column(MONEY, nullable=False, default=0)
    reason_codes = Column(JSON)
    check_number = Column(String(50))
    payer_name = Column(String(255))
    status = Column(SQLEnum(ERALineStatus), nullable=False, default=ERALineStatus.PENDING)
    payment_id = Column(Integer, ForeignKey("payments.id"))

    era_file = relationship("ERAFile", back_populates="details")


class AuditLogEntry(Base, TimestampMixin):
    """
    Financial audit trail.

    Written in the same transaction as the mutation it records, so an entry
    exists iff the mutation committed. Entries are never modified.

    Attributes:
        table_name: Table of the mutated row
        record_id: Primary key (or business key) of the mutated row
        action: INSERT, UPDATE, DELETE or BATCH_PROCESS
        old_values: JSON snapshot before the change (None for inserts)
        new_values: JSON snapshot after the change
        user_id: Actor responsible for the change
    """

    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    table_name = Column(String(100), nullable=False, index=True)
    record_id = Column(String(100), nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False)
    old_values = Column(JSON)
    new_values = Column(JSON)
    user_id = Column(String(100), index=True)

    __table_args__ = (Index("ix_audit_log_entries_table_record", "table_name", "record_id"),)
