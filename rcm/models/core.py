"""
Core account and locking models.

- PatientAccount: running patient balance split into aging buckets
- NamedLock: backing rows for application-level named locks

All models inherit from Base and TimestampMixin, providing automatic
created_at and updated_at timestamps.
"""
from sqlalchemy import Column, String, Integer, Numeric, DateTime
from sqlalchemy.sql import func

from rcm.config.database import Base, TimestampMixin

MONEY = Numeric(12, 2)


class PatientAccount(Base, TimestampMixin):
    """
    Patient account balance.

    ``total_balance`` always equals the sum of the four aging buckets. The row
    is only mutated inside a transaction that also writes an audit entry.

    Attributes:
        patient_id: External patient identifier (unique)
        total_balance: Outstanding balance owed by the patient
        aging_0_30 .. aging_91_plus: Balance split by age of the charge in days
        last_payment_date: Date of the most recent payment credited
    """

    __tablename__ = "patient_accounts"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String(50), unique=True, nullable=False, index=True)
    total_balance = Column(MONEY, nullable=False, default=0)
    aging_0_30 = Column(MONEY, nullable=False, default=0)
    aging_31_60 = Column(MONEY, nullable=False, default=0)
    aging_61_90 = Column(MONEY, nullable=False, default=0)
    aging_91_plus = Column(MONEY, nullable=False, default=0)
    last_payment_date = Column(DateTime)

    def __repr__(self):
        return f"<PatientAccount(patient_id={self.patient_id}, total_balance={self.total_balance})>"


class NamedLock(Base):
    """
    Lock table row used by the portable named-lock strategy.

    A row exists per lock name; holders lock it with ``SELECT ... FOR UPDATE``
    for the duration of their transaction.
    """

    __tablename__ = "named_locks"

    name = Column(String(255), primary_key=True)
    acquired_at = Column(DateTime, default=func.now(), nullable=False)
