"""Test data factories using factory-boy."""
from datetime import date, datetime
from decimal import Decimal

import factory

from rcm.models import (
    Claim,
    ClaimStatus,
    PatientAccount,
    Payment,
    PaymentStatus,
)


class ClaimFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Claim model."""

    class Meta:
        model = Claim
        sqlalchemy_session_persistence = "commit"
        abstract = False

    patient_id = factory.Sequence(lambda n: f"PAT{n:06d}")
    claim_control_number = factory.Sequence(lambda n: f"CLM{n:06d}")
    total_amount = Decimal("200.00")
    paid_amount = Decimal("0.00")
    status = ClaimStatus.SUBMITTED
    notes = factory.Faker("sentence")


class PatientAccountFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for PatientAccount model (balance split across all aging buckets)."""

    class Meta:
        model = PatientAccount
        sqlalchemy_session_persistence = "commit"
        abstract = False

    patient_id = factory.Sequence(lambda n: f"ACCT{n:06d}")
    aging_0_30 = Decimal("200.00")
    aging_31_60 = Decimal("100.00")
    aging_61_90 = Decimal("100.00")
    aging_91_plus = Decimal("100.00")
    total_balance = factory.LazyAttribute(
        lambda o: o.aging_0_30 + o.aging_31_60 + o.aging_61_90 + o.aging_91_plus
    )


class PaymentFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Payment model."""

    class Meta:
        model = Payment
        sqlalchemy_session_persistence = "commit"
        abstract = False

    claim = factory.SubFactory(ClaimFactory)
    patient_id = factory.LazyAttribute(lambda o: o.claim.patient_id)
    amount = Decimal("50.00")
    payment_date = factory.LazyFunction(date.today)
    method = factory.Iterator(["check", "eft", "card"])
    check_number = factory.Faker("numerify", text="CHK######")
    adjustment_amount = Decimal("0.00")
    status = PaymentStatus.POSTED
    posted_by = "billing_user"
    posted_at = factory.LazyFunction(datetime.now)
