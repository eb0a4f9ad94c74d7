"""Tests for batch payment posting and reconciliation."""
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from rcm.models import AuditAction, AuditLogEntry, Claim, ClaimStatus, Payment, PaymentStatus
from rcm.services.payments.poster import PaymentPoster
from rcm.utils.errors import FatalDatabaseError, ValidationError
from tests.factories import ClaimFactory, PaymentFactory


@pytest.fixture
def poster():
    return PaymentPoster()


@pytest.fixture
def post_batch(connection_manager, poster):
    def _post(payments, poster_id="billing_user", **kwargs):
        with connection_manager.transaction(operation="post_payments") as handle:
            return poster.post_payments(handle, payments, poster_id, **kwargs)

    return _post


def entry(claim_id, amount, **extra):
    return {"claim_id": claim_id, "amount": amount, "payment_date": "2024-03-01", "method": "eft", **extra}


def audit_rows(session, action=None):
    session.expire_all()
    query = select(AuditLogEntry)
    if action is not None:
        query = query.where(AuditLogEntry.action == action)
    return session.execute(query).scalars().all()


@pytest.mark.integration
class TestPostPayments:
    """Tests for PaymentPoster.post_payments."""

    def test_all_posted(self, db_session, post_batch, fresh):
        first = ClaimFactory(total_amount=Decimal("200.00"))
        second = ClaimFactory(total_amount=Decimal("100.00"))

        result = post_batch([entry(first.id, "25.00"), entry(second.id, "100.00", check_number="EFT-9")])

        assert result["summary"] == {
            "total": 2,
            "successful": 2,
            "failed": 0,
            "total_amount": Decimal("125.00"),
        }
        assert [r["success"] for r in result["results"]] == [True, True]
        assert fresh(Claim, first.id).status == ClaimStatus.PARTIALLY_PAID
        assert fresh(Claim, second.id).status == ClaimStatus.PAID

        batch_rows = audit_rows(db_session, AuditAction.BATCH_PROCESS)
        assert len(batch_rows) == 1
        assert batch_rows[0].table_name == "payments"
        assert batch_rows[0].record_id == result["batch_id"]
        assert batch_rows[0].user_id == "billing_user"
        assert batch_rows[0].new_values["total"] == 2
        assert batch_rows[0].new_values["total_amount"] == "125.00"
        assert len(batch_rows[0].new_values["payment_ids"]) == 2

    def test_rejected_entries_roll_back_to_their_savepoint(self, db_session, post_batch, fresh):
        good = ClaimFactory(total_amount=Decimal("200.00"))
        small = ClaimFactory(total_amount=Decimal("50.00"))

        result = post_batch(
            [
                entry(good.id, "40.00"),
                entry(small.id, "75.00"),
                entry(99999, "10.00"),
                entry(good.id, "-5.00"),
            ]
        )

        assert result["summary"]["successful"] == 1
        assert result["summary"]["failed"] == 3
        assert result["summary"]["total_amount"] == Decimal("40.00")
        assert [r.get("code") for r in result["results"]] == [None, "OVERPAYMENT", "NOT_FOUND", "VALIDATION_ERROR"]
        assert [r["index"] for r in result["results"]] == [0, 1, 2, 3]

        assert fresh(Claim, good.id).paid_amount == Decimal("40.00")
        assert fresh(Claim, small.id).paid_amount == Decimal("0.00")
        assert len(db_session.execute(select(Payment)).scalars().all()) == 1
        inserts = audit_rows(db_session, AuditAction.INSERT)
        assert [row.table_name for row in inserts] == ["payments"]

    def test_already_paid_claim_is_rejected(self, db_session, post_batch, fresh):
        claim = ClaimFactory(
            total_amount=Decimal("200.00"), paid_amount=Decimal("150.00"), status=ClaimStatus.PAID
        )

        result = post_batch([entry(claim.id, "25.00")])

        assert result["summary"]["failed"] == 1
        assert result["results"][0]["error"] == f"Claim {claim.id} is already paid"
        assert fresh(Claim, claim.id).paid_amount == Decimal("150.00")

    def test_claim_check_can_be_skipped(self, db_session, post_batch, fresh):
        claim = ClaimFactory(
            total_amount=Decimal("200.00"), paid_amount=Decimal("150.00"), status=ClaimStatus.PAID
        )

        result = post_batch([entry(claim.id, "25.00")], validate_claims=False)

        assert result["summary"]["successful"] == 1
        stored = fresh(Claim, claim.id)
        assert stored.paid_amount == Decimal("175.00")
        assert stored.status == ClaimStatus.PARTIALLY_PAID

    def test_auto_reconcile(self, db_session, post_batch, fresh):
        claim = ClaimFactory(total_amount=Decimal("200.00"))

        result = post_batch([entry(claim.id, "60.00")], auto_reconcile=True)

        posted = result["results"][0]
        assert posted["reconciled"] is True
        payment = fresh(Payment, posted["payment_id"])
        assert payment.reconciled is True
        assert payment.reconciled_at is not None

    def test_not_reconciled_by_default(self, db_session, post_batch, fresh):
        claim = ClaimFactory(total_amount=Decimal("200.00"))

        result = post_batch([entry(claim.id, "60.00")])

        payment = fresh(Payment, result["results"][0]["payment_id"])
        assert payment.reconciled is False
        assert payment.reconciled_at is None

    def test_non_mapping_entry_is_reported(self, db_session, post_batch):
        claim = ClaimFactory()

        result = post_batch(["not a payment", entry(claim.id, "10.00")])

        assert result["results"][0] == {
            "index": 0,
            "claim_id": None,
            "success": False,
            "code": "VALIDATION_ERROR",
            "error": "Invalid payment entry",
        }
        assert result["results"][1]["success"] is True

    @pytest.mark.parametrize("payments", [[], None])
    def test_empty_batch(self, db_session, post_batch, payments):
        with pytest.raises(ValidationError, match="Payments array is required"):
            post_batch(payments)

        assert audit_rows(db_session) == []

    def test_fatal_error_aborts_whole_batch(self, db_session, connection_manager, poster, fresh):
        first = ClaimFactory()
        second = ClaimFactory()
        record_insert = poster.audit_logger.record_insert
        calls = []

        def fail_on_second(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise FatalDatabaseError("connection lost")
            return record_insert(*args, **kwargs)

        with patch.object(poster.audit_logger, "record_insert", side_effect=fail_on_second):
            with pytest.raises(FatalDatabaseError):
                with connection_manager.transaction(operation="post_payments") as handle:
                    poster.post_payments(handle, [entry(first.id, "10.00"), entry(second.id, "10.00")], "u1")

        assert fresh(Claim, first.id).paid_amount == Decimal("0.00")
        assert fresh(Claim, second.id).paid_amount == Decimal("0.00")
        assert db_session.execute(select(Payment)).scalars().all() == []
        assert audit_rows(db_session) == []


@pytest.mark.integration
class TestReconcilePayment:
    """Tests for PaymentPoster.reconcile_payment."""

    def test_reconcile(self, db_session, connection_manager, poster, fresh):
        payment = PaymentFactory()

        with connection_manager.transaction(operation="reconcile_payment") as handle:
            result = poster.reconcile_payment(handle, payment.id, user_id="auditor")

        assert result["reconciled"] is True
        assert fresh(Payment, payment.id).reconciled is True
        rows = audit_rows(db_session, AuditAction.UPDATE)
        assert rows[0].old_values == {"reconciled": False, "reconciled_at": None}
        assert rows[0].new_values["reconciled"] is True
        assert rows[0].user_id == "auditor"

    def test_reversed_payment(self, db_session, connection_manager, poster):
        payment = PaymentFactory(status=PaymentStatus.REVERSED)

        with pytest.raises(ValidationError, match="Reversed payments cannot be reconciled"):
            with connection_manager.transaction(operation="reconcile_payment") as handle:
                poster.reconcile_payment(handle, payment.id)

    def test_unknown_payment(self, db_session, connection_manager, poster):
        with pytest.raises(ValidationError, match="Payment not found"):
            with connection_manager.transaction(operation="reconcile_payment") as handle:
                poster.reconcile_payment(handle, 424242)
