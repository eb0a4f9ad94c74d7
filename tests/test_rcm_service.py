"""Tests for the TransactionalRCMService facade."""
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from rcm.models import Claim, ClaimStatus, PatientAccount, Payment, PaymentStatus
from rcm.services.rcm_service import TransactionalRCMService
from rcm.services.results import BatchPaymentOptions, BulkStatusOptions, OperationResult, TransferMeta
from rcm.services.transactions.retry import RetryCoordinator
from rcm.utils.errors import DatabaseConnectionError, DeadlockError, FatalDatabaseError, LockTimeoutError
from tests.factories import ClaimFactory, PatientAccountFactory


@pytest.mark.unit
class TestOperationResult:
    """Tests for the uniform result shape."""

    def test_ok(self):
        result = OperationResult.ok({"payment_id": 1}, summary={"total": 1})
        assert result.success is True
        assert result.error is None
        assert result.error_code is None
        assert result.summary == {"total": 1}

    def test_fail(self):
        result = OperationResult.fail(DeadlockError())
        assert result.success is False
        assert result.data is None
        assert result.error_code == "DEADLOCK"
        assert result.error_message == "Deadlock detected"
        assert result.error["kind"] == "transient"


@pytest.mark.integration
class TestPostPayment:
    """Facade payment posting."""

    def test_success(self, db_session, rcm_service, fresh, alerts):
        claim = ClaimFactory(total_amount=Decimal("200.00"))

        result = rcm_service.post_payment(claim.id, "75.00", "2024-01-15", "check", "billing_user")

        assert result.success is True
        assert result.data["paid_amount"] == Decimal("75.00")
        assert result.data["remaining_balance"] == Decimal("125.00")
        assert result.data["status"] == ClaimStatus.PARTIALLY_PAID
        assert fresh(Claim, claim.id).status == ClaimStatus.PARTIALLY_PAID
        alerts[0].assert_not_called()

    def test_overpayment_is_a_failed_result(self, db_session, rcm_service, fresh, alerts):
        claim = ClaimFactory(total_amount=Decimal("150.00"))

        result = rcm_service.post_payment(claim.id, "200.00", date(2024, 1, 15), "check", "billing_user")

        assert result.success is False
        assert result.error_code == "OVERPAYMENT"
        assert result.error_message == "Payment amount exceeds claim amount"
        assert fresh(Claim, claim.id).paid_amount == Decimal("0.00")
        alerts[0].assert_not_called()

    def test_retry_exhaustion(self, db_session, rcm_service, no_sleep, alerts):
        claim = ClaimFactory()

        with patch.object(rcm_service.payment_poster, "post_payment", side_effect=DeadlockError()) as mock_post:
            result = rcm_service.post_payment(claim.id, "10.00", "2024-01-15", "check", "billing_user")

        assert result.success is False
        assert result.error_code == "MAX_RETRIES_EXCEEDED"
        assert result.error_message == "Maximum retry attempts exceeded"
        assert result.error["details"]["attempts"] == 3
        assert mock_post.call_count == 3
        _, delays = no_sleep
        assert delays == [0.1, 0.2]
        alerts[0].assert_called_once()
        assert alerts[0].call_args[1]["tags"] == {"operation": "post_payment", "error_code": "MAX_RETRIES_EXCEEDED"}

    def test_retry_exhaustion_alert_can_be_disabled(self, db_session, rcm_service, alerts):
        claim = ClaimFactory()
        alerts[1].alert_on_retry_exhaustion = False

        with patch.object(rcm_service.payment_poster, "post_payment", side_effect=DeadlockError()):
            result = rcm_service.post_payment(claim.id, "10.00", "2024-01-15", "check", "billing_user")

        assert result.error_code == "MAX_RETRIES_EXCEEDED"
        alerts[0].assert_not_called()

    def test_fatal_error_is_reported(self, db_session, rcm_service, alerts):
        claim = ClaimFactory()

        with patch.object(rcm_service.payment_poster, "post_payment", side_effect=FatalDatabaseError()):
            result = rcm_service.post_payment(claim.id, "10.00", "2024-01-15", "check", "billing_user")

        assert result.error_code == "DATABASE_ERROR"
        alerts[0].assert_called_once()

    def test_unexpected_exception_propagates(self, db_session, rcm_service, alerts):
        with patch.object(rcm_service.payment_poster, "post_payment", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError, match="bug"):
                rcm_service.post_payment(1, "10.00", "2024-01-15", "check", "billing_user")

    def test_connection_error(self, alerts):
        manager = MagicMock()
        manager.begin.side_effect = DatabaseConnectionError(details={"reason": "pool_exhausted"})
        service = TransactionalRCMService(
            connection_manager=manager,
            retry_coordinator=RetryCoordinator(manager, max_attempts=3, backoff_schedule=[0], sleep=lambda s: None),
        )

        result = service.post_payment(1, "10.00", "2024-01-15", "check", "billing_user")

        assert result.error_code == "CONNECTION_ERROR"
        assert manager.begin.call_count == 1


@pytest.mark.integration
class TestReversePayment:
    """Facade payment reversal."""

    def test_reverse(self, db_session, rcm_service, fresh, alerts):
        claim = ClaimFactory(total_amount=Decimal("200.00"))
        posted = rcm_service.post_payment(claim.id, "75.00", "2024-01-15", "check", "billing_user")

        result = rcm_service.reverse_payment(posted.data["payment_id"], "supervisor", reason="Duplicate")

        assert result.success is True
        assert result.data["status"] == ClaimStatus.SUBMITTED
        assert fresh(Payment, posted.data["payment_id"]).status == PaymentStatus.REVERSED

        again = rcm_service.reverse_payment(posted.data["payment_id"], "supervisor")
        assert again.error_code == "PAYMENT_ALREADY_REVERSED"


@pytest.mark.integration
class TestPostPayments:
    """Facade batch payment posting."""

    def test_summary(self, db_session, rcm_service, fresh, alerts):
        paid = ClaimFactory(total_amount=Decimal("100.00"), paid_amount=Decimal("100.00"), status=ClaimStatus.PAID)
        open_claim = ClaimFactory(total_amount=Decimal("300.00"))
        payments = [
            {"claim_id": open_claim.id, "amount": "120.00", "payment_date": "2024-02-01", "method": "eft"},
            {"claim_id": paid.id, "amount": "10.00", "payment_date": "2024-02-01", "method": "eft"},
        ]

        result = rcm_service.post_payments(payments, BatchPaymentOptions(user_id="billing_user", auto_reconcile=True))

        assert result.success is True
        assert result.summary == {"total": 2, "successful": 1, "failed": 1, "total_amount": Decimal("120.00")}
        assert result.data["results"][1]["error"] == f"Claim {paid.id} is already paid"
        payment = fresh(Payment, result.data["results"][0]["payment_id"])
        assert payment.reconciled is True
        assert payment.posted_by == "billing_user"
        alerts[0].assert_not_called()

    def test_empty_batch(self, db_session, rcm_service, alerts):
        result = rcm_service.post_payments([], {"user_id": "billing_user"})

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_message == "Payments array is required"
        alerts[0].assert_not_called()

    def test_missing_user(self, db_session, rcm_service, alerts):
        result = rcm_service.post_payments([{"claim_id": 1}], {"validate_claims": False})

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"
        assert any(err.startswith("user_id") for err in result.error["details"]["errors"])


@pytest.mark.integration
class TestBulkUpdate:
    """Facade bulk status update."""

    def test_summary(self, db_session, rcm_service, fresh, alerts):
        claim = ClaimFactory()

        result = rcm_service.bulk_update_claim_status(
            [claim.id, 999999, 999998], {"status": 3, "notes": "Denied by payer", "user_id": 7}
        )

        assert result.success is True
        assert result.summary == {"total": 3, "successful": 1, "failed": 2}
        assert result.data["failed_ids"] == [999999, 999998]
        assert fresh(Claim, claim.id).notes == "Denied by payer"

    def test_options_model(self, db_session, rcm_service, alerts):
        claim = ClaimFactory()

        result = rcm_service.bulk_update_claim_status([claim.id], BulkStatusOptions(status="PAID"))

        assert result.summary["successful"] == 1

    def test_empty_ids(self, db_session, rcm_service, alerts):
        result = rcm_service.bulk_update_claim_status([], {"status": 2})

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_message == "Claim IDs array is required"

    def test_invalid_options(self, db_session, rcm_service, alerts):
        result = rcm_service.bulk_update_claim_status([1], {"notes": "no status"})

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"
        assert any(err.startswith("status") for err in result.error["details"]["errors"])


@pytest.mark.integration
class TestTransfer:
    """Facade balance transfer."""

    def test_transfer(self, db_session, rcm_service, fresh, alerts):
        source = PatientAccountFactory()
        destination = PatientAccountFactory()

        result = rcm_service.transfer_patient_balance(
            source.patient_id, destination.patient_id, "100.00", TransferMeta(user_id="billing_user")
        )

        assert result.success is True
        assert result.data["from_balance_after"] == Decimal("400.00")
        assert fresh(PatientAccount, destination.id).total_balance == Decimal("600.00")

    def test_insufficient_balance(self, db_session, rcm_service, alerts):
        source = PatientAccountFactory()
        destination = PatientAccountFactory()

        result = rcm_service.transfer_patient_balance(
            source.patient_id, destination.patient_id, "900.00", {"user_id": 1, "reason": "test"}
        )

        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert result.error_message == "Insufficient balance. Available: 500.00, Requested: 900.00"

    def test_lock_contention_is_not_retried(self, db_session, rcm_service, no_sleep, fresh, alerts):
        source = PatientAccountFactory()
        destination = PatientAccountFactory()
        strategy = rcm_service.connection_manager.lock_strategy

        with patch.object(strategy, "acquire", side_effect=LockTimeoutError()) as mock_acquire:
            result = rcm_service.transfer_patient_balance(
                source.patient_id, destination.patient_id, "100.00", {"user_id": "billing_user"}
            )

        assert result.success is False
        assert result.error_code == "LOCK_ACQUISITION_FAILED"
        assert result.error_message == "Failed to acquire locks on patient accounts"
        assert result.error["kind"] == "lock_contention"
        assert mock_acquire.call_count == 1
        _, delays = no_sleep
        assert delays == []
        assert fresh(PatientAccount, source.id).total_balance == Decimal("500.00")
        assert fresh(PatientAccount, destination.id).total_balance == Decimal("500.00")
        alerts[0].assert_called_once()

    def test_missing_meta(self, db_session, rcm_service, alerts):
        result = rcm_service.transfer_patient_balance("A", "B", "1.00", None)

        assert result.error_code == "VALIDATION_ERROR"


@pytest.mark.integration
class TestProcessERA:
    """Facade ERA processing."""

    def test_summary(self, db_session, rcm_service, alerts):
        claim = ClaimFactory(total_amount=Decimal("100.00"))

        result = rcm_service.process_era_file(
            f"{claim.id}*P1*2024-01-01*100*60*40\nCLM-X*P2*2024-01-02*10*0*10",
            "remit.835",
            auto_post=True,
            user_id="billing_user",
        )

        assert result.success is True
        assert result.summary == {
            "line_count": 2,
            "auto_posted_count": 1,
            "total_paid": Decimal("60.00"),
            "total_adjustments": Decimal("50.00"),
        }

    def test_failure_result(self, db_session, rcm_service, alerts):
        result = rcm_service.process_era_file("NOPE*P*2024-01-01*1*1*0", "remit.835", auto_post=True, user_id="u")

        assert result.success is False
        assert result.error_code == "NOT_FOUND"

    def test_undecodable_bytes_are_a_failed_result(self, db_session, rcm_service, alerts):
        result = rcm_service.process_era_file(b"\xff\xfe*bad", "remit.835", auto_post=False, user_id="u")

        assert result.success is False
        assert result.error_code == "ERA_PARSE_ERROR"
        assert result.error_message == "ERA data is not valid UTF-8"
        alerts[0].assert_not_called()
