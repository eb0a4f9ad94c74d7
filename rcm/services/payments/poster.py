"""
Payment posting, batch posting, reconciliation and reversal.

All operations run inside a caller-provided ``TransactionHandle`` and never
commit; the caller (``RetryCoordinator`` or ``ERAProcessor``) owns the
transaction. Rows are read ``FOR UPDATE`` so concurrent postings against the
same claim serialize on the claim row.
"""
import uuid
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Union

from sqlalchemy import select

from rcm.models.core import PatientAccount
from rcm.models.database import Claim, Payment
from rcm.models.enums import ClaimStatus, PaymentStatus
from rcm.services.accounts.aging import BALANCE_FIELDS, apply_credit, apply_debit
from rcm.services.audit.logger import AuditLogger, snapshot
from rcm.utils.decimal_utils import ZERO, money, parse_financial_amount, require_positive_amount
from rcm.utils.errors import (
    NotFoundError,
    OverpaymentError,
    PaymentAlreadyReversedError,
    ValidationError,
)
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

CLAIM_AUDIT_FIELDS = ("paid_amount", "status")
PAYMENT_AUDIT_FIELDS = (
    "claim_id",
    "patient_id",
    "amount",
    "payment_date",
    "method",
    "check_number",
    "adjustment_amount",
    "status",
    "posted_by",
    "era_file_id",
)
ACCOUNT_AUDIT_FIELDS = BALANCE_FIELDS + ("last_payment_date",)
RECONCILE_AUDIT_FIELDS = ("reconciled", "reconciled_at")


def parse_payment_date(value: Union[str, date, datetime, None]) -> date:
    """Accept a date, datetime or ISO-8601 string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError("Invalid payment date", details={"field": "payment_date", "value": value})


def _require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return str(value).strip()


def claim_status_for(paid_amount: Decimal, total_amount: Decimal) -> ClaimStatus:
    """Status implied by a claim's paid amount."""
    if paid_amount <= ZERO:
        return ClaimStatus.SUBMITTED
    if paid_amount >= total_amount:
        return ClaimStatus.PAID
    return ClaimStatus.PARTIALLY_PAID


class PaymentPoster:
    """Posts and reverses payments against claims."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self.audit_logger = audit_logger or AuditLogger()

    def load_claim_for_update(self, handle, claim_ref) -> Claim:
        """
        Lock a claim by primary key or, for non-numeric references, by control number.

        Raises:
            NotFoundError: If no claim matches
        """
        claim = None
        if isinstance(claim_ref, int) and not isinstance(claim_ref, bool):
            claim = handle.get(Claim, claim_ref, for_update=True)
        elif isinstance(claim_ref, str) and claim_ref.strip():
            ref = claim_ref.strip()
            if ref.isdigit():
                claim = handle.get(Claim, int(ref), for_update=True)
            if claim is None:
                claim = handle.execute(
                    select(Claim)
                    .where(Claim.claim_control_number == ref)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
        if claim is None:
            raise NotFoundError("Claim", claim_ref)
        return claim

    def _load_account_for_update(self, handle, patient_id: str) -> Optional[PatientAccount]:
        return handle.execute(
            select(PatientAccount)
            .where(PatientAccount.patient_id == patient_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def post_payment(
        self,
        handle,
        claim_id,
        amount,
        payment_date,
        method: str,
        poster_id,
        check_number: Optional[str] = None,
        adjustment_amount=None,
        adjustment_reason: Optional[str] = None,
        era_file_id: Optional[int] = None,
    ) -> dict:
        """
        Apply a payment to a claim.

        Raises:
            ValidationError: Invalid amount, date, method or poster
            NotFoundError: Unknown claim
            OverpaymentError: Payment would exceed the claim total
        """
        amount = require_positive_amount(amount)
        payment_date = parse_payment_date(payment_date)
        method = _require_text(method, "method")
        poster_id = _require_text(poster_id, "poster_id")
        adjustment = parse_financial_amount(adjustment_amount) if adjustment_amount is not None else ZERO
        if adjustment is None:
            raise ValidationError("Invalid adjustment amount", details={"field": "adjustment_amount"})

        claim = self.load_claim_for_update(handle, claim_id)
        paid_before = money(claim.paid_amount)
        total = money(claim.total_amount)
        new_paid = paid_before + amount
        if new_paid > total:
            logger.warning(
                "Payment rejected: exceeds claim amount",
                claim_id=claim.id,
                amount=str(amount),
                paid_amount=str(paid_before),
                total_amount=str(total),
            )
            raise OverpaymentError(claim.id, amount, paid_before, total)

        payment = Payment(
            claim_id=claim.id,
            patient_id=claim.patient_id,
            era_file_id=era_file_id,
            amount=amount,
            payment_date=payment_date,
            method=method,
            check_number=check_number,
            adjustment_amount=adjustment,
            adjustment_reason=adjustment_reason,
            status=PaymentStatus.POSTED,
            posted_by=poster_id,
            posted_at=datetime.now(),
        )
        handle.add(payment)
        handle.flush()

        claim_before = snapshot(claim, CLAIM_AUDIT_FIELDS)
        claim.paid_amount = new_paid
        claim.status = ClaimStatus.PAID if new_paid == total else ClaimStatus.PARTIALLY_PAID

        self.audit_logger.record_insert(
            handle, "payments", payment.id, snapshot(payment, PAYMENT_AUDIT_FIELDS), user_id=poster_id
        )
        self.audit_logger.record_update(
            handle, "claims", claim.id, claim_before, snapshot(claim, CLAIM_AUDIT_FIELDS), user_id=poster_id
        )

        account = self._load_account_for_update(handle, claim.patient_id)
        if account is not None:
            account_before = snapshot(account, ACCOUNT_AUDIT_FIELDS)
            apply_credit(account, amount)
            account.last_payment_date = datetime.combine(payment_date, time.min)
            self.audit_logger.record_update(
                handle,
                "patient_accounts",
                account.patient_id,
                account_before,
                snapshot(account, ACCOUNT_AUDIT_FIELDS),
                user_id=poster_id,
            )

        handle.flush()
        logger.info(
            "Payment posted",
            payment_id=payment.id,
            claim_id=claim.id,
            amount=str(amount),
            paid_amount=str(new_paid),
            status=claim.status.name,
        )
        return {
            "payment_id": payment.id,
            "claim_id": claim.id,
            "amount": amount,
            "paid_amount": new_paid,
            "remaining_balance": total - new_paid,
            "status": claim.status,
        }

    def reverse_payment(self, handle, payment_id, reverser_id, reason: Optional[str] = None) -> dict:
        """
        Reverse a posted payment and give the amount back to the claim balance.

        Raises:
            NotFoundError: Unknown payment or claim
            PaymentAlreadyReversedError: Payment was already reversed
        """
        reverser_id = _require_text(reverser_id, "reverser_id")
        try:
            payment_pk = int(payment_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid payment id", details={"field": "payment_id", "value": payment_id}) from None

        payment = handle.get(Payment, payment_pk, for_update=True)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        if payment.status == PaymentStatus.REVERSED:
            raise PaymentAlreadyReversedError(payment_pk)

        claim = handle.get(Claim, payment.claim_id, for_update=True)
        if claim is None:
            raise NotFoundError("Claim", payment.claim_id)

        amount = money(payment.amount)
        payment_before = snapshot(payment, ("status", "reversed_by", "reversed_at", "reversal_reason"))
        payment.status = PaymentStatus.REVERSED
        payment.reversed_by = reverser_id
        payment.reversed_at = datetime.now()
        payment.reversal_reason = reason

        claim_before = snapshot(claim, CLAIM_AUDIT_FIELDS)
        total = money(claim.total_amount)
        new_paid = money(claim.paid_amount) - amount
        claim.paid_amount = new_paid
        claim.status = claim_status_for(new_paid, total)

        self.audit_logger.record_update(
            handle,
            "payments",
            payment.id,
            payment_before,
            snapshot(payment, ("status", "reversed_by", "reversed_at", "reversal_reason")),
            user_id=reverser_id,
        )
        self.audit_logger.record_update(
            handle, "claims", claim.id, claim_before, snapshot(claim, CLAIM_AUDIT_FIELDS), user_id=reverser_id
        )

        account = self._load_account_for_update(handle, payment.patient_id)
        if account is not None:
            account_before = snapshot(account, ACCOUNT_AUDIT_FIELDS)
            apply_debit(account, amount)
            self.audit_logger.record_update(
                handle,
                "patient_accounts",
                account.patient_id,
                account_before,
                snapshot(account, ACCOUNT_AUDIT_FIELDS),
                user_id=reverser_id,
            )

        handle.flush()
        logger.info("Payment reversed", payment_id=payment.id, claim_id=claim.id, amount=str(amount))
        return {
            "payment_id": payment.id,
            "claim_id": claim.id,
            "reversed_amount": amount,
            "paid_amount": new_paid,
            "remaining_balance": total - new_paid,
            "status": claim.status,
            "reason": reason,
        }

    def reconcile_payment(self, handle, payment_id, user_id=None) -> dict:
        """
        Mark a posted payment as reconciled.

        Raises:
            NotFoundError: Unknown payment
            ValidationError: Payment was reversed
        """
        payment = handle.get(Payment, payment_id, for_update=True)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        if payment.status == PaymentStatus.REVERSED:
            raise ValidationError("Reversed payments cannot be reconciled", details={"payment_id": payment_id})

        before = snapshot(payment, RECONCILE_AUDIT_FIELDS)
        payment.reconciled = True
        payment.reconciled_at = datetime.now()
        self.audit_logger.record_update(
            handle, "payments", payment.id, before, snapshot(payment, RECONCILE_AUDIT_FIELDS), user_id=user_id
        )
        handle.flush()
        return {"payment_id": payment.id, "reconciled": True, "reconciled_at": payment.reconciled_at}

    def post_payments(
        self,
        handle,
        payments: Sequence,
        poster_id,
        validate_claims: bool = True,
        auto_reconcile: bool = False,
    ) -> dict:
        """
        Post a batch of payments, each under its own savepoint.

        Each entry is a mapping with the keyword arguments of ``post_payment``
        (``claim_id``, ``amount``, ``payment_date``, ``method`` and optionally
        ``check_number``, ``adjustment_amount``, ``adjustment_reason``). An
        entry failing validation is rolled back to its savepoint and reported;
        any other error aborts the batch.

        Returns:
            ``{"batch_id", "summary": {total, successful, failed, total_amount}, "results": [...]}``

        Raises:
            ValidationError: Empty batch or missing poster
        """
        payments = list(payments or [])
        if not payments:
            raise ValidationError("Payments array is required", details={"field": "payments"})
        poster_id = _require_text(poster_id, "poster_id")

        batch_id = uuid.uuid4().hex
        results: List[dict] = []
        total_amount = ZERO

        for index, entry in enumerate(payments):
            claim_ref = entry.get("claim_id") if isinstance(entry, Mapping) else None
            savepoint = handle.next_savepoint_name("payment")
            handle.savepoint(savepoint)
            try:
                if not isinstance(entry, Mapping):
                    raise ValidationError("Invalid payment entry", details={"index": index})
                if validate_claims:
                    claim = self.load_claim_for_update(handle, claim_ref)
                    if claim.status == ClaimStatus.PAID:
                        raise ValidationError(f"Claim {claim.id} is already paid", details={"claim_id": claim.id})
                posted = self.post_payment(
                    handle,
                    claim_id=claim_ref,
                    amount=entry.get("amount"),
                    payment_date=entry.get("payment_date"),
                    method=entry.get("method"),
                    poster_id=poster_id,
                    check_number=entry.get("check_number"),
                    adjustment_amount=entry.get("adjustment_amount"),
                    adjustment_reason=entry.get("adjustment_reason"),
                )
                if auto_reconcile:
                    self.reconcile_payment(handle, posted["payment_id"], user_id=poster_id)
                    posted["reconciled"] = True
            except ValidationError as exc:
                handle.rollback_to(savepoint)
                logger.warning(
                    "Batch payment rejected", index=index, claim_id=claim_ref, code=exc.code, error=exc.message
                )
                results.append(
                    {"index": index, "claim_id": claim_ref, "success": False, "code": exc.code, "error": exc.message}
                )
                continue

            handle.release_savepoint(savepoint)
            total_amount += posted["amount"]
            results.append({"index": index, "success": True, **posted})

        successful = sum(1 for result in results if result["success"])
        summary = {
            "total": len(payments),
            "successful": successful,
            "failed": len(payments) - successful,
            "total_amount": total_amount,
        }
        self.audit_logger.record_batch(
            handle,
            "payments",
            batch_id,
            {**summary, "payment_ids": [r["payment_id"] for r in results if r["success"]]},
            user_id=poster_id,
        )
        handle.flush()
        logger.info("Payment batch processed", batch_id=batch_id, **summary)
        return {"batch_id": batch_id, "summary": summary, "results": results}
