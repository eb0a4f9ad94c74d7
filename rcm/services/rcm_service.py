"""
Transactional RCM service.

Public entry point of the financial core. Every operation:

1. runs its unit of work through ``RetryCoordinator`` (one pooled connection,
   one transaction per attempt, whole-transaction retry on deadlocks and lock
   timeouts)
2. returns an ``OperationResult``; ``AppError`` failures become
   ``success=False`` results carrying the error code and message

Validation failures are logged as warnings. Everything else (retry
exhaustion, integrity, connection and fatal errors) is logged as an error and
reported to Sentry when alerts are enabled.
"""
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from rcm.config.database import get_engine
from rcm.config.sentry import add_breadcrumb, report_operation_failure
from rcm.services.accounts.transfer import BalanceTransferService
from rcm.services.audit.logger import AuditLogger
from rcm.services.claims.bulk_status import BulkStatusUpdater
from rcm.services.era.processor import ERAProcessor
from rcm.services.payments.poster import PaymentPoster
from rcm.services.results import BatchPaymentOptions, BulkStatusOptions, OperationResult, TransferMeta
from rcm.services.transactions.manager import ConnectionManager, TransactionHandle
from rcm.services.transactions.retry import RetryCoordinator
from rcm.utils.errors import AppError, ErrorKind, ValidationError
from rcm.utils.logger import bind_operation, get_logger

logger = get_logger(__name__)


def _coerce(model, value):
    """Build an options model from a dict, reporting bad input as a ValidationError."""
    if isinstance(value, model):
        return value
    try:
        return model(**(value or {}))
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]},
        ) from exc


class TransactionalRCMService:
    """
    Payment posting (single and batch), reversal, bulk status updates, balance transfers and ERA processing.

    Args:
        connection_manager: Transaction source (defaults to one over the shared engine)
        retry_coordinator: Retry policy (defaults to configured attempts/backoff)
        audit_logger: Audit sink shared by all collaborators
    """

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        retry_coordinator: Optional[RetryCoordinator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.connection_manager = connection_manager or ConnectionManager(get_engine())
        self.retry_coordinator = retry_coordinator or RetryCoordinator(self.connection_manager)
        self.audit_logger = audit_logger or AuditLogger()
        self.payment_poster = PaymentPoster(self.audit_logger)
        self.bulk_updater = BulkStatusUpdater(self.audit_logger)
        self.transfer_service = BalanceTransferService(self.audit_logger)
        self.era_processor = ERAProcessor(payment_poster=self.payment_poster, audit_logger=self.audit_logger)

    def _execute(
        self,
        operation: str,
        unit_of_work: Callable[[TransactionHandle], Dict[str, Any]],
        context: Dict[str, Any],
        summary_of: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    ) -> OperationResult:
        add_breadcrumb(f"{operation} started", category="rcm", data=context)
        with bind_operation(operation):
            try:
                data = self.retry_coordinator.run(unit_of_work, operation)
            except AppError as exc:
                self._report_failure(operation, exc, context)
                return OperationResult.fail(exc)

        add_breadcrumb(f"{operation} succeeded", category="rcm", data=context)
        return OperationResult.ok(data, summary=summary_of(data) if summary_of else None)

    def _report_failure(self, operation: str, exc: AppError, context: Dict[str, Any]) -> None:
        if exc.kind == ErrorKind.VALIDATION:
            logger.warning("Operation rejected", operation=operation, code=exc.code, error=exc.message, **context)
            return

        logger.error("Operation failed", operation=operation, code=exc.code, error=exc.message, kind=exc.kind.value, **context)
        report_operation_failure(operation, exc, context)

    def post_payment(
        self,
        claim_id,
        amount,
        payment_date,
        method: str,
        poster_id,
        check_number: Optional[str] = None,
        adjustment_amount=None,
        adjustment_reason: Optional[str] = None,
    ) -> OperationResult:
        """Post a payment against a claim."""
        return self._execute(
            "post_payment",
            lambda handle: self.payment_poster.post_payment(
                handle,
                claim_id=claim_id,
                amount=amount,
                payment_date=payment_date,
                method=method,
                poster_id=poster_id,
                check_number=check_number,
                adjustment_amount=adjustment_amount,
                adjustment_reason=adjustment_reason,
            ),
            context={"claim_id": claim_id, "user_id": poster_id},
        )

    def post_payments(self, payments: Iterable, options) -> OperationResult:
        """
        Post many payments in one transaction; rejected entries are reported, not fatal.

        ``options`` is a ``BatchPaymentOptions`` or a dict with the same keys.
        """
        try:
            options = _coerce(BatchPaymentOptions, options)
        except ValidationError as exc:
            self._report_failure("post_payments", exc, {})
            return OperationResult.fail(exc)
        payments = list(payments or [])
        return self._execute(
            "post_payments",
            lambda handle: self.payment_poster.post_payments(
                handle,
                payments,
                options.user_id,
                validate_claims=options.validate_claims,
                auto_reconcile=options.auto_reconcile,
            ),
            context={"payment_count": len(payments), "user_id": options.user_id},
            summary_of=lambda data: data["summary"],
        )

    def reverse_payment(self, payment_id, reverser_id, reason: Optional[str] = None) -> OperationResult:
        """Reverse a posted payment."""
        return self._execute(
            "reverse_payment",
            lambda handle: self.payment_poster.reverse_payment(handle, payment_id, reverser_id, reason),
            context={"payment_id": payment_id, "user_id": reverser_id},
        )

    def bulk_update_claim_status(self, claim_ids: Iterable, options) -> OperationResult:
        """
        Update status and notes of many claims; unknown ids are reported, not fatal.

        ``options`` is a ``BulkStatusOptions`` or a dict with the same keys.
        """
        try:
            options = _coerce(BulkStatusOptions, options)
        except ValidationError as exc:
            self._report_failure("bulk_update_claim_status", exc, {})
            return OperationResult.fail(exc)
        claim_ids = list(claim_ids or [])
        return self._execute(
            "bulk_update_claim_status",
            lambda handle: self.bulk_updater.bulk_update_claim_status(
                handle, claim_ids, options.status, notes=options.notes, user_id=options.user_id
            ),
            context={"claim_count": len(claim_ids), "user_id": options.user_id},
            summary_of=lambda data: data["summary"],
        )

    def transfer_patient_balance(self, from_patient_id, to_patient_id, amount, meta) -> OperationResult:
        """
        Move balance between two patient accounts.

        ``meta`` is a ``TransferMeta`` or a dict with the same keys.
        """
        try:
            meta = _coerce(TransferMeta, meta)
        except ValidationError as exc:
            self._report_failure("transfer_patient_balance", exc, {})
            return OperationResult.fail(exc)
        return self._execute(
            "transfer_patient_balance",
            lambda handle: self.transfer_service.transfer_patient_balance(
                handle,
                from_patient_id,
                to_patient_id,
                amount,
                user_id=meta.user_id,
                reason=meta.reason,
                notes=meta.notes,
            ),
            context={"from_patient_id": from_patient_id, "to_patient_id": to_patient_id, "user_id": meta.user_id},
        )

    def process_era_file(
        self, era_data, file_name: str, auto_post: bool = False, user_id=None, provider_id=None
    ) -> OperationResult:
        """Store a remittance file and, when ``auto_post`` is set, post its paid lines."""
        return self._execute(
            "process_era_file",
            lambda handle: self.era_processor.process_era_file(
                handle, era_data, file_name, auto_post=auto_post, user_id=user_id, provider_id=provider_id
            ),
            context={"file_name": file_name, "auto_post": auto_post, "user_id": user_id, "provider_id": provider_id},
            summary_of=lambda data: {
                "line_count": data["line_count"],
                "auto_posted_count": data["auto_posted_count"],
                "total_paid": data["total_paid"],
                "total_adjustments": data["total_adjustments"],
            },
        )
