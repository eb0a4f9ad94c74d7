"""
Balance transfers between patient accounts.

Both accounts are locked in ascending patient-id order, first with named locks
and then with row locks, so two transfers in opposite directions between the
same accounts queue behind each other instead of deadlocking.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from rcm.models.core import PatientAccount
from rcm.models.database import BalanceTransfer
from rcm.models.enums import TransferStatus
from rcm.services.accounts.aging import BALANCE_FIELDS, apply_credit, apply_debit
from rcm.services.audit.logger import AuditLogger, snapshot
from rcm.utils.decimal_utils import money, require_positive_amount
from rcm.utils.errors import (
    InsufficientBalanceError,
    LockAcquisitionError,
    LockTimeoutError,
    NotFoundError,
    ValidationError,
)
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

TRANSFER_AUDIT_FIELDS = ("from_patient_id", "to_patient_id", "amount", "reason", "initiated_by", "status")


def patient_account_lock_key(patient_id) -> str:
    return f"patient_account:{patient_id}"


class BalanceTransferService:
    """Moves balance from one patient account to another."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None, lock_timeout_seconds: Optional[float] = None):
        self.audit_logger = audit_logger or AuditLogger()
        self.lock_timeout_seconds = lock_timeout_seconds

    def _lock_accounts(self, handle, patient_ids) -> None:
        keys = [patient_account_lock_key(patient_id) for patient_id in patient_ids]
        for key in keys:
            try:
                handle.acquire_lock(key, self.lock_timeout_seconds)
            except LockTimeoutError as exc:
                logger.warning("Failed to acquire account locks", keys=keys, failed_key=key)
                raise LockAcquisitionError(keys, details={"failed_key": key}) from exc

    def _load_account_for_update(self, handle, patient_id: str) -> PatientAccount:
        account = handle.execute(
            select(PatientAccount)
            .where(PatientAccount.patient_id == patient_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise NotFoundError("Patient account", patient_id)
        return account

    def transfer_patient_balance(
        self,
        handle,
        from_patient_id,
        to_patient_id,
        amount,
        user_id,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        """
        Transfer ``amount`` from one account to another.

        Raises:
            ValidationError: Non-positive amount, same source and destination, missing user
            LockAcquisitionError: Account locks not granted in time
            NotFoundError: Either account does not exist
            InsufficientBalanceError: Source balance is smaller than ``amount``
        """
        amount = require_positive_amount(amount)
        if from_patient_id is None or to_patient_id is None:
            raise ValidationError("Source and destination patients are required")
        from_patient_id = str(from_patient_id)
        to_patient_id = str(to_patient_id)
        if from_patient_id == to_patient_id:
            raise ValidationError(
                "Cannot transfer balance to the same patient account",
                details={"patient_id": from_patient_id},
            )
        if user_id is None or not str(user_id).strip():
            raise ValidationError("user_id is required", details={"field": "user_id"})
        user_id = str(user_id)

        ordered = sorted([from_patient_id, to_patient_id])
        self._lock_accounts(handle, ordered)

        accounts = {patient_id: self._load_account_for_update(handle, patient_id) for patient_id in ordered}
        source = accounts[from_patient_id]
        destination = accounts[to_patient_id]

        from_before = money(source.total_balance)
        to_before = money(destination.total_balance)
        if amount > from_before:
            logger.warning(
                "Transfer rejected: insufficient balance",
                from_patient_id=from_patient_id,
                available=str(from_before),
                requested=str(amount),
            )
            raise InsufficientBalanceError(from_patient_id, from_before, amount)

        source_snapshot = snapshot(source, BALANCE_FIELDS)
        destination_snapshot = snapshot(destination, BALANCE_FIELDS)
        apply_credit(source, amount)
        apply_debit(destination, amount)

        transfer = BalanceTransfer(
            from_patient_id=from_patient_id,
            to_patient_id=to_patient_id,
            amount=amount,
            reason=reason,
            notes=notes,
            initiated_by=user_id,
            transferred_at=datetime.now(),
            status=TransferStatus.COMPLETED,
        )
        handle.add(transfer)
        handle.flush()

        self.audit_logger.record_update(
            handle, "patient_accounts", from_patient_id, source_snapshot, snapshot(source, BALANCE_FIELDS), user_id
        )
        self.audit_logger.record_update(
            handle,
            "patient_accounts",
            to_patient_id,
            destination_snapshot,
            snapshot(destination, BALANCE_FIELDS),
            user_id,
        )
        self.audit_logger.record_insert(
            handle, "balance_transfers", transfer.id, snapshot(transfer, TRANSFER_AUDIT_FIELDS), user_id
        )
        handle.flush()

        logger.info(
            "Balance transferred",
            transfer_id=transfer.id,
            from_patient_id=from_patient_id,
            to_patient_id=to_patient_id,
            amount=str(amount),
        )
        return {
            "transfer_id": transfer.id,
            "from_patient_id": from_patient_id,
            "to_patient_id": to_patient_id,
            "amount": amount,
            "from_balance_before": from_before,
            "from_balance_after": money(source.total_balance),
            "to_balance_before": to_before,
            "to_balance_after": money(destination.total_balance),
        }
