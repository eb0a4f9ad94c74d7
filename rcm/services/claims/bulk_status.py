"""
Bulk claim status updates with per-item isolation.

All ids are processed in one outer transaction. Each id gets its own
savepoint: an id that matches no claim is rolled back to its savepoint and
reported as failed, while infrastructure errors propagate and abort the whole
batch.
"""
from typing import Iterable, List, Optional

from sqlalchemy import select, update

from rcm.models.database import Claim
from rcm.models.enums import ClaimStatus
from rcm.services.audit.logger import AuditLogger
from rcm.utils.errors import ValidationError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)


def _normalize_claim_id(claim_id) -> Optional[int]:
    if isinstance(claim_id, bool):
        return None
    if isinstance(claim_id, int):
        return claim_id
    if isinstance(claim_id, str) and claim_id.strip().isdigit():
        return int(claim_id.strip())
    return None


class BulkStatusUpdater:
    """Sets status and notes on many claims at once."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self.audit_logger = audit_logger or AuditLogger()

    def bulk_update_claim_status(
        self,
        handle,
        claim_ids: Iterable,
        status,
        notes: Optional[str] = None,
        user_id=None,
    ) -> dict:
        """
        Update every claim in ``claim_ids``.

        Returns:
            ``{"summary": {total, successful, failed}, "failed_ids": [...], "results": [...]}``

        Raises:
            ValidationError: Empty id list or unknown status
        """
        claim_ids = list(claim_ids or [])
        if not claim_ids:
            raise ValidationError("Claim IDs array is required", details={"field": "claim_ids"})
        try:
            new_status = ClaimStatus.parse(status)
        except (TypeError, ValueError):
            raise ValidationError("Invalid claim status", details={"field": "status", "value": status}) from None

        results: List[dict] = []
        failed_ids: List = []

        for claim_id in claim_ids:
            pk = _normalize_claim_id(claim_id)
            if pk is None:
                failed_ids.append(claim_id)
                results.append({"claim_id": claim_id, "success": False, "error": "Invalid claim id"})
                continue

            savepoint = handle.next_savepoint_name("claim_update")
            handle.savepoint(savepoint)

            old_status = handle.execute(select(Claim.status).where(Claim.id == pk)).scalar_one_or_none()
            result = handle.execute(
                update(Claim)
                .where(Claim.id == pk)
                .values(status=new_status, notes=notes or "")
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                handle.rollback_to(savepoint)
                logger.warning("Claim not found during bulk update", claim_id=claim_id)
                failed_ids.append(claim_id)
                results.append({"claim_id": claim_id, "success": False, "error": "Claim not found"})
                continue

            self.audit_logger.record_update(
                handle,
                "claims",
                pk,
                {"status": old_status.name if old_status is not None else None},
                {"status": new_status.name, "notes": notes or ""},
                user_id=user_id,
            )
            handle.flush()
            handle.release_savepoint(savepoint)
            results.append({"claim_id": pk, "success": True, "status": new_status})

        successful = len(claim_ids) - len(failed_ids)
        logger.info(
            "Bulk claim status update processed",
            total=len(claim_ids),
            successful=successful,
            failed=len(failed_ids),
            status=new_status.name,
        )
        return {
            "summary": {"total": len(claim_ids), "successful": successful, "failed": len(failed_ids)},
            "failed_ids": failed_ids,
            "results": results,
        }
