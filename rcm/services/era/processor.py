"""
ERA file processing and auto-posting.

The whole file is processed on one ``TransactionHandle``. A failure on any
line, including one raised by ``PaymentPoster``, propagates to the caller so the
transaction rolls back: no ERA file row, no detail rows, no payments.
"""
from datetime import datetime
from typing import Optional

from rcm.models.database import ERAFile, ERAPaymentDetail
from rcm.models.enums import ERAFileStatus, ERALineStatus
from rcm.services.audit.logger import AuditLogger, snapshot
from rcm.services.era.parser import ERAParser
from rcm.services.payments.poster import PaymentPoster
from rcm.utils.decimal_utils import ZERO
from rcm.utils.errors import ValidationError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

ERA_METHOD = "ERA"
ERA_FILE_AUDIT_FIELDS = (
    "file_name",
    "provider_id",
    "uploaded_by",
    "line_count",
    "total_paid",
    "total_adjustments",
    "auto_post_requested",
    "auto_posted_count",
    "status",
)


class ERAProcessor:
    """Stores remittance lines and optionally posts them as payments."""

    def __init__(
        self,
        parser: Optional[ERAParser] = None,
        payment_poster: Optional[PaymentPoster] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.audit_logger = audit_logger or AuditLogger()
        self.parser = parser or ERAParser()
        self.payment_poster = payment_poster or PaymentPoster(self.audit_logger)

    def process_era_file(
        self,
        handle,
        era_data,
        file_name: str,
        auto_post: bool = False,
        user_id=None,
        provider_id=None,
    ) -> dict:
        """
        Parse, store and (optionally) auto-post a remittance file.

        ``provider_id`` is the billing provider the remittance pays; ``user_id``
        is recorded as the uploader and as the poster of auto-posted payments.

        Raises:
            ValidationError: Missing file name or user
            ERAParseError: Remittance text could not be parsed
            AppError: Any failure while posting a line
        """
        if not file_name or not str(file_name).strip():
            raise ValidationError("ERA data and filename are required", details={"field": "file_name"})
        if user_id is None or not str(user_id).strip():
            raise ValidationError("user_id is required", details={"field": "user_id"})
        user_id = str(user_id)

        parsed = self.parser.parse(era_data)

        era_file = ERAFile(
            file_name=str(file_name).strip(),
            provider_id=_optional_str(provider_id),
            uploaded_by=user_id,
            line_count=len(parsed.items),
            total_paid=parsed.total_paid,
            total_adjustments=parsed.total_adjustments,
            auto_post_requested=bool(auto_post),
            auto_posted_count=0,
            status=ERAFileStatus.PROCESSED,
            processed_at=datetime.now(),
        )
        handle.add(era_file)
        handle.flush()

        details = []
        for item in parsed.items:
            detail = ERAPaymentDetail(
                era_file_id=era_file.id,
                claim_id=item.claim_id,
                patient_id=item.patient_id,
                service_date=item.service_date,
                allowed_amount=item.allowed_amount,
                paid_amount=item.paid_amount,
                adjustment_amount=item.adjustment_amount,
                reason_codes=item.reason_codes,
                check_number=item.check_number,
                payer_name=item.payer_name,
                status=ERALineStatus.PENDING,
            )
            handle.add(detail)
            details.append((item, detail))
        handle.flush()

        posted = []
        if auto_post:
            for item, detail in details:
                if item.paid_amount <= ZERO:
                    continue
                result = self.payment_poster.post_payment(
                    handle,
                    claim_id=item.claim_id,
                    amount=item.paid_amount,
                    payment_date=item.service_date or datetime.now().date(),
                    method=ERA_METHOD,
                    poster_id=user_id,
                    check_number=item.check_number,
                    adjustment_amount=item.adjustment_amount,
                    adjustment_reason=",".join(item.reason_codes) or None,
                    era_file_id=era_file.id,
                )
                detail.status = ERALineStatus.AUTO_POSTED
                detail.payment_id = result["payment_id"]
                posted.append(result)

            era_file.auto_posted_count = len(posted)
            if posted:
                era_file.status = ERAFileStatus.AUTO_POSTED

        self.audit_logger.record_insert(
            handle, "era_files", era_file.id, snapshot(era_file, ERA_FILE_AUDIT_FIELDS), user_id=user_id
        )
        handle.flush()

        logger.info(
            "ERA file processed",
            era_file_id=era_file.id,
            file_name=era_file.file_name,
            line_count=len(parsed.items),
            auto_posted=len(posted),
        )
        return {
            "era_file_id": era_file.id,
            "file_name": era_file.file_name,
            "format": parsed.format,
            "line_count": len(parsed.items),
            "total_paid": parsed.total_paid,
            "total_adjustments": parsed.total_adjustments,
            "auto_posted_count": len(posted),
            "payments": posted,
        }


def _optional_str(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None
