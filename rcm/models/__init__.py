"""
Database models package.

**Imports:**
    from rcm.models import Claim, Payment
    from rcm.models.core import PatientAccount
    from rcm.models.enums import ClaimStatus
"""

# Import enums
from rcm.models.enums import (
    AuditAction,
    ClaimStatus,
    ERAFileStatus,
    ERALineStatus,
    PaymentStatus,
    TransferStatus,
)

# Import core models
from rcm.models.core import (
    NamedLock,
    PatientAccount,
)

from rcm.models.database import (
    AuditLogEntry,
    BalanceTransfer,
    Claim,
    ERAFile,
    ERAPaymentDetail,
    Payment,
)

__all__ = [
    # Enums
    "AuditAction",
    "ClaimStatus",
    "ERAFileStatus",
    "ERALineStatus",
    "PaymentStatus",
    "TransferStatus",
    # Core models
    "NamedLock",
    "PatientAccount",
    # Claims, payments and remittances
    "Claim",
    "Payment",
    "BalanceTransfer",
    "ERAFile",
    "ERAPaymentDetail",
    # Audit
    "AuditLogEntry",
]
