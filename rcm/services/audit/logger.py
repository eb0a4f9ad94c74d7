"""
Financial audit logging.

Audit entries are written through the caller's ``TransactionHandle`` so an
entry commits or rolls back together with the mutation it describes.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from rcm.models.database import AuditLogEntry
from rcm.models.enums import AuditAction
from rcm.utils.logger import get_logger

logger = get_logger(__name__)


class AuditEntry(BaseModel):
    """An audit record to append."""

    table_name: str
    record_id: str
    action: AuditAction
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None


def snapshot_value(value: Any) -> Any:
    """Convert a column value into something the JSON column can store."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.name if isinstance(value, int) else value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: snapshot_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [snapshot_value(v) for v in value]
    return value


def snapshot(obj, fields) -> Dict[str, Any]:
    """Snapshot selected attributes of an ORM row."""
    return {field: snapshot_value(getattr(obj, field)) for field in fields}


class AuditLogger:
    """Appends audit entries inside the caller's transaction."""

    def append(self, handle, entry: AuditEntry) -> AuditLogEntry:
        row = AuditLogEntry(
            table_name=entry.table_name,
            record_id=entry.record_id,
            action=entry.action,
            old_values=snapshot_value(entry.old_values),
            new_values=snapshot_value(entry.new_values),
            user_id=entry.user_id,
        )
        handle.add(row)
        logger.debug(
            "Audit entry recorded",
            table_name=entry.table_name,
            record_id=entry.record_id,
            action=entry.action.value,
            user_id=entry.user_id,
        )
        return row

    def record_insert(self, handle, table_name: str, record_id, new_values: dict, user_id=None) -> AuditLogEntry:
        return self.append(
            handle,
            AuditEntry(
                table_name=table_name,
                record_id=str(record_id),
                action=AuditAction.INSERT,
                new_values=new_values,
                user_id=_optional_str(user_id),
            ),
        )

    def record_update(
        self, handle, table_name: str, record_id, old_values: dict, new_values: dict, user_id=None
    ) -> AuditLogEntry:
        return self.append(
            handle,
            AuditEntry(
                table_name=table_name,
                record_id=str(record_id),
                action=AuditAction.UPDATE,
                old_values=old_values,
                new_values=new_values,
                user_id=_optional_str(user_id),
            ),
        )

    def record_batch(self, handle, table_name: str, batch_ref, new_values: dict, user_id=None) -> AuditLogEntry:
        """One entry summarizing a batch; per-row entries are written separately."""
        return self.append(
            handle,
            AuditEntry(
                table_name=table_name,
                record_id=str(batch_ref),
                action=AuditAction.BATCH_PROCESS,
                new_values=new_values,
                user_id=_optional_str(user_id),
            ),
        )


def _optional_str(value) -> Optional[str]:
    return None if value is None else str(value)
