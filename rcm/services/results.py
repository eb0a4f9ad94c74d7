"""Uniform operation results and request option models."""
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from rcm.utils.errors import AppError


class OperationResult(BaseModel):
    """
    Outcome of a public financial operation.

    Exactly one of ``data`` (on success) or ``error`` (on failure) is set.
    ``summary`` carries batch totals for bulk and ERA operations.
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    summary: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, data: Dict[str, Any], summary: Optional[Dict[str, Any]] = None) -> "OperationResult":
        return cls(success=True, data=data, summary=summary)

    @classmethod
    def fail(cls, error: AppError) -> "OperationResult":
        return cls(success=False, error=error.to_dict())

    @property
    def error_code(self) -> Optional[str]:
        return self.error["code"] if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error["message"] if self.error else None


class BulkStatusOptions(BaseModel):
    """Options for a bulk claim status update."""

    status: Union[int, str]
    notes: Optional[str] = None
    user_id: Optional[Union[int, str]] = Field(None, description="Actor recorded on audit entries")


class TransferMeta(BaseModel):
    """Who initiated a balance transfer, and why."""

    user_id: Union[int, str]
    reason: Optional[str] = None
    notes: Optional[str] = None


class BatchPaymentOptions(BaseModel):
    """Options for posting a batch of payments."""

    user_id: Union[int, str] = Field(..., description="Poster recorded on payments and audit entries")
    validate_claims: bool = Field(True, description="Reject payments against claims already paid in full")
    auto_reconcile: bool = False
