"""
Error taxonomy for the device sync core.

StorageFailure      local persistence unavailable; fatal to the current operation only.
RemoteOperationFailure  network, timeout or application error; retried on the next pass.
ValidationFailure   bad user input; surfaced to the UI, never reaches the sync layer.
"""
from typing import Any, Dict, Optional


class TelesyncError(Exception):
    """Base exception carrying a machine-readable code and context details."""

    code = "TS_000"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class StorageFailure(TelesyncError):
    code = "STORE_001"


class RemoteOperationFailure(TelesyncError):
    code = "REMOTE_001"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.status_code = status_code


class ValidationFailure(TelesyncError):
    code = "VALID_001"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field
