from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """Base exception for the synchronization engine."""
    
    default_message = "Synchronization error"
    
    def __init__(self, message: Optional[str] = None, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)
    
    def __str__(self):
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a JSON friendly dictionary."""
        error_dict = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.code:
            error_dict["code"] = self.code
        if self.details:
            error_dict["details"] = self.details
        return error_dict


class ConfigurationError(SyncError):
    default_message = "Sync configuration error"


class TransportError(SyncError):
    """Network failure, timeout or a retryable HTTP status. Safe to retry."""
    default_message = "Transport error"


class BatchRejectedError(SyncError):
    """The receiver refused the request (HTTP 4xx). Not retried blindly."""
    default_message = "Batch rejected by receiver"
    
    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__(message, code=str(status_code) if status_code else None, details=details)


class BatchValidationError(SyncError):
    """A record in an inbound batch is invalid; the whole batch is rejected."""
    default_message = "Batch validation failed"
    
    def __init__(self, message: Optional[str] = None, index: Optional[int] = None,
                 record_id: Optional[str] = None):
        self.index = index
        self.record_id = record_id
        super().__init__(
            message,
            code="BATCH_VALIDATION",
            details={"index": index, "record_id": record_id},
        )


class MaintenanceAuthorizationError(SyncError):
    """Bad maintenance secret or missing confirmation. Nothing was changed."""
    default_message = "Maintenance operation not authorized"
    
    def __init__(self, message: Optional[str] = None, status_code: int = 403):
        self.status_code = status_code
        super().__init__(message, code="MAINTENANCE_AUTH")


class ResetPartialFailure(SyncError):
    """A reset step failed after earlier steps committed. Not rolled back."""
    default_message = "Maintenance reset stopped part way"
    
    def __init__(self, message: Optional[str] = None, completed_steps: Optional[List[str]] = None,
                 failed_step: Optional[str] = None, remaining_counts: Optional[Dict[str, int]] = None):
        self.completed_steps = completed_steps or []
        self.failed_step = failed_step
        self.remaining_counts = remaining_counts or {}
        super().__init__(
            message,
            code="RESET_PARTIAL",
            details={
                "completed_steps": self.completed_steps,
                "failed_step": failed_step,
                "remaining_counts": self.remaining_counts,
            },
        )


class LocalStoreError(SyncError):
    default_message = "Local store operation failed"


class InsufficientStockError(LocalStoreError):
    default_message = "Insufficient stock"


class DispatcherBusyError(SyncError):
    """Another dispatch cycle is already running in this process."""
    default_message = "Dispatcher already running"
