"""
Error types for DirectoryVerify.

Data-quality problems (bad formats, missing fields) are never raised; they
are recorded as scored field outcomes. The errors below cover the
infrastructure failures that need a propagation or retry decision.
"""

from typing import Any, Dict, Optional


class DirectoryVerifyError(Exception):
    """
    Base error for DirectoryVerify failures.

    Carries structured context for logging and audit trails.
    """

    def __init__(self, message: str, record_id: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.record_id = record_id
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "record_id": self.record_id,
            "details": self.details,
        }


class ConfigurationError(DirectoryVerifyError):
    """Invalid configuration value."""
    pass


class EnrichmentUnavailable(DirectoryVerifyError):
    """
    Advisory enrichment call failed or timed out.

    Always caught at the record task boundary and converted to an empty
    suggestion set; never counts against the record's score.
    """
    pass


class PersistenceFailure(DirectoryVerifyError):
    """
    Storage write failed.

    Propagates to the batch orchestrator, which applies the configured
    continue/abort policy.
    """

    def __init__(self, message: str, record_id: Optional[str] = None,
                 row_index: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.row_index = row_index
        super().__init__(message, record_id=record_id, details=details)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["row_index"] = self.row_index
        return data


class RecordNotFound(DirectoryVerifyError):
    """Lookup for an unknown record, batch or audit entry."""
    pass


class InvalidStatusTransition(DirectoryVerifyError):
    """Attempted status move that the record state machine does not allow."""

    def __init__(self, current: str, requested: str, record_id: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move record from '{current}' to '{requested}'",
            record_id=record_id,
            details={"from": current, "to": requested},
        )
