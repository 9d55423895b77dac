"""
Custom Exceptions for the Consent Audit Service

Provides a unified exception hierarchy for input validation,
record lookup and persistence failures.
"""

from typing import Optional, Dict, Any, List


class ConsentAuditError(Exception):
    """
    Base exception for all consent audit service errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONSENT_AUDIT_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(ConsentAuditError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", details)


class InvalidStatusError(ValidationError):
    """Raised when a consent status outside the allowed set is requested"""

    def __init__(
        self,
        status: Any,
        valid_statuses: Optional[List[str]] = None
    ):
        details: Dict[str, Any] = {"invalid_status": str(status)}
        if valid_statuses:
            details["valid_statuses"] = valid_statuses
        super().__init__(
            message=f"Invalid consent status: {status}",
            field="status",
            details=details
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================

class RecordNotFoundError(ConsentAuditError):
    """Raised at the API boundary when a consent record does not exist"""

    def __init__(self, consent_id: str):
        super().__init__(
            message="Consent record not found",
            error_code="NOT_FOUND",
            details={"consent_id": consent_id}
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class StoreError(ConsentAuditError):
    """Raised when the record store cannot read or persist data"""

    def __init__(
        self,
        message: str = "Record store operation failed",
        operation: Optional[str] = None,
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if reason:
            details["reason"] = reason
        super().__init__(message, "STORE_ERROR", details)
